"""Errors raised by the build-zone control surface and lifecycle manager."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zonebuild.utils.process import CommandResult


class ZoneError(RuntimeError):
    """Base error for build-zone failures."""


class ZoneStateError(ZoneError):
    """Raised for a zone state string or teardown request that has no defined handling."""


class ZoneCommandError(ZoneError):
    """Raised when a host zone command exits non-zero."""

    def __init__(self, action: str, result: CommandResult) -> None:
        self.action = action
        self.command = result.command
        self.returncode = result.returncode
        self.detail = result.describe()
        super().__init__(f"{action} failed: {self.detail}")


class ZoneWaitCancelled(ZoneError):
    """Raised when a milestone wait is cancelled through its cancel token."""


class ZoneBusyError(ZoneError):
    """Raised when the build zone is already owned by another handle."""


__all__ = [
    "ZoneBusyError",
    "ZoneCommandError",
    "ZoneError",
    "ZoneStateError",
    "ZoneWaitCancelled",
]
