"""Errors raised by the build planner and its collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


class PlannerError(RuntimeError):
    """Base error for build planning failures."""


class PlannerStateError(PlannerError, ValueError):
    """Raised when a persisted planner memo is unreadable or malformed."""


class MappingError(PlannerError):
    """Raised when a package name maps to zero or several source components."""

    def __init__(self, name: str, matches: Sequence[tuple[str, Path]]) -> None:
        self.name = name
        self.matches = tuple(matches)
        if not self.matches:
            message = f"no source component found for package {name!r}"
        else:
            rendered = ", ".join(f"{component} ({path})" for component, path in self.matches)
            message = f"package {name!r} maps to more than one component: {rendered}"
        super().__init__(message)


class PlanFailedError(PlannerError):
    """Raised when a package cannot be built or inspected and failures are not skipped."""

    def __init__(self, fmri: str, location: Path | None, reason: str) -> None:
        self.fmri = fmri
        self.location = location
        self.reason = reason
        where = f" at {location}" if location is not None else ""
        super().__init__(f"planning failed for {fmri}{where}: {reason}")


class RepositoryError(RuntimeError):
    """Raised for unexpected failures talking to the package repository."""


__all__ = [
    "MappingError",
    "PlanFailedError",
    "PlannerError",
    "PlannerStateError",
    "RepositoryError",
]
