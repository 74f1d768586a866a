"""
zonebuild — build-zone state machine

File: src/zonebuild/zones/state.py

Purpose
- Close the set of zone states reported by ``zoneadm`` into a variant and reject anything else
  where the status text is parsed.
- Map each build-relevant state to the ordered teardown actions that leave the zone absent.

Transitions modeled
- ``mounted --unmount--> installed``
- ``running --halt--> installed`` (``halt`` on an installed zone leaves it installed)
- ``installed|incomplete --uninstall--> configured``
- ``configured --delete--> absent``
"""

from __future__ import annotations

from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

from zonebuild.zones.errors import ZoneStateError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class ZoneState(StrEnum):
    CONFIGURED = "configured"
    INCOMPLETE = "incomplete"
    INSTALLED = "installed"
    READY = "ready"
    MOUNTED = "mounted"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    DOWN = "down"
    UNAVAILABLE = "unavailable"


class ZoneAction(StrEnum):
    UNMOUNT = "unmount"
    HALT = "halt"
    UNINSTALL = "uninstall"
    DELETE = "delete"


TEARDOWN_ACTIONS: Final[Mapping[ZoneState, tuple[ZoneAction, ...]]] = MappingProxyType(
    {
        ZoneState.MOUNTED: (
            ZoneAction.UNMOUNT,
            ZoneAction.HALT,
            ZoneAction.UNINSTALL,
            ZoneAction.DELETE,
        ),
        ZoneState.RUNNING: (ZoneAction.HALT, ZoneAction.UNINSTALL, ZoneAction.DELETE),
        ZoneState.INSTALLED: (ZoneAction.UNINSTALL, ZoneAction.DELETE),
        ZoneState.INCOMPLETE: (ZoneAction.UNINSTALL, ZoneAction.DELETE),
        ZoneState.CONFIGURED: (ZoneAction.DELETE,),
    }
)

# ``None`` as a target means the zone no longer exists.
TRANSITIONS: Final[Mapping[tuple[ZoneState, ZoneAction], ZoneState | None]] = MappingProxyType(
    {
        (ZoneState.MOUNTED, ZoneAction.UNMOUNT): ZoneState.INSTALLED,
        (ZoneState.RUNNING, ZoneAction.HALT): ZoneState.INSTALLED,
        (ZoneState.INSTALLED, ZoneAction.HALT): ZoneState.INSTALLED,
        (ZoneState.INSTALLED, ZoneAction.UNINSTALL): ZoneState.CONFIGURED,
        (ZoneState.INCOMPLETE, ZoneAction.UNINSTALL): ZoneState.CONFIGURED,
        (ZoneState.CONFIGURED, ZoneAction.DELETE): None,
    }
)


def parse_zone_state(text: str) -> ZoneState:
    try:
        return ZoneState(text.strip())
    except ValueError:
        raise ZoneStateError(f"unknown zone state {text!r}") from None


def teardown_plan(state: ZoneState) -> tuple[ZoneAction, ...]:
    """Return the ordered actions that take a zone in ``state`` to absent."""

    try:
        return TEARDOWN_ACTIONS[state]
    except KeyError:
        raise ZoneStateError(f"no teardown defined for zone in state {state.value!r}") from None


def apply_action(state: ZoneState, action: ZoneAction) -> ZoneState | None:
    try:
        return TRANSITIONS[(state, action)]
    except KeyError:
        raise ZoneStateError(
            f"action {action.value!r} is not valid for a zone in state {state.value!r}"
        ) from None


def simulate_teardown(state: ZoneState, actions: Iterable[ZoneAction]) -> ZoneState | None:
    current: ZoneState | None = state
    for action in actions:
        if current is None:
            raise ZoneStateError(f"action {action.value!r} applied to an absent zone")
        current = apply_action(current, action)
    return current


__all__ = [
    "TEARDOWN_ACTIONS",
    "TRANSITIONS",
    "ZoneAction",
    "ZoneState",
    "apply_action",
    "parse_zone_state",
    "simulate_teardown",
    "teardown_plan",
]
