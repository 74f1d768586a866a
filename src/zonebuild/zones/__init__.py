"""The ephemeral build zone: state machine, host control surface and lifecycle manager."""

from zonebuild.zones.control import (
    ServiceStatus,
    Zone,
    ZoneadmControl,
    ZoneControl,
    parse_zoneadm_list,
)
from zonebuild.zones.errors import (
    ZoneBusyError,
    ZoneCommandError,
    ZoneError,
    ZoneStateError,
    ZoneWaitCancelled,
)
from zonebuild.zones.lifecycle import (
    BuildAccount,
    ProvisionReport,
    ZoneHandle,
    ZoneLifecycleManager,
    ZoneSettings,
    resolve_build_account,
)
from zonebuild.zones.state import ZoneAction, ZoneState, parse_zone_state, teardown_plan

__all__ = [
    "BuildAccount",
    "ProvisionReport",
    "ServiceStatus",
    "Zone",
    "ZoneAction",
    "ZoneBusyError",
    "ZoneCommandError",
    "ZoneControl",
    "ZoneError",
    "ZoneHandle",
    "ZoneLifecycleManager",
    "ZoneSettings",
    "ZoneState",
    "ZoneStateError",
    "ZoneWaitCancelled",
    "ZoneadmControl",
    "parse_zone_state",
    "parse_zoneadm_list",
    "resolve_build_account",
    "teardown_plan",
]
