"""
zonebuild — host zone control surface

File: src/zonebuild/zones/control.py

Purpose
- Wrap ``zoneadm``, ``zonecfg``, ``zlogin``, ``svcs`` and ``pkg -R`` behind a small protocol so
  the lifecycle manager can be driven by fakes in tests.

Behavior
- Privileged commands run through ``pfexec`` (when enabled) with an empty environment.
- Any non-zero exit raises :class:`ZoneCommandError` carrying ``exit code N: <detail>``.
- Console execution and image package commands return the raw :class:`CommandResult`; callers
  decide what a non-zero exit means.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol

from zonebuild.utils.process import CommandResult, SubprocessCommandRunner
from zonebuild.zones.errors import ZoneCommandError, ZoneError
from zonebuild.zones.state import ZoneState, parse_zone_state

if TYPE_CHECKING:
    from collections.abc import Sequence

    from zonebuild.utils.process import CommandRunner

PFEXEC: Final[str] = "/bin/pfexec"
ZONEADM: Final[str] = "/usr/sbin/zoneadm"
ZONECFG: Final[str] = "/usr/sbin/zonecfg"
ZLOGIN: Final[str] = "/usr/sbin/zlogin"
SVCS: Final[str] = "/bin/svcs"
PKG: Final[str] = "/usr/bin/pkg"

_MIN_LIST_FIELDS: Final[int] = 7

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Zone:
    """One row of ``zoneadm list -cip``."""

    id: int | None
    name: str
    state: ZoneState
    path: Path
    uuid: str | None
    brand: str
    ip_type: str


@dataclass(frozen=True, slots=True)
class ServiceStatus:
    state: str
    next_state: str

    @property
    def ready(self) -> bool:
        return self.state == "ON" and self.next_state == "-"


def split_adm_fields(line: str) -> list[str]:
    """Split one colon-separated ``zoneadm -p`` line, honoring backslash escapes."""

    fields: list[str] = []
    current: list[str] = []
    escape = False
    for char in line:
        if escape:
            current.append(char)
            escape = False
        elif char == "\\":
            escape = True
        elif char == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return fields


def parse_zoneadm_list(text: str) -> list[Zone]:
    zones: list[Zone] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        fields = split_adm_fields(line)
        if len(fields) < _MIN_LIST_FIELDS:
            raise ZoneError(f"invalid zoneadm list line: {line!r}")

        raw_id = fields[0]
        if raw_id == "-":
            zone_id = None
        else:
            try:
                zone_id = int(raw_id)
            except ValueError:
                raise ZoneError(f"invalid zone id {raw_id!r} in zoneadm list line") from None

        zones.append(
            Zone(
                id=zone_id,
                name=fields[1],
                state=parse_zone_state(fields[2]),
                path=Path(fields[3]),
                uuid=fields[4] or None,
                brand=fields[5],
                ip_type=fields[6],
            )
        )
    return zones


def find_zone(zones: Sequence[Zone], name: str) -> Zone | None:
    for zone in zones:
        if zone.name == name:
            return zone
    return None


def parse_service_status(text: str, fmri: str) -> ServiceStatus | None:
    """Interpret ``svcs -Ho sta,nsta`` output; ``None`` when there is nothing to report yet."""

    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return None
    if len(lines) > 1:
        raise ZoneError(f"unexpected svcs output for {fmri}: {lines!r}")
    tokens = lines[0].split()
    if len(tokens) < 2:
        return None
    return ServiceStatus(state=tokens[0], next_state=tokens[1])


def zonecfg_create_script(*, name: str, path: Path, brand: str) -> str:
    return f"create -b; set zonepath={path}; set zonename={name}; set brand={brand}; commit; "


def zonecfg_lofs_script(*, special: Path, directory: Path) -> str:
    return (
        "add fs; "
        f"set dir = {directory}; "
        f"set special = {special}; "
        "set type = lofs; "
        "set options = [rw,nodevices]; "
        "end; "
        "commit; "
    )


class ZoneControl(Protocol):
    """Operations on host zones used by the lifecycle manager."""

    def list_zones(self) -> list[Zone]: ...

    def create(self, name: str, *, path: Path, brand: str) -> None: ...

    def add_lofs(self, name: str, *, special: Path, directory: Path) -> None: ...

    def clone(self, name: str, source: str) -> None: ...

    def boot(self, name: str) -> None: ...

    def halt(self, name: str) -> None: ...

    def mount(self, name: str) -> None: ...

    def unmount(self, name: str) -> None: ...

    def uninstall(self, name: str) -> None: ...

    def delete(self, name: str) -> None: ...

    def service_status(self, name: str, fmri: str) -> ServiceStatus | None: ...

    def console_exec(
        self,
        name: str,
        command: Sequence[str],
        *,
        user: str | None = None,
        input_text: str | None = None,
        capture: bool = True,
    ) -> CommandResult: ...

    def image_pkg(
        self,
        root: Path,
        arguments: Sequence[str],
        *,
        capture: bool = True,
    ) -> CommandResult: ...


class ZoneadmControl:
    """:class:`ZoneControl` backed by the illumos zone tools."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        use_pfexec: bool = True,
    ) -> None:
        self._runner = runner or SubprocessCommandRunner()
        self._use_pfexec = use_pfexec

    def list_zones(self) -> list[Zone]:
        result = self._runner.run([ZONEADM, "list", "-cip"])
        self._check("zoneadm list", result)
        return parse_zoneadm_list(result.stdout)

    def create(self, name: str, *, path: Path, brand: str) -> None:
        script = zonecfg_create_script(name=name, path=path, brand=brand)
        logger.debug("zonecfg %s: %s", name, script)
        self._privileged("zonecfg create", [ZONECFG, "-z", name, script])

    def add_lofs(self, name: str, *, special: Path, directory: Path) -> None:
        script = zonecfg_lofs_script(special=special, directory=directory)
        logger.debug("zonecfg %s: %s", name, script)
        self._privileged("zonecfg add fs", [ZONECFG, "-z", name, script])

    def clone(self, name: str, source: str) -> None:
        self._privileged(
            f"zoneadm clone {name}", [ZONEADM, "-z", name, "clone", source], capture=False
        )

    def boot(self, name: str) -> None:
        self._privileged(f"zoneadm boot {name}", [ZONEADM, "-z", name, "boot"])

    def halt(self, name: str) -> None:
        self._privileged(f"zoneadm halt {name}", [ZONEADM, "-z", name, "halt"])

    def mount(self, name: str) -> None:
        self._privileged(f"zoneadm mount {name}", [ZONEADM, "-z", name, "mount"])

    def unmount(self, name: str) -> None:
        self._privileged(f"zoneadm unmount {name}", [ZONEADM, "-z", name, "unmount"])

    def uninstall(self, name: str) -> None:
        self._privileged(f"zoneadm uninstall {name}", [ZONEADM, "-z", name, "uninstall", "-F"])

    def delete(self, name: str) -> None:
        self._privileged(f"zonecfg delete {name}", [ZONECFG, "-z", name, "delete", "-F"])

    def service_status(self, name: str, fmri: str) -> ServiceStatus | None:
        result = self._runner.run(self._argv([SVCS, "-z", name, "-Ho", "sta,nsta", fmri]))
        if not result.succeeded:
            # The service may not exist yet while the zone is still booting.
            logger.debug("svcs query for %s in %s: %s", fmri, name, result.describe())
            return None
        return parse_service_status(result.stdout, fmri)

    def console_exec(
        self,
        name: str,
        command: Sequence[str],
        *,
        user: str | None = None,
        input_text: str | None = None,
        capture: bool = True,
    ) -> CommandResult:
        if user is None:
            argv = [ZLOGIN, "-S", name, *command]
        else:
            argv = [ZLOGIN, "-l", user, name, *command]
        return self._runner.run(self._argv(argv), input_text=input_text, capture=capture)

    def image_pkg(
        self,
        root: Path,
        arguments: Sequence[str],
        *,
        capture: bool = True,
    ) -> CommandResult:
        return self._runner.run(
            self._argv([PKG, "-R", str(root), *arguments]),
            capture=capture,
        )

    def _privileged(self, action: str, command: list[str], *, capture: bool = True) -> None:
        result = self._runner.run(self._argv(command), capture=capture)
        self._check(action, result)

    def _argv(self, command: list[str]) -> list[str]:
        if self._use_pfexec:
            return [PFEXEC, *command]
        return command

    @staticmethod
    def _check(action: str, result: CommandResult) -> None:
        if not result.succeeded:
            raise ZoneCommandError(action, result)


__all__ = [
    "PFEXEC",
    "PKG",
    "SVCS",
    "ZLOGIN",
    "ZONEADM",
    "ZONECFG",
    "ServiceStatus",
    "Zone",
    "ZoneControl",
    "ZoneadmControl",
    "find_zone",
    "parse_service_status",
    "parse_zoneadm_list",
    "split_adm_fields",
    "zonecfg_create_script",
    "zonecfg_lofs_script",
]
