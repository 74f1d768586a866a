"""
zonebuild — build-zone lifecycle manager

File: src/zonebuild/zones/lifecycle.py

Purpose
- Own the single reusable build zone for the duration of one build attempt.
- Tear down whatever is left of a previous attempt, provision a fresh zone, and run a build
  script inside it.

Ownership
- :meth:`ZoneLifecycleManager.acquire` hands out a :class:`ZoneHandle`; at most one handle per
  zone name may exist in a process. The handle is released on every exit path.
- Releasing a handle never tears the zone down. A zone left behind by a failed build stays as
  it is for inspection until the next attempt begins.

Provisioning order
- teardown, create, loopback-mount the workspace at the same path, clone the template, remove
  version-pinning packages, check and install missing dependencies, mirror the build account
  (non-root only), boot, wait for the milestone.
"""

from __future__ import annotations

import grp
import logging
import os
import pwd
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Final

from zonebuild.zones.control import find_zone
from zonebuild.zones.errors import (
    ZoneBusyError,
    ZoneCommandError,
    ZoneError,
    ZoneStateError,
    ZoneWaitCancelled,
)
from zonebuild.zones.state import ZoneAction, teardown_plan

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Sequence

    from zonebuild.utils.process import CommandResult
    from zonebuild.zones.control import Zone, ZoneControl

# Mount point of the zone root while the zone is in the mounted state.
MOUNTED_ROOT: Final[str] = "/a"
# ``pkg install`` exits 4 when there is nothing to do.
_PKG_NOTHING_TO_DO: Final[int] = 4

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ZoneSettings:
    name: str = "helios-build"
    path: Path = Path("/zones/helios-build")
    brand: str = "lipkg"
    template: str = "helios-template"
    milestone: str = "svc:/milestone/multi-user-server:default"
    poll_interval_seconds: float = 1.0
    workspace_root: Path = Path(".")
    remove_packages: tuple[str, ...] = ("entire", "incorporation/jeos/omnios-userland")
    install_packages: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ValueError("zone name must not be empty")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")

    @property
    def image_root(self) -> Path:
        return self.path / "root"


@dataclass(frozen=True, slots=True)
class BuildAccount:
    """Unprivileged account mirrored into the zone so build output is owned by the caller."""

    name: str
    uid: int
    gid: int
    group_name: str | None = None
    shell: str = "/bin/bash"
    comment: str = "zonebuild user"

    @property
    def home(self) -> str:
        return f"/home/{self.name}"

    def passwd_line(self) -> str:
        return f"{self.name}:x:{self.uid}:{self.gid}:{self.comment}:{self.home}:{self.shell}\n"

    def shadow_line(self) -> str:
        return f"{self.name}:NP:::::::\n"

    def group_line(self) -> str:
        return f"{self.group_name or self.name}::{self.gid}:\n"


def resolve_build_account(build_user: str) -> BuildAccount | None:
    """Mirror the invoking user's uid/gid; ``None`` when running as root."""

    uid = os.getuid()
    if uid == 0:
        return None
    gid = os.getgid()
    try:
        group_name: str | None = grp.getgrgid(gid).gr_name
    except KeyError:
        group_name = None
    try:
        shell = pwd.getpwuid(uid).pw_shell or "/bin/bash"
    except KeyError:
        shell = "/bin/bash"
    return BuildAccount(name=build_user, uid=uid, gid=gid, group_name=group_name, shell=shell)


@dataclass(slots=True)
class ProvisionReport:
    teardown: tuple[ZoneAction, ...] = ()
    removed_packages: list[str] = field(default_factory=list)
    installed_packages: list[str] = field(default_factory=list)
    account: str | None = None


_OWNERSHIP_GUARD = threading.Lock()
_OWNED_ZONES: set[str] = set()


class ZoneHandle:
    """Exclusive right to operate on the build zone until released."""

    def __init__(self, manager: ZoneLifecycleManager) -> None:
        self._manager = manager
        self._released = False

    @property
    def name(self) -> str:
        return self._manager.settings.name

    @property
    def released(self) -> bool:
        return self._released

    def teardown(self) -> tuple[ZoneAction, ...]:
        self._check()
        return self._manager._teardown()

    def provision(
        self,
        dependencies: Sequence[str] = (),
        *,
        cancel: threading.Event | None = None,
    ) -> ProvisionReport:
        self._check()
        return self._manager._provision(dependencies, cancel=cancel)

    def wait_for_milestone(self, cancel: threading.Event | None = None) -> None:
        self._check()
        self._manager._wait_for_milestone(cancel)

    def deposit_script(self, contents: str) -> str:
        self._check()
        return self._manager._deposit_script(contents)

    def run_script(self, path: str) -> CommandResult:
        self._check()
        return self._manager._run_script(path)

    def _check(self) -> None:
        if self._released:
            raise ZoneError(f"handle for zone {self.name!r} has been released")


class ZoneLifecycleManager:
    def __init__(
        self,
        control: ZoneControl,
        settings: ZoneSettings | None = None,
        *,
        account: BuildAccount | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._control = control
        self._settings = settings or ZoneSettings()
        self._account = account
        self._sleep = sleep

    @property
    def settings(self) -> ZoneSettings:
        return self._settings

    @property
    def account(self) -> BuildAccount | None:
        return self._account

    @contextmanager
    def acquire(self) -> Iterator[ZoneHandle]:
        name = self._settings.name
        with _OWNERSHIP_GUARD:
            if name in _OWNED_ZONES:
                raise ZoneBusyError(f"zone {name!r} is already owned by another build")
            _OWNED_ZONES.add(name)

        handle = ZoneHandle(self)
        try:
            yield handle
        finally:
            handle._released = True
            with _OWNERSHIP_GUARD:
                _OWNED_ZONES.discard(name)

    def status(self) -> Zone | None:
        """Return the current zone listing entry, or ``None`` when the zone is absent."""

        return find_zone(self._control.list_zones(), self._settings.name)

    def _teardown(self) -> tuple[ZoneAction, ...]:
        zone = self.status()
        if zone is None:
            logger.info("zone %s absent; nothing to tear down", self._settings.name)
            return ()

        actions = teardown_plan(zone.state)
        logger.info(
            "tearing down zone %s from %s: %s",
            zone.name,
            zone.state.value,
            ", ".join(action.value for action in actions),
        )
        for action in actions:
            self._apply(action)
        return actions

    def _apply(self, action: ZoneAction) -> None:
        name = self._settings.name
        if action is ZoneAction.UNMOUNT:
            self._control.unmount(name)
        elif action is ZoneAction.HALT:
            self._control.halt(name)
        elif action is ZoneAction.UNINSTALL:
            self._control.uninstall(name)
        elif action is ZoneAction.DELETE:
            self._control.delete(name)
        else:
            raise ZoneStateError(f"unsupported zone action {action!r}")

    def _provision(
        self,
        dependencies: Sequence[str],
        *,
        cancel: threading.Event | None,
    ) -> ProvisionReport:
        settings = self._settings
        name = settings.name
        report = ProvisionReport()

        report.teardown = self._teardown()

        logger.info("creating zone %s at %s (brand %s)", name, settings.path, settings.brand)
        self._control.create(name, path=settings.path, brand=settings.brand)

        workspace = settings.workspace_root.resolve()
        self._control.add_lofs(name, special=workspace, directory=workspace)

        logger.info("cloning zone %s from %s", name, settings.template)
        self._control.clone(name, settings.template)

        report.removed_packages = self._remove_pinning_packages()
        report.installed_packages = self._install_missing(
            _unique([*settings.install_packages, *dependencies])
        )

        if self._account is not None:
            self._mirror_account(self._account)
            report.account = self._account.name

        logger.info("booting zone %s", name)
        self._control.boot(name)
        self._wait_for_milestone(cancel)
        return report

    def _remove_pinning_packages(self) -> list[str]:
        installed = [pkg for pkg in self._settings.remove_packages if self._image_has(pkg)]
        if not installed:
            return []
        logger.info("removing %s from zone image", ", ".join(installed))
        result = self._control.image_pkg(
            self._settings.image_root, ["uninstall", *installed], capture=False
        )
        if not result.succeeded:
            raise ZoneCommandError("pkg uninstall", result)
        return installed

    def _install_missing(self, packages: Sequence[str]) -> list[str]:
        missing = [pkg for pkg in packages if not self._image_has(pkg)]
        if not missing:
            logger.info("all %d dependencies already present in zone image", len(packages))
            return []
        logger.info("installing %s into zone image", ", ".join(missing))
        result = self._control.image_pkg(
            self._settings.image_root, ["install", *missing], capture=False
        )
        if not result.succeeded and result.returncode != _PKG_NOTHING_TO_DO:
            raise ZoneCommandError("pkg install", result)
        return missing

    def _image_has(self, package: str) -> bool:
        result = self._control.image_pkg(self._settings.image_root, ["info", "-q", package])
        return result.succeeded

    def _mirror_account(self, account: BuildAccount) -> None:
        name = self._settings.name
        logger.info(
            "adding account %s (%d:%d) to zone %s", account.name, account.uid, account.gid, name
        )
        self._control.mount(name)

        self._append(f"{MOUNTED_ROOT}/etc/passwd", account.passwd_line())
        self._append(f"{MOUNTED_ROOT}/etc/shadow", account.shadow_line())
        if not self._zone_has_group(account.gid):
            self._append(f"{MOUNTED_ROOT}/etc/group", account.group_line())

        home = f"{MOUNTED_ROOT}{account.home}"
        self._console_checked("mkdir", ["mkdir", "-p", home])
        self._console_checked("chown", ["chown", f"{account.uid}:{account.gid}", home])

        self._control.unmount(name)

    def _zone_has_group(self, gid: int) -> bool:
        result = self._console_checked("read group", ["cat", f"{MOUNTED_ROOT}/etc/group"])
        for line in result.stdout.splitlines():
            fields = line.split(":")
            if len(fields) >= 3 and fields[2] == str(gid):
                return True
        return False

    def _append(self, path: str, line: str) -> None:
        self._console_checked(f"append {path}", ["tee", "-a", path], input_text=line)

    def _console_checked(
        self,
        action: str,
        command: Sequence[str],
        *,
        input_text: str | None = None,
    ) -> CommandResult:
        result = self._control.console_exec(self._settings.name, command, input_text=input_text)
        if not result.succeeded:
            raise ZoneCommandError(action, result)
        return result

    def _wait_for_milestone(self, cancel: threading.Event | None) -> None:
        settings = self._settings
        while True:
            if cancel is not None and cancel.is_set():
                raise ZoneWaitCancelled(
                    f"wait for {settings.milestone} in {settings.name} cancelled"
                )

            status = self._control.service_status(settings.name, settings.milestone)
            if status is not None and status.ready:
                logger.info("zone %s reached %s", settings.name, settings.milestone)
                return
            if status is not None:
                logger.debug(
                    "waiting for %s in %s: %s %s",
                    settings.milestone,
                    settings.name,
                    status.state,
                    status.next_state,
                )

            if cancel is not None:
                if cancel.wait(settings.poll_interval_seconds):
                    raise ZoneWaitCancelled(
                        f"wait for {settings.milestone} in {settings.name} cancelled"
                    )
            else:
                self._sleep(settings.poll_interval_seconds)

    def _deposit_script(self, contents: str) -> str:
        path = f"/tmp/zonebuild.{os.getpid()}.sh"
        self._console_checked(f"deposit {path}", ["tee", path], input_text=contents)
        self._console_checked(f"chmod {path}", ["/bin/chmod", "0755", path])
        return path

    def _run_script(self, path: str) -> CommandResult:
        user = self._account.name if self._account is not None else None
        logger.info("running %s in zone %s as %s", path, self._settings.name, user or "root")
        return self._control.console_exec(self._settings.name, [path], user=user, capture=False)


def _unique(items: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


__all__ = [
    "MOUNTED_ROOT",
    "BuildAccount",
    "ProvisionReport",
    "ZoneHandle",
    "ZoneLifecycleManager",
    "ZoneSettings",
    "resolve_build_account",
]
