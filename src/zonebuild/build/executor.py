"""
zonebuild — build executor

File: src/zonebuild/build/executor.py

Purpose
- Provision the build zone for one component, render its build script, run it as the build
  account and report the outcome.

Functional requirements
- The script aborts on the first failing command or pipeline stage and traces every command.
- Every interpolated value is shell-quoted; environment names are validated.
- A non-zero exit raises :class:`BuildFailure`. The zone is left as it is.
"""

from __future__ import annotations

import logging
import re
import shlex
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Final

from jinja2 import Environment, StrictUndefined

if TYPE_CHECKING:
    from collections.abc import Mapping

    from zonebuild.planning.components import ComponentLocation
    from zonebuild.zones.lifecycle import BuildAccount, ZoneLifecycleManager

BUILD_SCRIPT_TEMPLATE: Final[str] = """\
#!/bin/bash

set -o errexit
set -o pipefail
set -o xtrace

{% for name, value in environment %}
export {{ name }}={{ value | shquote }}
{% endfor %}

cd {{ directory | shquote }}
./build.sh{% for argument in arguments %} {{ argument | shquote }}{% endfor %}

"""

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

logger = logging.getLogger(__name__)


class BuildFailure(RuntimeError):
    """Raised when a component build script exits non-zero."""

    def __init__(self, fmri: str, returncode: int, *, component: str | None = None) -> None:
        self.fmri = fmri
        self.returncode = returncode
        self.component = component
        where = f" ({component})" if component else ""
        super().__init__(f"build of {fmri}{where} failed with exit code {returncode}")


@dataclass(frozen=True, slots=True)
class BuildSettings:
    repository_path: Path = Path("packages/repo")
    publisher: str = "helios-dev"
    script_args: tuple[str, ...] = ("-b",)
    environment: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in self.environment:
            _validate_env_name(name)

    @property
    def repository_url(self) -> str:
        return self.repository_path.resolve().as_uri()


@dataclass(frozen=True, slots=True)
class BuildResult:
    fmri: str
    component: str
    script_path: str
    duration_ms: float


def _environment() -> Environment:
    environment = Environment(
        undefined=StrictUndefined,
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        newline_sequence="\n",
        keep_trailing_newline=True,
    )
    environment.filters["shquote"] = lambda value: shlex.quote(str(value))
    return environment


_TEMPLATE = _environment().from_string(BUILD_SCRIPT_TEMPLATE)


def build_environment(
    settings: BuildSettings,
    account: BuildAccount | None,
) -> list[tuple[str, str]]:
    if account is None:
        user, home = "root", "/root"
    else:
        user, home = account.name, account.home

    pairs: dict[str, str] = {
        "PKGSRVR": settings.repository_url,
        "PKGPUBLISHER": settings.publisher,
        "HOME": home,
        "LOGNAME": user,
        "USER": user,
    }
    pairs.update(settings.environment)
    return list(pairs.items())


def render_build_script(
    *,
    directory: Path,
    environment: list[tuple[str, str]],
    arguments: tuple[str, ...] = (),
) -> str:
    for name, _ in environment:
        _validate_env_name(name)
    return _TEMPLATE.render(
        directory=str(directory),
        environment=environment,
        arguments=arguments,
    )


class BuildExecutor:
    """Builds one component at a time in the single build zone."""

    def __init__(
        self,
        zones: ZoneLifecycleManager,
        settings: BuildSettings | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        self._zones = zones
        self._settings = settings or BuildSettings()
        self._cancel = cancel

    @property
    def settings(self) -> BuildSettings:
        return self._settings

    def build(self, fmri: str, location: ComponentLocation) -> BuildResult:
        started = time.perf_counter()
        script = render_build_script(
            directory=location.path,
            environment=build_environment(self._settings, self._zones.account),
            arguments=self._settings.script_args,
        )

        with self._zones.acquire() as handle:
            handle.provision(location.build_depends, cancel=self._cancel)
            script_path = handle.deposit_script(script)
            logger.info("building %s from %s", fmri, location.path)
            result = handle.run_script(script_path)

        if not result.succeeded:
            logger.error("build of %s failed: %s", fmri, result.describe())
            raise BuildFailure(fmri, result.returncode, component=location.name)

        duration_ms = (time.perf_counter() - started) * 1000.0
        logger.info("built %s in %.0f ms", fmri, duration_ms)
        return BuildResult(
            fmri=fmri,
            component=location.name,
            script_path=script_path,
            duration_ms=duration_ms,
        )


def _validate_env_name(name: str) -> None:
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError(f"invalid environment variable name: {name!r}")


__all__ = [
    "BUILD_SCRIPT_TEMPLATE",
    "BuildExecutor",
    "BuildFailure",
    "BuildResult",
    "BuildSettings",
    "build_environment",
    "render_build_script",
]
