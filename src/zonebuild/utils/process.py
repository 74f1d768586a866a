"""Subprocess execution seam shared by the zone control surface and the repository client."""

from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result.

    ``stdout``/``stderr`` are empty strings when the command ran with inherited stdio.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        """Render ``exit code N: <detail>`` where detail prefers stderr over stdout."""

        parts = [f"exit code {self.returncode}"]
        detail = self.stderr.strip() or self.stdout.strip()
        if detail:
            parts.append(detail)
        return ": ".join(parts)


class CommandRunner(Protocol):
    """Injectable command runner used for deterministic/offline testing."""

    def run(
        self,
        command: Sequence[str],
        *,
        input_text: str | None = None,
        capture: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult: ...


class SubprocessCommandRunner:
    """Default command runner backed by ``subprocess.run``.

    Commands run with an empty environment unless ``env`` is given, matching how the
    privileged illumos tools are invoked. ``capture=False`` lets long-running commands
    (zone clone, the build itself) stream to the controlling terminal.
    """

    def __init__(self, *, inherit_env: bool = False) -> None:
        self._inherit_env = inherit_env

    def run(
        self,
        command: Sequence[str],
        *,
        input_text: str | None = None,
        capture: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv = _normalize_command(command)
        run_env = dict(os.environ) if self._inherit_env else {}
        if env is not None:
            run_env.update(env)

        started = time.perf_counter()
        completed = subprocess.run(
            list(argv),
            check=False,
            capture_output=capture,
            text=True,
            input=input_text,
            env=run_env,
        )
        duration_ms = (time.perf_counter() - started) * 1000.0

        return CommandResult(
            command=argv,
            returncode=completed.returncode,
            stdout=completed.stdout if capture and completed.stdout is not None else "",
            stderr=completed.stderr if capture and completed.stderr is not None else "",
            duration_ms=duration_ms,
        )


def _normalize_command(command: Sequence[str]) -> tuple[str, ...]:
    if isinstance(command, str) or not isinstance(command, (list, tuple)):
        raise ValueError("command must be a sequence of strings")
    normalized = tuple(str(item) for item in command)
    if not normalized or not normalized[0].strip():
        raise ValueError("command must not be empty")
    return normalized


__all__ = [
    "CommandResult",
    "CommandRunner",
    "SubprocessCommandRunner",
]
