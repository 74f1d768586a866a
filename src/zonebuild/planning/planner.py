"""
zonebuild — resumable build planner

File: src/zonebuild/planning/planner.py

Purpose
- Walk the dependency closure of a set of seed packages breadth-first, building whatever the
  repository does not already hold, one package at a time.

Loop (per iteration)
1. Persist the memo. The queue front has not been popped yet, so a crash during its build
   resumes that same package.
2. Pop the front entry and normalize its name; drop it if already seen.
3. Mark it seen. The base OS package is always treated as satisfied.
4. Map the name to exactly one source component. No mapping is fatal unless the edge was
   optional; several mappings are always fatal.
5. Build it unless the repository already has it, then fetch and parse its manifest.
6. Enqueue unseen dependencies according to the traversal policy of each ``depend`` kind.

Failure handling
- With ``skip_failures`` a build failure or unreadable manifest is recorded in ``fails`` and
  the loop continues; otherwise the run aborts with :class:`PlanFailedError`.
- Zone state errors, repository errors and mapping errors always abort.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from zonebuild.build.executor import BuildFailure
from zonebuild.constants import DEFAULT_BASE_OS_PACKAGE
from zonebuild.manifest.errors import ManifestParseError
from zonebuild.manifest.fmri import normalize_fmri
from zonebuild.manifest.parser import depend_actions, parse_manifest
from zonebuild.manifest.semantics import collect_targets
from zonebuild.observability.logging import correlation_scope
from zonebuild.planning.errors import MappingError, PlanFailedError
from zonebuild.planning.state import PlannerState, QueueEntry
from zonebuild.zones.errors import ZoneCommandError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from zonebuild.manifest.fmri import PackageRef
    from zonebuild.planning.components import ComponentLocation, ComponentLookup
    from zonebuild.planning.repository import PackageRepository


# Failures that only affect the package being processed.
_RECOVERABLE = (BuildFailure, ZoneCommandError, ManifestParseError)


class Builder(Protocol):
    def build(self, fmri: str, location: ComponentLocation) -> object: ...


@dataclass(slots=True)
class PlanReport:
    """What one planner run did, alongside the final memo state."""

    state: PlannerState
    built: list[str] = field(default_factory=list)
    present: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    base_os: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, object]:
        return {
            "built": list(self.built),
            "present": list(self.present),
            "skipped": list(self.skipped),
            "base_os": list(self.base_os),
            "failed": list(self.failed),
            "state": self.state.to_dict(),
        }


class BuildPlanner:
    def __init__(
        self,
        *,
        components: ComponentLookup,
        repository: PackageRepository,
        builder: Builder,
        memo_path: Path | str | None = None,
        skip_failures: bool = False,
        base_os_package: str = DEFAULT_BASE_OS_PACKAGE,
        logger: Any | None = None,
    ) -> None:
        self._components = components
        self._repository = repository
        self._builder = builder
        self._memo_path = Path(memo_path) if memo_path is not None else None
        self._skip_failures = skip_failures
        self._base_os_package = normalize_fmri(base_os_package)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def memo_path(self) -> Path | None:
        return self._memo_path

    def plan(self, seeds: Iterable[str | PackageRef]) -> PlanReport:
        """Start a fresh run from ``seeds``."""

        state = PlannerState.fresh(seeds)
        self._logger.info("planner_start", seeds=[entry.fmri for entry in state.queue])
        return self.resume(state)

    def resume(self, state: PlannerState) -> PlanReport:
        """Continue from ``state`` until the queue is empty."""

        report = PlanReport(state=state)
        while True:
            self._persist(state)
            if not state.queue:
                break
            self._step(state, report, state.queue.popleft())

        self._logger.info(
            "planner_done",
            built=len(report.built),
            present=len(report.present),
            skipped=len(report.skipped),
            fails=len(state.fails),
        )
        return report

    def _step(self, state: PlannerState, report: PlanReport, entry: QueueEntry) -> None:
        name = entry.name
        if name in state.seen:
            self._logger.debug("planner_already_seen", fmri=name)
            return
        state.seen.add(name)

        if name == self._base_os_package:
            self._logger.info("planner_skip_base_os", fmri=name)
            report.base_os.append(name)
            return

        location = self._resolve(entry, report)
        if location is None:
            return

        with correlation_scope(fmri=name, component=location.name):
            try:
                manifest = self._build_and_fetch(entry, location, report)
                targets = collect_targets(depend_actions(parse_manifest(manifest)))
            except _RECOVERABLE as exc:
                if not self._skip_failures:
                    self._logger.error(
                        "planner_build_failed",
                        fmri=name,
                        location=str(location.path),
                        error=str(exc),
                    )
                    raise PlanFailedError(name, location.path, str(exc)) from exc
                self._logger.warning(
                    "planner_build_failed_skipped",
                    fmri=name,
                    location=str(location.path),
                    error=str(exc),
                )
                state.fails.append(entry)
                report.failed.append(name)
                return

        for target in targets:
            dependency = target.package.name
            if dependency in state.seen:
                continue
            state.queue.append(QueueEntry(str(target.package), target.optional))
            self._logger.debug(
                "planner_enqueue", fmri=dependency, parent=name, optional=target.optional
            )

    def _resolve(self, entry: QueueEntry, report: PlanReport) -> ComponentLocation | None:
        name = entry.name
        matches = self._components.lookup(name)
        if len(matches) == 1:
            return matches[0]

        if not matches and entry.optional:
            self._logger.warning("planner_skip_optional", fmri=name)
            report.skipped.append(name)
            return None

        self._logger.error("planner_mapping_failed", fmri=name, matches=len(matches))
        raise MappingError(name, [(match.name, match.path) for match in matches])

    def _build_and_fetch(
        self,
        entry: QueueEntry,
        location: ComponentLocation,
        report: PlanReport,
    ) -> str:
        name = entry.name
        if self._repository.has_build(name):
            self._logger.info("planner_already_built", fmri=name)
            report.present.append(name)
        else:
            self._logger.info("planner_build", fmri=name, location=str(location.path))
            self._builder.build(entry.fmri, location)
            report.built.append(name)
        return self._repository.fetch_manifest(name)

    def _persist(self, state: PlannerState) -> None:
        if self._memo_path is not None:
            state.save(self._memo_path)


__all__ = [
    "DEFAULT_BASE_OS_PACKAGE",
    "BuildPlanner",
    "Builder",
    "PlanReport",
]
