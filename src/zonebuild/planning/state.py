"""
zonebuild — persisted planner state

File: src/zonebuild/planning/state.py

Purpose
- Hold the planner's ``seen`` set, FIFO queue and skipped failures, and persist them as the memo
  file ``{"seen": [...], "q": [{"fmri", "optional"}], "fails": [...]}``.

Functional requirements
- Loading validates the payload strictly; a malformed memo is never partially applied.
- Saving replaces the memo atomically.
"""

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from zonebuild.manifest.fmri import PackageRef, normalize_fmri
from zonebuild.planning.errors import PlannerStateError
from zonebuild.utils.fs import atomic_write

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


@dataclass(frozen=True, slots=True)
class QueueEntry:
    fmri: str
    optional: bool = False

    @property
    def name(self) -> str:
        return normalize_fmri(self.fmri)

    def to_dict(self) -> dict[str, object]:
        return {"fmri": self.fmri, "optional": self.optional}

    @classmethod
    def from_dict(cls, payload: object, *, path: str) -> QueueEntry:
        if not isinstance(payload, dict):
            raise PlannerStateError(f"{path}: expected an object")
        unknown = sorted(set(payload) - {"fmri", "optional"})
        if unknown:
            raise PlannerStateError(f"{path}: unknown keys: {', '.join(unknown)}")
        fmri = payload.get("fmri")
        if not isinstance(fmri, str) or not fmri.strip():
            raise PlannerStateError(f"{path}.fmri: expected a non-empty string")
        optional = payload.get("optional", False)
        if not isinstance(optional, bool):
            raise PlannerStateError(f"{path}.optional: expected a boolean")
        try:
            normalize_fmri(fmri)
        except ValueError as exc:
            raise PlannerStateError(f"{path}.fmri: {exc}") from exc
        return cls(fmri=fmri, optional=optional)


@dataclass(slots=True)
class PlannerState:
    """Mutable planner memo. ``seen`` holds normalized names only."""

    seen: set[str] = field(default_factory=set)
    queue: deque[QueueEntry] = field(default_factory=deque)
    fails: list[QueueEntry] = field(default_factory=list)

    @classmethod
    def fresh(cls, seeds: Iterable[str | PackageRef]) -> PlannerState:
        queue: deque[QueueEntry] = deque()
        for seed in seeds:
            text = str(seed) if isinstance(seed, PackageRef) else seed
            normalize_fmri(text)
            queue.append(QueueEntry(text))
        return cls(queue=queue)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> PlannerState:
        if not isinstance(payload, dict):
            raise PlannerStateError("planner memo must be a JSON object")
        unknown = sorted(set(payload) - {"seen", "q", "fails"})
        if unknown:
            raise PlannerStateError(f"planner memo has unknown keys: {', '.join(unknown)}")

        seen_raw = payload.get("seen", [])
        if not isinstance(seen_raw, list) or not all(isinstance(i, str) for i in seen_raw):
            raise PlannerStateError("seen: expected a list of strings")
        try:
            seen = {normalize_fmri(item) for item in seen_raw}
        except ValueError as exc:
            raise PlannerStateError(f"seen: {exc}") from exc

        return cls(
            seen=seen,
            queue=deque(_entries(payload.get("q", []), "q")),
            fails=_entries(payload.get("fails", []), "fails"),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "seen": sorted(self.seen),
            "q": [entry.to_dict() for entry in self.queue],
            "fails": [entry.to_dict() for entry in self.fails],
        }

    @classmethod
    def load(cls, path: Path | str) -> PlannerState:
        memo = Path(path)
        try:
            text = memo.read_text(encoding="utf-8")
        except OSError as exc:
            raise PlannerStateError(f"unable to read planner memo {memo}: {exc}") from exc
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PlannerStateError(f"planner memo {memo} is not valid JSON: {exc}") from exc
        return cls.from_dict(payload)

    def save(self, path: Path | str) -> None:
        atomic_write(path, json.dumps(self.to_dict(), indent=2) + "\n")

    def retry_fails(self) -> PlannerState:
        """Build a state that re-drives every recorded failure ahead of any pending work."""

        failed = {entry.name for entry in self.fails}
        return PlannerState(
            seen=self.seen - failed,
            queue=deque([*self.fails, *self.queue]),
            fails=[],
        )

    @property
    def done(self) -> bool:
        return not self.queue


def _entries(raw: object, path: str) -> list[QueueEntry]:
    if not isinstance(raw, list):
        raise PlannerStateError(f"{path}: expected a list")
    return [QueueEntry.from_dict(item, path=f"{path}[{index}]") for index, item in enumerate(raw)]


__all__ = ["PlannerState", "QueueEntry"]
