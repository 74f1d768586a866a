"""Traversal policy for ``depend`` edges.

Every dependency kind maps to exactly one :class:`TraversalPolicy`. Alternatives in
``require-any``/``group``/``group-any`` are all followed; the package manager picks between
them at install time, the planner only needs each of them built.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

from zonebuild.manifest.fmri import PackageRef
from zonebuild.manifest.parser import DependAction, DependencyKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class TraversalPolicy(StrEnum):
    SKIP = "skip"
    REQUIRED = "required"
    OPTIONAL = "optional"


TRAVERSAL_POLICY: Final[Mapping[DependencyKind, TraversalPolicy]] = MappingProxyType(
    {
        # Version pins only; following them would drag in the whole incorporation.
        DependencyKind.INCORPORATE: TraversalPolicy.SKIP,
        DependencyKind.REQUIRE: TraversalPolicy.REQUIRED,
        DependencyKind.REQUIRE_ANY: TraversalPolicy.REQUIRED,
        DependencyKind.GROUP: TraversalPolicy.REQUIRED,
        DependencyKind.GROUP_ANY: TraversalPolicy.REQUIRED,
        DependencyKind.OPTIONAL: TraversalPolicy.OPTIONAL,
        # Predicates are not evaluated.
        DependencyKind.CONDITIONAL: TraversalPolicy.REQUIRED,
    }
)


@dataclass(frozen=True, slots=True)
class TraversalTarget:
    package: PackageRef
    optional: bool


def policy_for(kind: DependencyKind) -> TraversalPolicy:
    return TRAVERSAL_POLICY[kind]


def traversal_targets(action: DependAction) -> list[TraversalTarget]:
    """Return the packages a ``depend`` action asks the planner to visit, in listed order."""

    policy = policy_for(action.kind)
    if policy is TraversalPolicy.SKIP:
        return []
    optional = policy is TraversalPolicy.OPTIONAL
    return [TraversalTarget(PackageRef.parse(fmri), optional) for fmri in action.fmris]


def collect_targets(actions: Iterable[DependAction]) -> list[TraversalTarget]:
    targets: list[TraversalTarget] = []
    for action in actions:
        targets.extend(traversal_targets(action))
    return targets


__all__ = [
    "TRAVERSAL_POLICY",
    "TraversalPolicy",
    "TraversalTarget",
    "collect_targets",
    "policy_for",
    "traversal_targets",
]
