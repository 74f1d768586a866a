"""Build planning: the resumable dependency walk and its collaborators."""

from zonebuild.planning.components import (
    ComponentCatalogError,
    ComponentIndex,
    ComponentLocation,
    ComponentLookup,
)
from zonebuild.planning.errors import (
    MappingError,
    PlanFailedError,
    PlannerError,
    PlannerStateError,
    RepositoryError,
)
from zonebuild.planning.planner import BuildPlanner, Builder, PlanReport
from zonebuild.planning.repository import PackageRepository, PkgRepoRepository
from zonebuild.planning.state import PlannerState, QueueEntry

__all__ = [
    "BuildPlanner",
    "Builder",
    "ComponentCatalogError",
    "ComponentIndex",
    "ComponentLocation",
    "ComponentLookup",
    "MappingError",
    "PackageRepository",
    "PkgRepoRepository",
    "PlanFailedError",
    "PlanReport",
    "PlannerError",
    "PlannerState",
    "PlannerStateError",
    "QueueEntry",
    "RepositoryError",
]
