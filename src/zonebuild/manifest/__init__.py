"""Package manifests: FMRIs, the action parser and dependency traversal policy."""

from zonebuild.manifest.errors import ManifestParseError
from zonebuild.manifest.fmri import PackageRef, normalize_fmri
from zonebuild.manifest.parser import (
    DependAction,
    DependencyKind,
    ManifestAction,
    UnknownAction,
    depend_actions,
    parse_action_line,
    parse_manifest,
)
from zonebuild.manifest.semantics import (
    TraversalPolicy,
    TraversalTarget,
    collect_targets,
    traversal_targets,
)
from zonebuild.manifest.vals import PropertyBag

__all__ = [
    "DependAction",
    "DependencyKind",
    "ManifestAction",
    "ManifestParseError",
    "PackageRef",
    "PropertyBag",
    "TraversalPolicy",
    "TraversalTarget",
    "UnknownAction",
    "collect_targets",
    "depend_actions",
    "normalize_fmri",
    "parse_action_line",
    "parse_manifest",
    "traversal_targets",
]
