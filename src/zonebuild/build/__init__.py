"""Running one component build inside the provisioned build zone."""

from zonebuild.build.executor import (
    BuildExecutor,
    BuildFailure,
    BuildResult,
    BuildSettings,
    render_build_script,
)

__all__ = [
    "BuildExecutor",
    "BuildFailure",
    "BuildResult",
    "BuildSettings",
    "render_build_script",
]
