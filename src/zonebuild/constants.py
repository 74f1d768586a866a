"""Stable constants shared across zonebuild modules."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

DEFAULT_CONFIG_FILE: Final[str] = "zonebuild.toml"
ENV_PREFIX: Final[str] = "ZONEBUILD_"

# Package that stands for the base OS itself; never built by the planner.
DEFAULT_BASE_OS_PACKAGE: Final[str] = "osnet"

DEFAULT_ZONE_NAME: Final[str] = "helios-build"
DEFAULT_ZONE_PATH: Final[str] = "/zones/helios-build"
DEFAULT_ZONE_BRAND: Final[str] = "lipkg"
DEFAULT_ZONE_TEMPLATE: Final[str] = "helios-template"
DEFAULT_ZONE_MILESTONE: Final[str] = "svc:/milestone/multi-user-server:default"
DEFAULT_BUILD_USER: Final[str] = "build"
# Version-pinning packages that would block installing build-time versions.
DEFAULT_REMOVE_PACKAGES: Final[tuple[str, ...]] = (
    "entire",
    "incorporation/jeos/omnios-userland",
)

DEFAULT_PUBLISHER: Final[str] = "helios-dev"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BASE_OS_PACKAGE",
    "DEFAULT_BUILD_USER",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_PUBLISHER",
    "DEFAULT_REMOVE_PACKAGES",
    "DEFAULT_ZONE_BRAND",
    "DEFAULT_ZONE_MILESTONE",
    "DEFAULT_ZONE_NAME",
    "DEFAULT_ZONE_PATH",
    "DEFAULT_ZONE_TEMPLATE",
    "ENV_PREFIX",
]
