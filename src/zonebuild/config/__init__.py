"""Config loading and validation for zonebuild."""

from zonebuild.config.loader import (
    PROFILE_ENV,
    ConfigLoadError,
    dump_effective_config,
    env_overrides,
    load_config,
    resolve_path,
)
from zonebuild.config.schema import (
    BUILTIN_PROFILE_NAMES,
    CONFIG_FIELDS,
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    FieldKind,
    FieldSpec,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "CONFIG_FIELDS",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "FieldKind",
    "FieldSpec",
    "PATH_FIELDS",
    "PROFILE_ENV",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_overrides",
    "load_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "resolve_path",
    "validate_config",
]
