"""
zonebuild — configuration schema

File: src/zonebuild/config/schema.py

Purpose
- Declare every config key once, in :data:`CONFIG_FIELDS`, with its kind and extra checks.
- Validate whole configs and partial profile overlays against that table, collecting
  ``ConfigValidationIssue(path, message)`` items instead of stopping at the first problem.

The same table drives ``ZONEBUILD_*`` environment bindings and relative path resolution
in :mod:`zonebuild.config.loader`.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Final

from zonebuild.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_BASE_OS_PACKAGE,
    DEFAULT_BUILD_USER,
    DEFAULT_PUBLISHER,
    DEFAULT_REMOVE_PACKAGES,
    DEFAULT_ZONE_BRAND,
    DEFAULT_ZONE_MILESTONE,
    DEFAULT_ZONE_NAME,
    DEFAULT_ZONE_PATH,
    DEFAULT_ZONE_TEMPLATE,
)

BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "lenient")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
REDACTED: Final[str] = "<redacted>"

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PROFILE_NAME_RE = re.compile(r"^[a-z][a-z0-9_-]*$")
_ZONE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")

# Matched against whole ``_``-separated words of a normalized key.
_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"auth", "credential", "credentials", "passwd", "password", "private", "secret", "token"}
)


class FieldKind(StrEnum):
    TEXT = "text"
    PATH = "path"
    CHOICE = "choice"
    BOOL = "bool"
    NUMBER = "number"
    INTEGER = "integer"
    TEXT_LIST = "text_list"
    ENV_TABLE = "env_table"


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """One config key. ``check`` returns an error message for a well-typed but bad value."""

    kind: FieldKind
    required: bool = True
    env_bound: bool = True
    choices: tuple[str, ...] = ()
    check: Callable[[Any], str | None] | None = None


def _schema_version(value: int) -> str | None:
    return None if value == CONFIG_SCHEMA_VERSION else migration_guidance(value)


def _zone_name(value: str) -> str | None:
    return None if _ZONE_NAME_RE.fullmatch(value) else "must be a valid zone name"


def _absolute(value: str) -> str | None:
    return None if value.startswith("/") else "zone path must be absolute"


def _positive(value: float) -> str | None:
    return None if value > 0 else "must be > 0"


CONFIG_FIELDS: Final[Mapping[str, Mapping[str, FieldSpec]]] = {
    "meta": {
        "schema_version": FieldSpec(FieldKind.INTEGER, env_bound=False, check=_schema_version),
    },
    "build": {
        "skip_failures": FieldSpec(FieldKind.BOOL),
        "base_os_package": FieldSpec(FieldKind.TEXT),
        "script_args": FieldSpec(FieldKind.TEXT_LIST),
        "environment": FieldSpec(FieldKind.ENV_TABLE, env_bound=False),
        "memo_file": FieldSpec(FieldKind.PATH, required=False),
    },
    "zone": {
        "name": FieldSpec(FieldKind.TEXT, check=_zone_name),
        "path": FieldSpec(FieldKind.TEXT, check=_absolute),
        "brand": FieldSpec(FieldKind.TEXT),
        "template": FieldSpec(FieldKind.TEXT, check=_zone_name),
        "milestone": FieldSpec(FieldKind.TEXT),
        "poll_interval_seconds": FieldSpec(FieldKind.NUMBER, check=_positive),
        "build_user": FieldSpec(FieldKind.TEXT),
        "remove_packages": FieldSpec(FieldKind.TEXT_LIST),
        "install_packages": FieldSpec(FieldKind.TEXT_LIST),
        "use_pfexec": FieldSpec(FieldKind.BOOL),
    },
    "repository": {
        "path": FieldSpec(FieldKind.PATH),
        "publisher": FieldSpec(FieldKind.TEXT),
    },
    "paths": {
        "workspace_root": FieldSpec(FieldKind.PATH),
        "components": FieldSpec(FieldKind.PATH),
        "build_tree": FieldSpec(FieldKind.PATH, required=False),
    },
    "observability": {
        "log_level": FieldSpec(FieldKind.CHOICE, choices=LOG_LEVELS),
        "log_dir": FieldSpec(FieldKind.PATH),
        "log_to_stdout": FieldSpec(FieldKind.BOOL),
        "redact_secrets": FieldSpec(FieldKind.BOOL),
    },
}

# Resolved against the config file's directory by the loader.
PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = tuple(
    (section, key)
    for section, fields in CONFIG_FIELDS.items()
    for key, spec in fields.items()
    if spec.kind is FieldKind.PATH
)

DEFAULT_CONFIG: Final[Mapping[str, Any]] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "build": {
        "skip_failures": False,
        "base_os_package": DEFAULT_BASE_OS_PACKAGE,
        "script_args": ["-b"],
        "environment": {},
    },
    "zone": {
        "name": DEFAULT_ZONE_NAME,
        "path": DEFAULT_ZONE_PATH,
        "brand": DEFAULT_ZONE_BRAND,
        "template": DEFAULT_ZONE_TEMPLATE,
        "milestone": DEFAULT_ZONE_MILESTONE,
        "poll_interval_seconds": 1.0,
        "build_user": DEFAULT_BUILD_USER,
        "remove_packages": list(DEFAULT_REMOVE_PACKAGES),
        "install_packages": [],
        "use_pfexec": True,
    },
    "repository": {"path": "packages/repo", "publisher": DEFAULT_PUBLISHER},
    "paths": {"workspace_root": ".", "components": "components.yaml"},
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {"build": {"skip_failures": False}},
        "lenient": {"build": {"skip_failures": True}},
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised with every issue found when a config does not validate."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <unknown>"))


def default_config() -> dict[str, Any]:
    return copy.deepcopy(dict(DEFAULT_CONFIG))


def migration_guidance(found_version: int) -> str:
    if found_version < CONFIG_SCHEMA_VERSION:
        return (
            f"schema version {found_version} is older than supported {CONFIG_SCHEMA_VERSION}; "
            "upgrade zonebuild.toml to the current schema"
        )
    if found_version > CONFIG_SCHEMA_VERSION:
        return (
            f"schema version {found_version} is newer than supported {CONFIG_SCHEMA_VERSION}; "
            "upgrade zonebuild"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``. Tables merge, everything else replaces."""

    merged = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_profile_overlay(config: Mapping[str, Any], profile: str | None) -> dict[str, Any]:
    """Merge ``profiles.<profile>`` over ``config`` and validate the result."""

    name = (profile or "").strip()
    if not name:
        return copy.deepcopy(dict(config))
    profiles = config.get("profiles")
    overlay = profiles.get(name) if isinstance(profiles, Mapping) else None
    if overlay is None:
        raise ConfigValidationError(
            [ConfigValidationIssue("profiles", f"profile {name!r} is not defined")]
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            [ConfigValidationIssue(f"profiles.{name}", "profile overlay must be an object")]
        )
    return assert_valid_config(merge_config(config, overlay), active_profile=name)


def validate_config(config: object, *, active_profile: str | None = None) -> ConfigValidationResult:
    issues: list[ConfigValidationIssue] = []
    validated = _Validator(issues).root(config)

    name = (active_profile or "").strip()
    if validated is not None and name:
        profiles = validated.get("profiles", {})
        if name not in profiles:
            issues.append(ConfigValidationIssue("profiles", f"profile {name!r} is not defined"))
        else:
            _Validator(issues).root(merge_config(validated, profiles[name]))

    if issues:
        return ConfigValidationResult(None, tuple(issues))
    return ConfigValidationResult(validated, ())


def assert_valid_config(config: object, *, active_profile: str | None = None) -> dict[str, Any]:
    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: object) -> dict[str, Any]:
    """Copy ``config`` with the value of every secret-looking key replaced."""

    if not isinstance(config, Mapping):
        return {}
    return _redact(config)


def looks_like_secret(key: str) -> bool:
    words = _CAMEL_RE.sub(r"\1_\2", key.strip()).lower()
    parts = [part for part in re.split(r"[^a-z0-9]+", words) if part]
    if any(part in _SECRET_WORDS for part in parts):
        return True
    joined = "_".join(parts)
    return "access_token" in joined or "private_key" in joined


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            key: REDACTED if looks_like_secret(key) else _redact(item)
            for key, item in sorted(value.items())
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value


class _Validator:
    """Walks a config payload against :data:`CONFIG_FIELDS`, appending to ``issues``."""

    def __init__(self, issues: list[ConfigValidationIssue]) -> None:
        self._issues = issues

    def root(self, payload: object) -> dict[str, Any] | None:
        table = self._table(payload, "<root>")
        if table is None:
            return None
        self._unknown(table, {*CONFIG_FIELDS, "profiles"}, "")
        out: dict[str, Any] = {}
        for section in CONFIG_FIELDS:
            if section not in table:
                self._fail(section, "missing required field")
                continue
            section_out = self.section(section, table[section], section, partial=False)
            if section_out is not None:
                out[section] = section_out
        if "profiles" in table:
            profiles = self._table(table["profiles"], "profiles")
            if profiles is not None:
                out["profiles"] = self._profiles(profiles)
        return out

    def section(
        self, section: str, payload: object, path: str, *, partial: bool
    ) -> dict[str, Any] | None:
        table = self._table(payload, path)
        if table is None:
            return None
        fields = CONFIG_FIELDS[section]
        self._unknown(table, set(fields), path)
        out: dict[str, Any] = {}
        for key, spec in fields.items():
            key_path = f"{path}.{key}"
            if key not in table:
                if spec.required and not partial:
                    self._fail(key_path, "missing required field")
                continue
            value = self._coerce(spec, table[key], key_path)
            if value is None:
                continue
            problem = spec.check(value) if spec.check is not None else None
            if problem is not None:
                self._fail(key_path, problem)
                continue
            out[key] = value
        return out

    def _profiles(self, profiles: dict[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in sorted(profiles):
            path = f"profiles.{name}"
            if not _PROFILE_NAME_RE.fullmatch(name):
                self._fail(path, "profile name must match ^[a-z][a-z0-9_-]*$")
                continue
            overlay = self._table(profiles[name], path)
            if overlay is None:
                continue
            sections = set(CONFIG_FIELDS) - {"meta"}
            self._unknown(overlay, sections, path)
            out[name] = {}
            for section in sorted(sections & set(overlay)):
                validated = self.section(
                    section, overlay[section], f"{path}.{section}", partial=True
                )
                if validated is not None:
                    out[name][section] = validated
        return out

    def _coerce(self, spec: FieldSpec, value: object, path: str) -> Any:
        kind = spec.kind
        if kind is FieldKind.BOOL:
            return value if isinstance(value, bool) else self._wrong(path, "boolean", value)
        if kind in (FieldKind.NUMBER, FieldKind.INTEGER):
            return self._number(kind, value, path)
        if kind is FieldKind.TEXT_LIST:
            return self._text_list(value, path)
        if kind is FieldKind.ENV_TABLE:
            return self._env_table(value, path)
        text = self._text(value, path)
        if text is None:
            return None
        if kind is FieldKind.PATH and "\x00" in text:
            return self._fail(path, "must not contain NUL bytes")
        if kind is FieldKind.CHOICE and text not in spec.choices:
            expected = ", ".join(sorted(spec.choices))
            return self._fail(path, f"invalid value {text!r}; expected one of: {expected}")
        return text

    def _number(self, kind: FieldKind, value: object, path: str) -> int | float | None:
        if kind is FieldKind.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                return self._wrong(path, "integer", value)
            return value
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return self._wrong(path, "number", value)
        if not math.isfinite(value):
            return self._fail(path, "must be finite")
        return float(value)

    def _text(self, value: object, path: str) -> str | None:
        if not isinstance(value, str):
            return self._wrong(path, "string", value)
        if not value.strip():
            return self._fail(path, "must not be empty")
        return value.strip()

    def _text_list(self, value: object, path: str) -> list[str] | None:
        if not isinstance(value, list):
            return self._wrong(path, "list of strings", value)
        items = [self._text(item, f"{path}[{index}]") for index, item in enumerate(value)]
        if any(item is None for item in items):
            return None
        return [item for item in items if item is not None]

    def _env_table(self, value: object, path: str) -> dict[str, str] | None:
        table = self._table(value, path)
        if table is None:
            return None
        valid = True
        for name, item in table.items():
            if not _ENV_NAME_RE.fullmatch(name):
                self._fail(f"{path}.{name}", "must be an environment variable name")
                valid = False
            elif not isinstance(item, str):
                self._wrong(f"{path}.{name}", "string", item)
                valid = False
        return dict(sorted(table.items())) if valid else None

    def _table(self, value: object, path: str) -> dict[str, Any] | None:
        if not isinstance(value, Mapping):
            return self._wrong(path, "object", value)
        if not all(isinstance(key, str) for key in value):
            return self._fail(path, "object keys must be strings")
        return dict(value)

    def _unknown(self, table: Mapping[str, Any], allowed: set[str], path: str) -> None:
        for key in sorted(set(table) - allowed):
            key_path = f"{path}.{key}" if path else key
            if looks_like_secret(key):
                self._fail(key_path, "embedded secret values are forbidden in config files")
            else:
                self._fail(key_path, "unknown field")

    def _wrong(self, path: str, expected: str, value: object) -> None:
        self._fail(path, f"expected {expected}, got {type(value).__name__}")

    def _fail(self, path: str, message: str) -> None:
        self._issues.append(ConfigValidationIssue(path, message))


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "CONFIG_FIELDS",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "REDACTED",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "FieldKind",
    "FieldSpec",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "looks_like_secret",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
