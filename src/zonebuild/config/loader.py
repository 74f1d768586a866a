"""
zonebuild — config loader

File: src/zonebuild/config/loader.py

Purpose
- Build the effective config from four layers, lowest first: built-in defaults, the TOML
  file, ``ZONEBUILD_<SECTION>_<KEY>`` environment variables, CLI overrides.
- A selected profile is merged between the file and the environment, so explicit env and CLI
  values still win over it.
- Path fields are resolved against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from zonebuild.config.schema import (
    CONFIG_FIELDS,
    PATH_FIELDS,
    FieldKind,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from zonebuild.constants import DEFAULT_CONFIG_FILE, ENV_PREFIX

PROFILE_ENV: Final[str] = f"{ENV_PREFIX}PROFILE"

_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when the config file cannot be read or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    Without ``config_path`` a ``zonebuild.toml`` in the working directory is used when it
    exists. ``cli_overrides`` keys are dotted paths such as ``"zone.name"``; the special key
    ``"profile"`` selects a profile when ``profile`` is not given.
    """

    env = os.environ if environ is None else environ
    overrides = dict(cli_overrides or {})
    path = Path(config_path or DEFAULT_CONFIG_FILE).expanduser().resolve()

    config = assert_valid_config(
        merge_config(default_config(), _read_toml(path, required=config_path is not None))
    )
    selected = _select_profile(profile, overrides.pop("profile", None), env)
    config = apply_profile_overlay(config, selected)

    config = merge_config(config, env_overrides(env))
    config = merge_config(config, _nest(overrides))
    config = assert_valid_config(config, active_profile=selected)

    for section, key in PATH_FIELDS:
        value = config[section].get(key)
        if value is not None:
            config[section][key] = resolve_path(value, path.parent)
    return config


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``ZONEBUILD_*`` variables naming a config key, coerced to that key's kind."""

    found: dict[str, Any] = {}
    for section, fields in CONFIG_FIELDS.items():
        for key, spec in fields.items():
            name = f"{ENV_PREFIX}{section}_{key}".upper()
            if not spec.env_bound or name not in environ:
                continue
            found.setdefault(section, {})[key] = _coerce(environ[name], spec.kind, name)
    return found


def resolve_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return the config as sorted, indented JSON with secret-looking values redacted."""

    return json.dumps(redact_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from None
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _select_profile(
    explicit: str | None, from_cli: object, environ: Mapping[str, str]
) -> str | None:
    if from_cli is not None and not isinstance(from_cli, str):
        raise ConfigLoadError("cli override 'profile' must be a string")
    for candidate in (explicit, from_cli, environ.get(PROFILE_ENV)):
        if candidate is not None:
            return candidate.strip() or None
    return None


def _coerce(raw: str, kind: FieldKind, name: str) -> object:
    value = raw.strip()
    if kind is FieldKind.TEXT_LIST:
        # Comma separated; an empty variable clears the list.
        return [item.strip() for item in value.split(",") if item.strip()]
    if kind is FieldKind.NUMBER:
        try:
            return float(value)
        except ValueError:
            raise ConfigLoadError(f"{name} must be a number, got {raw!r}") from None
    if kind is FieldKind.BOOL:
        if value.lower() in _TRUE:
            return True
        if value.lower() in _FALSE:
            return False
        raise ConfigLoadError(f"{name} must be a boolean (true/false/yes/no/on/off/1/0)")
    return value


def _nest(dotted: Mapping[str, object]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for key, value in dotted.items():
        parts = [part for part in key.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        cursor = nested
        for part in parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[parts[-1]] = value
    return nested


__all__ = [
    "ConfigLoadError",
    "PROFILE_ENV",
    "dump_effective_config",
    "env_overrides",
    "load_config",
    "resolve_path",
]
