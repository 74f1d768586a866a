"""
zonebuild — unit tests for config schema

File: tests/unit/config/test_schema.py

Purpose
- Validate strict schema behavior: unknown keys, types, ranges, secrets, and profile overlays.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

from zonebuild.config.schema import (
    BUILTIN_PROFILE_NAMES,
    ConfigValidationError,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)

REPO_ROOT = Path(__file__).resolve().parents[3]


def _issue_map(config: object) -> dict[str, str]:
    result = validate_config(config)
    assert not result.is_valid
    return {issue.path: issue.message for issue in result.issues}


def _with(overlay: dict[str, object]) -> dict[str, object]:
    return merge_config(default_config(), overlay)


def test_defaults_and_sample_validate_successfully() -> None:
    assert validate_config(default_config()).is_valid

    with (REPO_ROOT / "samples" / "zonebuild.toml").open("rb") as handle:
        sample = tomllib.load(handle)
    validated = assert_valid_config(_with(sample), active_profile="ci")
    assert validated["zone"]["build_user"] == "build"
    assert set(BUILTIN_PROFILE_NAMES) <= set(validated["profiles"])


def test_unknown_key_rejection_is_explicit() -> None:
    issues = _issue_map(_with({"zone": {"flavour": "x"}, "extras": {}}))

    assert issues == {"zone.flavour": "unknown field", "extras": "unknown field"}


def test_embedded_secret_is_rejected() -> None:
    issues = _issue_map(_with({"repository": {"authToken": "abc"}}))

    assert issues == {
        "repository.authToken": "embedded secret values are forbidden in config files"
    }


def test_type_validation_reports_structured_paths() -> None:
    issues = _issue_map(
        _with(
            {
                "build": {"skip_failures": "yes", "script_args": ["-b", ""]},
                "zone": {"remove_packages": "entire", "use_pfexec": 1},
                "observability": {"log_level": "TRACE"},
            }
        )
    )

    assert issues["build.skip_failures"] == "expected boolean, got str"
    assert issues["build.script_args[1]"] == "must not be empty"
    assert issues["zone.remove_packages"] == "expected list of strings, got str"
    assert issues["zone.use_pfexec"] == "expected boolean, got int"
    assert issues["observability.log_level"].startswith("invalid value 'TRACE'")


@pytest.mark.parametrize(
    ("overlay", "path", "message"),
    [
        ({"zone": {"name": "bad name"}}, "zone.name", "must be a valid zone name"),
        ({"zone": {"template": "-x"}}, "zone.template", "must be a valid zone name"),
        ({"zone": {"path": "zones/b"}}, "zone.path", "zone path must be absolute"),
        ({"zone": {"poll_interval_seconds": 0}}, "zone.poll_interval_seconds", "must be > 0"),
        ({"zone": {"poll_interval_seconds": -1.0}}, "zone.poll_interval_seconds", "must be > 0"),
        ({"build": {"environment": {"BAD-NAME": "1"}}}, "build.environment.BAD-NAME", None),
        ({"build": {"environment": {"JOBS": 8}}}, "build.environment.JOBS", "expected string"),
        ({"repository": {"publisher": "  "}}, "repository.publisher", "must not be empty"),
        ({"paths": {"components": "a\x00b"}}, "paths.components", "must not contain NUL bytes"),
    ],
)
def test_range_and_format_violations_report_exact_path(
    overlay: dict[str, object], path: str, message: str | None
) -> None:
    issues = _issue_map(_with(overlay))

    assert path in issues
    if message is not None:
        assert issues[path].startswith(message)


def test_missing_sections_and_fields_are_reported() -> None:
    config = default_config()
    del config["zone"]["brand"]  # type: ignore[misc]
    del config["observability"]  # type: ignore[misc]

    issues = _issue_map(config)

    assert issues["zone.brand"] == "missing required field"
    assert issues["observability"] == "missing required field"


def test_schema_version_mismatch_gives_migration_guidance() -> None:
    issues = _issue_map(_with({"meta": {"schema_version": 2}}))

    assert issues["meta.schema_version"] == migration_guidance(2)
    assert "upgrade zonebuild" in migration_guidance(2)
    assert "older than supported" in migration_guidance(0)


def test_profile_overlay_deep_merges_known_sections_and_revalidates() -> None:
    config = _with({"profiles": {"ci": {"zone": {"name": "ci-build"}}}})

    merged = apply_profile_overlay(config, "ci")
    lenient = apply_profile_overlay(config, "lenient")

    assert merged["zone"]["name"] == "ci-build"
    assert merged["zone"]["brand"] == "lipkg"
    assert lenient["build"]["skip_failures"] is True
    assert apply_profile_overlay(config, None) == config


@pytest.mark.parametrize(
    ("profiles", "path"),
    [
        ({"CI": {}}, "profiles.CI"),
        ({"ci": {"meta": {"schema_version": 1}}}, "profiles.ci.meta"),
        ({"ci": {"zone": {"name": "bad name"}}}, "profiles.ci.zone.name"),
    ],
)
def test_invalid_profiles_are_rejected(profiles: dict[str, object], path: str) -> None:
    assert path in _issue_map(_with({"profiles": profiles}))


def test_profile_that_breaks_config_fails_when_applied() -> None:
    config = _with({"profiles": {"ci": {"zone": {"path": "relative"}}}})

    with pytest.raises(ConfigValidationError, match="zone.path"):
        apply_profile_overlay(config, "ci")


def test_dump_redacted_is_recursive_and_preserves_shape() -> None:
    config = _with({"build": {"environment": {"API_PASSWORD": "p", "CC": "gcc"}}})

    redacted = redact_config(config)

    assert redacted["build"]["environment"] == {"API_PASSWORD": "<redacted>", "CC": "gcc"}
    assert redacted["zone"] == config["zone"]
    assert redact_config("not a mapping") == {}
