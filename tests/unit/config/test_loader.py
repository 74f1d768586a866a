"""
zonebuild — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Profile selection and redacted effective config dumping.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from zonebuild.config import ConfigValidationError
from zonebuild.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
)

REPO_ROOT = Path(__file__).resolve().parents[3]


def _write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    empty_path = _write_config(tmp_path / "empty.toml", "")
    config_path = _write_config(
        tmp_path / "zonebuild.toml",
        """
[zone]
poll_interval_seconds = 2.5
""".strip(),
    )
    env = {"ZONEBUILD_ZONE_POLL_INTERVAL_SECONDS": "3"}

    default_loaded = load_config(empty_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ=env)
    cli_loaded = load_config(
        config_path,
        environ=env,
        cli_overrides={"zone.poll_interval_seconds": 4.0},
    )

    assert default_loaded["zone"]["poll_interval_seconds"] == 1.0
    assert file_loaded["zone"]["poll_interval_seconds"] == 2.5
    assert env_loaded["zone"]["poll_interval_seconds"] == 3.0
    assert cli_loaded["zone"]["poll_interval_seconds"] == 4.0


def test_env_values_are_coerced_by_default_type(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "zonebuild.toml", "")

    loaded = load_config(
        config_path,
        environ={
            "ZONEBUILD_BUILD_SKIP_FAILURES": "yes",
            "ZONEBUILD_ZONE_USE_PFEXEC": "off",
            "ZONEBUILD_ZONE_NAME": " ci-build ",
            "ZONEBUILD_ZONE_INSTALL_PACKAGES": "developer/gcc, ,developer/make",
            "ZONEBUILD_BUILD_MEMO_FILE": "state/memo.json",
            "ZONEBUILD_UNRELATED": "ignored",
        },
    )

    assert loaded["build"]["skip_failures"] is True
    assert loaded["zone"]["use_pfexec"] is False
    assert loaded["zone"]["name"] == "ci-build"
    assert loaded["zone"]["install_packages"] == ["developer/gcc", "developer/make"]
    assert loaded["build"]["memo_file"] == (tmp_path.resolve() / "state" / "memo.json").as_posix()


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("ZONEBUILD_BUILD_SKIP_FAILURES", "maybe", "must be a boolean"),
        ("ZONEBUILD_ZONE_POLL_INTERVAL_SECONDS", "soon", "must be a number"),
    ],
)
def test_invalid_env_coercion_raises_actionable_error(
    tmp_path: Path, name: str, value: str, message: str
) -> None:
    config_path = _write_config(tmp_path / "zonebuild.toml", "")

    with pytest.raises(ConfigLoadError, match=message):
        load_config(config_path, environ={name: value})


def test_meta_section_is_not_bound_to_environment(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "zonebuild.toml", "")

    loaded = load_config(config_path, environ={"ZONEBUILD_META_SCHEMA_VERSION": "2"})

    assert loaded["meta"]["schema_version"] == 1


def test_path_normalization_is_relative_to_config_file(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "conf" / "zonebuild.toml",
        """
[repository]
path = "../packages/repo"

[paths]
workspace_root = ".."
components = "/abs/components.yaml"
build_tree = "build"
""".strip(),
    )

    loaded = load_config(config_path, environ={})

    assert loaded["repository"]["path"] == (tmp_path.resolve() / "packages" / "repo").as_posix()
    assert loaded["paths"]["workspace_root"] == tmp_path.resolve().as_posix()
    assert loaded["paths"]["components"] == "/abs/components.yaml"
    assert loaded["paths"]["build_tree"] == (tmp_path.resolve() / "conf" / "build").as_posix()
    assert loaded["observability"]["log_dir"] == (tmp_path.resolve() / "conf" / "logs").as_posix()


def test_profile_selection_order(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "zonebuild.toml",
        """
[profiles.quiet.observability]
log_level = "ERROR"
""".strip(),
    )

    by_env = load_config(config_path, environ={"ZONEBUILD_PROFILE": "lenient"})
    by_cli = load_config(
        config_path,
        cli_overrides={"profile": "quiet"},
        environ={"ZONEBUILD_PROFILE": "lenient"},
    )
    by_argument = load_config(
        config_path,
        profile="strict",
        cli_overrides={"profile": "quiet"},
        environ={"ZONEBUILD_PROFILE": "lenient"},
    )

    assert by_env["build"]["skip_failures"] is True
    assert by_cli["observability"]["log_level"] == "ERROR"
    assert by_cli["build"]["skip_failures"] is False
    assert by_argument["build"]["skip_failures"] is False
    assert by_argument["observability"]["log_level"] == "INFO"


def test_env_overrides_win_over_profile(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "zonebuild.toml", "")

    loaded = load_config(
        config_path,
        profile="lenient",
        environ={"ZONEBUILD_BUILD_SKIP_FAILURES": "false"},
    )

    assert loaded["build"]["skip_failures"] is False


def test_unknown_profile_is_rejected(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "zonebuild.toml", "")

    with pytest.raises(ConfigValidationError, match="profile 'nightly' is not defined"):
        load_config(config_path, profile="nightly", environ={})


def test_missing_explicit_config_and_bad_toml_are_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})

    broken = _write_config(tmp_path / "broken.toml", "[zone\n")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken, environ={})


def test_default_config_file_is_optional(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    loaded = load_config(environ={})

    assert loaded["zone"]["name"] == "helios-build"
    assert loaded["paths"]["components"] == (tmp_path.resolve() / "components.yaml").as_posix()


def test_cli_override_values_are_validated(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "zonebuild.toml", "")

    with pytest.raises(ConfigValidationError, match="zone.path: zone path must be absolute"):
        load_config(config_path, environ={}, cli_overrides={"zone.path": "zones/b"})


def test_dump_effective_config_is_redacted_and_deterministic(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "zonebuild.toml",
        """
[build.environment]
MAKE_JOBS = "8"
GITHUB_TOKEN = "abc123"
""".strip(),
    )
    loaded = load_config(config_path, environ={})

    first = dump_effective_config(loaded)
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    payload = json.loads(first)
    assert payload["build"]["environment"] == {"GITHUB_TOKEN": "<redacted>", "MAKE_JOBS": "8"}
    assert loaded["build"]["environment"]["GITHUB_TOKEN"] == "abc123"


def test_can_load_sample_config_with_profile() -> None:
    sample = REPO_ROOT / "samples" / "zonebuild.toml"

    loaded = load_config(sample, profile="ci", environ={})

    assert loaded["observability"]["log_to_stdout"] is True
    assert loaded["build"]["environment"] == {"MAKE_JOBS": "8"}
    assert loaded["repository"]["path"] == (REPO_ROOT / "packages" / "repo").as_posix()
    assert loaded["build"]["memo_file"] == (REPO_ROOT / "state" / "memo.json").as_posix()
