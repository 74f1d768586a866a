"""Command-line interface router for zonebuild."""

from __future__ import annotations

import argparse
import json
import sys
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from zonebuild.build.executor import BuildExecutor, BuildSettings
from zonebuild.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from zonebuild.observability.logging import setup_logging, shutdown_logging
from zonebuild.planning.components import ComponentCatalogError, ComponentIndex
from zonebuild.planning.errors import PlannerStateError
from zonebuild.planning.planner import BuildPlanner
from zonebuild.planning.repository import PkgRepoRepository
from zonebuild.planning.state import PlannerState
from zonebuild.ui.render import CLIRenderer, create_renderer
from zonebuild.zones.control import ZoneadmControl
from zonebuild.zones.lifecycle import ZoneLifecycleManager, ZoneSettings, resolve_build_account

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping, Sequence

    from zonebuild.planning.components import ComponentLookup
    from zonebuild.planning.planner import Builder, PlanReport
    from zonebuild.planning.repository import PackageRepository


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 2

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class Services:
    """Collaborators the planner commands need, built from the effective config."""

    zones: ZoneLifecycleManager
    repository: PackageRepository
    components: ComponentLookup
    builder: Builder


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="zonebuild",
        description=(
            "zonebuild — build IPS packages and their dependencies in a disposable zone.\n\n"
            "Common workflows:\n"
            "  zonebuild plan pkg:/library/foo   Build a package and its closure\n"
            "  zonebuild resume --memo memo.json Continue an interrupted run\n"
            "  zonebuild zone status             Show the build zone state\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to zonebuild TOML config (default: ./zonebuild.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name (strict, lenient, ...).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Log at DEBUG level.",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # plan ----------------------------------------------------------------
    plan_parser = subparsers.add_parser(
        "plan",
        parents=[common],
        help="Build seed packages and everything they depend on",
        description=(
            "Start a fresh breadth-first build of the seed packages and their closure.\n\n"
            "Examples:\n"
            "  zonebuild plan pkg:/library/foo\n"
            "  zonebuild plan foo bar --memo state/memo.json --skip-failures\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    plan_parser.add_argument("seeds", nargs="+", help="Seed package FMRIs")
    plan_parser.add_argument("--memo", default=None, help="Planner memo file to persist")
    plan_parser.add_argument(
        "--skip-failures",
        action="store_true",
        default=False,
        help="Record failed packages and continue instead of aborting",
    )
    plan_parser.set_defaults(handler=_cmd_plan)

    # resume --------------------------------------------------------------
    resume_parser = subparsers.add_parser(
        "resume",
        parents=[common],
        help="Continue a run from its persisted memo",
    )
    resume_parser.add_argument("--memo", default=None, help="Planner memo file to resume")
    resume_parser.add_argument(
        "--skip-failures",
        action="store_true",
        default=False,
        help="Record failed packages and continue instead of aborting",
    )
    resume_parser.set_defaults(handler=_cmd_resume)

    # retry-fails ---------------------------------------------------------
    retry_parser = subparsers.add_parser(
        "retry-fails",
        parents=[common],
        help="Re-drive the packages recorded as failed in a memo",
    )
    retry_parser.add_argument("--memo", default=None, help="Planner memo file")
    retry_parser.add_argument(
        "--skip-failures",
        action="store_true",
        default=False,
        help="Record failed packages and continue instead of aborting",
    )
    retry_parser.set_defaults(handler=_cmd_retry_fails)

    # zone ----------------------------------------------------------------
    zone_parser = subparsers.add_parser("zone", help="Inspect or reset the build zone")
    zone_subparsers = zone_parser.add_subparsers(dest="zone_command", required=True)
    zone_status = zone_subparsers.add_parser(
        "status", parents=[common], help="Show the build zone state"
    )
    zone_status.set_defaults(handler=_cmd_zone_status)
    zone_teardown = zone_subparsers.add_parser(
        "teardown", parents=[common], help="Tear the build zone down completely"
    )
    zone_teardown.set_defaults(handler=_cmd_zone_teardown)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the redacted effective config as JSON",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_zone_manager(config: Mapping[str, Any]) -> ZoneLifecycleManager:
    """Construct the lifecycle manager for the configured build zone."""

    zone_cfg = config["zone"]
    control = ZoneadmControl(use_pfexec=bool(zone_cfg["use_pfexec"]))
    return ZoneLifecycleManager(
        control,
        ZoneSettings(
            name=zone_cfg["name"],
            path=Path(zone_cfg["path"]),
            brand=zone_cfg["brand"],
            template=zone_cfg["template"],
            milestone=zone_cfg["milestone"],
            poll_interval_seconds=float(zone_cfg["poll_interval_seconds"]),
            workspace_root=Path(config["paths"]["workspace_root"]),
            remove_packages=tuple(zone_cfg["remove_packages"]),
            install_packages=tuple(zone_cfg["install_packages"]),
        ),
        account=resolve_build_account(zone_cfg["build_user"]),
    )


def build_services(config: Mapping[str, Any]) -> Services:
    """Construct the host-backed collaborators described by ``config``."""

    repo_cfg = config["repository"]
    build_cfg = config["build"]

    zones = build_zone_manager(config)
    repository = PkgRepoRepository(repo_cfg["path"], repo_cfg["publisher"])
    repository.ensure()
    builder = BuildExecutor(
        zones,
        BuildSettings(
            repository_path=repository.path,
            publisher=repository.publisher,
            script_args=tuple(build_cfg["script_args"]),
            environment=dict(build_cfg["environment"]),
        ),
    )
    return Services(
        zones=zones,
        repository=repository,
        components=load_components(config["paths"]),
        builder=builder,
    )


def load_components(paths_cfg: Mapping[str, Any]) -> ComponentIndex:
    """Index components from the build tree scan and/or the YAML catalog."""

    catalog = Path(paths_cfg["components"])
    build_tree = paths_cfg.get("build_tree")

    index = ComponentIndex.scan(build_tree) if build_tree else ComponentIndex()
    if catalog.is_file():
        for location in ComponentIndex.from_catalog(catalog).locations:
            index.add(location)
    elif not build_tree:
        raise ComponentCatalogError(f"component catalog not found: {catalog}")
    return index


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_plan(args: argparse.Namespace) -> int:
    seeds: list[str] = list(args.seeds)
    return _run_planner(args, "plan", lambda planner: planner.plan(seeds), memo_required=False)


def _cmd_resume(args: argparse.Namespace) -> int:
    def _resume(planner: BuildPlanner) -> PlanReport:
        return planner.resume(PlannerState.load(_require_memo(planner)))

    return _run_planner(args, "resume", _resume, memo_required=True)


def _cmd_retry_fails(args: argparse.Namespace) -> int:
    def _retry(planner: BuildPlanner) -> PlanReport:
        state = PlannerState.load(_require_memo(planner)).retry_fails()
        return planner.resume(state)

    return _run_planner(args, "retry-fails", _retry, memo_required=True)


def _cmd_zone_status(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    with _logging_session(config):
        zones = build_zone_manager(config)
        zone = zones.status()

    name = zones.settings.name
    payload: dict[str, object] = {
        "command": "zone status",
        "zone": name,
        "present": zone is not None,
        "state": zone.state.value if zone is not None else None,
        "path": str(zone.path) if zone is not None else None,
        "brand": zone.brand if zone is not None else None,
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    if zone is None:
        renderer.kv("Zone", f"{name} (absent)")
        return 0
    renderer.kv("Zone", name)
    renderer.kv("State", zone.state.value)
    renderer.kv("Path", zone.path)
    renderer.kv("Brand", zone.brand)
    return 0


def _cmd_zone_teardown(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    with _logging_session(config):
        zones = build_zone_manager(config)
        with zones.acquire() as handle:
            actions = handle.teardown()

    name = zones.settings.name
    steps = [action.value for action in actions]
    if _flag(args, "json"):
        _emit_json({"command": "zone teardown", "zone": name, "actions": steps})
        return 0

    renderer = _get_renderer(args)
    if not steps:
        renderer.kv("Zone", f"{name} (absent, nothing to do)")
        return 0
    renderer.kv("Zone", name)
    renderer.items(steps)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    print(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_planner(
    args: argparse.Namespace,
    command: str,
    run: Callable[[BuildPlanner], PlanReport],
    *,
    memo_required: bool,
) -> int:
    config = _load_effective_config(args)
    memo = _optional_str(getattr(args, "memo", None)) or config["build"].get("memo_file")
    if memo_required and not memo:
        raise CLIError(f"{command} requires --memo or build.memo_file")

    with _logging_session(config):
        services = build_services(config)
        planner = BuildPlanner(
            components=services.components,
            repository=services.repository,
            builder=services.builder,
            memo_path=memo,
            skip_failures=bool(config["build"]["skip_failures"]),
            base_os_package=config["build"]["base_os_package"],
        )
        report = run(planner)

    exit_code = 0 if report.succeeded else 1
    if _flag(args, "json"):
        _emit_json({"command": command, **report.to_dict()})
        return exit_code

    _render_report(_get_renderer(args), report, memo=memo)
    return exit_code


def _render_report(renderer: CLIRenderer, report: PlanReport, *, memo: str | None) -> None:
    renderer.kv("Built", len(report.built))
    renderer.kv("Already present", len(report.present))
    renderer.kv("Skipped (optional, unmapped)", len(report.skipped))
    renderer.kv("Failed", len(report.state.fails))
    if report.built:
        renderer.section("Built:")
        renderer.items(report.built)
    if report.skipped:
        renderer.section("Skipped:")
        renderer.items(report.skipped)
    if report.state.fails:
        renderer.section("Failed:")
        renderer.items([entry.fmri for entry in report.state.fails])
        if memo:
            renderer.next_steps([f"zonebuild retry-fails --memo {memo}"])


def _require_memo(planner: BuildPlanner) -> Path:
    if planner.memo_path is None:
        raise PlannerStateError("a planner memo file is required")
    return planner.memo_path


@contextmanager
def _logging_session(config: Mapping[str, Any]) -> Iterator[None]:
    """Run a command with structured logging configured from ``[observability]``."""

    run_id = f"{datetime.now(UTC):%Y%m%dT%H%M%SZ}-{uuid.uuid4().hex[:8]}"
    handle = setup_logging(config.get("observability"), run_id=run_id)
    try:
        yield
    finally:
        shutdown_logging(handle)


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))

    overrides: dict[str, object] = {}
    if _flag(args, "skip_failures"):
        overrides["build.skip_failures"] = True
    if _flag(args, "verbose"):
        overrides["observability.log_level"] = "DEBUG"

    try:
        return load_config(config_path, profile=profile, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = [
    "CLIError",
    "Services",
    "build_parser",
    "build_services",
    "build_zone_manager",
    "load_components",
    "main",
    "run_cli",
]
