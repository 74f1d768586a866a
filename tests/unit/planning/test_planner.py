"""Breadth-first planning, failure handling and resumability of the build planner."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fakes import (
    FakeBuilder,
    FakeRepository,
    RecordingLookup,
    depend,
    location,
    lookup_for,
    manifest,
)
from structlog.testing import capture_logs

from zonebuild.planning.errors import MappingError, PlanFailedError
from zonebuild.planning.planner import BuildPlanner
from zonebuild.planning.state import PlannerState, QueueEntry
from zonebuild.zones.errors import ZoneStateError

_DIAMOND = {
    "app": manifest(depend("require", "pkg:/lib/a@1.0"), depend("require", "pkg:/lib/b")),
    "lib/a": manifest(depend("require", "pkg:/lib/c@2.1,5.11-0.151")),
    "lib/b": manifest(depend("require", "lib/c")),
    "lib/c": manifest(),
}
_ALL = ("app", "lib/a", "lib/b", "lib/c")


def _planner(
    repository: FakeRepository,
    builder: FakeBuilder,
    lookup: RecordingLookup,
    *,
    memo: Path | None = None,
    skip_failures: bool = False,
) -> BuildPlanner:
    return BuildPlanner(
        components=lookup,
        repository=repository,
        builder=builder,
        memo_path=memo,
        skip_failures=skip_failures,
    )


def _stack(
    manifests: dict[str, str],
    *,
    built: set[str] | None = None,
    failing: set[str] | None = None,
) -> tuple[FakeRepository, FakeBuilder]:
    repository = FakeRepository(manifests=dict(manifests), built=set(built or ()))
    return repository, FakeBuilder(repository, failing=set(failing or ()))


def test_plan_builds_closure_breadth_first(tmp_path: Path) -> None:
    repository, builder = _stack(_DIAMOND)
    memo = tmp_path / "memo.json"

    report = _planner(repository, builder, lookup_for(*_ALL), memo=memo).plan(["pkg:/app@1.0"])

    assert builder.builds == list(_ALL)
    assert report.built == list(_ALL)
    assert report.succeeded
    assert report.state.done
    assert json.loads(memo.read_text(encoding="utf-8")) == {
        "seen": sorted(_ALL),
        "q": [],
        "fails": [],
    }


def test_replan_of_complete_closure_builds_nothing() -> None:
    repository, builder = _stack(_DIAMOND, built=set(_ALL))

    report = _planner(repository, builder, lookup_for(*_ALL)).plan(["app"])

    assert builder.builds == []
    assert report.present == list(_ALL)
    assert repository.fetched == list(_ALL)


def test_names_are_normalized_before_dedup() -> None:
    repository, builder = _stack({"app": manifest(depend("require", "pkg:/lib/c@1", "lib/c"))})
    lookup = lookup_for("app", "lib/c")

    report = _planner(repository, builder, lookup).plan(["pkg://helios-dev/app@1.0,5.11", "app"])

    assert builder.builds == ["app", "lib/c"]
    assert report.state.seen == {"app", "lib/c"}


def test_incorporate_edges_are_not_followed() -> None:
    repository, builder = _stack(
        {"app": manifest(depend("incorporate", "pkg:/entire@11"), depend("require", "lib/c"))}
    )
    lookup = lookup_for("app", "lib/c")

    _planner(repository, builder, lookup).plan(["app"])

    assert "entire" not in lookup.queries
    assert builder.builds == ["app", "lib/c"]


def test_require_any_follows_every_alternative() -> None:
    repository, builder = _stack(
        {"app": manifest(depend("require-any", "pkg:/lib/x", "pkg:/lib/y"))}
    )

    _planner(repository, builder, lookup_for("app", "lib/x", "lib/y")).plan(["app"])

    assert builder.builds == ["app", "lib/x", "lib/y"]


def test_missing_optional_dependency_is_skipped() -> None:
    repository, builder = _stack({"app": manifest(depend("optional", "pkg:/extra/docs"))})

    report = _planner(repository, builder, lookup_for("app")).plan(["app"])

    assert report.skipped == ["extra/docs"]
    assert report.succeeded
    assert "extra/docs" in report.state.seen


def test_optional_flag_is_not_inherited() -> None:
    repository, builder = _stack(
        {
            "app": manifest(depend("optional", "pkg:/extra/docs")),
            "extra/docs": manifest(depend("require", "pkg:/tools/missing")),
        }
    )

    with pytest.raises(MappingError, match="tools/missing"):
        _planner(repository, builder, lookup_for("app", "extra/docs")).plan(["app"])


def test_unmapped_required_package_is_fatal() -> None:
    repository, builder = _stack({})

    with pytest.raises(MappingError) as excinfo:
        _planner(repository, builder, lookup_for()).plan(["pkg:/nowhere@1"])

    assert excinfo.value.name == "nowhere"
    assert excinfo.value.matches == ()


def test_ambiguous_mapping_is_fatal_even_when_optional() -> None:
    repository, builder = _stack({"app": manifest(depend("optional", "pkg:/lib/dup"))})
    first = location("lib/dup")
    second = location("vendored/dup")
    lookup = RecordingLookup({"app": [location("app")], "lib/dup": [first, second]})

    with pytest.raises(MappingError) as excinfo:
        _planner(repository, builder, lookup).plan(["app"])

    assert [name for name, _path in excinfo.value.matches] == ["lib/dup", "vendored/dup"]
    assert "more than one component" in str(excinfo.value)


def test_base_os_package_is_never_looked_up_or_built() -> None:
    repository, builder = _stack({"app": manifest(depend("require", "pkg:/osnet@0.5.11"))})
    lookup = lookup_for("app")

    report = _planner(repository, builder, lookup).plan(["app"])

    assert report.base_os == ["osnet"]
    assert lookup.queries == ["app"]
    assert builder.builds == ["app"]


def test_build_failure_aborts_with_memo_pointing_at_failed_package(tmp_path: Path) -> None:
    repository, builder = _stack(_DIAMOND, failing={"lib/a"})
    memo = tmp_path / "memo.json"

    with pytest.raises(PlanFailedError) as excinfo:
        _planner(repository, builder, lookup_for(*_ALL), memo=memo).plan(["app"])

    error = excinfo.value
    assert error.fmri == "lib/a"
    assert error.location == Path("/ws/components/lib/a")
    assert "exit code 1" in error.reason
    saved = PlannerState.load(memo)
    assert saved.seen == {"app"}
    assert [entry.name for entry in saved.queue] == ["lib/a", "lib/b"]


def test_resume_after_failure_finishes_closure(tmp_path: Path) -> None:
    repository, builder = _stack(_DIAMOND, failing={"lib/a"})
    memo = tmp_path / "memo.json"
    with pytest.raises(PlanFailedError):
        _planner(repository, builder, lookup_for(*_ALL), memo=memo).plan(["app"])

    builder.failing.clear()
    report = _planner(repository, builder, lookup_for(*_ALL), memo=memo).resume(
        PlannerState.load(memo)
    )

    assert report.built == ["lib/a", "lib/b", "lib/c"]
    assert report.succeeded


def test_unreadable_manifest_counts_as_package_failure() -> None:
    repository, builder = _stack(
        {"app": manifest(depend("require", "lib/a")), "lib/a": "depend fmri=x type=sometimes\n"}
    )

    report = _planner(repository, builder, lookup_for("app", "lib/a"), skip_failures=True).plan(
        ["app"]
    )

    assert report.failed == ["lib/a"]
    assert report.built == ["app", "lib/a"]


def test_skip_failures_records_and_continues(tmp_path: Path) -> None:
    repository, builder = _stack(_DIAMOND, failing={"lib/a"})
    memo = tmp_path / "memo.json"

    report = _planner(
        repository, builder, lookup_for(*_ALL), memo=memo, skip_failures=True
    ).plan(["app"])

    assert report.failed == ["lib/a"]
    assert not report.succeeded
    assert report.built == ["app", "lib/b", "lib/c"]
    saved = PlannerState.load(memo)
    assert saved.fails == [QueueEntry("pkg:/lib/a@1.0")]
    assert not saved.queue


def test_retry_fails_rebuilds_only_failures(tmp_path: Path) -> None:
    repository, builder = _stack(_DIAMOND, failing={"lib/a"})
    memo = tmp_path / "memo.json"
    _planner(repository, builder, lookup_for(*_ALL), memo=memo, skip_failures=True).plan(["app"])

    builder.failing.clear()
    builder.builds.clear()
    retry = PlannerState.load(memo).retry_fails()
    report = _planner(repository, builder, lookup_for(*_ALL), memo=memo).resume(retry)

    assert builder.builds == ["lib/a"]
    assert report.present == []
    assert report.succeeded


def test_interrupted_build_resumes_same_package(tmp_path: Path) -> None:
    repository, builder = _stack(_DIAMOND)
    builder.crash_on.add("lib/b")
    memo = tmp_path / "memo.json"

    with pytest.raises(KeyboardInterrupt):
        _planner(repository, builder, lookup_for(*_ALL), memo=memo).plan(["app"])

    saved = PlannerState.load(memo)
    assert [entry.name for entry in saved.queue] == ["lib/b", "lib/c"]
    assert saved.seen == {"app", "lib/a"}

    fresh = FakeBuilder(repository)
    report = _planner(repository, fresh, lookup_for(*_ALL), memo=memo).resume(saved)

    assert fresh.builds == ["lib/b", "lib/c"]
    assert report.state.seen == set(_ALL)


class _BrokenZoneBuilder:
    def build(self, fmri: str, location: object) -> object:
        raise ZoneStateError("zone in state 'ready' cannot be torn down")


def test_zone_state_errors_abort_even_when_skipping() -> None:
    repository = FakeRepository(manifests={"app": manifest()})
    planner = BuildPlanner(
        components=lookup_for("app"),
        repository=repository,
        builder=_BrokenZoneBuilder(),
        skip_failures=True,
    )

    with pytest.raises(ZoneStateError):
        planner.plan(["app"])


def test_planner_emits_structured_events() -> None:
    repository, builder = _stack(_DIAMOND, built={"lib/c"}, failing={"lib/b"})

    with capture_logs() as logs:
        _planner(repository, builder, lookup_for(*_ALL), skip_failures=True).plan(["app"])

    events = [entry["event"] for entry in logs]
    assert events[0] == "planner_start"
    assert events[-1] == "planner_done"
    assert "planner_already_built" in events
    skipped = next(entry for entry in logs if entry["event"] == "planner_build_failed_skipped")
    assert skipped["fmri"] == "lib/b"
    assert skipped["log_level"] == "warning"
    done = logs[-1]
    assert done["built"] == 2
    assert done["present"] == 1
    assert done["fails"] == 1


def test_depend_without_package_name_is_recorded_as_failure() -> None:
    repository, builder = _stack({"app": "depend fmri=pkg:/ type=require\n"})

    report = _planner(repository, builder, lookup_for("app"), skip_failures=True).plan(["app"])

    assert report.failed == ["app"]
    assert [entry.name for entry in report.state.fails] == ["app"]


def test_depend_without_package_name_fails_the_plan() -> None:
    repository, builder = _stack({"app": "depend fmri=pkg:/ type=require\n"})

    with pytest.raises(PlanFailedError, match="invalid fmri"):
        _planner(repository, builder, lookup_for("app")).plan(["app"])


def test_clean_resume_succeeds_despite_failures_from_earlier_run(tmp_path: Path) -> None:
    repository, builder = _stack(_DIAMOND, failing={"lib/a"})
    state = PlannerState(fails=[QueueEntry("lib/a")])
    state.queue.append(QueueEntry("lib/b"))

    report = _planner(repository, builder, lookup_for(*_ALL)).resume(state)

    assert report.built == ["lib/b", "lib/c"]
    assert report.failed == []
    assert report.succeeded
    assert report.state.fails == [QueueEntry("lib/a")]


def test_base_os_package_given_as_fmri_is_recognized() -> None:
    repository, builder = _stack({"app": manifest(depend("require", "pkg:/osnet@0.5.11"))})
    lookup = lookup_for("app")
    planner = BuildPlanner(
        components=lookup,
        repository=repository,
        builder=builder,
        base_os_package="pkg:/osnet",
    )

    report = planner.plan(["app"])

    assert report.base_os == ["osnet"]
    assert lookup.queries == ["app"]
