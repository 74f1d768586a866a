"""Unit tests for the zoneadm-backed control surface."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeRunner, failed, ok

from zonebuild.zones.control import (
    PFEXEC,
    SVCS,
    ZLOGIN,
    ZONEADM,
    ZONECFG,
    ServiceStatus,
    ZoneadmControl,
    find_zone,
    parse_service_status,
    parse_zoneadm_list,
    split_adm_fields,
    zonecfg_create_script,
    zonecfg_lofs_script,
)
from zonebuild.zones.errors import ZoneCommandError, ZoneError, ZoneStateError
from zonebuild.zones.state import ZoneState

_LISTING = (
    "0:global:running:/::ipkg:shared\n"
    "-:helios-build:installed:/zones/helios-build:1b2c-33:lipkg:excl\n"
    "7:odd\\:name:running:/zones/odd\\:name::lipkg:excl\n"
)


def test_split_adm_fields_honors_escapes() -> None:
    assert split_adm_fields("a\\:b:c\\\\d:") == ["a:b", "c\\d", ""]


def test_parse_zoneadm_list() -> None:
    zones = parse_zoneadm_list(_LISTING)

    assert [zone.name for zone in zones] == ["global", "helios-build", "odd:name"]
    build = zones[1]
    assert build.id is None
    assert build.state is ZoneState.INSTALLED
    assert build.path == Path("/zones/helios-build")
    assert build.uuid == "1b2c-33"
    assert build.brand == "lipkg"
    assert zones[2].id == 7
    assert zones[2].uuid is None
    assert find_zone(zones, "helios-build") is build
    assert find_zone(zones, "missing") is None


@pytest.mark.parametrize(
    ("line", "error"),
    [
        ("0:global:running:/", ZoneError),
        ("x:global:running:/::ipkg:shared", ZoneError),
        ("1:z:levitating:/zones/z::lipkg:excl", ZoneStateError),
    ],
)
def test_parse_zoneadm_list_rejects_bad_lines(line: str, error: type[Exception]) -> None:
    with pytest.raises(error):
        parse_zoneadm_list(line)


def test_parse_service_status() -> None:
    status = parse_service_status("ON     -\n", "svc:/milestone/multi-user-server:default")

    assert status == ServiceStatus(state="ON", next_state="-")
    assert status.ready
    assert not ServiceStatus(state="OFFLINE", next_state="ON").ready
    assert parse_service_status("\n", "svc:/x") is None
    assert parse_service_status("ON\n", "svc:/x") is None
    with pytest.raises(ZoneError, match="unexpected svcs output"):
        parse_service_status("ON -\nOFF -\n", "svc:/x")


def test_zonecfg_scripts() -> None:
    assert zonecfg_create_script(name="b", path=Path("/zones/b"), brand="lipkg") == (
        "create -b; set zonepath=/zones/b; set zonename=b; set brand=lipkg; commit; "
    )
    lofs = zonecfg_lofs_script(special=Path("/ws"), directory=Path("/ws"))
    assert "set type = lofs; " in lofs
    assert "set options = [rw,nodevices]; " in lofs
    assert lofs.startswith("add fs; set dir = /ws; set special = /ws; ")


def test_privileged_commands_go_through_pfexec() -> None:
    runner = FakeRunner()
    control = ZoneadmControl(runner)

    control.create("b", path=Path("/zones/b"), brand="lipkg")
    control.uninstall("b")
    control.delete("b")

    create, uninstall, delete = runner.commands
    assert create[:4] == (PFEXEC, ZONECFG, "-z", "b")
    assert uninstall == (PFEXEC, ZONEADM, "-z", "b", "uninstall", "-F")
    assert delete == (PFEXEC, ZONECFG, "-z", "b", "delete", "-F")


def test_pfexec_can_be_disabled() -> None:
    runner = FakeRunner()
    ZoneadmControl(runner, use_pfexec=False).boot("b")

    assert runner.commands == [(ZONEADM, "-z", "b", "boot")]


def test_clone_streams_output() -> None:
    runner = FakeRunner()
    ZoneadmControl(runner).clone("b", "helios-template")

    assert runner.calls[0].capture is False
    assert runner.calls[0].command[-2:] == ("clone", "helios-template")


def test_non_zero_exit_raises_command_error() -> None:
    runner = FakeRunner(lambda argv, _input: failed(3, "zone busy", command=argv))
    control = ZoneadmControl(runner)

    with pytest.raises(ZoneCommandError) as excinfo:
        control.halt("b")

    assert excinfo.value.returncode == 3
    assert "exit code 3" in str(excinfo.value)
    assert "zone busy" in str(excinfo.value)


def test_list_zones_parses_runner_output() -> None:
    runner = FakeRunner(lambda argv, _input: ok(_LISTING, command=argv))

    zones = ZoneadmControl(runner).list_zones()

    assert runner.commands == [(ZONEADM, "list", "-cip")]
    assert len(zones) == 3


def test_service_status_query_failure_is_not_ready() -> None:
    runner = FakeRunner(lambda argv, _input: failed(1, "no such service", command=argv))

    assert ZoneadmControl(runner).service_status("b", "svc:/x") is None
    assert runner.commands[0][:3] == (PFEXEC, SVCS, "-z")


def test_console_exec_as_root_and_as_user() -> None:
    runner = FakeRunner()
    control = ZoneadmControl(runner)

    control.console_exec("b", ["uname"], input_text="x")
    control.console_exec("b", ["/tmp/s.sh"], user="builder", capture=False)

    assert runner.commands[0] == (PFEXEC, ZLOGIN, "-S", "b", "uname")
    assert runner.calls[0].input_text == "x"
    assert runner.commands[1] == (PFEXEC, ZLOGIN, "-l", "builder", "b", "/tmp/s.sh")
    assert runner.calls[1].capture is False


def test_image_pkg_targets_image_root() -> None:
    runner = FakeRunner(lambda argv, _input: failed(1, command=argv))

    result = ZoneadmControl(runner, use_pfexec=False).image_pkg(
        Path("/zones/b/root"), ["info", "-q", "entire"]
    )

    assert not result.succeeded
    assert runner.commands[0][1:] == ("-R", "/zones/b/root", "info", "-q", "entire")
