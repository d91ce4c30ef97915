"""Command-line entry point"""

import json

import pytest

from aovpn import main as cli
from aovpn.common.config import load_agent_config
from aovpn.common.state import get_last_supervision
from aovpn.services.certificate.sstp_certificate import RotationOutcome, RotationResult
from aovpn.services.host.windows_service import ServiceStatus
from aovpn.supervisor import (
    RestartAttempt,
    SupervisionOutcome,
    SupervisionResult,
)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("ProgramData", str(tmp_path / "programdata"))
    monkeypatch.delenv("AOVPN_ALERT_WEBHOOK", raising=False)
    monkeypatch.delenv("AOVPN_PFX_PASSWORD", raising=False)
    monkeypatch.chdir(tmp_path)


class CallList(list):
    outcome: dict


@pytest.fixture
def supervise_recorder(monkeypatch):
    calls = CallList()
    calls.outcome = {"value": SupervisionOutcome.SUCCESS}

    async def fake_supervise(self, service_name, port, **kwargs):
        calls.append({"service_name": service_name, "port": port, **kwargs})
        return SupervisionResult(
            outcome=calls.outcome["value"],
            service_name=service_name,
            port=port,
            attempts=[RestartAttempt(attempt_number=1)],
        )

    monkeypatch.setattr(cli.ServiceRestartSupervisor, "supervise", fake_supervise)
    return calls


def test_restart_uses_defaults(supervise_recorder, capsys):
    code = cli.main(["--json", "restart"])

    assert code == cli.EXIT_OK
    assert supervise_recorder == [{
        "service_name": "RemoteAccess",
        "port": 443,
        "restart_timeout_s": 300.0,
        "startup_timeout_s": 60.0,
        "port_check_timeout_s": 60.0,
        "max_attempts": 3,
    }]
    output = json.loads(capsys.readouterr().out)
    assert output["outcome"] == "success"
    assert get_last_supervision()["outcome"] == "success"


def test_restart_flags_override_config(tmp_path, supervise_recorder):
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("supervisor:\n  max_attempts: 5\n", encoding="utf-8")

    cli.main([
        "-c", str(config_path), "restart",
        "--port", "8443", "--startup-timeout", "30", "--max-attempts", "2",
    ])

    call = supervise_recorder[0]
    assert call["port"] == 8443
    assert call["startup_timeout_s"] == 30.0
    assert call["max_attempts"] == 2


def test_restart_escalation_exit_code(supervise_recorder):
    supervise_recorder.outcome["value"] = SupervisionOutcome.ESCALATED_REBOOT

    assert cli.main(["restart"]) == cli.EXIT_ESCALATED


def test_no_reboot_flag_sets_dry_run():
    args = cli.build_parser().parse_args(["restart", "--no-reboot"])

    config = cli.apply_overrides(load_agent_config({}), args)

    assert config.host.dry_run_reboot is True
    assert cli.Components(config).reboot_handler.dry_run is True


def test_invalid_config_exits_with_error(supervise_recorder, capsys):
    code = cli.main(["restart", "--max-attempts", "0"])

    assert code == cli.EXIT_ERROR
    assert supervise_recorder == []
    assert "max_attempts" in capsys.readouterr().err


def test_missing_config_file(tmp_path, capsys):
    code = cli.main(["-c", str(tmp_path / "nope.yaml"), "status"])

    assert code == cli.EXIT_ERROR
    assert "not found" in capsys.readouterr().err


def test_rotate_passes_selection_and_password(monkeypatch, capsys):
    seen = {}

    async def fake_rotate(self, thumbprint=None, subject=None, pfx_path=None,
                          pfx_password=None, force=False):
        seen.update(thumbprint=thumbprint, subject=subject, pfx_path=pfx_path,
                    pfx_password=pfx_password, force=force)
        return RotationResult(
            outcome=RotationOutcome.UNCHANGED,
            previous_thumbprint="A" * 40,
            new_thumbprint="A" * 40,
        )

    monkeypatch.setattr(cli.SstpCertificateRotator, "rotate", fake_rotate)
    monkeypatch.setenv("AOVPN_PFX_PASSWORD", "pw")

    code = cli.main(["--json", "rotate", "--pfx", "vpn.pfx", "--force"])

    assert code == cli.EXIT_OK
    assert seen == {
        "thumbprint": None,
        "subject": None,
        "pfx_path": "vpn.pfx",
        "pfx_password": "pw",
        "force": True,
    }
    assert json.loads(capsys.readouterr().out)["outcome"] == "unchanged"


def test_rotate_selection_flags_are_exclusive():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["rotate", "--thumbprint", "A", "--subject", "B"])


def test_rotate_error_exit_code(monkeypatch, capsys):
    code = cli.main(["rotate"])

    assert code == cli.EXIT_ERROR
    assert "required" in capsys.readouterr().err


def test_status_reports_each_check(monkeypatch, capsys):
    async def get_status(self, service_name):
        return ServiceStatus.RUNNING

    async def is_listening(self, port):
        return True

    async def get_current_thumbprint(self):
        return "B" * 40

    monkeypatch.setattr(cli.WindowsServiceController, "get_status", get_status)
    monkeypatch.setattr(cli.PortProbe, "is_listening", is_listening)
    monkeypatch.setattr(cli.SstpCertificateRotator, "get_current_thumbprint", get_current_thumbprint)

    code = cli.main(["--json", "status"])

    assert code == cli.EXIT_OK
    status = json.loads(capsys.readouterr().out)
    assert status["service_status"] == "Running"
    assert status["port_listening"] is True
    assert status["sstp_thumbprint"] == "B" * 40
    assert status["last_supervision"] is None


def test_epilog_examples_parse():
    parser = cli.build_parser()
    examples = [
        line.split("#")[0].split()[1:]
        for line in parser.epilog.splitlines()
        if line.strip().startswith("aovpn ")
    ]

    assert examples
    for argv in examples:
        parser.parse_args(argv)

    assert parser.parse_args(["--json", "status"]).json is True
