"""SSTP certificate rotation"""

import asyncio

import pytest

from conftest import AttemptScript
from aovpn.common.config import ServiceSettings, SupervisorSettings
from aovpn.common.exceptions import CertificateError, PowerShellError
from aovpn.services.certificate.sstp_certificate import (
    CertificateInfo,
    PFX_PASSWORD_ENV,
    RotationOutcome,
    SstpCertificateRotator,
    normalize_thumbprint,
)
from aovpn.supervisor import ServiceRestartSupervisor, SupervisionOutcome

OLD = "A" * 40
NEW = "0123456789ABCDEF0123456789ABCDEF01234567"


def cert_json(thumbprint=NEW, not_after="2099-01-01T00:00:00Z", private_key=True):
    return {
        "Thumbprint": thumbprint,
        "Subject": "CN=vpn.example.com",
        "NotAfter": not_after,
        "HasPrivateKey": private_key,
    }


class FakeCertRunner:
    """Answers the PowerShell snippets the rotator sends"""

    def __init__(self, current=OLD, cert=None, imported=NEW, fail_on=None):
        self.current = current
        self.cert = cert if cert is not None else cert_json()
        self.imported = imported
        self.fail_on = fail_on
        self.scripts = []
        self.envs = []
        self.bound = None

    def _check(self, script):
        self.scripts.append(script)
        if self.fail_on and self.fail_on in script:
            raise PowerShellError("exited with 1", command=script, returncode=1)

    async def run_async(self, script, timeout_s=None, env=None):
        self.envs.append(env)
        self._check(script)
        if "Get-RemoteAccess" in script:
            return self.current or ""
        if "Import-PfxCertificate" in script:
            return self.imported
        if "Set-RemoteAccess" in script:
            self.bound = script
            return ""
        raise AssertionError(f"Unexpected script: {script}")

    async def run_json_async(self, script, timeout_s=None, env=None):
        self._check(script)
        return self.cert or None


@pytest.fixture
def build(clock, make_host):
    def _build(runner, *scripts):
        host = make_host(*scripts)
        supervisor = ServiceRestartSupervisor(
            service_control=host,
            port_probe=host,
            rebooter=host,
            sleep=clock.sleep,
            clock=clock,
        )
        rotator = SstpCertificateRotator(
            runner=runner,
            supervisor=supervisor,
            service=ServiceSettings(),
            settings=SupervisorSettings(),
        )
        return rotator, host
    return _build


def test_normalize_thumbprint():
    assert normalize_thumbprint("\u200e01 23 45 67 89 ab cd ef 01 23 45 67 89 ab cd ef 01 23 45 67") == NEW
    assert normalize_thumbprint(NEW.lower()) == NEW

    with pytest.raises(CertificateError):
        normalize_thumbprint("1234")
    with pytest.raises(CertificateError):
        normalize_thumbprint("Z" * 40)


def test_certificate_info_from_json():
    info = CertificateInfo.from_json(cert_json(not_after="2030-06-01T12:00:00Z"))

    assert info.thumbprint == NEW
    assert info.not_after.year == 2030
    assert info.not_after.tzinfo is not None
    assert not info.is_expired()

    with pytest.raises(CertificateError):
        CertificateInfo.from_json({"Thumbprint": NEW})


def test_rotate_binds_and_supervises(build):
    runner = FakeCertRunner()
    rotator, host = build(runner, AttemptScript(running_after=5, listening_after=10))

    result = asyncio.run(rotator.rotate(thumbprint=NEW))

    assert result.outcome == RotationOutcome.ROTATED
    assert result.previous_thumbprint == OLD
    assert result.new_thumbprint == NEW
    assert result.supervision.outcome == SupervisionOutcome.SUCCESS
    assert NEW in runner.bound
    assert host.restart_calls == 1


def test_rotate_already_bound_is_unchanged(build):
    runner = FakeCertRunner(current=NEW)
    rotator, host = build(runner)

    result = asyncio.run(rotator.rotate(thumbprint=NEW))

    assert result.outcome == RotationOutcome.UNCHANGED
    assert result.supervision is None
    assert runner.bound is None
    assert host.restart_calls == 0


def test_force_rebinds_same_certificate(build):
    runner = FakeCertRunner(current=NEW)
    rotator, host = build(runner)

    result = asyncio.run(rotator.rotate(thumbprint=NEW, force=True))

    assert result.outcome == RotationOutcome.ROTATED
    assert host.restart_calls == 1


def test_rotate_escalates_when_listener_never_returns(build):
    runner = FakeCertRunner()
    rotator, host = build(runner, AttemptScript(listening_after=None))

    result = asyncio.run(rotator.rotate(thumbprint=NEW))

    assert result.outcome == RotationOutcome.ESCALATED_REBOOT
    assert len(host.reboots) == 1
    assert host.restart_calls == 3


def test_rotate_by_subject_escapes_input(build):
    runner = FakeCertRunner(current=None)
    rotator, _ = build(runner)

    result = asyncio.run(rotator.rotate(subject="vpn.example.com'; Remove-Item"))

    assert result.outcome == RotationOutcome.ROTATED
    assert result.previous_thumbprint is None
    lookup = runner.scripts[0]
    assert "[regex]::Escape('vpn.example.com''; Remove-Item')" in lookup


def test_rotate_from_pfx_passes_password_in_env(build):
    runner = FakeCertRunner()
    rotator, _ = build(runner)

    result = asyncio.run(
        rotator.rotate(pfx_path=r"C:\certs\vpn.pfx", pfx_password="s3cret")
    )

    assert result.new_thumbprint == NEW
    import_script = runner.scripts[0]
    assert "Import-PfxCertificate" in import_script
    assert "s3cret" not in import_script
    assert runner.envs[0] == {PFX_PASSWORD_ENV: "s3cret"}


def test_missing_certificate(build):
    runner = FakeCertRunner(cert={})
    rotator, host = build(runner)

    with pytest.raises(CertificateError, match="not found"):
        asyncio.run(rotator.rotate(thumbprint=NEW))

    assert host.restart_calls == 0


def test_certificate_without_private_key_rejected(build):
    rotator, _ = build(FakeCertRunner(cert=cert_json(private_key=False)))

    with pytest.raises(CertificateError, match="private key"):
        asyncio.run(rotator.rotate(thumbprint=NEW))


def test_expired_certificate_rejected(build):
    rotator, _ = build(FakeCertRunner(cert=cert_json(not_after="2001-01-01T00:00:00Z")))

    with pytest.raises(CertificateError, match="expired"):
        asyncio.run(rotator.rotate(thumbprint=NEW))


def test_selection_required(build):
    rotator, _ = build(FakeCertRunner())

    with pytest.raises(CertificateError, match="required"):
        asyncio.run(rotator.rotate())


def test_bind_failure_does_not_restart(build):
    runner = FakeCertRunner(fail_on="Set-RemoteAccess")
    rotator, host = build(runner)

    with pytest.raises(CertificateError, match="Binding failed"):
        asyncio.run(rotator.rotate(thumbprint=NEW))

    assert host.restart_calls == 0
