"""
SSTP Certificate Rotation

Replaces the TLS certificate RRAS presents on the SSTP listener:
1. Import a PFX or locate a certificate in Cert:\\LocalMachine\\My
2. Skip if it is already bound (unless forced)
3. Bind it with Set-RemoteAccess
4. Restart RemoteAccess under supervision (retry, then reboot)
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from aovpn.common.config import ServiceSettings, SupervisorSettings
from aovpn.common.exceptions import CertificateError, HostError
from aovpn.common.logging_setup import get_service_logger
from aovpn.services.host.powershell import PowerShellRunner, quote
from aovpn.supervisor import (
    ServiceRestartSupervisor,
    SupervisionOutcome,
    SupervisionResult,
)

logger = get_service_logger("certificate")

CERT_STORE = "Cert:\\LocalMachine\\My"
PFX_PASSWORD_ENV = "AOVPN_PFX_PASSWORD"
NOT_AFTER_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_THUMBPRINT_RE = re.compile(r"^[0-9A-F]{40}$")

# Emits one certificate as compact JSON with a UTC NotAfter
_SELECT_CERT = (
    "Select-Object Thumbprint, Subject, HasPrivateKey, "
    "@{n='NotAfter';e={$_.NotAfter.ToUniversalTime().ToString("
    "\"yyyy-MM-dd'T'HH:mm:ss'Z'\", "
    "[Globalization.CultureInfo]::InvariantCulture)}} | "
    "ConvertTo-Json -Compress"
)


class RotationOutcome(str, Enum):
    ROTATED = "rotated"
    UNCHANGED = "unchanged"
    ESCALATED_REBOOT = "escalated_reboot"


@dataclass
class CertificateInfo:
    """Certificate from the machine store"""
    thumbprint: str
    subject: str
    not_after: datetime
    has_private_key: bool

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.not_after <= now

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "CertificateInfo":
        try:
            not_after = datetime.strptime(data["NotAfter"], NOT_AFTER_FORMAT)
            return cls(
                thumbprint=normalize_thumbprint(data["Thumbprint"]),
                subject=data.get("Subject") or "",
                not_after=not_after.replace(tzinfo=timezone.utc),
                has_private_key=bool(data.get("HasPrivateKey")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CertificateError(f"Unexpected certificate data: {e}") from e


@dataclass
class RotationResult:
    outcome: RotationOutcome
    previous_thumbprint: str | None
    new_thumbprint: str
    supervision: SupervisionResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "previous_thumbprint": self.previous_thumbprint,
            "new_thumbprint": self.new_thumbprint,
            "supervision": self.supervision.to_dict() if self.supervision else None,
        }


def cert_path(thumbprint: str) -> str:
    return f"{CERT_STORE}\\{thumbprint}"


def normalize_thumbprint(value: str) -> str:
    """Strip spaces/colons and upper-case; must be 40 hex characters"""
    # Copying from the MMC certificate dialog prepends U+200E
    cleaned = re.sub(r"[\s:]", "", value or "").replace("\u200e", "").upper()
    if not _THUMBPRINT_RE.match(cleaned):
        raise CertificateError(f"Invalid thumbprint: {value!r}")
    return cleaned


class SstpCertificateRotator:
    """Binds a certificate to the SSTP listener and restarts RRAS"""

    def __init__(
        self,
        runner: PowerShellRunner,
        supervisor: ServiceRestartSupervisor,
        service: ServiceSettings | None = None,
        settings: SupervisorSettings | None = None,
    ):
        self.runner = runner
        self.supervisor = supervisor
        self.service = service or ServiceSettings()
        self.settings = settings or SupervisorSettings()

    async def find_by_thumbprint(self, thumbprint: str) -> CertificateInfo | None:
        thumbprint = normalize_thumbprint(thumbprint)
        script = (
            f"$c = Get-Item -Path {quote(cert_path(thumbprint))} "
            f"-ErrorAction SilentlyContinue; "
            f"if ($c) {{ $c | {_SELECT_CERT} }}"
        )
        data = await self._run_json(script)
        return CertificateInfo.from_json(data) if data else None

    async def find_by_subject(self, subject: str) -> CertificateInfo | None:
        """Newest certificate whose subject contains the given text"""
        if not subject:
            raise CertificateError("Subject must not be empty")

        script = (
            f"$c = Get-ChildItem -Path {quote(CERT_STORE)} | "
            f"Where-Object {{ $_.Subject -match [regex]::Escape({quote(subject)}) }} | "
            f"Sort-Object NotAfter -Descending | Select-Object -First 1; "
            f"if ($c) {{ $c | {_SELECT_CERT} }}"
        )
        data = await self._run_json(script)
        return CertificateInfo.from_json(data) if data else None

    async def import_pfx(self, pfx_path: str, password: str | None = None) -> str:
        """
        Import a PFX into the machine store.

        The password is handed over in the child environment, never on the
        command line.

        Returns:
            Thumbprint of the imported certificate carrying a private key
        """
        if password:
            script = (
                f"$pw = ConvertTo-SecureString -String $env:{PFX_PASSWORD_ENV} "
                f"-AsPlainText -Force; "
                f"$c = Import-PfxCertificate -FilePath {quote(pfx_path)} "
                f"-CertStoreLocation {quote(CERT_STORE)} -Password $pw -ErrorAction Stop; "
            )
            env = {PFX_PASSWORD_ENV: password}
        else:
            script = (
                f"$c = Import-PfxCertificate -FilePath {quote(pfx_path)} "
                f"-CertStoreLocation {quote(CERT_STORE)} -ErrorAction Stop; "
            )
            env = None

        script += (
            "$c | Where-Object { $_.HasPrivateKey } | "
            "Select-Object -First 1 -ExpandProperty Thumbprint"
        )

        try:
            output = await self.runner.run_async(script, env=env)
        except HostError as e:
            raise CertificateError(f"PFX import failed: {e.message}") from e

        if not output:
            raise CertificateError(f"No certificate with a private key in {pfx_path}")

        thumbprint = normalize_thumbprint(output.splitlines()[0])
        logger.info(f"Imported certificate {thumbprint} from {pfx_path}")
        return thumbprint

    async def get_current_thumbprint(self) -> str | None:
        """Thumbprint currently bound to the SSTP listener"""
        script = "(Get-RemoteAccess -ErrorAction Stop).SslCertificate.Thumbprint"

        try:
            output = await self.runner.run_async(script)
        except HostError as e:
            raise CertificateError(f"Cannot read SSTP binding: {e.message}") from e

        if not output:
            return None
        return normalize_thumbprint(output.splitlines()[0])

    async def bind(self, thumbprint: str) -> None:
        thumbprint = normalize_thumbprint(thumbprint)
        script = (
            f"$cert = Get-Item -Path {quote(cert_path(thumbprint))} "
            f"-ErrorAction Stop; "
            f"Set-RemoteAccess -SslCertificate $cert -ErrorAction Stop"
        )

        try:
            await self.runner.run_async(script)
        except HostError as e:
            raise CertificateError(
                f"Binding failed: {e.message}", thumbprint=thumbprint
            ) from e

        logger.info(f"SSTP listener bound to certificate {thumbprint}")

    async def resolve(
        self,
        thumbprint: str | None = None,
        subject: str | None = None,
        pfx_path: str | None = None,
        pfx_password: str | None = None,
    ) -> CertificateInfo:
        """Import or locate the certificate to bind and check it is usable"""
        if pfx_path:
            thumbprint = await self.import_pfx(pfx_path, pfx_password)

        if thumbprint:
            cert = await self.find_by_thumbprint(thumbprint)
        elif subject:
            cert = await self.find_by_subject(subject)
        else:
            raise CertificateError("One of thumbprint, subject or PFX path is required")

        if cert is None:
            raise CertificateError(
                f"Certificate not found in {CERT_STORE}",
                thumbprint=thumbprint,
            )
        if not cert.has_private_key:
            raise CertificateError("Certificate has no private key", cert.thumbprint)
        if cert.is_expired():
            raise CertificateError(
                f"Certificate expired on {cert.not_after.isoformat()}",
                cert.thumbprint,
            )

        return cert

    async def rotate(
        self,
        thumbprint: str | None = None,
        subject: str | None = None,
        pfx_path: str | None = None,
        pfx_password: str | None = None,
        force: bool = False,
    ) -> RotationResult:
        """
        Bind a new certificate and restart the service under supervision.

        Returns:
            RotationResult; UNCHANGED when the certificate is already bound
        """
        cert = await self.resolve(thumbprint, subject, pfx_path, pfx_password)
        current = await self.get_current_thumbprint()

        if current == cert.thumbprint and not force:
            logger.info(f"Certificate {cert.thumbprint} already bound, nothing to do")
            return RotationResult(
                outcome=RotationOutcome.UNCHANGED,
                previous_thumbprint=current,
                new_thumbprint=cert.thumbprint,
            )

        logger.info(
            f"Rotating SSTP certificate {current or 'none'} -> {cert.thumbprint}",
            extra={"subject": cert.subject, "not_after": cert.not_after.isoformat()},
        )
        await self.bind(cert.thumbprint)

        supervision = await self.supervisor.supervise(
            self.service.name,
            self.service.port,
            restart_timeout_s=self.settings.restart_timeout_s,
            startup_timeout_s=self.settings.startup_timeout_s,
            port_check_timeout_s=self.settings.port_check_timeout_s,
            max_attempts=self.settings.max_attempts,
        )

        if supervision.outcome == SupervisionOutcome.SUCCESS:
            outcome = RotationOutcome.ROTATED
        else:
            outcome = RotationOutcome.ESCALATED_REBOOT

        return RotationResult(
            outcome=outcome,
            previous_thumbprint=current,
            new_thumbprint=cert.thumbprint,
            supervision=supervision,
        )

    async def _run_json(self, script: str) -> Any:
        try:
            return await self.runner.run_json_async(script)
        except HostError as e:
            raise CertificateError(f"Certificate store query failed: {e.message}") from e
