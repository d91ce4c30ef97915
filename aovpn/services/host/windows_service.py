"""
Windows Service Control

Restart and status queries for Windows services via PowerShell
(Restart-Service / Get-Service).
"""

import re
from enum import Enum

from aovpn.common.exceptions import HostError, ServiceControlError
from aovpn.common.logging_setup import get_service_logger

from .powershell import PowerShellRunner, quote

logger = get_service_logger("host.service")

_SERVICE_NAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")

# Extra time a supervised restart may run after the supervisor gives up on it
RESTART_KILL_GRACE_S = 300.0


class ServiceStatus(str, Enum):
    """Service status as reported by Get-Service"""
    RUNNING = "Running"
    STOPPED = "Stopped"
    START_PENDING = "StartPending"
    STOP_PENDING = "StopPending"
    CONTINUE_PENDING = "ContinuePending"
    PAUSE_PENDING = "PausePending"
    PAUSED = "Paused"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, text: str) -> "ServiceStatus":
        """Parse Get-Service status text (name or numeric value)"""
        value = (text or "").strip()
        for status in cls:
            if status.value.lower() == value.lower():
                return status

        # ServiceControllerStatus numeric values
        numeric = {
            "1": cls.STOPPED,
            "2": cls.START_PENDING,
            "3": cls.STOP_PENDING,
            "4": cls.RUNNING,
            "5": cls.CONTINUE_PENDING,
            "6": cls.PAUSE_PENDING,
            "7": cls.PAUSED,
        }
        return numeric.get(value, cls.UNKNOWN)


class WindowsServiceController:
    """Restarts and queries Windows services"""

    def __init__(
        self,
        runner: PowerShellRunner | None = None,
        restart_timeout_s: float | None = None,
    ):
        self.runner = runner or PowerShellRunner()
        self.restart_timeout_s = restart_timeout_s

    @staticmethod
    def _check_name(service_name: str) -> None:
        if not _SERVICE_NAME_RE.match(service_name or ""):
            raise ServiceControlError(
                "Invalid service name", service_name, recoverable=False
            )

    async def restart(self, service_name: str, timeout_s: float | None = None) -> None:
        """
        Restart a service and wait for the command to complete.

        Args:
            service_name: Service to restart
            timeout_s: Kill the PowerShell process after this long. Defaults to
                restart_timeout_s, then to the runner timeout. Supervised
                restarts set it past the supervisor's own restart timeout, so
                the supervisor abandons a slow restart before anything is killed.
        """
        self._check_name(service_name)
        script = f"Restart-Service -Name {quote(service_name)} -Force -ErrorAction Stop"
        if timeout_s is None:
            timeout_s = self.restart_timeout_s

        try:
            await self.runner.run_async(script, timeout_s=timeout_s)
        except HostError as e:
            raise ServiceControlError(e.detail, service_name) from e

        logger.info(f"Restart command completed for {service_name}")

    async def get_status(self, service_name: str) -> ServiceStatus:
        """Get current service status"""
        self._check_name(service_name)
        script = (
            f"(Get-Service -Name {quote(service_name)} -ErrorAction Stop).Status.ToString()"
        )

        try:
            output = await self.runner.run_async(script, timeout_s=30)
        except HostError as e:
            raise ServiceControlError(f"Status query failed: {e.detail}", service_name) from e

        return ServiceStatus.parse(output)
