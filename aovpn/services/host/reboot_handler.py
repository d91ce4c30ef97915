"""
Reboot Handler

Forced host reboot used as the final escalation of a supervised restart.
No graceful shutdown negotiation and no operator confirmation.
"""

import asyncio
import subprocess

from aovpn.common.exceptions import RebootError
from aovpn.common.logging_setup import get_service_logger
from aovpn.common.state import (
    clear_reboot_pending,
    get_reboot_pending,
    set_reboot_pending,
)

logger = get_service_logger("host.reboot")

# shutdown.exe limits the comment to 512 characters
MAX_REASON_LENGTH = 512


class RebootHandler:
    """
    Issues an immediate, forced reboot.

    Flow:
    1. Write reboot pending marker to shared state
    2. Run shutdown.exe /r /f /t 0
    3. On next start, check_post_reboot() reports and clears the marker
    """

    def __init__(
        self,
        shutdown_path: str = "shutdown.exe",
        dry_run: bool = False,
        timeout_s: float = 30.0,
    ):
        self.shutdown_path = shutdown_path
        self.dry_run = dry_run
        self.timeout_s = timeout_s
        self.reboot_requested = False

    def _build_args(self, reason: str) -> list[str]:
        return [
            self.shutdown_path,
            "/r",
            "/f",
            "/t", "0",
            "/d", "u:4:5",  # Unplanned, application unstable
            "/c", reason[:MAX_REASON_LENGTH],
        ]

    def _execute(self, reason: str) -> None:
        try:
            subprocess.run(
                self._build_args(reason),
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise RebootError(f"shutdown exited with {e.returncode}: {stderr}") from e
        except subprocess.TimeoutExpired as e:
            raise RebootError("shutdown command timed out") from e
        except FileNotFoundError as e:
            raise RebootError(f"{self.shutdown_path} not available") from e

    async def force_reboot(self, reason: str, service_name: str | None = None) -> None:
        """
        Immediately restart the machine.

        Raises:
            RebootError: The reboot command could not be issued
        """
        self.reboot_requested = True
        try:
            set_reboot_pending(reason, service_name)
        except OSError as e:
            logger.error(f"Could not record reboot marker: {e}")

        if self.dry_run:
            logger.warning(f"Dry run - reboot skipped: {reason}")
            return

        logger.critical(f"Forcing host reboot: {reason}")
        await asyncio.to_thread(self._execute, reason)

    def check_post_reboot(self) -> dict | None:
        """
        Check if we just rebooted after an escalation.

        Called on startup. Returns the marker that was cleared, if any.
        """
        pending = get_reboot_pending()
        if not pending:
            return None

        logger.warning(
            f"Previous run escalated to reboot: {pending.get('reason', 'unknown')}",
            extra={
                "service_name": pending.get("service_name"),
                "initiated_at": pending.get("initiated_at"),
            },
        )
        clear_reboot_pending()
        return pending
