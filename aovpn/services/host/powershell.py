"""
PowerShell Runner

Every OS call (service control, certificate store, RRAS configuration)
goes through powershell.exe. The async variant runs the blocking call in a
worker thread, so cancelling the awaiting task abandons the result but never
kills the PowerShell process itself.
"""

import asyncio
import json
import os
import subprocess
from typing import Any

from aovpn.common.exceptions import HostError, PowerShellError
from aovpn.common.logging_setup import get_service_logger

logger = get_service_logger("host.powershell")


def quote(value: str) -> str:
    """Return value as a single-quoted PowerShell string literal"""
    return "'" + str(value).replace("'", "''") + "'"


class PowerShellRunner:
    """Runs PowerShell scripts and returns their stdout"""

    def __init__(
        self,
        executable: str = "powershell.exe",
        timeout_s: float = 120.0,
    ):
        self.executable = executable
        self.timeout_s = timeout_s

    def _build_args(self, script: str) -> list[str]:
        return [
            self.executable,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy", "Bypass",
            "-Command", script,
        ]

    def run(
        self,
        script: str,
        timeout_s: float | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        """
        Run a script and return stripped stdout.

        Args:
            script: PowerShell command text
            timeout_s: Override of the runner timeout
            env: Extra environment variables for the child process

        Raises:
            PowerShellError: Non-zero exit or timeout
            HostError: PowerShell executable not found
        """
        timeout = timeout_s if timeout_s is not None else self.timeout_s
        child_env = {**os.environ, **env} if env else None

        logger.debug(f"Running PowerShell: {script}")

        try:
            result = subprocess.run(
                self._build_args(script),
                capture_output=True,
                text=True,
                timeout=timeout,
                env=child_env,
            )
        except subprocess.TimeoutExpired as e:
            raise PowerShellError(
                f"PowerShell timed out after {timeout}s",
                command=script,
            ) from e
        except FileNotFoundError as e:
            raise HostError(
                f"PowerShell not available: {self.executable}",
                recoverable=False,
            ) from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise PowerShellError(
                f"PowerShell exited with {result.returncode}: {stderr or 'no output'}",
                command=script,
                returncode=result.returncode,
                stderr=stderr,
            )

        return (result.stdout or "").strip()

    def run_json(
        self,
        script: str,
        timeout_s: float | None = None,
        env: dict[str, str] | None = None,
    ) -> Any:
        """Run a script ending in ConvertTo-Json and parse its output"""
        output = self.run(script, timeout_s=timeout_s, env=env)
        if not output:
            return None

        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise PowerShellError(
                f"Unparseable JSON from PowerShell: {e}",
                command=script,
            ) from e

    async def run_async(
        self,
        script: str,
        timeout_s: float | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        return await asyncio.to_thread(self.run, script, timeout_s, env)

    async def run_json_async(
        self,
        script: str,
        timeout_s: float | None = None,
        env: dict[str, str] | None = None,
    ) -> Any:
        return await asyncio.to_thread(self.run_json, script, timeout_s, env)
