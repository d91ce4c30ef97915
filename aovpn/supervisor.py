"""
Service Restart Supervisor

Restarts a service and confirms it is back to serving traffic:
- Restart runs as a background task bounded by a timeout
- Polls until the service reports Running
- Polls until the TCP listener is bound
- Retries the whole sequence (3x max by default)
- Escalates to a forced host reboot when every attempt fails
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from aovpn.common.exceptions import ConfigError
from aovpn.common.logging_setup import get_service_logger, log_restart_attempt
from aovpn.services.host.windows_service import ServiceStatus

logger = get_service_logger("supervisor")

# Recovery settings
DEFAULT_RESTART_TIMEOUT_S = 300.0
DEFAULT_STARTUP_TIMEOUT_S = 60.0
DEFAULT_PORT_CHECK_TIMEOUT_S = 60.0
DEFAULT_MAX_ATTEMPTS = 3
POLL_INTERVAL_S = 5.0


class RestartOutcome(str, Enum):
    """Result of the restart command itself"""
    SUCCESS = "success"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class ServiceState(str, Enum):
    """Service state observed after the restart"""
    RUNNING = "running"
    NOT_RUNNING = "not_running"
    UNKNOWN = "unknown"


class SupervisorState(str, Enum):
    IDLE = "idle"
    RESTARTING = "restarting"
    AWAITING_RUNNING = "awaiting_running"
    AWAITING_PORT_LISTENING = "awaiting_port_listening"
    RETRY_PENDING = "retry_pending"
    SUCCEEDED = "succeeded"
    ESCALATED = "escalated"


class SupervisionOutcome(str, Enum):
    SUCCESS = "success"
    ESCALATED_REBOOT = "escalated_reboot"


@dataclass
class RestartAttempt:
    """One iteration of the retry loop"""
    attempt_number: int
    restart_outcome: RestartOutcome | None = None
    service_state: ServiceState = ServiceState.UNKNOWN
    port_listening: bool = False
    error: str | None = None
    started_at: float = 0.0
    elapsed_seconds: float = 0.0

    @property
    def healthy(self) -> bool:
        return self.service_state == ServiceState.RUNNING and self.port_listening

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt": self.attempt_number,
            "restart_outcome": self.restart_outcome.value if self.restart_outcome else None,
            "service_state": self.service_state.value,
            "port_listening": self.port_listening,
            "error": self.error,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass
class SupervisionResult:
    """Outcome of a supervise() call"""
    outcome: SupervisionOutcome
    service_name: str
    port: int
    attempts: list[RestartAttempt] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    reboot_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == SupervisionOutcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "service_name": self.service_name,
            "port": self.port,
            "attempt_count": len(self.attempts),
            "attempts": [a.to_dict() for a in self.attempts],
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "reboot_error": self.reboot_error,
        }


class ServiceControl(Protocol):
    async def restart(self, service_name: str) -> None: ...

    async def get_status(self, service_name: str) -> ServiceStatus: ...


class ListenerProbe(Protocol):
    async def is_listening(self, port: int) -> bool: ...


class HostRebooter(Protocol):
    async def force_reboot(self, reason: str, service_name: str | None = None) -> None: ...


def _discard_task_result(task: asyncio.Task) -> None:
    """Done callback for abandoned restart tasks"""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Abandoned restart finished with error: {exc}")


class ServiceRestartSupervisor:
    """
    Supervised restart with bounded retries and reboot escalation.

    Policy:
    1. Restart fails, hangs, or service never reaches Running -> retry
    2. Service Running but listener never bound -> retry
    3. Attempt budget exhausted -> alert + forced reboot (once)
    """

    def __init__(
        self,
        service_control: ServiceControl,
        port_probe: ListenerProbe,
        rebooter: HostRebooter,
        poll_interval_s: float = POLL_INTERVAL_S,
        on_escalation: Callable[[str, str], Awaitable[None]] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if poll_interval_s <= 0:
            raise ConfigError("poll_interval_s must be positive")

        self._service_control = service_control
        self._port_probe = port_probe
        self._rebooter = rebooter
        self._on_escalation = on_escalation
        self._sleep = sleep
        self._clock = clock

        self.poll_interval_s = poll_interval_s
        self.state = SupervisorState.IDLE

    def _transition(self, new_state: SupervisorState, attempt: int | None = None) -> None:
        logger.debug(
            f"Supervisor {self.state.value} -> {new_state.value}",
            extra={"attempt": attempt},
        )
        self.state = new_state

    @staticmethod
    def _validate(
        service_name: str,
        port: int,
        restart_timeout_s: float,
        startup_timeout_s: float,
        port_check_timeout_s: float,
        max_attempts: int,
    ) -> None:
        if not service_name:
            raise ConfigError("service_name is required")
        if not 1 <= port <= 65535:
            raise ConfigError(f"port out of range: {port}")
        if max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        for name, value in (
            ("restart_timeout_s", restart_timeout_s),
            ("startup_timeout_s", startup_timeout_s),
            ("port_check_timeout_s", port_check_timeout_s),
        ):
            if value < 0:
                raise ConfigError(f"{name} must not be negative")

    async def supervise(
        self,
        service_name: str,
        port: int,
        restart_timeout_s: float = DEFAULT_RESTART_TIMEOUT_S,
        startup_timeout_s: float = DEFAULT_STARTUP_TIMEOUT_S,
        port_check_timeout_s: float = DEFAULT_PORT_CHECK_TIMEOUT_S,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> SupervisionResult:
        """
        Restart a service and wait for it to serve on its port again.

        Args:
            service_name: Service to restart (e.g. "RemoteAccess")
            port: TCP port the healthy service listens on (e.g. 443)
            restart_timeout_s: Bound on the restart command itself
            startup_timeout_s: Bound on waiting for the Running state
            port_check_timeout_s: Bound on waiting for the listener
            max_attempts: Restart attempts before escalating

        Returns:
            SupervisionResult with SUCCESS or ESCALATED_REBOOT

        Raises:
            ConfigError: Invalid arguments (checked before anything runs)
        """
        self._validate(
            service_name, port, restart_timeout_s,
            startup_timeout_s, port_check_timeout_s, max_attempts,
        )

        self.state = SupervisorState.IDLE
        started = self._clock()
        attempts: list[RestartAttempt] = []

        logger.info(
            f"Supervised restart of {service_name} (port {port}, "
            f"{max_attempts} attempts max)"
        )

        for attempt_number in range(1, max_attempts + 1):
            attempt = await self._run_attempt(
                service_name, port, attempt_number,
                restart_timeout_s, startup_timeout_s, port_check_timeout_s,
            )
            attempts.append(attempt)
            log_restart_attempt(logger, service_name, attempt, max_attempts)

            if attempt.healthy:
                self._transition(SupervisorState.SUCCEEDED, attempt_number)
                return SupervisionResult(
                    outcome=SupervisionOutcome.SUCCESS,
                    service_name=service_name,
                    port=port,
                    attempts=attempts,
                    elapsed_seconds=self._clock() - started,
                )

            if attempt_number < max_attempts:
                self._transition(SupervisorState.RETRY_PENDING, attempt_number)
                logger.warning(
                    f"Retrying restart of {service_name} "
                    f"(attempt {attempt_number + 1}/{max_attempts})"
                )

        self._transition(SupervisorState.ESCALATED, max_attempts)
        reboot_error = await self._escalate(service_name, port, attempts)

        return SupervisionResult(
            outcome=SupervisionOutcome.ESCALATED_REBOOT,
            service_name=service_name,
            port=port,
            attempts=attempts,
            elapsed_seconds=self._clock() - started,
            reboot_error=reboot_error,
        )

    async def _run_attempt(
        self,
        service_name: str,
        port: int,
        attempt_number: int,
        restart_timeout_s: float,
        startup_timeout_s: float,
        port_check_timeout_s: float,
    ) -> RestartAttempt:
        """Run restart -> running check -> port check, in that order"""
        attempt = RestartAttempt(attempt_number=attempt_number, started_at=self._clock())

        self._transition(SupervisorState.RESTARTING, attempt_number)
        attempt.restart_outcome, attempt.error = await self._restart(
            service_name, restart_timeout_s
        )

        if attempt.restart_outcome == RestartOutcome.SUCCESS:
            self._transition(SupervisorState.AWAITING_RUNNING, attempt_number)
            running = await self._poll(
                lambda: self._is_running(service_name), startup_timeout_s
            )

            if running:
                attempt.service_state = ServiceState.RUNNING
                self._transition(SupervisorState.AWAITING_PORT_LISTENING, attempt_number)
                attempt.port_listening = await self._poll(
                    lambda: self._is_listening(port), port_check_timeout_s
                )
                if not attempt.port_listening:
                    attempt.error = (
                        f"Port {port} not listening after {port_check_timeout_s:g}s"
                    )
            else:
                attempt.service_state = ServiceState.NOT_RUNNING
                attempt.error = (
                    f"{service_name} not running after {startup_timeout_s:g}s"
                )

        attempt.elapsed_seconds = self._clock() - attempt.started_at
        return attempt

    async def _restart(
        self,
        service_name: str,
        restart_timeout_s: float,
    ) -> tuple[RestartOutcome, str | None]:
        """Run the restart as a background task and wait with a timeout"""
        task = asyncio.ensure_future(self._service_control.restart(service_name))
        done, _ = await asyncio.wait({task}, timeout=restart_timeout_s)

        if not done:
            # Best effort; the OS-level restart may still complete later
            task.cancel()
            task.add_done_callback(_discard_task_result)
            return (
                RestartOutcome.TIMED_OUT,
                f"Restart did not complete within {restart_timeout_s:g}s",
            )

        if task.cancelled():
            return RestartOutcome.FAILED, "Restart was cancelled"

        exc = task.exception()
        if exc is not None:
            return RestartOutcome.FAILED, f"Restart failed: {exc}"

        return RestartOutcome.SUCCESS, None

    async def _is_running(self, service_name: str) -> bool:
        try:
            status = await self._service_control.get_status(service_name)
        except Exception as e:
            logger.warning(f"Status query for {service_name} failed: {e}")
            return False
        return status == ServiceStatus.RUNNING

    async def _is_listening(self, port: int) -> bool:
        try:
            return await self._port_probe.is_listening(port)
        except Exception as e:
            logger.warning(f"Listener check on port {port} failed: {e}")
            return False

    async def _poll(
        self,
        check: Callable[[], Awaitable[bool]],
        timeout_s: float,
    ) -> bool:
        """Call check every poll interval until True or the deadline passes"""
        deadline = self._clock() + timeout_s

        while True:
            if await check():
                return True

            remaining = deadline - self._clock()
            if remaining <= 0:
                return False

            await self._sleep(min(self.poll_interval_s, remaining))

    async def _escalate(
        self,
        service_name: str,
        port: int,
        attempts: list[RestartAttempt],
    ) -> str | None:
        """Alert and force a reboot. Returns the reboot error, if any."""
        last_error = attempts[-1].error if attempts else None
        message = (
            f"{service_name} unhealthy on port {port} after {len(attempts)} "
            f"restart attempts ({last_error or 'unknown error'}); forcing host reboot"
        )
        logger.warning(message)

        if self._on_escalation:
            try:
                await self._on_escalation(service_name, message)
            except Exception as e:
                logger.error(f"Escalation hook failed: {e}")

        try:
            await self._rebooter.force_reboot(message, service_name)
        except Exception as e:
            logger.critical(f"Host reboot failed: {e}")
            return str(e)

        return None
