"""Shared fixtures: virtual clock, scripted host, isolated state dir"""

import asyncio
from dataclasses import dataclass

import pytest

from aovpn.common import state
from aovpn.common.exceptions import RebootError, ServiceControlError
from aovpn.services.host.windows_service import ServiceStatus


class FakeClock:
    """Monotonic clock advanced only by sleep()"""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@dataclass
class AttemptScript:
    """
    Behaviour of one restart attempt.

    restart: "ok", "error" or "hang"
    running_after / listening_after: seconds after the restart call at
    which the service reports Running / the port is bound (None = never)
    """
    restart: str = "ok"
    running_after: float | None = 0.0
    listening_after: float | None = 0.0
    status_error: bool = False


class FakeHost:
    """Service control, port probe and rebooter driven by AttemptScripts"""

    def __init__(self, clock: FakeClock, scripts: list[AttemptScript]):
        self.clock = clock
        self.scripts = scripts
        self.restart_calls = 0
        self.cancelled_restarts = 0
        self.reboots: list[str] = []
        self.reboot_error: str | None = None
        self._restarted_at = 0.0

    @property
    def current(self) -> AttemptScript:
        return self.scripts[min(self.restart_calls, len(self.scripts)) - 1]

    async def restart(self, service_name: str) -> None:
        self.restart_calls += 1
        self._restarted_at = self.clock.now
        script = self.current

        if script.restart == "error":
            raise ServiceControlError("dependency not started", service_name)
        if script.restart == "hang":
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled_restarts += 1
                raise

    def _reached(self, after: float | None) -> bool:
        if self.restart_calls == 0 or after is None:
            return False
        return self.clock.now - self._restarted_at >= after

    async def get_status(self, service_name: str) -> ServiceStatus:
        if self.current.status_error:
            raise ServiceControlError("Status query failed", service_name)
        if self._reached(self.current.running_after):
            return ServiceStatus.RUNNING
        return ServiceStatus.START_PENDING

    async def is_listening(self, port: int) -> bool:
        return self._reached(self.current.listening_after)

    async def force_reboot(self, reason: str, service_name: str | None = None) -> None:
        self.reboots.append(reason)
        if self.reboot_error:
            raise RebootError(self.reboot_error)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_host(clock):
    def _make(*scripts: AttemptScript) -> FakeHost:
        return FakeHost(clock, list(scripts) or [AttemptScript()])
    return _make


@pytest.fixture(autouse=True)
def state_dir(tmp_path, monkeypatch):
    """Keep SharedState files inside the test's tmp dir"""
    path = tmp_path / "state"
    monkeypatch.setattr(state, "STATE_DIR", path)
    return path
