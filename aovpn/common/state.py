"""
Shared State Management

File-based state persisted between runs using JSON files.
Used to record the last supervision result and a reboot-pending marker
that is checked when the tool next starts after an escalated reboot.
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path


def _default_state_dir() -> Path:
    override = os.environ.get("AOVPN_STATE_DIR")
    if override:
        return Path(override)
    if os.name == "nt":
        return Path(os.environ.get("ProgramData", r"C:\ProgramData")) / "aovpn" / "state"
    return Path("/var/lib/aovpn/state")


# State directory - will be created if it doesn't exist
STATE_DIR = _default_state_dir()


class SharedState:
    """
    Simple file-based state store.

    Uses file locking on Unix systems for safe concurrent access.
    On Windows, uses a write-and-rename approach.
    """

    @classmethod
    def _ensure_dir(cls) -> None:
        STATE_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def _get_path(cls, key: str) -> Path:
        return STATE_DIR / f"{key}.json"

    @classmethod
    def write(cls, key: str, data: dict) -> None:
        """
        Write state with file locking (Unix) or atomic rename (Windows).

        Args:
            key: State key (becomes filename without .json)
            data: Dictionary to serialize as JSON
        """
        cls._ensure_dir()
        path = cls._get_path(key)

        data_with_meta = {
            **data,
            "_updated_at": datetime.now(timezone.utc).isoformat(),
        }

        if os.name == "nt":
            temp_path = path.with_suffix(".tmp")
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data_with_meta, f, indent=2)
            temp_path.replace(path)
        else:
            import fcntl
            with open(path, "w", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    json.dump(data_with_meta, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    @classmethod
    def read(cls, key: str) -> dict:
        """
        Read state from file.

        Returns:
            Dictionary from JSON file, or empty dict if not found
        """
        path = cls._get_path(key)
        if not path.exists():
            return {}

        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            return {}

    @classmethod
    def delete(cls, key: str) -> bool:
        """
        Delete state file.

        Returns:
            True if deleted, False if not found
        """
        path = cls._get_path(key)

        if path.exists():
            path.unlink()
            return True
        return False


# Convenience functions for common state files
def get_last_supervision() -> dict:
    """Get the result of the most recent supervised restart"""
    return SharedState.read("last_supervision")


def set_last_supervision(summary: dict) -> None:
    SharedState.write("last_supervision", summary)


def get_reboot_pending() -> dict:
    """Get the reboot marker written before an escalated reboot"""
    return SharedState.read("reboot_pending")


def set_reboot_pending(reason: str, service_name: str | None = None) -> None:
    SharedState.write("reboot_pending", {
        "reason": reason,
        "service_name": service_name,
        "initiated_at": datetime.now(timezone.utc).isoformat(),
    })


def clear_reboot_pending() -> bool:
    return SharedState.delete("reboot_pending")
