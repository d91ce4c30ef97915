"""
Configuration Dataclasses

Type-safe configuration structures for the RRAS administration tools.
Values come from a YAML file; command-line flags override them.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

DEFAULT_SERVICE_NAME = "RemoteAccess"
DEFAULT_SSTP_PORT = 443


@dataclass
class ServiceSettings:
    """Service under supervision"""
    name: str = DEFAULT_SERVICE_NAME
    port: int = DEFAULT_SSTP_PORT


@dataclass
class SupervisorSettings:
    """Restart supervision timeouts and retry budget"""
    restart_timeout_s: float = 300.0
    startup_timeout_s: float = 60.0
    port_check_timeout_s: float = 60.0
    poll_interval_s: float = 5.0
    max_attempts: int = 3


@dataclass
class CertificateSettings:
    """SSTP certificate selection"""
    thumbprint: str = ""
    subject: str = ""
    pfx_path: str = ""
    force: bool = False


@dataclass
class HostSettings:
    """Operating system access"""
    powershell_path: str = "powershell.exe"
    command_timeout_s: float = 120.0
    shutdown_path: str = "shutdown.exe"
    dry_run_reboot: bool = False


@dataclass
class AlertSettings:
    """Escalation alert webhook"""
    webhook_url: str = ""
    timeout_s: float = 10.0


@dataclass
class AgentConfig:
    """Complete tool configuration"""
    service: ServiceSettings = field(default_factory=ServiceSettings)
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)
    certificate: CertificateSettings = field(default_factory=CertificateSettings)
    host: HostSettings = field(default_factory=HostSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)

    # Where the values were loaded from ("" = built-in defaults)
    source_path: str = ""


def default_config_paths() -> list[Path]:
    """Config file search order when no path is given"""
    program_data = os.environ.get("ProgramData", r"C:\ProgramData")
    return [
        Path(program_data) / "aovpn" / "config.yaml",
        Path.cwd() / "config.yaml",
    ]


def load_agent_config(data: dict) -> AgentConfig:
    """Load AgentConfig from dictionary (e.g., parsed YAML)"""
    service_data = data.get("service") or {}
    service = ServiceSettings(
        name=service_data.get("name", DEFAULT_SERVICE_NAME),
        port=int(service_data.get("port", DEFAULT_SSTP_PORT)),
    )

    sup_data = data.get("supervisor") or {}
    supervisor = SupervisorSettings(
        restart_timeout_s=float(sup_data.get("restart_timeout_s", 300.0)),
        startup_timeout_s=float(sup_data.get("startup_timeout_s", 60.0)),
        port_check_timeout_s=float(sup_data.get("port_check_timeout_s", 60.0)),
        poll_interval_s=float(sup_data.get("poll_interval_s", 5.0)),
        max_attempts=int(sup_data.get("max_attempts", 3)),
    )

    cert_data = data.get("certificate") or {}
    certificate = CertificateSettings(
        thumbprint=cert_data.get("thumbprint", "") or "",
        subject=cert_data.get("subject", "") or "",
        pfx_path=cert_data.get("pfx_path", "") or "",
        force=bool(cert_data.get("force", False)),
    )

    host_data = data.get("host") or {}
    host = HostSettings(
        powershell_path=host_data.get("powershell_path", "powershell.exe"),
        command_timeout_s=float(host_data.get("command_timeout_s", 120.0)),
        shutdown_path=host_data.get("shutdown_path", "shutdown.exe"),
        dry_run_reboot=bool(host_data.get("dry_run_reboot", False)),
    )

    alert_data = data.get("alerts") or {}
    alerts = AlertSettings(
        webhook_url=os.environ.get("AOVPN_ALERT_WEBHOOK")
        or alert_data.get("webhook_url", "")
        or "",
        timeout_s=float(alert_data.get("timeout_s", 10.0)),
    )

    return AgentConfig(
        service=service,
        supervisor=supervisor,
        certificate=certificate,
        host=host,
        alerts=alerts,
    )


def load_config_file(config_path: str | Path | None = None) -> AgentConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Explicit path. When None, the default locations are
            searched and built-in defaults are used if none exists.

    Returns:
        Parsed AgentConfig

    Raises:
        ConfigError: Explicit path missing, unreadable, or not a mapping
    """
    if config_path is None:
        for candidate in default_config_paths():
            if candidate.exists():
                config_path = candidate
                break
        else:
            return load_agent_config({})

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Error reading {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    try:
        config = load_agent_config(data)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value in {path}: {e}") from e

    config.source_path = str(path)
    return config


def validate_agent_config(config: AgentConfig) -> tuple[bool, list[str]]:
    """
    Validate configuration.

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    errors: list[str] = []

    if not config.service.name:
        errors.append("Missing service.name")
    if not 1 <= config.service.port <= 65535:
        errors.append(f"service.port out of range: {config.service.port}")

    sup = config.supervisor
    if sup.max_attempts < 1:
        errors.append("supervisor.max_attempts must be at least 1")
    for name in ("restart_timeout_s", "startup_timeout_s", "port_check_timeout_s"):
        if getattr(sup, name) < 0:
            errors.append(f"supervisor.{name} must not be negative")
    if sup.poll_interval_s <= 0:
        errors.append("supervisor.poll_interval_s must be positive")

    if config.host.command_timeout_s <= 0:
        errors.append("host.command_timeout_s must be positive")

    url = config.alerts.webhook_url
    if url and not url.startswith(("http://", "https://")):
        errors.append(f"alerts.webhook_url must be http(s): {url}")

    return len(errors) == 0, errors


def config_to_dict(config: AgentConfig) -> dict[str, Any]:
    """Flatten config for display (status command, dry runs)"""
    return {
        "source": config.source_path or "defaults",
        "service": {"name": config.service.name, "port": config.service.port},
        "supervisor": {
            "restart_timeout_s": config.supervisor.restart_timeout_s,
            "startup_timeout_s": config.supervisor.startup_timeout_s,
            "port_check_timeout_s": config.supervisor.port_check_timeout_s,
            "poll_interval_s": config.supervisor.poll_interval_s,
            "max_attempts": config.supervisor.max_attempts,
        },
        "alerts_enabled": bool(config.alerts.webhook_url),
    }
