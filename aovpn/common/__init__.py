"""
Common Utilities

Shared modules used across all services:
- state.py - File-based state persisted between runs
- config.py - Configuration dataclasses
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
"""

from .state import SharedState
from .config import (
    AgentConfig,
    ServiceSettings,
    SupervisorSettings,
    CertificateSettings,
    HostSettings,
    AlertSettings,
    load_agent_config,
    load_config_file,
    validate_agent_config,
)
from .exceptions import (
    AovpnError,
    ConfigError,
    HostError,
    PowerShellError,
    ServiceControlError,
    PortProbeError,
    RebootError,
    CertificateError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    log_restart_attempt,
)

__all__ = [
    # State
    "SharedState",
    # Config
    "AgentConfig",
    "ServiceSettings",
    "SupervisorSettings",
    "CertificateSettings",
    "HostSettings",
    "AlertSettings",
    "load_agent_config",
    "load_config_file",
    "validate_agent_config",
    # Exceptions
    "AovpnError",
    "ConfigError",
    "HostError",
    "PowerShellError",
    "ServiceControlError",
    "PortProbeError",
    "RebootError",
    "CertificateError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "log_restart_attempt",
]
