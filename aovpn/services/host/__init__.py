"""
Host Capabilities

Narrow wrappers over operating system management interfaces:
- PowerShell runner
- Windows service restart/status
- TCP listener probe
- Forced reboot
"""

from .powershell import PowerShellRunner, quote
from .windows_service import ServiceStatus, WindowsServiceController
from .port_probe import PortProbe
from .reboot_handler import RebootHandler

__all__ = [
    "PowerShellRunner",
    "quote",
    "ServiceStatus",
    "WindowsServiceController",
    "PortProbe",
    "RebootHandler",
]
