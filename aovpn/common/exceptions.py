"""
Custom Exception Classes for aovpn

Hierarchical exception structure for error handling across services.
"""


class AovpnError(Exception):
    """Base exception for all aovpn errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(AovpnError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class HostError(AovpnError):
    """Operating system call failed"""

    def __init__(self, message: str, recoverable: bool = True):
        self.detail = message
        super().__init__(f"Host Error: {message}", recoverable)


class PowerShellError(HostError):
    """PowerShell command exited non-zero or timed out"""

    def __init__(
        self,
        message: str,
        command: str | None = None,
        returncode: int | None = None,
        stderr: str | None = None,
    ):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message, recoverable=True)


class ServiceControlError(HostError):
    """Service start/stop/query errors"""

    def __init__(self, message: str, service_name: str, recoverable: bool = True):
        self.service_name = service_name
        super().__init__(f"Service [{service_name}]: {message}", recoverable)


class PortProbeError(HostError):
    """Listening socket enumeration failed"""

    def __init__(self, message: str, port: int | None = None):
        self.port = port
        super().__init__(message, recoverable=True)


class RebootError(HostError):
    """Host reboot command failed"""

    def __init__(self, message: str):
        super().__init__(f"Reboot failed: {message}", recoverable=False)


class CertificateError(AovpnError):
    """Certificate lookup, import or binding errors"""

    def __init__(self, message: str, thumbprint: str | None = None):
        self.thumbprint = thumbprint
        super().__init__(f"Certificate Error: {message}", recoverable=False)
