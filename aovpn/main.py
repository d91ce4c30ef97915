#!/usr/bin/env python3
"""
aovpn - RRAS administration entry point

Usage:
    aovpn restart                         # Supervised RemoteAccess restart
    aovpn rotate --thumbprint <T>         # Bind certificate, supervised restart
    aovpn rotate --pfx cert.pfx           # Import PFX first (AOVPN_PFX_PASSWORD)
    aovpn status                          # Service, listener and binding state
    aovpn --config my.yaml -v restart     # Custom config, debug logging

Exit codes: 0 success, 1 error, 2 escalated to host reboot.
"""

import argparse
import asyncio
import json
import os
import sys
from typing import Any

from aovpn import __version__
from aovpn.common.config import (
    AgentConfig,
    config_to_dict,
    load_config_file,
    validate_agent_config,
)
from aovpn.common.exceptions import AovpnError
from aovpn.common.logging_setup import get_service_logger, reconfigure_loggers
from aovpn.common.state import get_last_supervision, set_last_supervision
from aovpn.services.certificate.sstp_certificate import (
    PFX_PASSWORD_ENV,
    RotationOutcome,
    SstpCertificateRotator,
)
from aovpn.services.host.port_probe import PortProbe
from aovpn.services.host.powershell import PowerShellRunner
from aovpn.services.host.reboot_handler import RebootHandler
from aovpn.services.host.windows_service import (
    RESTART_KILL_GRACE_S,
    WindowsServiceController,
)
from aovpn.services.notify.alert_notifier import AlertNotifier
from aovpn.supervisor import ServiceRestartSupervisor, SupervisionResult

logger = get_service_logger("main")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_ESCALATED = 2


class Components:
    """Host capabilities wired from configuration"""

    def __init__(self, config: AgentConfig):
        self.runner = PowerShellRunner(
            executable=config.host.powershell_path,
            timeout_s=config.host.command_timeout_s,
        )
        self.service_controller = WindowsServiceController(
            self.runner,
            restart_timeout_s=config.supervisor.restart_timeout_s + RESTART_KILL_GRACE_S,
        )
        self.port_probe = PortProbe()
        self.reboot_handler = RebootHandler(
            shutdown_path=config.host.shutdown_path,
            dry_run=config.host.dry_run_reboot,
        )
        self.notifier = AlertNotifier(
            webhook_url=config.alerts.webhook_url,
            timeout_s=config.alerts.timeout_s,
        )
        self.supervisor = ServiceRestartSupervisor(
            service_control=self.service_controller,
            port_probe=self.port_probe,
            rebooter=self.reboot_handler,
            poll_interval_s=config.supervisor.poll_interval_s,
            on_escalation=self.notifier.on_escalation if self.notifier.enabled else None,
        )
        self.rotator = SstpCertificateRotator(
            runner=self.runner,
            supervisor=self.supervisor,
            service=config.service,
            settings=config.supervisor,
        )


def _record(result: SupervisionResult) -> None:
    try:
        set_last_supervision(result.to_dict())
    except OSError as e:
        logger.warning(f"Could not record supervision result: {e}")


async def run_restart(config: AgentConfig, components: Components) -> SupervisionResult:
    """Supervised restart of the configured service"""
    components.reboot_handler.check_post_reboot()

    result = await components.supervisor.supervise(
        config.service.name,
        config.service.port,
        restart_timeout_s=config.supervisor.restart_timeout_s,
        startup_timeout_s=config.supervisor.startup_timeout_s,
        port_check_timeout_s=config.supervisor.port_check_timeout_s,
        max_attempts=config.supervisor.max_attempts,
    )
    _record(result)
    return result


async def run_rotate(
    config: AgentConfig,
    components: Components,
    pfx_password: str | None = None,
):
    """Rotate the SSTP certificate"""
    components.reboot_handler.check_post_reboot()

    cert = config.certificate
    result = await components.rotator.rotate(
        thumbprint=cert.thumbprint or None,
        subject=cert.subject or None,
        pfx_path=cert.pfx_path or None,
        pfx_password=pfx_password,
        force=cert.force,
    )
    if result.supervision:
        _record(result.supervision)
    return result


async def run_status(config: AgentConfig, components: Components) -> dict[str, Any]:
    """Collect current state; individual failures are reported, not raised"""
    status: dict[str, Any] = {"config": config_to_dict(config)}

    try:
        service_status = await components.service_controller.get_status(config.service.name)
        status["service_status"] = service_status.value
    except AovpnError as e:
        status["service_status"] = f"error: {e.message}"

    try:
        status["port_listening"] = await components.port_probe.is_listening(
            config.service.port
        )
    except AovpnError as e:
        status["port_listening"] = f"error: {e.message}"

    try:
        status["sstp_thumbprint"] = await components.rotator.get_current_thumbprint()
    except AovpnError as e:
        status["sstp_thumbprint"] = f"error: {e.message}"

    status["last_supervision"] = get_last_supervision() or None
    return status


def apply_overrides(config: AgentConfig, args: argparse.Namespace) -> AgentConfig:
    """Command-line flags take precedence over the config file"""
    if getattr(args, "service_name", None):
        config.service.name = args.service_name
    if getattr(args, "port", None) is not None:
        config.service.port = args.port
    if getattr(args, "restart_timeout", None) is not None:
        config.supervisor.restart_timeout_s = args.restart_timeout
    if getattr(args, "startup_timeout", None) is not None:
        config.supervisor.startup_timeout_s = args.startup_timeout
    if getattr(args, "port_check_timeout", None) is not None:
        config.supervisor.port_check_timeout_s = args.port_check_timeout
    if getattr(args, "max_attempts", None) is not None:
        config.supervisor.max_attempts = args.max_attempts
    if getattr(args, "no_reboot", False):
        config.host.dry_run_reboot = True

    if args.command == "rotate":
        if args.thumbprint or args.subject or args.pfx:
            config.certificate.thumbprint = args.thumbprint or ""
            config.certificate.subject = args.subject or ""
            config.certificate.pfx_path = args.pfx or ""
        if args.force:
            config.certificate.force = True

    return config


def _add_supervision_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--service-name", help="Service to restart (default: RemoteAccess)")
    parser.add_argument("--port", type=int, help="TCP port the service listens on (default: 443)")
    parser.add_argument("--restart-timeout", type=float, help="Seconds allowed for the restart command")
    parser.add_argument("--startup-timeout", type=float, help="Seconds to wait for Running")
    parser.add_argument("--port-check-timeout", type=float, help="Seconds to wait for the listener")
    parser.add_argument("--max-attempts", type=int, help="Restart attempts before reboot")
    parser.add_argument(
        "--no-reboot",
        action="store_true",
        help="Record the escalation but do not reboot the host",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aovpn",
        description="Always On VPN / RRAS administration tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    aovpn restart                          # Supervised RemoteAccess restart
    aovpn restart --max-attempts 1         # Reboot after the first failure
    aovpn rotate --subject vpn.example.com # Newest matching certificate
    aovpn --json status                    # Machine-readable status
        """,
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to configuration file (default: %%ProgramData%%\\aovpn\\config.yaml)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--version", action="version", version=f"aovpn {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    restart = subparsers.add_parser("restart", help="Supervised service restart")
    _add_supervision_args(restart)

    rotate = subparsers.add_parser("rotate", help="Rotate the SSTP certificate")
    source = rotate.add_mutually_exclusive_group()
    source.add_argument("--thumbprint", help="Certificate thumbprint in LocalMachine\\My")
    source.add_argument("--subject", help="Use the newest certificate whose subject contains this")
    source.add_argument("--pfx", help=f"PFX file to import (password from {PFX_PASSWORD_ENV})")
    rotate.add_argument("--force", action="store_true", help="Rebind even if already bound")
    _add_supervision_args(rotate)

    subparsers.add_parser("status", help="Show service, listener and binding state")

    return parser


def _print_result(payload: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2, default=str))
        return

    print()
    print("=" * 60)
    for key, value in payload.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        print(f"  {key}: {value}")
    print("=" * 60)
    print()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        reconfigure_loggers("DEBUG", json_format=False)

    try:
        config = apply_overrides(load_config_file(args.config), args)
    except AovpnError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_ERROR

    is_valid, errors = validate_agent_config(config)
    if not is_valid:
        print("Configuration errors:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return EXIT_ERROR

    components = Components(config)

    try:
        if args.command == "restart":
            result = asyncio.run(run_restart(config, components))
            _print_result(result.to_dict(), args.json)
            return EXIT_OK if result.succeeded else EXIT_ESCALATED

        if args.command == "rotate":
            password = os.environ.get(PFX_PASSWORD_ENV)
            rotation = asyncio.run(run_rotate(config, components, password))
            _print_result(rotation.to_dict(), args.json)
            if rotation.outcome == RotationOutcome.ESCALATED_REBOOT:
                return EXIT_ESCALATED
            return EXIT_OK

        status = asyncio.run(run_status(config, components))
        _print_result(status, args.json)
        return EXIT_OK

    except AovpnError as e:
        logger.error(f"{args.command} failed: {e.message}")
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\nStopped by user")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
