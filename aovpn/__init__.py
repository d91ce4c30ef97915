"""
aovpn - Always On VPN / RRAS administration tools

- supervisor.py - Supervised service restart with retry and reboot escalation
- services/host - PowerShell bridge, service control, port probe, reboot
- services/certificate - SSTP certificate rotation
- services/notify - Escalation alerts
"""

__version__ = "1.0.0"
