"""
aovpn Services

1. Host - PowerShell, service control, port probe, reboot
2. Certificate - SSTP certificate rotation
3. Notify - Escalation alerts
"""
