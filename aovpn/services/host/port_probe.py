"""
TCP Listener Probe

Checks whether any local process holds a listening socket on a port.
"""

import asyncio

import psutil

from aovpn.common.exceptions import PortProbeError


class PortProbe:
    """Detects listening TCP sockets with psutil"""

    def __init__(self, kind: str = "tcp"):
        # "tcp" covers IPv4 and IPv6
        self.kind = kind

    def is_listening_sync(self, port: int) -> bool:
        try:
            connections = psutil.net_connections(kind=self.kind)
        except psutil.Error as e:
            raise PortProbeError(f"Cannot enumerate sockets: {e}", port=port) from e

        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            if conn.laddr.port == port:
                return True
        return False

    async def is_listening(self, port: int) -> bool:
        """Return True if a TCP listener is bound to the local port"""
        return await asyncio.to_thread(self.is_listening_sync, port)
