"""TCP readiness probe: ready when a connection can be opened."""

from __future__ import annotations

import asyncio

from stagegate.kernel.exceptions import ValidationError


class TcpProbe:
    """Ready when ``host:port`` accepts a TCP connection."""

    def __init__(self, host: str, port: int) -> None:
        if not 0 < int(port) < 65536:
            raise ValidationError("port", "must be between 1 and 65535", port)
        self.host = host
        self.port = int(port)

    @classmethod
    def from_address(cls, address: str) -> TcpProbe:
        """Build from ``"host:port"``.

        Examples
        --------
        >>> TcpProbe.from_address("localhost:5432").port
        5432
        """
        host, sep, port = address.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValidationError("tcp", "expected 'host:port'", address)
        return cls(host, int(port))

    async def __call__(self) -> bool:
        try:
            _, writer = await asyncio.open_connection(self.host, self.port)
        except OSError:
            return False
        writer.close()
        await writer.wait_closed()
        return True

    def __repr__(self) -> str:
        return f"TcpProbe({self.host}:{self.port})"
