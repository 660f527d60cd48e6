"""
Connection settings for the Valkey instance shared by the booking cache,
the route search cache and the booking leases.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ValkeyConfig:
    """Where the Valkey server lives and how large the connection pool may grow."""

    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    database: int = 0
    max_connections: int = 10
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "ValkeyConfig":
        """Build from the ``VALKEY_*`` environment variables."""
        return cls(
            host=os.getenv("VALKEY_HOST", "localhost"),
            port=int(os.getenv("VALKEY_PORT", "6379")),
            password=os.getenv("VALKEY_PASSWORD") or None,
            database=int(os.getenv("VALKEY_DATABASE", "0")),
            max_connections=int(os.getenv("VALKEY_MAX_CONNECTIONS", "10")),
            socket_timeout=float(os.getenv("VALKEY_SOCKET_TIMEOUT", "5")),
            socket_connect_timeout=float(os.getenv("VALKEY_SOCKET_CONNECT_TIMEOUT", "5")),
        )

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}/{self.database}"

    def pool_kwargs(self) -> Dict[str, Any]:
        """
        Arguments for ``valkey.ConnectionPool``.

        Responses are always decoded: lease tokens are compared as ``str``
        and cached aggregates are JSON text.
        """
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "db": self.database,
            "max_connections": self.max_connections,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_connect_timeout,
            "decode_responses": True,
        }
        if self.password:
            kwargs["password"] = self.password
        return kwargs

    def __str__(self) -> str:
        password_display = "***" if self.password else "None"
        return (
            f"ValkeyConfig({self.address}, password={password_display}, "
            f"max_connections={self.max_connections})"
        )


class ValkeyConnectionError(Exception):
    """The Valkey server could not be reached."""
