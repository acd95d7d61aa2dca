"""Small TTL cache in front of the event loop's resolver."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
import time
from typing import Optional

logger = logging.getLogger(__name__)

__all__ = ["CachedResolver", "is_ip_address"]


def is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


class CachedResolver:
    """Resolve hostnames once and reuse the answer for ``ttl`` seconds.

    Failed lookups are cached for ``error_ttl`` seconds so a burst of retries
    against an unknown host does not hammer the system resolver.

    Example:
        >>> resolver = CachedResolver(ttl=60)
        >>> # address = await resolver.lookup("example.com")
    """

    def __init__(
        self,
        ttl: float = 300.0,
        error_ttl: float = 0.15,
        family: int = socket.AF_UNSPEC,
    ) -> None:
        self.ttl = ttl
        self.error_ttl = error_ttl
        self.family = family
        self._entries: dict[str, tuple[float, str]] = {}
        self._errors: dict[str, tuple[float, OSError]] = {}
        self._pending: dict[str, asyncio.Future[str]] = {}

    async def lookup(self, hostname: str) -> str:
        """Return one address for ``hostname``.

        Raises:
            socket.gaierror: When the hostname cannot be resolved.
        """
        now = time.monotonic()
        entry = self._entries.get(hostname)
        if entry is not None and entry[0] > now:
            return entry[1]
        failure = self._errors.get(hostname)
        if failure is not None and failure[0] > now:
            raise failure[1]

        pending = self._pending.get(hostname)
        if pending is not None:
            return await asyncio.shield(pending)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()
        self._pending[hostname] = future
        try:
            infos = await loop.getaddrinfo(hostname, None, family=self.family, type=socket.SOCK_STREAM)
            address = str(infos[0][4][0])
        except OSError as exc:
            self._errors[hostname] = (time.monotonic() + self.error_ttl, exc)
            future.set_exception(exc)
            future.exception()
            raise
        else:
            self._entries[hostname] = (time.monotonic() + self.ttl, address)
            future.set_result(address)
            logger.debug("Resolved host", extra={"host": hostname, "address": address})
            return address
        finally:
            self._pending.pop(hostname, None)

    def clear(self, hostname: Optional[str] = None) -> None:
        if hostname is None:
            self._entries.clear()
            self._errors.clear()
        else:
            self._entries.pop(hostname, None)
            self._errors.pop(hostname, None)
