"""Host reachability probing."""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from ipaddress import IPv4Address
from typing import Protocol

logger = logging.getLogger(__name__)


class LivenessProbe(Protocol):
    async def check(self, address: IPv4Address) -> bool:
        ...


def _ping_once(ip: str, wait: float) -> bool:
    """Send a single ICMP echo with the system ping binary."""
    if sys.platform == "win32":
        cmd = ["ping", "-n", "1", "-w", str(int(wait * 1000)), ip]
    else:
        cmd = ["ping", "-c", "1", "-W", str(max(1, round(wait))), ip]
    result = subprocess.run(cmd, capture_output=True, text=True, timeout=wait + 2)
    return result.returncode == 0


class PingProbe:
    """Reports whether an address answers one ping.

    A missing ``ping`` binary or a hung process raises; the query layer turns
    that into ``"unknown"`` rather than "unreachable".
    """

    def __init__(self, wait: float = 1.0) -> None:
        self._wait = wait

    async def check(self, address: IPv4Address) -> bool:
        alive = await asyncio.to_thread(_ping_once, str(address), self._wait)
        logger.debug("Ping %s: %s", address, "up" if alive else "down")
        return alive
