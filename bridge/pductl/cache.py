# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""TTL cache in front of any PDU.

Summary and detailed snapshots live in separate slots with separate
clocks: a detailed caller must never be served a summary snapshot that
lacks outlets, and a summary caller should not force an Ostatus round
trip. Callers always get copies, never the stored snapshot.

When credentials are given and the wrapped PDU can log in, every call
that reaches the device runs inside its own login bracket; a cache hit
never touches the session.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from .pdu_model import Status
from .transport import PDU, find_login

logger = logging.getLogger(__name__)

DEFAULT_TTL = 60.0


class CachedPDU:
    """Memoizes status() for ttl seconds; every other call passes through.

    A ttl of None or <= 0 disables caching. Outlet mutations drop both
    slots so the next status() reflects the change.
    """

    def __init__(self, pdu: PDU, ttl: float | None = DEFAULT_TTL,
                 clock: Callable[[], float] = time.monotonic,
                 username: str = "", password: str = ""):
        self.pdu = pdu
        self.ttl = ttl
        self._clock = clock
        self._username = username
        self._password = password
        self._login = find_login(pdu) if username else None
        self._lock = asyncio.Lock()
        self._summary: Status | None = None
        self._summary_at: float | None = None
        self._detailed: Status | None = None
        self._detailed_at: float | None = None

    def _fresh(self, fetched_at: float | None) -> bool:
        if not self.ttl or self.ttl <= 0 or fetched_at is None:
            return False
        return self._clock() < fetched_at + self.ttl

    async def _call(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run one device call, inside a login bracket when configured."""
        if self._login is None:
            return await fn()
        return await self._login.with_login(self._username, self._password, fn)

    def invalidate(self) -> None:
        self._summary_at = None
        self._detailed_at = None

    async def status(self, detailed: bool = False) -> Status:
        async with self._lock:
            if detailed:
                if not self._fresh(self._detailed_at):
                    self._detailed = await self._call(lambda: self.pdu.status(True))
                    self._detailed_at = self._clock()
                    logger.debug("Cache: refreshed detailed status")
                sts = self._detailed
            else:
                if not self._fresh(self._summary_at):
                    self._summary = await self._call(lambda: self.pdu.status(False))
                    self._summary_at = self._clock()
                    logger.debug("Cache: refreshed summary status")
                sts = self._summary
            return sts.copy(detailed)

    async def switch_outlet(self, outlet_id: str, state: bool) -> None:
        await self._call(lambda: self.pdu.switch_outlet(outlet_id, state))
        self.invalidate()

    async def lock_outlet(self, outlet_id: str, state: bool) -> None:
        await self._call(lambda: self.pdu.lock_outlet(outlet_id, state))
        self.invalidate()

    async def reboot_outlet(self, outlet_id: str) -> None:
        await self._call(lambda: self.pdu.reboot_outlet(outlet_id))
        self.invalidate()

    async def clear_maximum_currents(self) -> None:
        await self._call(self.pdu.clear_maximum_currents)
        self.invalidate()

    async def temperature(self) -> float:
        return await self._call(self.pdu.temperature)

    async def whoami(self) -> str:
        return await self._call(self.pdu.whoami)

    async def close(self) -> None:
        await self.pdu.close()
