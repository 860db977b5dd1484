# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Baytech MMP-14 driver: wraps ConsoleClient + parsers into the PDU surface.

Maps each PDU operation to console commands:
  status()                 -> Status (+ Ostatus when detailed)
  switch_outlet(id, s)     -> On <n> / Off <n>
  lock_outlet(id, s)       -> Lock <n> / Unlock <n>
  reboot_outlet(id)        -> Reboot <n>
  clear_maximum_currents() -> Clear
  temperature()            -> Temp
  whoami()                 -> Whoami

Outlet id "all" is sent as 0, which the console applies to every outlet.
"""

import logging
from typing import Any, AsyncContextManager, Awaitable, Callable

from .console_client import ConsoleClient
from .console_parser import (
    DEFAULT_GRAMMAR,
    DEFAULT_PROMPTS,
    ConsolePrompts,
    StatusGrammar,
    parse_ostatus,
    parse_status,
    parse_temperature,
)
from .pdu_model import DEFAULT_BANKING, OutletBanking, Status, parse_outlet_id
from .streams import DEFAULT_BAUD

logger = logging.getLogger(__name__)


class BaytechPDU:
    """PDU and LoginPDU implementation backed by the console CLI."""

    def __init__(self, console: ConsoleClient,
                 banking: OutletBanking = DEFAULT_BANKING):
        self._console = console
        self._grammar = console.grammar
        self._banking = banking

    @classmethod
    async def connect(
        cls,
        address: str,
        baud: int = DEFAULT_BAUD,
        prompts: ConsolePrompts = DEFAULT_PROMPTS,
        grammar: StatusGrammar = DEFAULT_GRAMMAR,
        banking: OutletBanking = DEFAULT_BANKING,
        read_timeout: float = 0.3,
        command_timeout: float | None = None,
    ) -> "BaytechPDU":
        """Open the console at address and return a driver for it."""
        console = await ConsoleClient.open(
            address,
            baud=baud,
            prompts=prompts,
            grammar=grammar,
            read_timeout=read_timeout,
            command_timeout=command_timeout,
        )
        return cls(console, banking=banking)

    @property
    def console(self) -> ConsoleClient:
        """Direct access to the underlying ConsoleClient."""
        return self._console

    @property
    def banking(self) -> OutletBanking:
        return self._banking

    def get_health(self) -> dict:
        health = self._console.get_health()
        health["transport"] = "console"
        return health

    def _outlet(self, outlet_id: str) -> int:
        return parse_outlet_id(outlet_id, self._banking.num_outlets)

    async def _outlet_command(self, verb: str, outlet_id: str) -> None:
        n = self._outlet(outlet_id)
        response = await self._console.execute(f"{verb} {n}")
        logger.info("Console: outlet %s %s", outlet_id, verb.lower())
        if response:
            logger.debug("Console: %s %d -> %s", verb, n, response)

    # -- PDU --------------------------------------------------------------

    async def switch_outlet(self, outlet_id: str, state: bool) -> None:
        await self._outlet_command("On" if state else "Off", outlet_id)

    async def lock_outlet(self, outlet_id: str, state: bool) -> None:
        await self._outlet_command("Lock" if state else "Unlock", outlet_id)

    async def reboot_outlet(self, outlet_id: str) -> None:
        await self._outlet_command("Reboot", outlet_id)

    async def status(self, detailed: bool = False) -> Status:
        """Fetch and parse 'Status' (and 'Ostatus' when detailed)."""
        text = await self._console.execute("Status")
        sts = parse_status(text, self._grammar, self._banking)
        if detailed:
            text = await self._console.execute("Ostatus")
            sts.outlets = parse_ostatus(text, self._grammar, self._banking)
        return sts

    async def clear_maximum_currents(self) -> None:
        await self._console.execute("Clear")
        logger.info("Console: maximum detected currents cleared")

    async def temperature(self) -> float:
        text = await self._console.execute("Temp")
        return parse_temperature(text, self._grammar)

    async def whoami(self) -> str:
        return await self._console.whoami()

    async def close(self) -> None:
        await self._console.close()

    # -- LoginPDU ---------------------------------------------------------

    async def login(self, username: str, password: str) -> None:
        await self._console.login(username, password)

    async def logout(self) -> None:
        await self._console.logout()

    async def with_login(self, username: str, password: str,
                         body: Callable[[], Awaitable[Any]]) -> Any:
        return await self._console.with_login(username, password, body)

    def authenticated(self, username: str, password: str) -> AsyncContextManager:
        return self._console.authenticated(username, password)
