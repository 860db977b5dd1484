# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Abstract protocols for PDU communication.

ByteStream is the duplex byte pipe under a console session (TCP socket,
serial port or the simulated console). PDU is the capability surface the
driver, the cache and the poller all implement, so they can be stacked in
any order. LoginPDU is an optional extra capability, queried structurally
with find_login() rather than assumed.
"""

from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from .pdu_model import Status


@runtime_checkable
class ByteStream(Protocol):
    """Duplex byte stream with a per-read timeout.

    Implementations: TCPStream, SerialStream, MockConsole.
    """

    async def read(self, size: int, timeout: float) -> bytes:
        """Read up to size bytes; return b"" if nothing arrived within timeout."""
        ...

    async def write(self, data: bytes) -> None:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class PDU(Protocol):
    """Capability surface of a PDU.

    Implementations: BaytechPDU, CachedPDU, PolledPDU.
    """

    async def close(self) -> None:
        ...

    async def switch_outlet(self, outlet_id: str, state: bool) -> None:
        ...

    async def lock_outlet(self, outlet_id: str, state: bool) -> None:
        ...

    async def reboot_outlet(self, outlet_id: str) -> None:
        ...

    async def status(self, detailed: bool = False) -> Status:
        ...

    async def clear_maximum_currents(self) -> None:
        ...

    async def temperature(self) -> float:
        """Internal temperature in degrees Celsius."""
        ...

    async def whoami(self) -> str:
        ...


@runtime_checkable
class LoginPDU(Protocol):
    """Optional authentication capability."""

    async def login(self, username: str, password: str) -> None:
        ...

    async def logout(self) -> None:
        ...

    async def with_login(self, username: str, password: str,
                         body: Callable[[], Awaitable[Any]]) -> Any:
        """Run body() authenticated as username, then log out."""
        ...


def find_login(pdu: Any) -> LoginPDU | None:
    """Return the first layer of a wrapper chain offering LoginPDU.

    Wrappers expose the PDU they wrap as ``.pdu``.
    """
    seen = set()
    layer = pdu
    while layer is not None and id(layer) not in seen:
        if isinstance(layer, LoginPDU):
            return layer
        seen.add(id(layer))
        layer = getattr(layer, "pdu", None)
    return None
