# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Byte streams carrying the MMP-14 console.

The console is reachable either through a terminal server (raw TCP) or a
local RS-232 port. Both are wrapped behind the same small ByteStream
interface so ConsoleClient never knows which one it talks to.

Address forms accepted by open_stream():
    tcp://host:port        raw TCP (terminal server, ser2net, ...)
    serial:/dev/ttyUSB0    local serial port (also serial:///dev/ttyUSB0)
    /dev/ttyUSB0, COM3     bare device path, treated as serial
    mock://                in-process simulated console
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import urlsplit

import serial

from .mock_pdu import MockConsole
from .transport import ByteStream

logger = logging.getLogger(__name__)

DEFAULT_BAUD = 9600
CONNECT_TIMEOUT = 10.0


class TCPStream:
    """ByteStream over an asyncio TCP connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 host: str = "", port: int = 0):
        self._reader = reader
        self._writer = writer
        self._host = host
        self._port = port

    def __repr__(self) -> str:
        return f"TCPStream({self._host}:{self._port})"

    @classmethod
    async def connect(cls, host: str, port: int,
                      timeout: float = CONNECT_TIMEOUT) -> "TCPStream":
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout,
        )
        logger.info("TCP: connected to %s:%d", host, port)
        return cls(reader, writer, host, port)

    async def read(self, size: int, timeout: float) -> bytes:
        try:
            data = await asyncio.wait_for(self._reader.read(size), timeout)
        except asyncio.TimeoutError:
            return b""
        if not data:
            # b"" means idle to callers, so EOF has to be an error
            raise ConnectionResetError(f"{self!r}: connection closed by peer")
        return data

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            logger.debug("Error closing %r", self, exc_info=True)
        logger.info("TCP: closed %s:%d", self._host, self._port)


class SerialStream:
    """ByteStream over a local serial port.

    Uses pyserial (synchronous) run in an executor for async compatibility.
    The MMP-14 console runs at 9600 8N1 by default.
    """

    def __init__(self, port: str, baud: int = DEFAULT_BAUD, bytesize: int = 8,
                 parity: str = "N", stopbits: float = 1):
        self._port = port
        self._baud = baud
        self._bytesize = bytesize
        self._parity = parity
        self._stopbits = stopbits
        self._serial: Optional[serial.Serial] = None

    def __repr__(self) -> str:
        return f"SerialStream({self._port}@{self._baud})"

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    async def open(self) -> None:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._open_sync)

    def _open_sync(self) -> None:
        self._serial = serial.Serial(
            port=self._port,
            baudrate=self._baud,
            bytesize=self._bytesize,
            parity=self._parity,
            stopbits=self._stopbits,
            timeout=0.3,
        )
        logger.info("Serial: opened %s at %d baud", self._port, self._baud)

    def _require_open(self) -> serial.Serial:
        if not self.is_open:
            raise ConnectionError(f"Serial port {self._port} not open")
        return self._serial

    async def read(self, size: int, timeout: float) -> bytes:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._read_sync, size, timeout)

    def _read_sync(self, size: int, timeout: float) -> bytes:
        ser = self._require_open()
        if ser.timeout != timeout:
            ser.timeout = timeout
        # Block for the first byte only, then take whatever is already buffered
        data = ser.read(1)
        if data and size > 1:
            waiting = ser.in_waiting
            if waiting:
                data += ser.read(min(waiting, size - 1))
        return data

    async def write(self, data: bytes) -> None:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._write_sync, data)

    def _write_sync(self, data: bytes) -> None:
        ser = self._require_open()
        ser.write(data)
        ser.flush()

    async def close(self) -> None:
        if self._serial is not None and self._serial.is_open:
            self._serial.close()
            logger.info("Serial: closed %s", self._port)
        self._serial = None


async def open_stream(address: str, baud: int = DEFAULT_BAUD) -> ByteStream:
    """Open the byte stream named by address (see module docstring)."""
    parts = urlsplit(address)
    scheme = parts.scheme.lower()

    if scheme == "tcp":
        if not parts.hostname or parts.port is None:
            raise ValueError(f"TCP address needs host and port: {address}")
        return await TCPStream.connect(parts.hostname, parts.port)

    if scheme == "mock":
        logger.info("Using simulated MMP-14 console")
        return MockConsole()

    if scheme == "serial" or (not scheme and parts.path):
        path = parts.path if scheme else address
        if not path:
            raise ValueError(f"serial address needs a device path: {address}")
        stream = SerialStream(path, baud=baud)
        await stream.open()
        return stream

    raise ValueError(f"unsupported PDU address: {address}")
