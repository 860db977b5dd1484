# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Console session client for the Baytech MMP-14.

Drives the interactive terminal over any ByteStream: sends command lines,
accumulates output until the ready prompt comes back, detects the login
screen, and runs the username/password handshake. Commands are serialized
with an asyncio.Lock since the console is single-threaded, and a second
lock holds a whole login -> operate -> logout bracket so two users never
interleave on the one session.

Exchange rules (MMP-14 firmware):
  - every exchange starts with a blank line to provoke a prompt
  - the ready prompt before our command means "send it now"
  - the ready prompt after our command ends the output
  - a username/password prompt means the session is logged out
  - "Logout" is followed by no prompt at all
"""

import asyncio
import codecs
import contextlib
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable

from .console_parser import (
    DEFAULT_GRAMMAR,
    DEFAULT_PROMPTS,
    ConsolePrompts,
    StatusGrammar,
    parse_whoami,
)
from .errors import CommandTimeout, InvalidPassword, LoginRequired
from .streams import DEFAULT_BAUD, open_stream
from .transport import ByteStream

logger = logging.getLogger(__name__)

LOGOUT = "Logout"
WHOAMI = "Whoami"

READ_SIZE = 2048

# step(chunk) -> (done, result); may write to the stream
Step = Callable[[str], Awaitable[tuple[bool, str]]]


class ConsoleClient:
    """Session manager for one MMP-14 console.

    Tracks command health so the web layer can report it.
    """

    def __init__(
        self,
        stream: ByteStream,
        prompts: ConsolePrompts = DEFAULT_PROMPTS,
        grammar: StatusGrammar = DEFAULT_GRAMMAR,
        read_timeout: float = 0.3,
        command_timeout: float | None = None,
        logout_grace: float = 0.5,
        close_timeout: float = 5.0,
        address: str = "",
    ):
        self._stream = stream
        self._prompts = prompts
        self._grammar = grammar
        self._read_timeout = read_timeout
        self._command_timeout = command_timeout
        self._logout_grace = logout_grace
        self._close_timeout = close_timeout
        self._address = address or repr(stream)

        self._lock = asyncio.Lock()
        self._login_lock = asyncio.Lock()
        self._user: str | None = None

        # Health tracking
        self._total_commands = 0
        self._failed_commands = 0
        self._consecutive_failures = 0
        self._last_success_time: float | None = None
        self._last_error_time: float | None = None
        self._last_error_msg: str | None = None
        self._last_command_duration: float | None = None

    @classmethod
    async def open(cls, address: str, baud: int = DEFAULT_BAUD,
                   **kwargs: Any) -> "ConsoleClient":
        """Open the stream named by address and wrap it in a client."""
        stream = await open_stream(address, baud=baud)
        logger.info("Console: connected to %s", address)
        return cls(stream, address=address, **kwargs)

    @property
    def address(self) -> str:
        return self._address

    @property
    def grammar(self) -> StatusGrammar:
        return self._grammar

    @property
    def user(self) -> str | None:
        """User of the last successful login, None after logout."""
        return self._user

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def get_health(self) -> dict:
        """Return console session health metrics."""
        return {
            "address": self._address,
            "user": self._user,
            "total_commands": self._total_commands,
            "failed_commands": self._failed_commands,
            "consecutive_failures": self._consecutive_failures,
            "last_success": self._last_success_time,
            "last_error": self._last_error_time,
            "last_error_msg": self._last_error_msg,
            "last_command_duration_ms": (
                round(self._last_command_duration * 1000, 1)
                if self._last_command_duration is not None else None
            ),
            "reachable": self._consecutive_failures < 10,
        }

    def reset_health(self) -> None:
        """Zero out failure counters after recovery."""
        self._consecutive_failures = 0
        self._failed_commands = 0
        self._last_error_msg = None
        self._last_error_time = None

    def _record_success(self):
        self._consecutive_failures = 0
        self._last_success_time = time.time()

    def _record_failure(self, msg: str):
        self._failed_commands += 1
        self._consecutive_failures += 1
        self._last_error_time = time.time()
        self._last_error_msg = msg
        if self._consecutive_failures == 1:
            logger.warning("Console: %s", msg)
        elif self._consecutive_failures <= 5:
            logger.error("Console: %s (failure %d)", msg, self._consecutive_failures)
        elif self._consecutive_failures % 30 == 0:
            logger.error(
                "Console: unreachable for %d consecutive failures: %s",
                self._consecutive_failures, msg,
            )

    # -- Exchange engine --------------------------------------------------

    async def _send(self, line: str) -> None:
        await self._stream.write(f"{line}\r\n".encode())

    async def _exchange(self, step: Step) -> str:
        # A multi-byte character may straddle two reads
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        await self._send("")
        while True:
            chunk = await self._stream.read(READ_SIZE, self._read_timeout)
            if not chunk:
                # Idle gap; the console may be slow to answer
                continue
            text = decoder.decode(chunk)
            if not text:
                continue
            done, result = await step(text)
            if done:
                return result

    async def _communicate(self, label: str, step: Step) -> str:
        """Run one exchange while holding the command lock."""
        async with self._lock:
            self._total_commands += 1
            start = time.monotonic()
            try:
                if self._command_timeout:
                    try:
                        result = await asyncio.wait_for(
                            self._exchange(step), self._command_timeout,
                        )
                    except asyncio.TimeoutError:
                        raise CommandTimeout(label, self._command_timeout) from None
                else:
                    result = await self._exchange(step)
            except LoginRequired:
                # Expected whenever the session is logged out
                self._last_command_duration = time.monotonic() - start
                raise
            except Exception as e:
                self._last_command_duration = time.monotonic() - start
                self._record_failure(f"{label}: {e}")
                raise
            self._last_command_duration = time.monotonic() - start
            self._record_success()
            return result

    async def execute(self, command: str) -> str:
        """Send one console command and return its output text.

        The echo and the trailing prompt are stripped. Raises LoginRequired
        if the console is at the login screen.
        """
        prompts = self._prompts
        buf = ""
        sent = False

        async def step(chunk: str) -> tuple[bool, str]:
            nonlocal buf, sent
            buf += chunk

            if sent and command == LOGOUT:
                if buf.strip() == LOGOUT or buf.endswith(prompts.username):
                    await asyncio.sleep(self._logout_grace)
                    return True, ""
                return False, ""

            if buf.endswith(prompts.ready):
                if not sent:
                    await self._send(command)
                    sent = True
                    buf = ""
                    return False, ""
                out = buf[:-len(prompts.ready)].lstrip()
                if out.startswith(command):
                    out = out[len(command):]
                return True, out.strip()

            if buf.endswith(prompts.username) or buf.endswith(prompts.password):
                raise LoginRequired()
            return False, ""

        start = time.monotonic()
        try:
            result = await self._communicate(command, step)
        except Exception as e:
            logger.debug("Console: %r failed after %.3fs: %s",
                         command, time.monotonic() - start, e)
            raise
        logger.debug("Console: executed %r in %.3fs (%d chars)",
                     command, time.monotonic() - start, len(result))
        return result

    # -- Session ----------------------------------------------------------

    async def whoami(self) -> str:
        return parse_whoami(await self.execute(WHOAMI), self._grammar)

    async def logout(self) -> None:
        await self.execute(LOGOUT)
        self._user = None

    async def login(self, username: str, password: str) -> None:
        """Log in as username, switching users if someone else is logged in."""
        async with self._login_lock:
            await self._login(username, password)

    async def _login(self, username: str, password: str) -> None:
        try:
            current = await self.whoami()
        except LoginRequired:
            current = None

        if current == username:
            logger.debug("Console: already logged in as %s", username)
            self._user = current
            return
        if current is not None:
            logger.info("Console: logged in as %s, logging out first", current)
            await self.logout()

        prompts = self._prompts
        buf = ""
        sent_user = False
        sent_pass = False

        async def step(chunk: str) -> tuple[bool, str]:
            nonlocal buf, sent_user, sent_pass
            buf += chunk
            if sent_user and sent_pass and prompts.invalid in buf:
                raise InvalidPassword()
            if buf.endswith(prompts.ready):
                return True, ""
            if buf.endswith(prompts.username):
                await self._send(username)
                sent_user = True
                buf = ""
            elif buf.endswith(prompts.password):
                await self._send(password)
                sent_pass = True
                buf = ""
            return False, ""

        logger.debug("Console: logging in as %s", username)
        await self._communicate("login", step)

        current = await self.whoami()
        if current != username:
            logger.warning("Console: logged in as %s but console reports %s",
                           username, current)
        self._user = current
        logger.info("Console: logged in as %s", current)

    @contextlib.asynccontextmanager
    async def authenticated(self, username: str, password: str) -> AsyncIterator["ConsoleClient"]:
        """Hold the session as username for the duration of the block.

        Logout always runs afterwards. A logout failure after a failed body
        is logged so the body's error is the one raised.
        """
        async with self._login_lock:
            await self._login(username, password)
            try:
                yield self
            except Exception:
                try:
                    await self.logout()
                except Exception:
                    logger.warning("Console: logout after failed operation also failed",
                                   exc_info=True)
                raise
            await self.logout()

    async def with_login(self, username: str, password: str,
                         body: Callable[[], Awaitable[Any]]) -> Any:
        async with self.authenticated(username, password):
            return await body()

    async def close(self) -> None:
        """Log out (best effort, bounded) and close the stream.

        The stream is always closed; a logout failure is re-raised after.
        """
        logout_error: BaseException | None = None
        try:
            await asyncio.wait_for(self.logout(), self._close_timeout)
        except LoginRequired:
            pass  # already at the login screen
        except Exception as e:
            logout_error = e
        finally:
            await self._stream.close()
            logger.info("Console: closed %s", self._address)
        if logout_error is not None:
            raise logout_error
