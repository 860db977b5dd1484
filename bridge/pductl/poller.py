# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Background poller that keeps a fresh Status snapshot.

One asyncio task owns the connection: it logs in once (when the wrapped
PDU offers the login capability), fetches a detailed status every
interval, runs the status-changed callback (energy integration) and
publishes the snapshot. Reads are served from the last snapshot and never
touch the device. Mutations go straight to the device and then ask the
loop for an early refresh.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from .errors import LoginRequired, NotPolledYet
from .pdu_model import Status
from .transport import PDU, find_login

logger = logging.getLogger(__name__)

TRIGGER_QUEUE_SIZE = 16
DEFAULT_CLOSE_TIMEOUT = 5.0

StatusCallback = Callable[[Optional[Status], Status], None]


class PolledPDU:
    """PDU wrapper served from a background poll loop.

    Call start() from inside the running event loop, close() to stop.
    """

    def __init__(self, pdu: PDU, interval: float, username: str = "",
                 password: str = "", on_status: StatusCallback | None = None,
                 close_timeout: float = DEFAULT_CLOSE_TIMEOUT):
        self.pdu = pdu
        self.interval = interval
        self._close_timeout = close_timeout
        self._username = username
        self._password = password
        self._on_status = on_status
        self._login = find_login(pdu)
        self._logged_in = False

        self._last_status: Status | None = None
        self._stop = asyncio.Event()
        self._trigger: asyncio.Queue = asyncio.Queue(maxsize=TRIGGER_QUEUE_SIZE)
        self._task: asyncio.Task | None = None

        # Health
        self._poll_count = 0
        self._poll_errors = 0
        self._consecutive_failures = 0
        self._last_poll_duration: float | None = None
        self._last_successful_poll: float | None = None
        self._last_error_msg: str | None = None

    @property
    def last_status(self) -> Status | None:
        return self._last_status

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_event_loop().create_task(self._run())
        logger.info("Poller: started (interval %.1fs)", self.interval)

    def refresh(self) -> None:
        """Ask the loop for an early poll; dropped if enough are queued."""
        try:
            self._trigger.put_nowait(None)
        except asyncio.QueueFull:
            logger.debug("Poller: refresh already pending, trigger dropped")

    # -- Loop -------------------------------------------------------------

    def _record_failure(self, msg: str) -> None:
        self._poll_errors += 1
        self._consecutive_failures += 1
        self._last_error_msg = msg
        if self._consecutive_failures == 1:
            logger.warning("Poller: %s", msg)
        elif self._consecutive_failures <= 5:
            logger.error("Poller: %s (failure %d)", msg, self._consecutive_failures)
        elif self._consecutive_failures % 30 == 0:
            logger.error("Poller: still failing after %d attempts: %s",
                         self._consecutive_failures, msg)

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early only on stop."""
        try:
            await asyncio.wait_for(self._stop.wait(), seconds)
        except asyncio.TimeoutError:
            pass

    async def _wait_next(self) -> None:
        """Wait for stop, a refresh trigger or the next tick."""
        stop = asyncio.ensure_future(self._stop.wait())
        trigger = asyncio.ensure_future(self._trigger.get())
        try:
            await asyncio.wait({stop, trigger}, timeout=self.interval,
                               return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            trigger.cancel()
        # One poll answers every trigger queued so far
        while not self._trigger.empty():
            self._trigger.get_nowait()

    async def _ensure_login(self) -> bool:
        if self._login is None or self._logged_in:
            return True
        try:
            await self._login.login(self._username, self._password)
        except Exception as e:
            self._record_failure(f"login as {self._username} failed: {e}")
            return False
        self._logged_in = True
        return True

    async def _poll_once(self) -> bool:
        start = time.monotonic()
        try:
            new = await self.pdu.status(True)
        except LoginRequired as e:
            self._logged_in = False
            self._record_failure(f"session logged out, will log in again: {e}")
            return False
        except Exception as e:
            self._record_failure(f"status fetch failed: {e}")
            return False
        finally:
            self._last_poll_duration = time.monotonic() - start

        prev = self._last_status
        if self._on_status is not None:
            try:
                self._on_status(prev, new)
            except Exception:
                logger.exception("Poller: status callback failed")
        self._last_status = new

        if self._consecutive_failures:
            logger.info("Poller: recovered after %d failures", self._consecutive_failures)
        self._consecutive_failures = 0
        self._poll_count += 1
        self._last_successful_poll = time.time()
        if self._poll_count % 60 == 1:
            logger.info("Poller: poll #%d, %.1f C, %d outlets (%.0fms)",
                        self._poll_count, new.temperature, len(new.outlets),
                        self._last_poll_duration * 1000)
        return True

    async def _run(self) -> None:
        try:
            while not self._stop.is_set():
                if not await self._ensure_login():
                    await self._sleep(self.interval)
                    continue
                if not await self._poll_once():
                    await self._sleep(self.interval)
                    continue
                await self._wait_next()
        except asyncio.CancelledError:
            # Cancelled by close() on an unresponsive device; skip the logout
            self._logged_in = False
            raise
        finally:
            if self._login is not None and self._logged_in:
                try:
                    await self._login.logout()
                except Exception:
                    logger.warning("Poller: logout on stop failed", exc_info=True)
                self._logged_in = False
            logger.info("Poller: stopped after %d polls", self._poll_count)

    def get_health(self) -> dict:
        """Return poll loop health (exposed via the health endpoint)."""
        now = time.time()
        return {
            "running": self.running,
            "interval": self.interval,
            "poll_count": self._poll_count,
            "poll_errors": self._poll_errors,
            "consecutive_failures": self._consecutive_failures,
            "last_error_msg": self._last_error_msg,
            "last_poll_duration_ms": (
                round(self._last_poll_duration * 1000, 1)
                if self._last_poll_duration is not None else None
            ),
            "last_successful_poll": self._last_successful_poll,
            "seconds_since_last_poll": (
                round(now - self._last_successful_poll, 1)
                if self._last_successful_poll else None
            ),
        }

    # -- PDU --------------------------------------------------------------

    async def status(self, detailed: bool = False) -> Status:
        if self._last_status is None:
            raise NotPolledYet()
        return self._last_status.copy(detailed)

    async def temperature(self) -> float:
        if self._last_status is None:
            raise NotPolledYet()
        return self._last_status.temperature

    async def whoami(self) -> str:
        return await self.pdu.whoami()

    async def switch_outlet(self, outlet_id: str, state: bool) -> None:
        await self.pdu.switch_outlet(outlet_id, state)
        self.refresh()

    async def lock_outlet(self, outlet_id: str, state: bool) -> None:
        await self.pdu.lock_outlet(outlet_id, state)
        self.refresh()

    async def reboot_outlet(self, outlet_id: str) -> None:
        await self.pdu.reboot_outlet(outlet_id)
        self.refresh()

    async def clear_maximum_currents(self) -> None:
        await self.pdu.clear_maximum_currents()
        self.refresh()

    async def close(self) -> None:
        """Stop the loop (which logs out) and close the wrapped PDU.

        The loop gets close_timeout seconds to finish its current poll and
        log out; after that it is cancelled. The wrapped PDU is closed
        either way.
        """
        self._stop.set()
        try:
            if self._task is not None:
                try:
                    await asyncio.wait_for(asyncio.shield(self._task), self._close_timeout)
                except asyncio.TimeoutError:
                    logger.warning("Poller: loop did not stop within %.1fs, cancelling",
                                   self._close_timeout)
                    self._task.cancel()
                    try:
                        await self._task
                    except asyncio.CancelledError:
                        pass
        finally:
            await self.pdu.close()
