# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Simulated MMP-14 console for testing without real hardware.

MockConsole is a ByteStream: the console client writes command lines to
it and reads back the same echo/report/prompt byte sequences a real
Baytech MMP-14 would produce, including the login screen. It also keeps
an event log (username / login / logout / rejected) so tests can check
the order of authentication steps.
"""

import asyncio
import logging
import math
import random
import time

from .console_parser import DEFAULT_PROMPTS, ConsolePrompts
from .pdu_model import DEFAULT_BANKING, OutletBanking

logger = logging.getLogger(__name__)

_RULE3 = "+---------------+-------------+-------------+"
_RULE6 = ("+---------------+------------+------------+-------------"
          "+------------+---------+")
_RULE_OUTLETS = ("+----------------+--------+--------+---------+-------"
                 "+--------+------------+")

STATE_LOGIN = "login"
STATE_PASSWORD = "password"
STATE_READY = "ready"


class MockConsole:
    """Simulates the terminal side of a Baytech MMP-14 with drifting readings.

    Supported commands: Status, Ostatus, Temp, Whoami, Clear,
    On/Off/Lock/Unlock/Reboot <n> (0 = every outlet) and Logout.
    """

    def __init__(self, users: dict[str, str] | None = None,
                 prompts: ConsolePrompts = DEFAULT_PROMPTS,
                 banking: OutletBanking = DEFAULT_BANKING,
                 seed: int | None = None):
        self._users = dict(users) if users is not None else {"admin": "admin"}
        self._prompts = prompts
        self._banking = banking
        self._num_outlets = banking.num_outlets
        self._rng = random.Random(seed)
        self._start_time = time.time()
        self._last_energy_update = self._start_time

        self._state = STATE_LOGIN
        self._pending_user = ""
        self.user: str | None = None
        self.events: list[tuple[str, str]] = []
        self.commands: list[str] = []

        self._inbox = ""
        self._outbox = bytearray()
        self._data_ready = asyncio.Event()
        self._closed = False

        self._outlet_on: dict[int, bool] = {}
        self._outlet_locked: dict[int, bool] = {}
        self._outlet_names: dict[int, str] = {}
        self._base_load: dict[int, float] = {}
        self._peak: dict[int, float] = {}
        for n in range(1, self._num_outlets + 1):
            self._outlet_on[n] = True
            self._outlet_locked[n] = False
            self._outlet_names[n] = f"Outlet {n}"
            self._base_load[n] = 0.1 + self._rng.uniform(0.0, 1.2)
            self._peak[n] = 0.0
        self._total_kwh = 1523.0
        self._switches = [False, True]

    @property
    def closed(self) -> bool:
        return self._closed

    def outlet_state(self, n: int) -> bool:
        return self._outlet_on[n]

    def outlet_locked(self, n: int) -> bool:
        return self._outlet_locked[n]

    def set_outlet_name(self, n: int, name: str) -> None:
        self._outlet_names[n] = name

    # -- ByteStream -------------------------------------------------------

    async def read(self, size: int, timeout: float) -> bytes:
        if self._closed:
            raise ConnectionResetError("mock console closed")
        if not self._outbox:
            self._data_ready.clear()
            try:
                await asyncio.wait_for(self._data_ready.wait(), timeout)
            except asyncio.TimeoutError:
                return b""
        chunk = bytes(self._outbox[:size])
        del self._outbox[:size]
        return chunk

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionResetError("mock console closed")
        self._inbox += data.decode("utf-8", errors="replace")
        while "\n" in self._inbox:
            line, self._inbox = self._inbox.split("\n", 1)
            self._handle_line(line.rstrip("\r"))
        if self._outbox:
            self._data_ready.set()

    async def close(self) -> None:
        self._closed = True
        self._data_ready.set()

    # -- Terminal state machine ------------------------------------------

    def _emit(self, text: str) -> None:
        self._outbox += text.encode()

    def _handle_line(self, line: str) -> None:
        p = self._prompts

        if self._state == STATE_LOGIN:
            if not line:
                self._emit("\r\n" + p.username)
                return
            self.events.append(("username", line))
            self._pending_user = line
            self._state = STATE_PASSWORD
            self._emit(line + "\r\n" + p.password)
            return

        if self._state == STATE_PASSWORD:
            if self._users.get(self._pending_user) == line:
                self.user = self._pending_user
                self._state = STATE_READY
                self.events.append(("login", self.user))
                logger.info("Mock: %s logged in", self.user)
                self._emit("\r\n\r\n" + p.ready)
            else:
                self.events.append(("rejected", self._pending_user))
                self._state = STATE_LOGIN
                self._emit("\r\n" + p.invalid + "\r\n\r\n" + p.username)
            return

        if not line:
            self._emit("\r\n" + p.ready)
            return

        self.commands.append(line)
        if line == "Logout":
            self.events.append(("logout", self.user or ""))
            logger.info("Mock: %s logged out", self.user)
            self.user = None
            self._state = STATE_LOGIN
            # The real unit prints nothing after the echo until a key is pressed
            self._emit(line)
            return

        output = self._run(line)
        self._emit(line + "\r\n" + output + "\r\n\r\n" + p.ready)

    def _run(self, line: str) -> str:
        parts = line.split()
        verb = parts[0]

        if verb == "Status" and len(parts) == 1:
            return self._render_status()
        if verb == "Ostatus" and len(parts) == 1:
            return self._render_ostatus()
        if verb == "Temp" and len(parts) == 1:
            return f"Int. Temp:  {self._temperature_f():.1f} F"
        if verb == "Whoami" and len(parts) == 1:
            return f"Current User: {self.user}"
        if verb == "Clear" and len(parts) == 1:
            for n in self._peak:
                self._peak[n] = 0.0
            return "Maximum detected current reset"
        if verb in ("On", "Off", "Lock", "Unlock", "Reboot") and len(parts) == 2:
            return self._outlet_command(verb, parts[1])
        return "Invalid command"

    def _outlet_command(self, verb: str, arg: str) -> str:
        try:
            n = int(arg)
        except ValueError:
            return "Invalid outlet"
        if n < 0 or n > self._num_outlets:
            return "Invalid outlet"

        targets = range(1, self._num_outlets + 1) if n == 0 else [n]
        for t in targets:
            if verb == "Lock":
                self._outlet_locked[t] = True
            elif verb == "Unlock":
                self._outlet_locked[t] = False
            elif self._outlet_locked[t]:
                continue
            elif verb == "On":
                self._outlet_on[t] = True
            elif verb == "Off":
                self._outlet_on[t] = False
            elif verb == "Reboot":
                # Reboot completes instantly; the outlet ends up on
                self._outlet_on[t] = True
            logger.info("Mock: outlet %d %s", t, verb.lower())
        return ""

    # -- Simulated readings ----------------------------------------------

    def _elapsed(self) -> float:
        return time.time() - self._start_time

    def _temperature_f(self) -> float:
        return 77.0 + 3.0 * math.sin(self._elapsed() / 120.0) + self._rng.uniform(-0.2, 0.2)

    def _voltage(self) -> float:
        return 230.0 + 2.0 * math.sin(self._elapsed() / 60.0) + self._rng.uniform(-0.3, 0.3)

    def _sample_outlets(self) -> dict[int, tuple[float, float, float]]:
        """Return {outlet: (current, peak, voltage)} and advance peaks and kWh."""
        voltage = self._voltage()
        now = time.time()
        dt = now - self._last_energy_update
        self._last_energy_update = now

        samples = {}
        total_watts = 0.0
        for n in range(1, self._num_outlets + 1):
            if self._outlet_on[n]:
                current = max(0.0, self._base_load[n] + self._rng.uniform(-0.05, 0.05))
            else:
                current = 0.0
            self._peak[n] = max(self._peak[n], current * 1.3)
            samples[n] = (current, self._peak[n], voltage)
            total_watts += current * voltage
        self._total_kwh += total_watts * dt / 3600.0 / 1000.0
        return samples

    def _render_status(self) -> str:
        samples = self._sample_outlets()
        voltage = next(iter(samples.values()))[2] if samples else 0.0

        groups: dict[int, list[float]] = {}
        breakers: dict[int, list[float]] = {}
        for n, (cur, peak, _) in samples.items():
            breaker_id, group_id = self._banking.lookup(n)
            g = groups.setdefault(group_id, [0.0, 0.0])
            g[0] += cur
            g[1] += peak
            b = breakers.setdefault(breaker_id, [0.0, 0.0])
            b[0] += cur
            b[1] += peak

        sw = ["Closed" if s else "Open" for s in self._switches]
        lines = [
            "",
            f"Int. Temp:   {self._temperature_f():.1f} F",
            "",
            f"Switch 1: {sw[0]} 2: {sw[1]}",
            "",
            f"Total kW-h: {int(self._total_kwh)}",
            "",
            _RULE3,
            "| Circuit       |  True RMS   |  Peak RMS   |",
            "|               |   Current   |   Current   |",
            _RULE3,
        ]
        for breaker_id in sorted(breakers):
            cur, peak = breakers[breaker_id]
            name = f"CKT{breaker_id}"
            lines.append(f"| {name:<13} | {cur:5.1f} Amps  | {peak:5.1f} Amps  |")
        lines += [
            _RULE3,
            "",
            _RULE6,
            "| Group         |  True RMS  |  Peak RMS  |  True RMS   "
            "|  Average   |  Volt   |",
            "|               |  Current   |  Current   |  Voltage    "
            "|  Power     |  Amps   |",
            _RULE6,
        ]
        for group_id in sorted(groups):
            cur, peak = groups[group_id]
            name = f"Circuit M{group_id}"
            watts = cur * voltage * 0.95
            va = cur * voltage
            lines.append(
                f"| {name:<13} | {cur:5.1f} Amps | {peak:5.1f} Amps | "
                f"{voltage:5.1f} Volts | {watts:4.0f} Watts | {va:4.0f} VA |"
            )
        lines.append(_RULE6)
        return "\r\n".join(lines)

    def _render_ostatus(self) -> str:
        samples = self._sample_outlets()
        lines = [
            "",
            _RULE_OUTLETS,
            "| Outlet         | True   | Peak   | True    | Avg   "
            "| Volt   |            |",
            "| Name           | RMS    | RMS    | RMS     | Power "
            "| Amps   | State      |",
            _RULE_OUTLETS,
        ]
        for n, (cur, peak, volt) in samples.items():
            state = "On" if self._outlet_on[n] else "Off"
            if self._outlet_locked[n]:
                state += " Locked"
            watts = cur * volt * 0.95
            va = cur * volt
            lines.append(
                f"| {self._outlet_names[n]:<14} | {cur:4.1f} A | {peak:4.1f} A | "
                f"{volt:5.1f} V | {watts:3.0f} W | {va:3.0f} VA | {state:<11}|"
            )
        lines.append(_RULE_OUTLETS)
        return "\r\n".join(lines)
