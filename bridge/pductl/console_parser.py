# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Pure-function parsers for Baytech MMP-14 console reports.

Each parser takes raw console text and returns structured data.
Fully testable with no I/O dependencies.

Console commands and their output formats (MMP-14):
  Status   -> temperature, switches, total kW-h, breaker and group tables
  Ostatus  -> per-outlet table (current, voltage, power, state, lock)
  Temp     -> "Int. Temp:  77.0 F"
  Whoami   -> "Current User: admin"

The row patterns are firmware specific, so they are held in a
StatusGrammar value that can be replaced without touching the code.
"""

import logging
import re
from dataclasses import dataclass

from .errors import DecodeError
from .pdu_model import (
    DEFAULT_BANKING,
    BreakerStatus,
    GroupStatus,
    OutletBanking,
    OutletStatus,
    Status,
)

logger = logging.getLogger(__name__)

_CIRCUIT = r"(CKT[1-2]|Input [A-Z]|Circuit M[1-4])"


@dataclass(frozen=True)
class ConsolePrompts:
    """Trailing strings the console emits to request input or signal readiness."""
    ready: str = "MMP-14>"
    username: str = "Enter user name: "
    password: str = "Enter Password: "
    invalid: str = "Invalid user/password!"


DEFAULT_PROMPTS = ConsolePrompts()


@dataclass(frozen=True)
class StatusGrammar:
    """Anchored multi-line patterns, one per report row shape."""
    temperature: re.Pattern
    whoami: re.Pattern
    total_energy: re.Pattern
    switches: re.Pattern
    breaker: re.Pattern
    group: re.Pattern
    outlet: re.Pattern


DEFAULT_GRAMMAR = StatusGrammar(
    temperature=re.compile(r"^Int\. Temp:\s*([0-9\.]+)\s*F", re.M),
    whoami=re.compile(r"^Current User:\s*([A-Za-z0-9-]+)\s*$", re.M),
    total_energy=re.compile(r"^Total kW-h: (\d+)", re.M),
    switches=re.compile(r"^Switch 1: (Open|Closed) 2: (Open|Closed)", re.M),
    breaker=re.compile(
        r"^\|\s*" + _CIRCUIT +
        r"\s*\|\s*([0-9\.]+)\s+Amps\s*\|\s*([0-9\.]+)\s+Amps\s*\|\s*$",
        re.M,
    ),
    group=re.compile(
        r"^\|\s*" + _CIRCUIT +
        r"\s*\|\s*([0-9\.]+)\s+Amps"
        r"\s*\|\s*([0-9\.]+)\s+Amps"
        r"\s*\|\s*([0-9\.]+)\s+Volts"
        r"\s*\|\s*([0-9\.]+)\s+Watts"
        r"\s*\|\s*([0-9\.]+)\s+VA\s*\|",
        re.M,
    ),
    outlet=re.compile(
        r"^\|\s*([A-Za-z0-9- ]+?)"
        r"\s*\|\s*([0-9\.]+)\s+A"
        r"\s*\|\s*([0-9\.]+)\s+A"
        r"\s*\|\s*([0-9\.]+)\s+V"
        r"\s*\|\s*([0-9\.]+)\s+W"
        r"\s*\|\s*([0-9\.]+)\s+VA"
        r"\s*\|\s*(On|Off)\s*?(Locked|)\s*\|",
        re.M,
    ),
)


def _float(section: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise DecodeError(section, f"not a number: {value!r}")


def fahrenheit_to_celsius(f: float) -> float:
    return (f - 32) * 5 / 9


def parse_temperature(text: str, grammar: StatusGrammar = DEFAULT_GRAMMAR) -> float:
    """Parse the internal temperature line, returning degrees Celsius.

    Present in both 'Status' and 'Temp' output:
        Int. Temp:   77.0 F
    """
    m = grammar.temperature.search(text)
    if m is None:
        raise DecodeError("temperature")
    return fahrenheit_to_celsius(_float("temperature", m.group(1)))


def parse_whoami(text: str, grammar: StatusGrammar = DEFAULT_GRAMMAR) -> str:
    """Parse 'Whoami' output:
        Current User: admin
    """
    m = grammar.whoami.search(text)
    if m is None:
        raise DecodeError("whoami")
    return m.group(1).strip()


def parse_status(text: str, grammar: StatusGrammar = DEFAULT_GRAMMAR,
                 banking: OutletBanking = DEFAULT_BANKING) -> Status:
    """Parse 'Status' output into a summary Status (no outlets).

    Example output (abridged):
        Int. Temp:   86.0 F
        Switch 1: Open 2: Closed
        Total kW-h: 1523

        | CKT1          |   3.2 Amps  |   9.1 Amps  |
        | CKT2          |   1.5 Amps  |   4.4 Amps  |

        | Circuit M1    |   1.8 Amps |   5.0 Amps | 229.5 Volts |  390 Watts |  413 VA |

    Every section is required; a section without a single matching row
    raises DecodeError naming it.
    """
    sts = Status()

    m = grammar.total_energy.search(text)
    if m is None:
        raise DecodeError("total-energy")
    sts.total_energy = _float("total-energy", m.group(1))

    sts.temperature = parse_temperature(text, grammar)

    m = grammar.switches.search(text)
    if m is None:
        raise DecodeError("switches")
    sts.switches = [sw == "Closed" for sw in m.groups()]

    rows = grammar.breaker.findall(text)
    if not rows:
        raise DecodeError("breakers")
    for i, (name, cur, peak) in enumerate(rows, start=1):
        sts.breakers.append(BreakerStatus(
            name=name,
            id=i,
            true_rms_current=_float("breakers", cur),
            peak_rms_current=_float("breakers", peak),
        ))

    rows = grammar.group.findall(text)
    if not rows:
        raise DecodeError("groups")
    for i, (name, cur, peak, volt, power, va) in enumerate(rows, start=1):
        sts.groups.append(GroupStatus(
            name=name,
            id=i,
            breaker_id=banking.group_breaker(i),
            true_rms_current=_float("groups", cur),
            peak_rms_current=_float("groups", peak),
            true_rms_voltage=_float("groups", volt),
            avg_power=_float("groups", power),
            volt_amps=_float("groups", va),
        ))

    return sts


def parse_ostatus(text: str, grammar: StatusGrammar = DEFAULT_GRAMMAR,
                  banking: OutletBanking = DEFAULT_BANKING) -> list[OutletStatus]:
    """Parse 'Ostatus' output into per-outlet status.

    Example rows:
        | Server-1       |  0.5 A |  1.2 A | 230.1 V |  98 W | 115 VA | On         |
        | Outlet 2       |  0.0 A |  0.0 A | 230.1 V |   0 W |   0 VA | Off Locked |

    Outlets are numbered in report order; breaker and group come from
    the banking table.
    """
    rows = grammar.outlet.findall(text)
    if not rows:
        raise DecodeError("outlets")

    outlets = []
    for i, (name, cur, peak, volt, power, va, state, locked) in enumerate(rows, start=1):
        breaker_id, group_id = banking.lookup(i)
        outlets.append(OutletStatus(
            name=name,
            id=i,
            breaker_id=breaker_id,
            group_id=group_id,
            state=state == "On",
            locked=locked == "Locked",
            true_rms_current=_float("outlets", cur),
            peak_rms_current=_float("outlets", peak),
            true_rms_voltage=_float("outlets", volt),
            avg_power=_float("outlets", power),
            volt_amps=_float("outlets", va),
        ))

    if len(outlets) > banking.num_outlets:
        logger.warning("Ostatus reported %d outlets, banking table covers %d",
                       len(outlets), banking.num_outlets)
    return outlets
