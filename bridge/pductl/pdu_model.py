# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Status data models and outlet banking for the Baytech MMP-14."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from .errors import InvalidOutletID, NotFound

# Outlet id sentinel: every outlet at once
ALL = "all"
ALL_OUTLETS = 0


@dataclass
class BreakerStatus:
    name: str = ""
    id: int = 0
    true_rms_current: float = 0.0  # amps
    peak_rms_current: float = 0.0  # amps

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "id": self.id,
            "true_rms_current": self.true_rms_current,
            "peak_rms_current": self.peak_rms_current,
        }


@dataclass
class Measurements:
    true_rms_current: float = 0.0  # amps
    peak_rms_current: float = 0.0  # amps
    true_rms_voltage: float = 0.0  # volts
    avg_power: float = 0.0         # watts, as reported by the PDU
    volt_amps: float = 0.0         # VA
    energy: float = 0.0            # kWh, integrated locally

    @property
    def power(self) -> float:
        """Instantaneous power in watts (current x voltage)."""
        return self.true_rms_current * self.true_rms_voltage

    def _measurements_dict(self) -> dict:
        return {
            "true_rms_current": self.true_rms_current,
            "peak_rms_current": self.peak_rms_current,
            "true_rms_voltage": self.true_rms_voltage,
            "avg_power": self.avg_power,
            "va": self.volt_amps,
            "power": self.power,
            "energy": self.energy,
        }


@dataclass
class GroupStatus(Measurements):
    name: str = ""
    id: int = 0
    breaker_id: int = 0

    def to_dict(self) -> dict:
        d = {"name": self.name, "id": self.id, "breaker_id": self.breaker_id}
        d.update(self._measurements_dict())
        return d


@dataclass
class OutletStatus(Measurements):
    name: str = ""
    id: int = 0
    breaker_id: int = 0
    group_id: int = 0
    state: bool = False
    locked: bool = False

    def to_dict(self) -> dict:
        d = {
            "name": self.name,
            "id": self.id,
            "group_id": self.group_id,
            "breaker_id": self.breaker_id,
            "state": self.state,
            "locked": self.locked,
        }
        d.update(self._measurements_dict())
        return d


@dataclass
class Status:
    temperature: float = 0.0   # deg C
    total_energy: float = 0.0  # kWh, PDU-wide counter
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    switches: list[bool] = field(default_factory=list)
    breakers: list[BreakerStatus] = field(default_factory=list)
    groups: list[GroupStatus] = field(default_factory=list)
    outlets: list[OutletStatus] = field(default_factory=list)

    def copy(self, detailed: bool = True) -> "Status":
        """Return a copy sharing no lists or elements with this snapshot.

        A summary copy (detailed=False) carries no outlets.
        """
        return Status(
            temperature=self.temperature,
            total_energy=self.total_energy,
            timestamp=self.timestamp,
            switches=list(self.switches),
            breakers=[replace(b) for b in self.breakers],
            groups=[replace(g) for g in self.groups],
            outlets=[replace(o) for o in self.outlets] if detailed else [],
        )

    def to_dict(self) -> dict:
        return {
            "temp": self.temperature,
            "kwh": self.total_energy,
            "timestamp": self.timestamp.isoformat(),
            "switches": list(self.switches),
            "breakers": [b.to_dict() for b in self.breakers],
            "groups": [g.to_dict() for g in self.groups],
            "outlets": [o.to_dict() for o in self.outlets],
        }


# ---------------------------------------------------------------------------
# Banking: which breaker and group feeds each outlet
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BankRange:
    first: int       # first outlet id (inclusive)
    last: int        # last outlet id (inclusive)
    breaker_id: int
    group_id: int


@dataclass(frozen=True)
class OutletBanking:
    """Fixed outlet -> (breaker, group) wiring of one PDU model.

    The device does not report this; it is derived from the outlet id.
    """
    ranges: tuple[BankRange, ...]

    @property
    def num_outlets(self) -> int:
        return max((r.last for r in self.ranges), default=0)

    def lookup(self, outlet_id: int) -> tuple[int, int]:
        """Return (breaker_id, group_id) for an outlet, (0, 0) if unmapped."""
        for r in self.ranges:
            if r.first <= outlet_id <= r.last:
                return r.breaker_id, r.group_id
        return 0, 0

    def group_breaker(self, group_id: int) -> int:
        """Return the breaker feeding a group, 0 if unmapped."""
        for r in self.ranges:
            if r.group_id == group_id:
                return r.breaker_id
        return 0


DEFAULT_BANKING = OutletBanking((
    BankRange(1, 5, breaker_id=1, group_id=1),
    BankRange(6, 10, breaker_id=1, group_id=2),
    BankRange(11, 15, breaker_id=2, group_id=3),
    BankRange(16, 20, breaker_id=2, group_id=4),
))


def parse_outlet_id(outlet_id: str, num_outlets: int) -> int:
    """Translate an API outlet id into the console's numeric id.

    "all" maps to 0, which the console treats as every outlet.
    """
    if outlet_id == ALL:
        return ALL_OUTLETS

    try:
        n = int(outlet_id)
    except (TypeError, ValueError):
        raise NotFound(str(outlet_id))

    if n < 0 or n > num_outlets:
        raise InvalidOutletID(str(outlet_id))
    return n
