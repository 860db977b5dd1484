# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Per-group and per-outlet energy accumulation.

The MMP-14 only reports a PDU-wide kW-h counter, so group and outlet
energy is integrated locally with the trapezoid rule between successive
polled snapshots.
"""

from .pdu_model import Measurements, Status


def _trapezoid_kwh(prev: Measurements, new: Measurements, dt_hours: float) -> float:
    return (prev.power + new.power) / 2 * dt_hours * 1e-3


def calc_energy(prev: Status, new: Status) -> Status:
    """Write accumulated energy into new's groups and outlets.

    Lists are aligned by position; extra trailing elements are left alone.
    A timestamp going backwards adds nothing.
    """
    dt_hours = max(0.0, (new.timestamp - prev.timestamp).total_seconds() / 3600)

    for p, n in zip(prev.groups, new.groups):
        n.energy = p.energy + _trapezoid_kwh(p, n, dt_hours)
    for p, n in zip(prev.outlets, new.outlets):
        n.energy = p.energy + _trapezoid_kwh(p, n, dt_hours)
    return new


def integrate_energy(prev: Status | None, new: Status) -> None:
    """Status-changed callback for PolledPDU."""
    if prev is not None:
        calc_energy(prev, new)
