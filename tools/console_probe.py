#!/usr/bin/env python3
# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Console probe: exercise every MMP-14 report command.

Connects to a PDU console (TCP terminal server, serial port or the
simulated console), logs in, runs each report command, prints the raw
output next to the parsed values, and optionally saves the raw output as
test fixtures for offline testing.

Usage:
    python3 tools/console_probe.py tcp://10.0.0.40:4141 admin secret
    python3 tools/console_probe.py /dev/ttyUSB0 admin secret --save
    python3 tools/console_probe.py mock:// admin admin
"""

import asyncio
import argparse
import sys
import traceback
from pathlib import Path

# Add bridge source to path
BRIDGE_DIR = Path(__file__).resolve().parent.parent / "bridge"
sys.path.insert(0, str(BRIDGE_DIR))

from pductl.console_client import ConsoleClient
from pductl.console_parser import (
    parse_ostatus,
    parse_status,
    parse_temperature,
    parse_whoami,
)

CAPTURE_DIR = Path(__file__).resolve().parent / "captured_output"


def banner(text: str):
    width = 60
    print(f"\n{'=' * width}")
    print(f"  {text}")
    print(f"{'=' * width}")


def section(text: str):
    print(f"\n--- {text} ---")


def save_capture(name: str, text: str):
    """Save raw console output to a file for use as a test fixture."""
    CAPTURE_DIR.mkdir(parents=True, exist_ok=True)
    path = CAPTURE_DIR / f"{name}.txt"
    path.write_text(text)
    print(f"  Saved: {path}")


def validate_range(label: str, value, min_val, max_val) -> bool:
    in_range = min_val <= value <= max_val
    status = "OK" if in_range else "FAIL"
    print(f"  [{status}] {label}: {value} (expected {min_val}-{max_val})")
    return in_range


async def run_command(client: ConsoleClient, cmd: str, save: bool) -> str:
    section(cmd)
    text = await client.execute(cmd)
    print(text)
    if save:
        save_capture(cmd.lower(), text)
    return text


async def probe_status(client: ConsoleClient, save: bool):
    text = await run_command(client, "Status", save)
    sts = parse_status(text, client.grammar)
    print("\n  Parsed:")
    print(f"    Temperature: {sts.temperature:.1f} C")
    print(f"    Total kWh:   {sts.total_energy}")
    print(f"    Switches:    {sts.switches}")
    for b in sts.breakers:
        print(f"    Breaker {b.id} {b.name}: {b.true_rms_current} A "
              f"(peak {b.peak_rms_current} A)")
    for g in sts.groups:
        print(f"    Group {g.id} {g.name}: {g.true_rms_current} A, "
              f"{g.true_rms_voltage} V, {g.avg_power} W (breaker {g.breaker_id})")

    print("\n  Validation:")
    validate_range("Temperature (C)", sts.temperature, 0, 60)
    for g in sts.groups:
        validate_range(f"{g.name} voltage", g.true_rms_voltage, 90, 260)
    return sts


async def probe_ostatus(client: ConsoleClient, save: bool):
    text = await run_command(client, "Ostatus", save)
    outlets = parse_ostatus(text, client.grammar)
    print(f"\n  Parsed {len(outlets)} outlets:")
    for o in outlets:
        state = "on" if o.state else "off"
        lock = " locked" if o.locked else ""
        print(f"    Outlet {o.id}: name={o.name}, state={state}{lock}, "
              f"current={o.true_rms_current}A, power={o.avg_power}W "
              f"(breaker {o.breaker_id}, group {o.group_id})")

    print("\n  Validation:")
    print(f"  [{'OK' if outlets else 'FAIL'}] Outlet count: {len(outlets)}")
    for o in outlets:
        if o.true_rms_current < 0:
            print(f"  [FAIL] Outlet {o.id} negative current: {o.true_rms_current}")
    return outlets


async def main():
    parser = argparse.ArgumentParser(
        description="Baytech PDU Console Probe, exercise all report commands"
    )
    parser.add_argument("address",
                        help="Console address (tcp://host:port, /dev/ttyUSB0, mock://)")
    parser.add_argument("username", nargs="?", default="admin",
                        help="Login username (default: admin)")
    parser.add_argument("password", nargs="?", default="admin",
                        help="Login password (default: admin)")
    parser.add_argument("--baud", type=int, default=9600,
                        help="Serial baud rate (default: 9600)")
    parser.add_argument("--timeout", type=float, default=10.0,
                        help="Per-command timeout in seconds (default: 10)")
    parser.add_argument("--save", action="store_true",
                        help=f"Save raw output to {CAPTURE_DIR}")
    args = parser.parse_args()

    banner("Baytech PDU Console Probe")
    print(f"  Address:  {args.address}")
    print(f"  Username: {args.username}")
    print(f"  Baud:     {args.baud}")
    print(f"  Timeout:  {args.timeout}s")

    client = None
    try:
        banner("Connecting...")
        client = await ConsoleClient.open(args.address, baud=args.baud,
                                          command_timeout=args.timeout)
        await client.login(args.username, args.password)
        print(f"  Connected and logged in as {client.user}")

        banner("Reports")
        await probe_status(client, args.save)
        await probe_ostatus(client, args.save)

        text = await run_command(client, "Temp", args.save)
        print(f"\n  Parsed: {parse_temperature(text, client.grammar):.1f} C")
        text = await run_command(client, "Whoami", args.save)
        print(f"\n  Parsed: {parse_whoami(text, client.grammar)}")

        banner("Console Client Health")
        for k, v in client.get_health().items():
            print(f"  {k}: {v}")

        banner("Probe Complete")
        if args.save:
            captured = sorted(CAPTURE_DIR.glob("*.txt"))
            print(f"  Captured {len(captured)} output files in {CAPTURE_DIR}/")
            for f in captured:
                print(f"    {f.name} ({f.stat().st_size} bytes)")

    except Exception as e:
        print(f"\n  FATAL ERROR: {e}")
        traceback.print_exc()
        sys.exit(1)
    finally:
        if client is not None:
            await client.close()
            print("\n  Console closed.")


if __name__ == "__main__":
    asyncio.run(main())
