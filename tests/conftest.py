# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 MIT License
# https://github.com/mvalancy/CyberPower-PDU

"""Pytest configuration: simulated-console fixtures and HTML report metadata."""

import os
import platform
import subprocess
import sys
from datetime import datetime

import pytest_asyncio

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "bridge"))

from pductl import __version__  # noqa: E402
from pductl.console_client import ConsoleClient  # noqa: E402
from pductl.mock_pdu import MockConsole  # noqa: E402


def _git(cmd: str) -> str:
    """Run a git command and return stripped output, or '' on failure."""
    try:
        return subprocess.check_output(
            ["git"] + cmd.split(), stderr=subprocess.DEVNULL
        ).decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return ""


def pytest_configure(config):
    """Add project metadata to HTML report (only if pytest-metadata installed)."""
    try:
        from pytest_metadata.plugin import metadata_key
    except ImportError:
        return

    meta = config.stash[metadata_key]
    meta["Project"] = "Baytech PDU Bridge"
    meta["Version"] = __version__
    meta["Device"] = "Baytech MMP-14 (simulated console)"
    meta["Git Commit"] = _git("rev-parse --short HEAD")
    meta["Python"] = platform.python_version()
    meta["Timestamp"] = datetime.now().isoformat(timespec="seconds")


# Conditional hook, only registered when pytest-html is available
try:
    import pytest_html  # noqa: F401

    def pytest_html_report_title(report):
        report.title = f"Baytech PDU Bridge {__version__}: Test Report"
except ImportError:
    pass


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def mock_console():
    """Simulated MMP-14 with two accounts and a fixed random seed."""
    console = MockConsole(users={"admin": "admin", "operator": "secret"}, seed=42)
    yield console
    await console.close()


@pytest_asyncio.fixture
async def console_client(mock_console):
    """ConsoleClient on the simulated console with short timeouts."""
    return ConsoleClient(mock_console, read_timeout=0.05, logout_grace=0,
                         command_timeout=5.0, address="mock://")
