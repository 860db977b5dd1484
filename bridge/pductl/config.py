# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Configuration from environment variables with validation."""

import json
import logging
import os
import re
from dataclasses import asdict

from .acl import AccessControlList
from .console_parser import DEFAULT_PROMPTS, ConsolePrompts
from .pdu_model import BankRange, OutletBanking

logger = logging.getLogger(__name__)

DEFAULT_BANKING_SPEC = "1-5:1:1,6-10:1:2,11-15:2:3,16-20:2:4"

_BANK_RE = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*:\s*(\d+)\s*:\s*(\d+)\s*$")


class ConfigError(Exception):
    """Raised when configuration is invalid."""


class Config:
    def __init__(self):
        self.address = os.environ.get("PDU_ADDRESS", "tcp://127.0.0.1:4141")
        self.username = os.environ.get("PDU_USERNAME", "admin")
        self.password = os.environ.get("PDU_PASSWORD", "admin")
        self.serial_baud = self._int("PDU_SERIAL_BAUD", "9600", 300, 115200)

        self.read_timeout = self._float("PDU_READ_TIMEOUT", "0.3", 0.01, 30)
        self.command_timeout = self._float("PDU_COMMAND_TIMEOUT", "0", 0, 600)
        self.poll_interval = self._float("PDU_POLL_INTERVAL", "10", 0, 3600)
        self.cache_ttl = self._float("PDU_CACHE_TTL", "60", 0, 86400)
        self.banking = parse_banking(
            os.environ.get("PDU_BANKING", DEFAULT_BANKING_SPEC), env="PDU_BANKING",
        )

        self.prompts = ConsolePrompts(
            ready=os.environ.get("PDU_PROMPT_READY", DEFAULT_PROMPTS.ready),
            username=os.environ.get("PDU_PROMPT_USERNAME", DEFAULT_PROMPTS.username),
            password=os.environ.get("PDU_PROMPT_PASSWORD", DEFAULT_PROMPTS.password),
            invalid=os.environ.get("PDU_PROMPT_INVALID", DEFAULT_PROMPTS.invalid),
        )
        for name, value in asdict(self.prompts).items():
            if not value:
                raise ConfigError(f"console prompt {name!r} must not be empty")

        self.listen_host = os.environ.get("PDU_LISTEN_HOST", "0.0.0.0")
        self.web_port = self._int("PDU_WEB_PORT", "8080", 1, 65535)
        self.acl_file = os.environ.get("PDU_ACL_FILE", "")

        # mTLS for the REST layer (opt-in: set cert and key to enable)
        self.tls_cert = os.environ.get("PDU_TLS_CERT", "")
        self.tls_key = os.environ.get("PDU_TLS_KEY", "")
        self.tls_cacert = os.environ.get("PDU_TLS_CACERT", "")
        if bool(self.tls_cert) != bool(self.tls_key):
            raise ConfigError("PDU_TLS_CERT and PDU_TLS_KEY must be set together")

        self.log_level = os.environ.get("PDU_LOG_LEVEL", "INFO").upper()
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"PDU_LOG_LEVEL={self.log_level!r} is not a logging level")

        self._log_config()

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_cert and self.tls_key)

    @property
    def mock_mode(self) -> bool:
        return self.address.startswith("mock:")

    @staticmethod
    def _int(env: str, default: str, min_val: int, max_val: int) -> int:
        raw = os.environ.get(env, default)
        try:
            val = int(raw)
        except (ValueError, TypeError):
            raise ConfigError(f"{env}={raw!r} is not a valid integer")
        if not (min_val <= val <= max_val):
            raise ConfigError(f"{env}={val} out of range [{min_val}, {max_val}]")
        return val

    @staticmethod
    def _float(env: str, default: str, min_val: float, max_val: float) -> float:
        raw = os.environ.get(env, default)
        try:
            val = float(raw)
        except (ValueError, TypeError):
            raise ConfigError(f"{env}={raw!r} is not a valid number")
        if not (min_val <= val <= max_val):
            raise ConfigError(f"{env}={val} out of range [{min_val}, {max_val}]")
        return val

    def _log_config(self):
        logger.info(
            "Config: pdu=%s user=%s poll=%.1fs cache_ttl=%.1fs web=%s:%d tls=%s acl=%s",
            self.address, self.username, self.poll_interval, self.cache_ttl,
            self.listen_host, self.web_port, self.tls_enabled,
            self.acl_file or "(none)",
        )


def parse_banking(text: str, env: str = "banking") -> OutletBanking:
    """Parse "first-last:breaker:group,..." into an OutletBanking table."""
    ranges = []
    for part in text.split(","):
        if not part.strip():
            continue
        m = _BANK_RE.match(part)
        if m is None:
            raise ConfigError(f"{env}: bad range {part.strip()!r} "
                              "(expected first-last:breaker:group)")
        first, last, breaker_id, group_id = (int(g) for g in m.groups())
        if first < 1 or last < first:
            raise ConfigError(f"{env}: bad outlet range {first}-{last}")
        ranges.append(BankRange(first, last, breaker_id=breaker_id, group_id=group_id))

    if not ranges:
        raise ConfigError(f"{env}: no outlet ranges given")

    ranges.sort(key=lambda r: r.first)
    for prev, cur in zip(ranges, ranges[1:]):
        if cur.first <= prev.last:
            raise ConfigError(f"{env}: ranges {prev.first}-{prev.last} and "
                              f"{cur.first}-{cur.last} overlap")
    return OutletBanking(tuple(ranges))


def load_acl(path: str) -> AccessControlList:
    """Load a JSON ACL file: a list of entries, or {"acl": [...]}."""
    try:
        with open(path) as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read ACL file {path}: {e}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"ACL file {path} is not valid JSON: {e}")

    if isinstance(data, dict):
        data = data.get("acl", [])
    try:
        acl = AccessControlList.from_list(data)
    except (ValueError, KeyError, TypeError) as e:
        raise ConfigError(f"ACL file {path}: {e}")
    logger.info("Loaded %d ACL entries from %s", len(acl), path)
    return acl
