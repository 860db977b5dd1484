# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Exception taxonomy for the console client and the layers above it.

Transport failures (OSError, serial.SerialException) are never wrapped;
they propagate to the caller as raised by the stream.
"""


class PDUError(Exception):
    """Base class for all PDU errors raised by this package."""


class DecodeError(PDUError):
    """Expected report grammar was absent (firmware/model mismatch)."""

    def __init__(self, section: str, detail: str = ""):
        self.section = section
        msg = f"failed to decode: {section}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class LoginRequired(PDUError):
    """The console fell back to the login screen."""

    def __init__(self, msg: str = "login required"):
        super().__init__(msg)


class InvalidPassword(PDUError):
    def __init__(self, msg: str = "invalid user/password"):
        super().__init__(msg)


class InvalidOutletID(PDUError):
    def __init__(self, outlet_id: str):
        self.outlet_id = outlet_id
        super().__init__(f"invalid outlet ID: {outlet_id}")


class NotFound(PDUError):
    def __init__(self, outlet_id: str):
        self.outlet_id = outlet_id
        super().__init__(f"failed to find outlet: {outlet_id}")


class NotPolledYet(PDUError):
    def __init__(self, msg: str = "status has not been polled yet"):
        super().__init__(msg)


class CommandTimeout(PDUError, TimeoutError):
    """Overall deadline for one console exchange was exceeded."""

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"command {command!r} did not complete within {timeout:.1f}s")
