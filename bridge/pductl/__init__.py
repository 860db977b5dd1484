# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Baytech MMP-14 console client, cache, poller and REST bridge."""

__version__ = "1.0.0"
