"""Prepaid credit metering: pricing, an atomic ledger and paid-action gating."""

__version__ = "0.1.0"
