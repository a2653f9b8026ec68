"""Pump.fun indexer - stream, resolve and reconcile bonding-curve trades."""

__version__ = "0.1.0"
