"""Fault-tolerant JSON-RPC proxy for blockchain node pools, with a health monitor."""

__version__ = "1.0.0"
