"""Logging, validation and small helpers shared across PingMaster."""
