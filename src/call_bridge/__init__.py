"""Inbound call bridging and call-event reconciliation service."""

__version__ = "0.1.0"
