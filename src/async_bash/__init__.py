"""Durable background runner for long shell commands."""

__version__ = "0.1.0"
