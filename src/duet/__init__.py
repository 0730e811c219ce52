"""Duet: two-person real-time chat service."""

__version__ = "0.1.0"
