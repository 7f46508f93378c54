"""Core Trac connectivity and async bridging."""

from .client import TracClient

__all__ = ["TracClient"]
