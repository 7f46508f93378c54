"""Offline mirror of Trac ticket hierarchies with three-way sync."""

__version__ = "0.1.0"
