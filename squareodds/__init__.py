"""Squares board odds engine for NFL games."""

__version__ = "0.1.0"
