"""Flowers - paired users exchanging 24-hour bouquets."""

__version__ = "1.0.0"
