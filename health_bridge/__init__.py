"""Health Bridge: one contract for vendor health data platforms."""

__version__ = "0.1.0"
