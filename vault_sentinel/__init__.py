"""Scheduled monitoring and control loop for a yield-bearing vault."""

__version__ = "0.1.0"
