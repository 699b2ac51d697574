"""Healthwatch — adaptive health-check scheduling and status aggregation."""

__version__ = "0.1.0"
