"""Tiered photo ingestion service."""

__version__ = "1.0.0"
