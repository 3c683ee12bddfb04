"""Shopify catalog mirror with incremental sync tracking."""

__version__ = "1.0.0"
