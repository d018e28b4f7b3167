"""Resale Photos - photo URL caching for the reseller back office.

This package provides tools for:
- Resolving article photo storage paths to fetchable URLs
- Caching resolved URLs in memory and in a local SQLite database
- Warming up photo URLs before they are displayed
"""

__version__ = "0.1.0"
