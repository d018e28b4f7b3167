"""Command line interface for resale-photos."""
