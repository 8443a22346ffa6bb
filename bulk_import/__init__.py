"""Bulk import of business profiles from CSV / Excel files."""

__version__ = "0.1.0"
