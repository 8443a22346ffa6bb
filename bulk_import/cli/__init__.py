"""Command line interface (``python -m bulk_import.cli``)."""
