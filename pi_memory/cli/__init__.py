"""Command-line interface for pi-memory."""
