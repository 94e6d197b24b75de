"""Command-line interface for lms-companion."""
