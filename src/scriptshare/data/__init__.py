"""Bundled first-run documents."""
