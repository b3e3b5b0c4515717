"""Shared helpers: settings and logging."""
