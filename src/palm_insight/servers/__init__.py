"""Starlette HTTP surface of PalmInsight."""
