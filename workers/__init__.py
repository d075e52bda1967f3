"""Temporal worker entry points."""
