"""Logging setup and small helpers for building page scripts."""
