"""Shared runtime pieces: logging, locking, settings and errors."""
