"""Persistence layer: the SQLite backing store adapter."""
