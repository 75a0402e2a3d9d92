"""Core primitives (settings, database, exceptions)."""
