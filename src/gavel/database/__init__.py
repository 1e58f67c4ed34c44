"""
Database package for Gavel.

Provides the SQLite-backed governance store behind a single long-lived
connection with serialised writes.

Public API:
    - Database: Connection + schema lifecycle, ``read()`` and ``transaction()``
    - get_db: Process-wide default Database instance
"""
