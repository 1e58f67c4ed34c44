"""
Low-level persistence for the governance store.

Each repository is a set of static methods that take an open aiosqlite
connection, so callers decide whether they run inside ``Database.read()`` or
``Database.transaction()``. Repositories never open transactions themselves.
"""
