"""
Interfaces to the systems this engine reads signals from and stays in sync
with, plus SQLite-backed adapters sharing the governance database.
"""
