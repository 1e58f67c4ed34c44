"""
Utility functions and helpers for Gavel.

This package provides reusable utilities:

- **logger.py**: Centralized logging configuration with colored console output,
  rotating file handlers, and per-session log aggregation. Suppresses noise from
  verbose libraries (aiosqlite, Discord internals). Uses prompt_toolkit for
  non-blocking console I/O.

- **time_utils.py**: Unix-second clock helpers shared by every component so
  tests can substitute a fake clock.
"""
