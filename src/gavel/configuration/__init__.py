"""
Configuration management for Gavel.

- **app_configuration.py**: File-locked YAML configuration loader for global
  settings: database location, per-action rate limit overrides, batch job
  sizing and intervals, and the notification switch. Falls back gracefully on
  missing or malformed config files.

- **batch_settings.py**: Typed accessor for the ``batch_jobs`` section.
"""
