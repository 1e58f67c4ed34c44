"""
Data structures shared across Gavel.

- **role_datatypes.py**: Roles, moderator levels and the per-user role record.
- **confidence_datatypes.py**: Confidence sources and the aggregated score.
- **case_datatypes.py**: Case statuses, priorities, reason codes, history
  entries and review queue items.
- **enforcement_datatypes.py**: Enforcement tiers, restriction snapshots and
  the account-status view shared with the external status engine.
- **appeal_datatypes.py**: Appeals and permanent-suspension quorum records.
- **audit_datatypes.py**: Moderator action types, audit entries, rate-limit
  windows and rogue-moderator detections.
- **signal_datatypes.py**: Raw signals read from trust-signal producers.
"""
