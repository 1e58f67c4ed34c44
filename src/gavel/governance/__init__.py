"""
Governance components: roles and permissions, confidence scoring, the case
state machine, tiered enforcement, appeals and suspension quorums, and the
moderator safeguards (rate limiting, audit log, rogue detection).
"""
