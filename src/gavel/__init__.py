"""
Gavel - Community Governance & Federated Enforcement Engine

Gavel turns raw trust and abuse signals into graduated account restrictions,
runs the human-review lifecycle of moderation cases, handles appeals, and
keeps an eye on the moderators themselves.

Core Components:

- **Role & Permission Model**: Four-tier moderator hierarchy (User, Community Mod,
  Trusted Mod, Admin) with a static permission matrix
- **Confidence Scoring**: Weighted aggregation of AI scans, community flags,
  trusted-mod actions, user reports, violation history and anomaly detections
  into a single 0.0-1.0 score
- **Case Management**: Moderation case state machine with per-subject
  deduplication, append-only history and a human review queue
- **Tiered Enforcement**: Maps confidence to None/Soft/Hard/Suspension-Risk tiers
  and applies visibility and posting restrictions, kept in sync with the
  external account-status engine
- **Appeals**: User appeals against resolved cases plus a multi-admin quorum
  gate for permanent suspensions
- **Rate Limiting & Rogue Detection**: Per-moderator action budgets and
  periodic audit-log analysis that can auto-suspend abusive moderators

Usage:
    from gavel.main import main
    main()  # Opens the database and runs the periodic governance jobs
"""
