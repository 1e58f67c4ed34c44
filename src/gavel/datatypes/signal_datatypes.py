"""
Raw signals read from the trust-signal producers.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class TrustFlags:
    """Flag counters from a user's trust profile."""
    ai_flags: int = 0
    community_flags: int = 0


@dataclass(slots=True, frozen=True)
class ContentReport:
    reporter_id: str
    created_at: int
    reason: str = ""


@dataclass(slots=True, frozen=True)
class AnomalyDetection:
    """One anomaly-detector hit. ``score`` is the detector's own [0, 1] severity."""
    kind: str
    score: float
    detected_at: int
