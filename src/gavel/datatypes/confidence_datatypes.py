"""
Confidence score data structures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class ConfidenceSourceType(Enum):
    """Signal families that feed the enforcement confidence score."""

    AI_SCAN = "ai_scan"
    TRUSTED_MOD_ACTION = "trusted_mod_action"
    COMMUNITY_FLAG = "community_flag"
    USER_REPORT = "user_report"
    VIOLATION_HISTORY = "violation_history"
    ANOMALY_DETECTION = "anomaly_detection"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class ConfidenceSource:
    """One contributing signal.

    Attributes:
        type: Signal family
        weight: Fixed weight of the family
        value: Normalized signal strength in [0, 1]
        contribution: ``weight * value``
        timestamp: Unix seconds the source was evaluated
    """
    type: ConfidenceSourceType
    weight: float
    value: float
    contribution: float
    timestamp: int

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "weight": self.weight,
            "value": self.value,
            "contribution": self.contribution,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConfidenceSource":
        return cls(
            type=ConfidenceSourceType(data["type"]),
            weight=float(data["weight"]),
            value=float(data.get("value", 0.0)),
            contribution=float(data["contribution"]),
            timestamp=int(data["timestamp"]),
        )


@dataclass(slots=True)
class EnforcementConfidence:
    """Aggregated enforcement confidence for a user. Recomputed on demand and
    overwritten, never merged."""
    user_id: str
    score: float
    sources: List[ConfidenceSource] = field(default_factory=list)
    calculated_at: int = 0
