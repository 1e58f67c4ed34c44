"""
Protocols for the external collaborators.

The governance components depend only on these shapes. Production wiring
uses the SQLite adapters in :mod:`gavel.collaborators.sqlite_collaborators`
and the Discord notifier; tests pass in-memory fakes.
"""

from __future__ import annotations

from typing import List, Protocol

from gavel.datatypes.enforcement_datatypes import AccountStatusSnapshot, NotificationLevel
from gavel.datatypes.signal_datatypes import AnomalyDetection, ContentReport, TrustFlags


class TrustProfileReader(Protocol):
    async def get_flags(self, user_id: str) -> TrustFlags: ...


class ContentReportStore(Protocol):
    async def get_reports(self, user_id: str, since: int) -> List[ContentReport]:
        """Reports filed against ``user_id`` at or after ``since``."""
        ...


class AnomalyFeed(Protocol):
    async def get_anomalies(self, user_id: str, since: int) -> List[AnomalyDetection]: ...


class AccountStatusEngine(Protocol):
    """Read/write view of the separate account-status and feature-lock engine."""

    async def get_status(self, user_id: str) -> AccountStatusSnapshot: ...

    async def apply_status(self, snapshot: AccountStatusSnapshot, reason: str) -> None: ...


class NotificationDispatcher(Protocol):
    """Outbound user notices. Only the level crosses this boundary; copy is fixed."""

    async def send_enforcement_notice(self, user_id: str, level: NotificationLevel) -> None: ...
