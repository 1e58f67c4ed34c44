"""
Fixed, reviewed copy for enforcement notices.

Every notice is selected by :class:`NotificationLevel` alone. Nothing about the
case, the reporters or the moderators involved is ever interpolated into the
text.
"""

from __future__ import annotations

from dataclasses import dataclass

from gavel.datatypes.enforcement_datatypes import NotificationLevel


@dataclass(slots=True, frozen=True)
class NoticeCopy:
    title: str
    body: str
    color: int


NOTICE_COPY = {
    NotificationLevel.SOFT: NoticeCopy(
        title="Your content visibility has been reduced",
        body=(
            "Some of your recent activity did not meet our community guidelines. "
            "Your content will be shown to fewer people for a limited time. "
            "This decision is final for the current period."
        ),
        color=0xF1C40F,
    ),
    NotificationLevel.HARD: NoticeCopy(
        title="Your account has been restricted",
        body=(
            "Your account has been restricted for repeated guideline violations. "
            "Your content is hidden and posting is temporarily unavailable while your account is reviewed."
        ),
        color=0xE67E22,
    ),
    NotificationLevel.SUSPENDED: NoticeCopy(
        title="Your account has been suspended",
        body=(
            "Your account has been suspended for serious guideline violations. "
            "Your content is hidden and posting is unavailable. "
            "If a decision on your account has been finalized you may submit an appeal."
        ),
        color=0xE74C3C,
    ),
}


def copy_for(level: NotificationLevel) -> NoticeCopy:
    """Return the notice copy for ``level``."""
    return NOTICE_COPY[level]
