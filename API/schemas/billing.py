"""
Billing cycle schemas — cron responses and audit payloads.
"""

from typing import Dict, List

from pydantic import BaseModel, Field


def _empty_lock_counts() -> Dict[str, int]:
    return {"trial_expired": 0, "subscription_expired": 0, "payment_overdue": 0}


class CycleSummary(BaseModel):
    """Aggregated result of one control-loop invocation."""

    renewed: int = 0
    failed_insufficient_balance: int = 0
    failed_other: int = 0
    locked: int = 0
    locked_by_reason: Dict[str, int] = Field(default_factory=_empty_lock_counts)
    skipped: int = 0
    trial_reminders_sent: int = 0
    notifications_sent: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class CronResponse(BaseModel):
    success: bool
    message: str
    results: CycleSummary
