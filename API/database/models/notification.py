"""
In-app notification inbox and cron audit log.
"""

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, JSON, Index
)

from ..base import Base, TimestampMixin, get_utc_now


class Notification(Base, TimestampMixin):
    """
    Lifecycle event for a tenant owner. Text is rendered by the client
    from type + data in the owner's locale.
    """

    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # subscription_renewed, renewal_failed, account_locked, trial_reminder
    data = Column(JSON, default=dict, nullable=False)
    read = Column(Boolean, default=False, nullable=False)


class CronLog(Base):
    """Append-only audit row, one per scheduler invocation."""

    __tablename__ = 'cron_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_name = Column(String(100), nullable=False)
    executed_at = Column(DateTime, default=get_utc_now, nullable=False)
    result = Column(JSON, default=dict, nullable=False)
    success = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index('ix_cron_logs_job_name_executed_at', 'job_name', 'executed_at'),
    )
