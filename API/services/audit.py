"""
Cron audit log writer.
"""
from datetime import datetime
from typing import Any, Callable, Dict

from sqlalchemy.orm import Session

from database.models import CronLog


class CronLogWriter:
    """Appends one cron_logs row per invocation, in its own transaction."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record(self, job_name: str, executed_at: datetime,
               result: Dict[str, Any], success: bool) -> None:
        session = self.session_factory()
        try:
            session.add(CronLog(
                job_name=job_name,
                executed_at=executed_at,
                result=result,
                success=success,
            ))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
