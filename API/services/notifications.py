"""
Lifecycle notification dispatchers — best-effort delivery to tenant owners.

Both dispatchers swallow and log delivery errors: a failed notification must
never undo or block a billing transition.
"""
import logging
from typing import Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import Notification
from services.ports import LifecycleEvent

logger = logging.getLogger(__name__)


class DatabaseNotificationDispatcher:
    """Writes to the in-app notifications inbox using its own session."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def notify(self, owner_id: str, event: LifecycleEvent) -> bool:
        if not owner_id:
            logger.warning(f"[{event.shop_name}] No owner for {event.event_type}, skipped")
            return False
        session = self.session_factory()
        try:
            session.add(Notification(
                user_id=owner_id,
                type=event.event_type,
                data=event.to_payload(),
                read=False,
            ))
            session.commit()
            logger.info(f"[{event.shop_name}] Sent {event.event_type} notification")
            return True
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning(f"[{event.shop_name}] Notification error: {e}")
            return False
        finally:
            session.close()


class HttpNotificationDispatcher:
    """Posts events to an external notification service."""

    def __init__(self, base_url: str, timeout: float = 5.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def notify(self, owner_id: str, event: LifecycleEvent) -> bool:
        payload = {
            "user_id": owner_id,
            "type": event.event_type,
            "data": event.to_payload(),
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(f"{self.base_url}/notify/lifecycle", json=payload)
            if resp.status_code == 200:
                return True
            logger.warning(f"[{event.shop_name}] Notification service HTTP {resp.status_code}")
            return False
        except httpx.TimeoutException:
            logger.warning(f"[{event.shop_name}] Notification service timed out")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"[{event.shop_name}] Notification service unavailable: {e}")
            return False
