"""
Billing Cycle Scheduler — optional in-process trigger

Runs inside the API process when BILLING_SCHEDULER_ENABLED is set.
Wakes every 30 seconds and runs the full billing cycle once per UTC day at
the configured time. Overlapping with an external cron trigger is safe:
every state change is a conditional write.
"""
import asyncio
import logging
from datetime import date, datetime
from typing import Callable, Optional, Tuple

from database.base import get_utc_now

logger = logging.getLogger(__name__)


def parse_run_time(value: str) -> Tuple[int, int]:
    """'HH:MM' -> (hour, minute); falls back to 02:00."""
    try:
        hour, minute = map(int, value.split(":"))
    except (ValueError, AttributeError):
        return 2, 0
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return 2, 0
    return hour, minute


class BillingCycleScheduler:
    def __init__(self, controller_factory: Callable, run_time: str = "02:00",
                 interval_seconds: float = 30):
        self.controller_factory = controller_factory
        self.hour, self.minute = parse_run_time(run_time)
        self.interval_seconds = interval_seconds
        self.running = True
        self._last_run: Optional[date] = None

    async def run(self):
        """Main scheduler loop."""
        logger.info(f"Billing cycle scheduler started ({self.hour:02d}:{self.minute:02d} UTC)")

        while self.running:
            try:
                await self.tick(get_utc_now())
            except Exception as e:
                logger.error(f"Scheduler error: {e}")

            await asyncio.sleep(self.interval_seconds)

    def is_due(self, now: datetime) -> bool:
        if self._last_run == now.date():
            return False
        return (now.hour, now.minute) >= (self.hour, self.minute)

    async def tick(self, now: datetime) -> bool:
        """Run the cycle if it is due. Returns True when a run happened."""
        if not self.is_due(now):
            return False

        self._last_run = now.date()
        controller = self.controller_factory()
        summary = await asyncio.to_thread(controller.run_billing_cycle, now)
        if summary.errors:
            logger.error(f"Scheduled billing cycle finished with {len(summary.errors)} errors")
        else:
            logger.info("Scheduled billing cycle finished")
        return True

    def stop(self):
        self.running = False
