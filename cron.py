"""
Daily auto-completion sweep for the hiking events service.
This job pages through active events whose date has passed and marks them
completed. Run once per day via cron or a scheduler, e.g. `0 0 * * *`.
"""
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from config import Settings
from database import Database, utcnow
from pagination import fetch_page
from schemas import EVENT_DATE_FORMAT

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    completed: int = 0
    skipped: int = 0
    failed: int = 0


class AutoCompletionSweep:
    def __init__(
        self,
        database: Database,
        page_size: int = 100,
        max_workers: int = 8,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.database = database
        self.page_size = page_size
        self.max_workers = max(1, max_workers)
        self.clock = clock

    def complete_event(self, event_id, now: datetime) -> bool:
        # the status guard keeps an event cancelled mid-sweep cancelled
        result = self.database.events.update_one(
            {"_id": event_id, "status": "active"},
            {"$set": {"status": "completed", "updated_at": now}},
        )
        return result.modified_count == 1

    def _complete_safely(self, event_id, now: datetime):
        try:
            return self.complete_event(event_id, now)
        except Exception:
            logger.exception("Failed to complete event %s", event_id)
            return None

    def run(self) -> SweepResult:
        now = self.clock()
        query = {"status": "active", "event_date": {"$lt": now.strftime(EVENT_DATE_FORMAT)}}
        result = SweepResult()
        token = None

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while True:
                docs, token = fetch_page(self.database.events, query, self.page_size, token)
                outcomes = list(pool.map(lambda doc: self._complete_safely(doc["_id"], now), docs))
                result.completed += sum(1 for o in outcomes if o is True)
                result.skipped += sum(1 for o in outcomes if o is False)
                result.failed += sum(1 for o in outcomes if o is None)
                if token is None:
                    break

        logger.info(
            "Auto-completion sweep finished: %d completed, %d skipped, %d failed",
            result.completed,
            result.skipped,
            result.failed,
        )
        return result


def main() -> int:
    settings = Settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s | %(message)s")
    database = Database.from_settings(settings)
    sweep = AutoCompletionSweep(
        database,
        page_size=settings.sweep_page_size,
        max_workers=settings.sweep_max_workers,
    )
    result = sweep.run()
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
