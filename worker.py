"""
Notification worker for the hiking events service.
This worker follows the MongoDB change stream of the `events` and
`participants` collections and feeds batches of change records to the
notification dispatcher. The stream position is checkpointed only after a
batch has been fully processed, so a failed batch is delivered again.
It can be run as a standalone script: `python worker.py`
"""
import logging
import signal
import threading
import time
from typing import Callable, List, Optional

from config import Settings
from database import EVENTS, PARTICIPANTS, Database
from mailer import mailer_from_settings
from notifications import ChangeRecord, NotificationDispatcher

logger = logging.getLogger(__name__)

CHECKPOINT_NAME = "notifications"

WATCH_PIPELINE = [
    {
        "$match": {
            "ns.coll": {"$in": [EVENTS, PARTICIPANTS]},
            "operationType": {"$in": ["insert", "update", "replace"]},
        }
    }
]


class CheckpointStore:
    def __init__(self, database: Database, name: str = CHECKPOINT_NAME):
        self.database = database
        self.name = name

    def load(self):
        doc = self.database.checkpoints.find_one({"_id": self.name})
        return doc.get("resume_token") if doc else None

    def save(self, token) -> None:
        self.database.checkpoints.update_one(
            {"_id": self.name},
            {"$set": {"resume_token": token, "updated_at": self.database.clock()}},
            upsert=True,
        )


class ChangeStreamWorker:
    def __init__(
        self,
        database: Database,
        dispatcher: NotificationDispatcher,
        batch_size: int = 10,
        poll_interval: int = 5,
        checkpoints: Optional[CheckpointStore] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.database = database
        self.dispatcher = dispatcher
        self.batch_size = max(1, batch_size)
        self.poll_interval = poll_interval
        self.checkpoints = checkpoints or CheckpointStore(database)
        self.sleep = sleep

    def open_stream(self):
        return self.database.db.watch(
            pipeline=WATCH_PIPELINE,
            full_document="whenAvailable",
            full_document_before_change="whenAvailable",
            resume_after=self.checkpoints.load(),
            max_await_time_ms=self.poll_interval * 1000,
        )

    def collect_batch(self, stream) -> List[dict]:
        batch = []
        while len(batch) < self.batch_size:
            change = stream.try_next()
            if change is None:
                break
            batch.append(change)
        return batch

    def process_batch(self, stream) -> int:
        """Dispatch one batch from `stream` and checkpoint it; returns the batch size."""
        changes = self.collect_batch(stream)
        if changes:
            records = [ChangeRecord.from_change_stream(change) for change in changes]
            sent = self.dispatcher.dispatch(records)
            logger.info("Processed %d change records, %d emails sent", len(records), sent)
        token = stream.resume_token
        if token is not None:
            self.checkpoints.save(token)
        return len(changes)

    def run(self, stop: Optional[threading.Event] = None) -> None:
        stop = stop or threading.Event()
        logger.info("Notification worker starting")
        while not stop.is_set():
            try:
                with self.open_stream() as stream:
                    while stream.alive and not stop.is_set():
                        self.process_batch(stream)
            except Exception:
                logger.exception(
                    "Notification batch failed; resuming from last checkpoint in %ss",
                    self.poll_interval,
                )
                self.sleep(self.poll_interval)
        logger.info("Notification worker stopped")


def main() -> None:
    settings = Settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s | %(message)s")
    database = Database.from_settings(settings)
    database.enable_pre_images()
    dispatcher = NotificationDispatcher(
        database,
        mailer_from_settings(settings),
        max_workers=settings.notify_max_workers,
    )
    worker = ChangeStreamWorker(
        database,
        dispatcher,
        batch_size=settings.worker_batch_size,
        poll_interval=settings.worker_poll_interval,
    )

    stop = threading.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_: stop.set())
    worker.run(stop)


if __name__ == "__main__":
    main()
