# Durable queue of status changes waiting to be pushed to the server

import logging
import os
import threading
import time
from dataclasses import replace

import constants
import file_handler
from exceptions import QueueExhausted
from models import QueueEntry

logger = logging.getLogger(__name__)


class OfflineQueue:
    """
    Pending status deltas keyed by entry id, persisted as a JSON file.

    At most one element exists per entry. Enqueuing a change for an entry that is
    already queued overwrites the target (`new_*`) fields and keeps the original
    `old_*` fields, so the delta against the server state is never lost.
    """

    def __init__(self, queue_file, retry_limit=constants.DEFAULT_QUEUE_RETRY_LIMIT, clock=time.time):
        self.queue_file = queue_file
        self.retry_limit = retry_limit
        self._clock = clock
        self._lock = threading.Lock()
        self._items = self._load()

    def _load(self):
        data = file_handler.load_json(self.queue_file, default={})
        items = {}
        if not isinstance(data, dict):
            logger.warning(f"Queue file {self.queue_file} does not contain an object. Starting fresh.")
            return items
        for key, value in data.items():
            try:
                item = QueueEntry.from_dict(value)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping unreadable queue element {key!r}: {e}")
                continue
            items[item.entry_id] = item
        if items:
            logger.info(f"Loaded {len(items)} pending status change(s) from {self.queue_file}")
        return items

    def _save(self):
        data = {str(entry_id): item.to_dict() for entry_id, item in self._items.items()}
        queue_dir = os.path.dirname(self.queue_file)
        try:
            if queue_dir:
                os.makedirs(queue_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create queue directory {queue_dir}: {e}")
            return False
        ok = file_handler.save_json(self.queue_file, data)
        if not ok:
            logger.error(f"Failed to save status queue to {self.queue_file}")
        return ok

    def enqueue(self, entry_id, old_status, new_status, old_starred, new_starred):
        """Adds a delta for an entry, or updates the target of the one already queued."""
        with self._lock:
            existing = self._items.get(entry_id)
            if existing is not None:
                existing.new_status = new_status
                existing.new_starred = bool(new_starred)
                existing.timestamp = self._clock()
                existing.retry_count = 0 # A fresh change is worth retrying again
                logger.debug(f"Updated queued change for entry {entry_id}: "
                             f"{existing.old_status} -> {new_status}")
            else:
                self._items[entry_id] = QueueEntry(
                    entry_id=entry_id,
                    old_status=old_status,
                    new_status=new_status,
                    old_starred=bool(old_starred),
                    new_starred=bool(new_starred),
                    timestamp=self._clock(),
                )
                logger.debug(f"Enqueued status change for entry {entry_id}: {old_status} -> {new_status}")
            return self._save()

    def drain(self):
        """
        Returns the elements to retry, oldest first. Elements that reached the retry
        ceiling are left in the queue but skipped, and reported as warnings.
        """
        with self._lock:
            pending = []
            for item in sorted(self._items.values(), key=lambda i: i.timestamp):
                if item.retry_count >= self.retry_limit:
                    warning = QueueExhausted(
                        f"Status change for entry {item.entry_id} skipped after {item.retry_count} attempts",
                        entry_id=item.entry_id, retry_count=item.retry_count)
                    logger.warning(warning.message)
                    continue
                pending.append(replace(item))
            return pending

    def remove(self, entry_id):
        with self._lock:
            if self._items.pop(entry_id, None) is None:
                return True
            logger.debug(f"Removed entry {entry_id} from status queue")
            return self._save()

    def increment_retry(self, entry_id):
        """Bumps the retry count of a queued element. Returns the new count, or None if absent."""
        with self._lock:
            item = self._items.get(entry_id)
            if item is None:
                return None
            item.retry_count += 1
            self._save()
            return item.retry_count

    def get(self, entry_id):
        with self._lock:
            item = self._items.get(entry_id)
            return replace(item) if item is not None else None

    def count(self):
        with self._lock:
            return len(self._items)

    def exhausted(self):
        with self._lock:
            return [replace(item) for item in self._items.values() if item.retry_count >= self.retry_limit]

    def clear(self):
        with self._lock:
            self._items.clear()
            return self._save()
