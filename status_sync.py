# Keeps read/starred status consistent between local bundles and the server

import logging
import threading

import constants
from api_clients import miniflux_client
from entry_locks import EntryLocks
from exceptions import QueueExhausted, RemoteSyncFailure
from models import StatusChangeResult, parse_timestamp

logger = logging.getLogger(__name__)


class StatusSyncEngine:
    """
    Applies status changes locally and on the server.

    A change is pushed to the server first; the local metadata is written either
    way, marked `synced` or `pending_upload`, and failed pushes land in the offline
    queue. Pushes for one entry go to the server one at a time, and only the most
    recent change may write its outcome: a result that arrives after a newer
    change started is discarded.
    The server always wins: an observed server state newer than a pending local
    change replaces it.
    """

    def __init__(self, config, metadata_store, offline_queue, remote=miniflux_client):
        self.config = config
        self.metadata_store = metadata_store
        self.offline_queue = offline_queue
        self.remote = remote
        self._push_locks = EntryLocks()
        self._write_locks = EntryLocks()
        self._guard = threading.Lock()
        self._counter = 0
        self._active = {} # entry_id -> {'generation': int, 'in_flight': int}
        self._invalidation_callbacks = []

    # --- Helpers ---
    def _begin(self, entry_id, supersede):
        """
        Registers an operation on an entry. Returns its generation and whether
        another operation on the same entry was already running.
        """
        with self._guard:
            state = self._active.setdefault(entry_id, {'generation': 0, 'in_flight': 0})
            busy = state['in_flight'] > 0
            if supersede:
                self._counter += 1
                state['generation'] = self._counter
            state['in_flight'] += 1
            return state['generation'], busy

    def _finish(self, entry_id):
        with self._guard:
            state = self._active[entry_id]
            state['in_flight'] -= 1
            if state['in_flight'] == 0:
                del self._active[entry_id]

    def _is_current(self, entry_id, generation):
        with self._guard:
            state = self._active.get(entry_id)
            return state is not None and state['generation'] == generation

    def in_flight(self, entry_id):
        """Number of operations on an entry that are pushing or waiting to push."""
        with self._guard:
            state = self._active.get(entry_id)
            return state['in_flight'] if state else 0

    def subscribe_invalidation(self, callback):
        """Registers `callback(entry_id)`, called whenever a server-confirmed status changes."""
        self._invalidation_callbacks.append(callback)

    def _invalidate(self, entry_id):
        for callback in self._invalidation_callbacks:
            callback(entry_id)

    def load_metadata(self, entry_id):
        return self.metadata_store.load(entry_id)

    # --- Status Changes ---
    def change_status(self, entry_id, new_status, new_starred=None, previous_status=None, previous_starred=None):
        """
        Changes the status (and optionally the starred flag) of an entry.

        `previous_status`/`previous_starred` describe the prior state for entries
        that have no local bundle. The call always succeeds from the caller's point
        of view; `sync_status` on the result tells whether the server confirmed it.
        """
        if new_status not in constants.VALID_STATUSES:
            raise ValueError(f"Invalid entry status: {new_status!r}")

        generation, busy = self._begin(entry_id, supersede=True)
        try:
            with self._push_locks.hold(entry_id):
                record = self.metadata_store.load(entry_id)
                queued = self.offline_queue.get(entry_id)
                if record is not None:
                    old_status, old_starred = record.status, record.starred
                else:
                    old_status = previous_status or (constants.STATUS_UNREAD if new_status == constants.STATUS_READ
                                                     else constants.STATUS_READ)
                    old_starred = bool(previous_starred)
                if new_starred is None:
                    new_starred = old_starred
                new_starred = bool(new_starred)

                if not self._is_current(entry_id, generation):
                    logger.debug(f"Status change for entry {entry_id} superseded before it was sent")
                    return StatusChangeResult(entry_id, new_status, new_starred, constants.SYNC_PENDING_UPLOAD,
                                              superseded=True)

                # The local flag matches the server only after a confirmed sync that
                # no queued change or concurrent push may have touched since
                known = (record is not None and record.sync_status == constants.SYNC_SYNCED
                         and queued is None and not busy)
                server_starred = old_starred if known else None
                ok = self.remote.push_status_change(entry_id, new_status, new_starred, server_starred,
                                                    config=self.config)

            with self._write_locks.hold(entry_id):
                if not self._is_current(entry_id, generation):
                    logger.debug(f"Discarding outdated status result for entry {entry_id}")
                    return StatusChangeResult(entry_id, new_status, new_starred, constants.SYNC_PENDING_UPLOAD,
                                              superseded=True)

                if ok:
                    self.metadata_store.update_status(entry_id, new_status, new_starred, constants.SYNC_SYNCED)
                    self.offline_queue.remove(entry_id)
                    logger.info(f"Entry {entry_id} marked as {new_status}")
                    self._invalidate(entry_id)
                    return StatusChangeResult(entry_id, new_status, new_starred, constants.SYNC_SYNCED)

                failure = RemoteSyncFailure(f"Could not update entry {entry_id} on the server", entry_id=entry_id)
                self.metadata_store.update_status(entry_id, new_status, new_starred, constants.SYNC_PENDING_UPLOAD)
                self.offline_queue.enqueue(entry_id, old_status, new_status, old_starred, new_starred)
                logger.info(f"{failure.message}; marked as {new_status} locally, will sync later")
                return StatusChangeResult(entry_id, new_status, new_starred, constants.SYNC_PENDING_UPLOAD)
        finally:
            self._finish(entry_id)

    def drain_queue(self):
        """
        Retries queued status changes, oldest first, if the server is reachable.
        Returns the number of entries successfully synced.
        """
        pending = self.offline_queue.drain()
        if not pending:
            return 0
        if not self.remote.check_connectivity(config=self.config):
            logger.info(f"Server unreachable; {len(pending)} status change(s) remain queued")
            return 0

        synced = 0
        for item in pending:
            if self._drain_one(item):
                synced += 1

        logger.info(f"Synced {synced} of {len(pending)} queued status change(s)")
        return synced

    def _drain_one(self, item):
        entry_id = item.entry_id
        generation, _ = self._begin(entry_id, supersede=False)
        try:
            with self._push_locks.hold(entry_id):
                current = self.offline_queue.get(entry_id)
                if current is None or current.timestamp != item.timestamp or not self._is_current(entry_id, generation):
                    logger.debug(f"Queued change for entry {entry_id} changed before it was sent; skipping")
                    return False
                # An earlier failed attempt may or may not have reached the server, so its flag is re-read
                ok = self.remote.push_status_change(entry_id, item.new_status, item.new_starred, None,
                                                    config=self.config)

            with self._write_locks.hold(entry_id):
                current = self.offline_queue.get(entry_id)
                if current is None or current.timestamp != item.timestamp or not self._is_current(entry_id, generation):
                    logger.debug(f"Queued change for entry {entry_id} changed while syncing; skipping")
                    return False

                if ok:
                    self.offline_queue.remove(entry_id)
                    self.metadata_store.update_status(entry_id, item.new_status, item.new_starred,
                                                      constants.SYNC_SYNCED)
                    self._invalidate(entry_id)
                    return True

                retries = self.offline_queue.increment_retry(entry_id)
                if retries is not None and retries >= self.offline_queue.retry_limit:
                    warning = QueueExhausted(
                        f"Giving up on status change for entry {entry_id} after {retries} attempts",
                        entry_id=entry_id, retry_count=retries)
                    logger.warning(warning.message)
                return False
        finally:
            self._finish(entry_id)

    # --- Server Wins ---
    def observe_server_entry(self, entry):
        """
        Applies a server-fetched entry state to local metadata. A pending local change
        is dropped when the server's `changed_at` is newer than when it was queued.
        Returns True if local state was changed.
        """
        with self._write_locks.hold(entry.id):
            queued = self.offline_queue.get(entry.id)
            if queued is not None:
                server_changed = parse_timestamp(entry.changed_at)
                if server_changed is None or server_changed.timestamp() <= queued.timestamp:
                    return False
                self.offline_queue.remove(entry.id)
                logger.info(f"Server state of entry {entry.id} is newer; dropped local change "
                            f"({queued.old_status} -> {queued.new_status})")
            else:
                record = self.metadata_store.load(entry.id)
                if record is None or (record.status == entry.status and record.starred == entry.starred
                                      and record.sync_status == constants.SYNC_SYNCED):
                    return False

            self.metadata_store.update_status(entry.id, entry.status, entry.starred, constants.SYNC_SYNCED)
            self._invalidate(entry.id)
            return True

    def reconcile(self, entries):
        """Applies a server listing to local state. Returns the number of entries changed."""
        changed = sum(1 for entry in entries if self.observe_server_entry(entry))
        if changed:
            logger.info(f"Updated {changed} local entr{'y' if changed == 1 else 'ies'} from server state")
        return changed
