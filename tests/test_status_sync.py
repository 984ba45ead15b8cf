import os
from datetime import datetime, timezone
import threading
import time
from itertools import count

import pytest

import constants
from metadata_store import MetadataStore
from models import Entry, MetadataRecord
from offline_queue import OfflineQueue
from status_sync import StatusSyncEngine

READ = constants.STATUS_READ
UNREAD = constants.STATUS_UNREAD


class FakeRemote:
    """Stands in for the miniflux_client module."""

    def __init__(self, online=True):
        self.online = online
        self.pushes = []
        self.before_push = None

    def push_status_change(self, entry_id, new_status, new_starred, old_starred, config):
        self.pushes.append((entry_id, new_status, new_starred, old_starred))
        if self.before_push is not None:
            self.before_push(entry_id)
        return self.online

    def check_connectivity(self, config):
        return self.online


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def store(base_config):
    return MetadataStore(base_config['download_dir'])


@pytest.fixture
def queue(base_config):
    ticks = count(1_700_000_000)
    return OfflineQueue(base_config['queue_file'], retry_limit=base_config['queue_retry_limit'],
                        clock=lambda: float(next(ticks)))


@pytest.fixture
def engine(base_config, store, queue, remote):
    return StatusSyncEngine(base_config, store, queue, remote=remote)


def _seed(store, base_config, entry_id=7, status=UNREAD, starred=False):
    os.makedirs(os.path.join(base_config['download_dir'], str(entry_id)), exist_ok=True)
    store.save(entry_id, MetadataRecord(entry_id=entry_id, title="T", url="https://x.com", status=status,
                                        starred=starred, published_at=None, include_images=True))


def _server_entry(entry_id=7, status=READ, starred=False, changed_at="2024-01-01T00:00:00Z"):
    return Entry(id=entry_id, title="T", url="https://x.com", content="c", status=status,
                 starred=starred, changed_at=changed_at)


# --- change_status ---

def test_change_status_online(engine, store, queue, remote, base_config):
    _seed(store, base_config)
    invalidated = []
    engine.subscribe_invalidation(invalidated.append)

    result = engine.change_status(7, READ)

    assert result.synced
    assert remote.pushes == [(7, READ, False, False)]
    record = store.load(7)
    assert (record.status, record.sync_status) == (READ, constants.SYNC_SYNCED)
    assert queue.count() == 0
    assert invalidated == [7]


def test_change_status_offline_then_drain(engine, store, queue, remote, base_config):
    _seed(store, base_config)
    remote.online = False

    result = engine.change_status(7, READ)

    assert result.sync_status == constants.SYNC_PENDING_UPLOAD
    assert store.load(7).status == READ
    assert store.load(7).sync_status == constants.SYNC_PENDING_UPLOAD
    item = queue.get(7)
    assert (item.old_status, item.new_status) == (UNREAD, READ)

    remote.online = True
    assert engine.drain_queue() == 1
    assert queue.count() == 0
    assert store.load(7).sync_status == constants.SYNC_SYNCED
    # A queued change may have reached the server before failing, so its flag is re-read
    assert remote.pushes[-1] == (7, READ, False, None)


def test_repeated_offline_changes_collapse(engine, store, queue, remote, base_config):
    _seed(store, base_config)
    remote.online = False

    engine.change_status(7, READ)
    engine.change_status(7, UNREAD, new_starred=True)

    assert queue.count() == 1
    item = queue.get(7)
    assert (item.old_status, item.new_status) == (UNREAD, UNREAD)
    assert (item.old_starred, item.new_starred) == (False, True)
    # With a change already queued the server flag is unknown and must be read back
    assert remote.pushes[-1] == (7, UNREAD, True, None)


def test_three_offline_flips_leave_one_element(engine, store, queue, remote, base_config):
    _seed(store, base_config)
    remote.online = False

    for status in (READ, UNREAD, READ):
        assert engine.change_status(7, status).sync_status == constants.SYNC_PENDING_UPLOAD

    assert queue.count() == 1
    item = queue.get(7)
    assert (item.old_status, item.new_status) == (UNREAD, READ)
    assert store.load(7).status == READ


def test_change_status_without_local_bundle(engine, queue, remote):
    remote.online = False
    result = engine.change_status(99, READ)

    assert result.status == READ
    item = queue.get(99)
    assert (item.old_status, item.new_status) == (UNREAD, READ)

    engine.change_status(98, UNREAD, previous_status=UNREAD, previous_starred=True)
    assert queue.get(98).old_starred is True
    assert queue.get(98).new_starred is True


def test_change_status_rejects_unknown_status(engine):
    with pytest.raises(ValueError):
        engine.change_status(7, "archived")


def test_change_status_keeps_starred_when_not_given(engine, store, remote, base_config):
    _seed(store, base_config, starred=True)
    engine.change_status(7, READ)
    assert remote.pushes == [(7, READ, True, True)]
    assert store.load(7).starred is True


def test_outdated_response_is_discarded(engine, store, queue, remote, base_config):
    """A slow first push must not overwrite the outcome of a newer change."""
    _seed(store, base_config)
    first_push_started = threading.Event()
    release_first_push = threading.Event()

    def before_push(entry_id):
        if len(remote.pushes) == 1:
            first_push_started.set()
            release_first_push.wait(timeout=5)

    remote.before_push = before_push
    results = {}
    first = _start(lambda: results.setdefault("first", engine.change_status(7, READ)))
    assert first_push_started.wait(timeout=5)

    second = _start(lambda: results.setdefault("second", engine.change_status(7, UNREAD, new_starred=True)))
    _wait_for(lambda: engine.in_flight(7) == 2)
    release_first_push.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert results["first"].superseded
    assert not results["second"].superseded
    record = store.load(7)
    assert (record.status, record.starred) == (UNREAD, True)
    # The newer push waited for the older one and read the server flag itself
    assert remote.pushes == [(7, READ, False, False), (7, UNREAD, True, None)]
    assert engine.in_flight(7) == 0


def test_change_superseded_while_waiting_is_never_sent(engine, store, remote, base_config):
    _seed(store, base_config)
    release_first_push = threading.Event()
    first_push_started = threading.Event()

    def before_push(entry_id):
        if len(remote.pushes) == 1:
            first_push_started.set()
            release_first_push.wait(timeout=5)

    remote.before_push = before_push
    results = {}
    workers = [_start(lambda: results.setdefault("first", engine.change_status(7, READ)))]
    assert first_push_started.wait(timeout=5)
    workers.append(_start(lambda: results.setdefault("second", engine.change_status(7, UNREAD))))
    _wait_for(lambda: engine.in_flight(7) == 2)
    workers.append(_start(lambda: results.setdefault("third", engine.change_status(7, READ, new_starred=True))))
    _wait_for(lambda: engine.in_flight(7) == 3)
    release_first_push.set()
    for worker in workers:
        worker.join(timeout=5)

    assert results["first"].superseded and results["second"].superseded
    assert results["third"].synced
    assert [push[1:3] for push in remote.pushes] == [(READ, False), (READ, True)]


class ServerModel:
    """Remote whose status and starred flag behave like Miniflux, including the bookmark toggle."""

    def __init__(self, status=UNREAD, starred=False):
        self.status = status
        self.starred = starred
        self.after_apply = None

    def push_status_change(self, entry_id, new_status, new_starred, old_starred, config):
        self.status = new_status
        baseline = self.starred if old_starred is None else old_starred
        if baseline != new_starred:
            self.starred = not self.starred
        if self.after_apply is not None:
            self.after_apply()
        return True

    def check_connectivity(self, config):
        return True


def test_newer_change_accounts_for_superseded_toggle(base_config, store, queue):
    """The older call already flipped the server flag; the newer one must flip it back."""
    server = ServerModel()
    engine = StatusSyncEngine(base_config, store, queue, remote=server)
    _seed(store, base_config)
    applied = threading.Event()
    release = threading.Event()

    def after_apply():
        if not applied.is_set():
            applied.set()
            release.wait(timeout=5)

    server.after_apply = after_apply
    results = {}
    first = _start(lambda: results.setdefault("first", engine.change_status(7, READ, new_starred=True)))
    assert applied.wait(timeout=5)
    second = _start(lambda: results.setdefault("second", engine.change_status(7, READ, new_starred=False)))
    _wait_for(lambda: engine.in_flight(7) == 2)
    release.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert results["first"].superseded
    assert results["second"].synced
    record = store.load(7)
    assert (record.starred, record.sync_status) == (False, constants.SYNC_SYNCED)
    assert server.starred is False


def _start(target):
    worker = threading.Thread(target=target)
    worker.start()
    return worker


def _wait_for(predicate, timeout=5):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("condition not reached in time")
        time.sleep(0.01)


# --- drain_queue ---

def test_drain_empty_queue_skips_connectivity_check(engine, remote):
    remote.check_connectivity = lambda config: pytest.fail("connectivity check not expected")
    assert engine.drain_queue() == 0


def test_drain_while_offline_keeps_retry_counts(engine, queue, remote):
    remote.online = False
    engine.change_status(7, READ)
    pushes_before = len(remote.pushes)

    assert engine.drain_queue() == 0
    assert queue.get(7).retry_count == 0
    assert len(remote.pushes) == pushes_before


def test_drain_failures_exhaust_retries(engine, queue, remote, caplog):
    remote.online = False
    engine.change_status(7, READ)

    # Reachable server that keeps rejecting the update
    remote.check_connectivity = lambda config: True
    for _ in range(3):
        assert engine.drain_queue() == 0
    assert queue.get(7).retry_count == 3
    assert "Giving up on status change for entry 7 after 3 attempts" in caplog.text

    pushes_before = len(remote.pushes)
    assert engine.drain_queue() == 0
    assert len(remote.pushes) == pushes_before


def test_drain_oldest_first(engine, remote):
    remote.online = False
    for entry_id in (5, 3, 9):
        engine.change_status(entry_id, READ)
    remote.online = True
    remote.pushes.clear()

    assert engine.drain_queue() == 3
    assert [push[0] for push in remote.pushes] == [5, 3, 9]


def test_drain_skips_element_changed_during_push(engine, queue, remote):
    remote.online = False
    engine.change_status(7, READ)
    remote.online = True
    remote.before_push = lambda entry_id: queue.enqueue(7, UNREAD, UNREAD, False, True)

    assert engine.drain_queue() == 0
    assert queue.get(7).new_starred is True


# --- Server wins ---

def test_server_newer_than_queued_change_wins(engine, store, queue, remote, base_config):
    _seed(store, base_config)
    remote.online = False
    engine.change_status(7, READ)
    queued_at = queue.get(7).timestamp
    invalidated = []
    engine.subscribe_invalidation(invalidated.append)

    # changed_at one minute after the change was queued
    later = _server_entry(status=UNREAD, starred=True, changed_at=_iso(queued_at + 60))
    assert engine.observe_server_entry(later)

    assert queue.get(7) is None
    record = store.load(7)
    assert (record.status, record.starred, record.sync_status) == (UNREAD, True, constants.SYNC_SYNCED)
    assert invalidated == [7]


def test_older_server_state_keeps_queued_change(engine, store, queue, remote, base_config):
    _seed(store, base_config)
    remote.online = False
    engine.change_status(7, READ)

    older = _server_entry(status=UNREAD, changed_at=_iso(queue.get(7).timestamp - 60))
    assert not engine.observe_server_entry(older)
    assert queue.get(7) is not None
    assert store.load(7).status == READ


def test_server_state_applied_to_stale_local_record(engine, store, base_config):
    _seed(store, base_config, status=UNREAD)
    assert engine.observe_server_entry(_server_entry(status=READ))
    assert store.load(7).status == READ
    # Nothing left to change the second time
    assert not engine.observe_server_entry(_server_entry(status=READ))


def test_reconcile_counts_changes(engine, store, base_config):
    _seed(store, base_config, entry_id=1, status=UNREAD)
    _seed(store, base_config, entry_id=2, status=READ)
    changed = engine.reconcile([_server_entry(1, status=READ), _server_entry(2, status=READ),
                                _server_entry(3, status=READ)])
    assert changed == 1


def _iso(epoch_seconds):
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat().replace("+00:00", "Z")
