# Per-entry metadata sidecar storage

import logging
from datetime import datetime

import file_handler
from entry_locks import EntryLocks
from models import MetadataRecord

logger = logging.getLogger(__name__)


class MetadataStore:
    """
    Reads and writes the `metadata.json` sidecar stored in each entry bundle.

    Writes go through a temporary file and rename, so a reader never observes a
    half-updated record. Read-modify-write cycles are serialized per entry id;
    different entries never contend.
    """

    def __init__(self, download_dir):
        self.download_dir = download_dir
        self._locks = EntryLocks()

    def path_for(self, entry_id):
        return file_handler.get_metadata_path(self.download_dir, entry_id)

    def load(self, entry_id):
        """Returns the MetadataRecord for an entry, or None if there is none."""
        data = file_handler.load_json(self.path_for(entry_id))
        if not isinstance(data, dict):
            return None
        try:
            return MetadataRecord.from_dict(data)
        except TypeError as e:
            logger.warning(f"Ignoring malformed metadata for entry {entry_id}: {e}")
            return None

    def save(self, entry_id, record):
        """Writes a full record. Returns True on success."""
        with self._locks.hold(entry_id):
            return self._write(entry_id, record)

    def update_status(self, entry_id, new_status, new_starred, sync_status=None):
        """
        Updates status, starred flag and (optionally) sync state of an existing record.
        Returns the updated record, or None if the entry has no metadata or the write failed.
        """
        with self._locks.hold(entry_id):
            record = self.load(entry_id)
            if record is None:
                logger.debug(f"No local metadata for entry {entry_id}; status update skipped")
                return None
            record.status = new_status
            record.starred = bool(new_starred)
            if sync_status is not None:
                record.sync_status = sync_status
            if not self._write(entry_id, record):
                return None
            logger.debug(f"Updated metadata for entry {entry_id}: status={new_status}, "
                         f"starred={record.starred}, sync={record.sync_status}")
            return record

    def delete(self, entry_id):
        """Removes the whole bundle of an entry together with its metadata."""
        with self._locks.hold(entry_id):
            return file_handler.delete_bundle(self.download_dir, entry_id)

    def _write(self, entry_id, record):
        record.last_updated = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        ok = file_handler.save_json(self.path_for(entry_id), record.to_dict())
        if not ok:
            logger.error(f"Failed to write metadata for entry {entry_id}")
        return ok
