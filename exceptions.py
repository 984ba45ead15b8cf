# Error taxonomy for materialization and status sync


class ReaderError(Exception):
    """Base class for all errors raised by the reader core."""

    def __init__(self, message, entry_id=None):
        super().__init__(message)
        self.message = message
        self.entry_id = entry_id


class ContentUnavailable(ReaderError):
    """The entry has neither content nor summary to materialize."""


class FilesystemError(ReaderError):
    """A bundle directory or file could not be created or written."""


class ImageFetchFailure(ReaderError):
    """A single image could not be downloaded. Never fatal for an entry."""

    def __init__(self, message, entry_id=None, url=None):
        super().__init__(message, entry_id)
        self.url = url


class RemoteSyncFailure(ReaderError):
    """The server rejected or never answered a status update."""


class QueueExhausted(ReaderError):
    """A queued status change has hit the retry ceiling."""

    def __init__(self, message, entry_id=None, retry_count=0):
        super().__init__(message, entry_id)
        self.retry_count = retry_count
