# Turns a remote entry into a self-contained offline bundle

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import constants
import file_handler
import html_processor
from entry_locks import EntryLocks
from api_clients import image_client
from exceptions import ContentUnavailable, FilesystemError, ImageFetchFailure
from metadata_store import MetadataStore
from models import LocalBundle, MaterializeOptions, MaterializeResult, MetadataRecord, ProgressEvent

logger = logging.getLogger(__name__)

# --- Pipeline States ---
STATE_NOT_STARTED = "not_started"
STATE_PREPARING = "preparing"
STATE_DISCOVERING_IMAGES = "discovering_images"
STATE_DOWNLOADING_IMAGES = "downloading_images"
STATE_REWRITING = "rewriting"
STATE_PERSISTING = "persisting"
STATE_COMPLETE = "complete"
STATE_ALREADY_EXISTS = "already_exists"
STATE_FAILED = "failed"
STATE_CANCELLED = "cancelled"


class CancelToken:
    """
    Cooperative cancellation for a running materialization.

    `cancel()` stops the image downloads and the entry is still written without the
    remaining images. `cancel(abort_entry=True)` gives up on the entry entirely;
    images downloaded so far stay on disk and are reused by a later run.
    """

    def __init__(self):
        self._event = threading.Event()
        self.abort_entry = False

    def cancel(self, abort_entry=False):
        self.abort_entry = self.abort_entry or abort_entry
        self._event.set()

    @property
    def cancelled(self):
        return self._event.is_set()


def _navigation_links(entry_id, ordering_context):
    ids = list(ordering_context or ())
    if entry_id not in ids:
        return None, None
    index = ids.index(entry_id)
    previous_id = ids[index - 1] if index > 0 else None
    next_id = ids[index + 1] if index + 1 < len(ids) else None
    return previous_id, next_id


class EntryMaterializer:
    """Runs discovery, image download, rewriting and persistence for one entry at a time."""

    def __init__(self, config, metadata_store=None, fetch_image=None, clock=time.monotonic):
        self.config = config
        self.download_dir = config['download_dir']
        self.metadata_store = metadata_store or MetadataStore(self.download_dir)
        self._fetch_image = fetch_image or image_client.fetch_image
        self._clock = clock
        self._cancel_interval = config.get('cancel_check_interval', constants.DEFAULT_CANCEL_CHECK_INTERVAL)
        self._entry_locks = EntryLocks()

    # --- Queries ---
    def is_materialized(self, entry_id):
        return file_handler.is_bundle_complete(self.download_dir, entry_id)

    def load_bundle(self, entry_id):
        """Returns the LocalBundle of a complete bundle, or None."""
        if not self.is_materialized(entry_id):
            return None
        metadata = self.metadata_store.load(entry_id)
        if metadata is None:
            return None
        return LocalBundle(
            entry_id=entry_id,
            directory=file_handler.get_entry_dir(self.download_dir, entry_id),
            html_path=file_handler.get_entry_html_path(self.download_dir, entry_id),
            metadata=metadata,
        )

    # --- Pipeline ---
    def materialize(self, entry, options=None, progress_callback=None, cancel_token=None):
        """
        Builds the offline bundle for `entry`. Materializing an entry that already has
        a complete bundle is a no-op that returns the existing bundle.

        Returns:
            MaterializeResult: carries the LocalBundle on success; on failure `error`
            holds a ContentUnavailable or FilesystemError.
        """
        options = options or MaterializeOptions(include_images=self.config.get('include_images', True))

        def notify(state, current=0, total=0, message=""):
            if progress_callback is not None:
                progress_callback(ProgressEvent(entry.id, state, current, total, message))

        with self._entry_locks.hold(entry.id):
            existing = self.load_bundle(entry.id)
            if existing is not None:
                logger.debug(f"Entry {entry.id} already downloaded, skipping")
                notify(STATE_ALREADY_EXISTS)
                return MaterializeResult(entry.id, STATE_ALREADY_EXISTS, bundle=existing, already_existed=True)
            return self._run(entry, options, notify, cancel_token)

    def _fail(self, entry, error, notify):
        logger.error(f"Materialization of entry {entry.id} failed: {error.message}")
        notify(STATE_FAILED, message=error.message)
        return MaterializeResult(entry.id, STATE_FAILED, error=error)

    def _run(self, entry, options, notify, cancel_token):
        notify(STATE_PREPARING)
        content = entry.content if entry.content and entry.content.strip() else entry.summary
        if not content or not content.strip():
            return self._fail(entry, ContentUnavailable(
                f"Entry {entry.id} has no content to download", entry_id=entry.id), notify)

        entry_dir = file_handler.ensure_entry_directory(self.download_dir, entry.id)
        if entry_dir is None:
            return self._fail(entry, FilesystemError(
                f"Could not create directory for entry {entry.id}", entry_id=entry.id), notify)

        content = html_processor.replace_youtube_iframes(content)

        notify(STATE_DISCOVERING_IMAGES)
        images, lookup = html_processor.find_images(content, entry.url)

        image_failures = []
        if options.include_images and images:
            if not self._download_images(entry, images, entry_dir, notify, cancel_token, image_failures):
                logger.info(f"Download of entry {entry.id} cancelled; kept images already saved in {entry_dir}")
                notify(STATE_CANCELLED)
                return MaterializeResult(entry.id, STATE_CANCELLED, image_failures=image_failures)

        # Past this point the entry is always finished or failed, never cancelled
        notify(STATE_REWRITING)
        rewritten = html_processor.rewrite_entry_html(content, lookup, options.include_images, entry.url)
        document = html_processor.build_entry_document(entry, rewritten)

        notify(STATE_PERSISTING)
        previous_id, next_id = _navigation_links(entry.id, options.ordering_context)
        downloaded = [image for image in images if image.downloaded]
        record = MetadataRecord(
            entry_id=entry.id,
            title=entry.title,
            url=entry.url,
            status=entry.status,
            starred=entry.starred,
            published_at=entry.published_at,
            include_images=options.include_images,
            images_found=len(images),
            images_downloaded=len(downloaded),
            sync_status=constants.SYNC_SYNCED,
            previous_entry_id=previous_id,
            next_entry_id=next_id,
            feed_id=entry.feed_id,
            feed_title=entry.feed_title,
            category_id=entry.category_id,
            category_title=entry.category_title,
            images={image.filename: image.src for image in downloaded},
        )
        bundle = self._persist(entry, entry_dir, document, record)
        if isinstance(bundle, FilesystemError):
            return self._fail(entry, bundle, notify)

        if options.include_images and images:
            logger.info(f"Entry {entry.id} downloaded: {len(downloaded)} of {len(images)} images")
        else:
            logger.info(f"Entry {entry.id} downloaded")
        notify(STATE_COMPLETE, len(downloaded), len(images))
        return MaterializeResult(entry.id, STATE_COMPLETE, bundle=bundle, image_failures=image_failures)

    def _download_images(self, entry, images, entry_dir, notify, cancel_token, failures):
        """
        Fetches every image in discovery order. Returns False if the entry was aborted.
        Cancellation is only looked at between images, at most once per check interval.
        """
        total = len(images)
        last_check = None
        for index, image in enumerate(images, start=1):
            now = self._clock()
            if cancel_token is not None and (last_check is None or now - last_check >= self._cancel_interval):
                last_check = now
                if cancel_token.cancelled:
                    if cancel_token.abort_entry:
                        return False
                    logger.info(f"Image downloads for entry {entry.id} stopped after {index - 1} of {total}")
                    break

            notify(STATE_DOWNLOADING_IMAGES, index, total, image.filename)
            image_path = os.path.join(entry_dir, image.filename)
            if os.path.isfile(image_path):
                image.outcome = "success" # Left over from an earlier, interrupted run
                continue

            ok = self._fetch_image(image.download_url, entry_dir, image.filename, config=self.config)
            if not ok and image.src2x:
                ok = self._fetch_image(image.src, entry_dir, image.filename, config=self.config)
            image.outcome = "success" if ok else "failed"
            if not ok:
                logger.warning(f"Failed to download image {image.src} for entry {entry.id}")
                failures.append(ImageFetchFailure(
                    f"Could not download {image.src}", entry_id=entry.id, url=image.src))

        # Anything not attempted stays pending and is dropped by the rewriter
        for image in images:
            if image.outcome == "pending":
                failures.append(ImageFetchFailure(
                    f"Skipped {image.src}", entry_id=entry.id, url=image.src))
        return True

    def _persist(self, entry, entry_dir, document, record):
        """
        Writes the HTML under a temporary name, then the metadata, then renames the
        HTML into place. Returns the LocalBundle or a FilesystemError.
        """
        if file_handler.save_partial_html(entry_dir, document) is None:
            return FilesystemError(f"Could not write HTML for entry {entry.id}", entry_id=entry.id)

        if not self.metadata_store.save(entry.id, record):
            file_handler.remove_file(os.path.join(entry_dir, constants.ENTRY_HTML_FILENAME + constants.PARTIAL_SUFFIX))
            return FilesystemError(f"Could not write metadata for entry {entry.id}", entry_id=entry.id)

        html_path = file_handler.commit_entry_html(entry_dir)
        if html_path is None:
            file_handler.remove_file(self.metadata_store.path_for(entry.id))
            return FilesystemError(f"Could not finalize HTML for entry {entry.id}", entry_id=entry.id)

        return LocalBundle(entry_id=entry.id, directory=entry_dir, html_path=html_path, metadata=record)

    def materialize_many(self, entries, options=None, max_workers=None, progress_callback=None, cancel_token=None):
        """Materializes several entries concurrently, one worker per entry. Results keep input order."""
        max_workers = max_workers or self.config.get('max_workers', constants.DEFAULT_MAX_WORKERS)
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(self.materialize, entry, options, progress_callback, cancel_token)
                       for entry in entries]
            return [future.result() for future in futures]
