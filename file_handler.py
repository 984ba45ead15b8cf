# Module for file system operations (bundle paths, atomic writes, deletion)

import os
import json
import logging
import shutil
import tempfile
import constants # Import constants


# --- Paths ---
def get_entry_dir(download_dir, entry_id):
    return os.path.join(download_dir, str(entry_id))

def get_entry_html_path(download_dir, entry_id):
    return os.path.join(get_entry_dir(download_dir, entry_id), constants.ENTRY_HTML_FILENAME)

def get_metadata_path(download_dir, entry_id):
    return os.path.join(get_entry_dir(download_dir, entry_id), constants.METADATA_FILENAME)


def ensure_entry_directory(download_dir, entry_id):
    """
    Creates the bundle directory for an entry if it is absent.
    Returns the directory path or None on error.
    """
    entry_dir = get_entry_dir(download_dir, entry_id)
    try:
        os.makedirs(entry_dir, exist_ok=True)
        return entry_dir
    except OSError as e:
        logging.error(f"Error creating bundle directory {entry_dir}: {e}")
        return None


def is_bundle_complete(download_dir, entry_id):
    """A bundle counts as existing only once both the HTML file and metadata are in place."""
    return (os.path.isfile(get_entry_html_path(download_dir, entry_id))
            and os.path.isfile(get_metadata_path(download_dir, entry_id)))


# --- Atomic Writes ---
def write_file_atomic(path, content):
    """
    Writes text or bytes to `path` via a temporary file and rename, so readers
    see either the old file or the new one, never a half-written file.
    Returns True on success.
    """
    directory = os.path.dirname(path) or '.'
    mode = 'wb' if isinstance(content, bytes) else 'w'
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.tmp-', suffix=constants.PARTIAL_SUFFIX)
        encoding = None if mode == 'wb' else 'utf-8'
        with os.fdopen(fd, mode, encoding=encoding) as f:
            f.write(content)
        os.replace(tmp_path, path)
        return True
    except OSError as e:
        logging.error(f"Error writing file {path}: {e}")
        if tmp_path:
            remove_file(tmp_path)
        return False


def save_json(path, data):
    """Serializes `data` as JSON and writes it atomically."""
    try:
        payload = json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logging.error(f"Could not serialize JSON for {path}: {e}")
        return False
    return write_file_atomic(path, payload)


def load_json(path, default=None):
    """Loads JSON from `path`; returns `default` if the file is missing or unreadable."""
    if not os.path.exists(path):
        return default
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError:
        logging.warning(f"Could not decode JSON from {path}. Ignoring its contents.")
    except OSError as e:
        logging.error(f"Error reading file {path}: {e}")
    return default


# --- Entry HTML ---
def save_partial_html(entry_dir, html_content):
    """Writes the entry HTML next to its final name. Returns the partial path or None."""
    partial_path = os.path.join(entry_dir, constants.ENTRY_HTML_FILENAME + constants.PARTIAL_SUFFIX)
    if write_file_atomic(partial_path, html_content):
        return partial_path
    return None


def commit_entry_html(entry_dir):
    """Moves the partial HTML file into place. This rename is what completes a bundle."""
    partial_path = os.path.join(entry_dir, constants.ENTRY_HTML_FILENAME + constants.PARTIAL_SUFFIX)
    final_path = os.path.join(entry_dir, constants.ENTRY_HTML_FILENAME)
    try:
        os.replace(partial_path, final_path)
        logging.info(f"Successfully saved: {final_path}")
        return final_path
    except OSError as e:
        logging.error(f"Error committing entry HTML {final_path}: {e}")
        return None


# --- Removal ---
def remove_file(path):
    """Removes a file if it exists. Returns True if nothing is left at `path`."""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logging.warning(f"Could not remove file {path}: {e}")
        return False
    return True


def delete_bundle(download_dir, entry_id):
    """
    Deletes an entry bundle (HTML, images and metadata). The directory is renamed
    first so a concurrent reader never sees a bundle with only some of its files.
    """
    entry_dir = get_entry_dir(download_dir, entry_id)
    if not os.path.isdir(entry_dir):
        return True
    doomed_dir = os.path.join(download_dir, f"{constants.DELETING_PREFIX}{entry_id}")
    try:
        if os.path.exists(doomed_dir):
            shutil.rmtree(doomed_dir)
        os.rename(entry_dir, doomed_dir)
    except OSError as e:
        logging.error(f"Error deleting bundle {entry_dir}: {e}")
        return False
    shutil.rmtree(doomed_dir, ignore_errors=True)
    logging.info(f"Deleted bundle for entry {entry_id}")
    return True
