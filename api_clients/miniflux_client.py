# Module for talking to the Miniflux feed server API

import logging
import requests
import constants
from models import Entry
from .decorators import retry_request # Import the decorator


def _api_url(config, path):
    return f"{config['server_address']}{constants.API_PATH_PREFIX}{path}"


def _headers(config):
    return {
        'X-Auth-Token': config['api_token'],
        'User-Agent': config.get('user_agent', constants.DEFAULT_USER_AGENT),
        'Accept': 'application/json',
    }


def _timeout(config):
    return (config.get('api_connect_timeout', constants.DEFAULT_API_CONNECT_TIMEOUT),
            config.get('api_timeout', constants.DEFAULT_API_TIMEOUT))


# --- Entries ---
@retry_request()
def fetch_entry(entry_id, config):
    """
    Fetches a single entry by id.
    Returns an Entry or None on failure.
    """
    url = _api_url(config, f"{constants.ENTRIES_ENDPOINT}/{entry_id}")
    response = requests.get(url, headers=_headers(config), timeout=_timeout(config))
    try:
        response.raise_for_status() # 429/5xx are retried by the decorator
        data = response.json()
        if not isinstance(data, dict):
            logging.error(f"Unexpected payload for entry {entry_id}: {type(data).__name__}")
            return None
        try:
            entry = Entry.from_api(data)
        except (KeyError, TypeError, ValueError) as e:
            logging.error(f"Malformed entry {entry_id} from server: {e!r}")
            return None
        logging.debug(f"Fetched entry {entry_id}: {entry.title!r}")
        return entry
    finally:
        response.close()


@retry_request()
def fetch_entries(config, status=None, limit=100, order='published_at', direction='desc'):
    """
    Fetches a page of entries, optionally filtered by status.
    Returns a list of Entry or None on failure.
    """
    params = {'limit': limit, 'order': order, 'direction': direction}
    if status:
        params['status'] = status
    url = _api_url(config, constants.ENTRIES_ENDPOINT)
    response = requests.get(url, headers=_headers(config), params=params, timeout=_timeout(config))
    try:
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict) or not isinstance(data.get('entries') or [], list):
            logging.error(f"Unexpected entries payload: {type(data).__name__}")
            return None
        try:
            entries = [Entry.from_api(item) for item in data.get('entries') or []]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logging.error(f"Malformed entry in listing: {e!r}")
            return None
        logging.debug(f"Fetched {len(entries)} entries (status={status or 'any'})")
        return entries
    finally:
        response.close()


# --- Status Updates ---
@retry_request()
def update_entry_status(entry_id, status, config):
    """Sets the read status of one entry. Returns True on success, None on failure."""
    if status not in constants.VALID_STATUSES:
        raise ValueError(f"Invalid entry status: {status!r}")
    url = _api_url(config, constants.ENTRIES_ENDPOINT)
    response = requests.put(url, headers=_headers(config), json={'entry_ids': [entry_id], 'status': status},
                            timeout=_timeout(config))
    try:
        response.raise_for_status()
        logging.debug(f"Server accepted status '{status}' for entry {entry_id}")
        return True
    finally:
        response.close()


# A toggle is not idempotent: repeating it after a lost response would undo it
@retry_request(max_retries=0)
def toggle_bookmark(entry_id, config):
    """Flips the starred flag of one entry. Returns True on success, None on failure."""
    url = _api_url(config, f"{constants.ENTRIES_ENDPOINT}/{entry_id}/bookmark")
    response = requests.put(url, headers=_headers(config), timeout=_timeout(config))
    try:
        response.raise_for_status()
        logging.debug(f"Server toggled bookmark for entry {entry_id}")
        return True
    finally:
        response.close()


def _server_starred(entry_id, config):
    entry = fetch_entry(entry_id, config=config)
    return None if entry is None else entry.starred


def push_status_change(entry_id, new_status, new_starred, old_starred, config):
    """
    Pushes a status change to the server.

    The bookmark endpoint only toggles, so the starred flag is brought to
    `new_starred` by comparing against what the server holds: `old_starred` when
    the caller knows it, otherwise (None) the flag is read from the server first.
    A toggle whose outcome is unknown is checked by reading the entry back.
    Returns True only if the server ends up with both the status and the flag.
    """
    if not update_entry_status(entry_id, new_status, config=config):
        return False

    if old_starred is None:
        old_starred = _server_starred(entry_id, config)
        if old_starred is None:
            return False
    if bool(new_starred) == bool(old_starred):
        return True

    if toggle_bookmark(entry_id, config=config):
        return True
    current = _server_starred(entry_id, config)
    if current is not None and current == bool(new_starred):
        logging.info(f"Bookmark toggle for entry {entry_id} was applied despite the failed response")
        return True
    logging.warning(f"Could not set starred={bool(new_starred)} for entry {entry_id}")
    return False


# --- Connectivity ---
@retry_request(max_retries_key="connectivity_max_retries", return_on_failure=False)
def check_connectivity(config):
    """Probes the server with the current user endpoint. Returns True if reachable and authorized."""
    url = _api_url(config, constants.CURRENT_USER_ENDPOINT)
    response = requests.get(url, headers=_headers(config), timeout=_timeout(config))
    try:
        response.raise_for_status()
        return True
    finally:
        response.close()
