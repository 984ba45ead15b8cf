# Module for downloading entry images into a bundle directory

import os
import time
import logging
import requests
import constants
from .decorators import retry_request # Import the decorator


def _content_type_accepted(content_type):
    if not content_type:
        return True # Servers that omit the header get the benefit of the doubt
    content_type = content_type.lower()
    return any(content_type.startswith(prefix) for prefix in constants.ACCEPTED_IMAGE_CONTENT_TYPES)


def _discard(path):
    try:
        os.remove(path)
    except OSError:
        pass


@retry_request(max_retries_key="image_max_retries", non_retryable_status=(400, 401, 403, 404, 410),
               return_on_failure=False)
def fetch_image(image_url, dest_dir, filename, config):
    """
    Downloads a single image to `dest_dir/filename`.

    The connect timeout applies to establishing the connection and the total timeout
    to the whole transfer. Network errors and timeouts are handled by the retry
    decorator; validation and filesystem problems are reported here.

    Returns:
        bool: True if the image was written, False otherwise. Never raises on network failure.
    """
    connect_timeout = config.get('image_connect_timeout', constants.DEFAULT_IMAGE_CONNECT_TIMEOUT)
    total_timeout = config.get('image_timeout', constants.DEFAULT_IMAGE_TIMEOUT)
    max_bytes = config.get('image_max_bytes', constants.DEFAULT_IMAGE_MAX_BYTES)
    headers = {'User-Agent': config.get('user_agent', constants.DEFAULT_USER_AGENT)}

    final_path = os.path.join(dest_dir, filename)
    partial_path = final_path + constants.PARTIAL_SUFFIX
    deadline = time.monotonic() + total_timeout

    logging.debug(f"Attempting to fetch image: {image_url}")
    response = requests.get(image_url, headers=headers, timeout=(connect_timeout, total_timeout), stream=True)

    try:
        if response.status_code != 200:
            if response.status_code == 429 or response.status_code >= 400:
                response.raise_for_status() # Let the decorator decide whether to retry
            logging.warning(f"Unexpected status {response.status_code} for image {image_url}. Skipping.")
            return False

        content_type = response.headers.get('Content-Type')
        if not _content_type_accepted(content_type):
            logging.warning(f"Rejected image {image_url}: unexpected content type '{content_type}'")
            return False

        written = 0
        try:
            with open(partial_path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=constants.IMAGE_CHUNK_SIZE):
                    if time.monotonic() > deadline:
                        raise requests.exceptions.Timeout(
                            f"Image transfer exceeded {total_timeout} seconds: {image_url}")
                    if not chunk:
                        continue
                    written += len(chunk)
                    if written > max_bytes:
                        logging.warning(f"Rejected image {image_url}: larger than {max_bytes} bytes")
                        break
                    f.write(chunk)
        except OSError as e:
            logging.error(f"Error writing image file {partial_path}: {e}")
            _discard(partial_path)
            return False
        except requests.exceptions.RequestException:
            _discard(partial_path)
            raise

        if written > max_bytes or written < constants.IMAGE_MIN_BYTES:
            if written < constants.IMAGE_MIN_BYTES:
                logging.warning(f"Rejected image {image_url}: only {written} bytes")
            _discard(partial_path)
            return False

        content_length = response.headers.get('Content-Length')
        encoded = response.headers.get('Content-Encoding') # Length then refers to the compressed body
        if content_length and content_length.isdigit() and not encoded and int(content_length) != written:
            logging.warning(f"Rejected image {image_url}: expected {content_length} bytes, got {written}")
            _discard(partial_path)
            return False

        try:
            os.replace(partial_path, final_path)
        except OSError as e:
            logging.error(f"Error moving image into place {final_path}: {e}")
            _discard(partial_path)
            return False

        logging.debug(f"Successfully fetched image: {image_url} -> {filename} ({written} bytes)")
        return True
    finally:
        # Ensure the response is always closed
        response.close()
