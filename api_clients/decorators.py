# Decorators for API client functions
import time
import logging
import requests
import functools


def _describe_call(func, args, kwargs):
    """Builds a short description of the call for log messages (URL or entry id)."""
    for value in list(args) + [v for k, v in kwargs.items() if k != 'config']:
        if isinstance(value, str) and value.startswith('http'):
            return f"for {value[:80]}"
    entry_id = kwargs.get('entry_id', args[0] if args and isinstance(args[0], int) else None)
    if entry_id is not None:
        return f"in {func.__name__} for entry {entry_id}"
    return f"in {func.__name__}"


def retry_request(max_retries_key="max_retries", delay_key="request_delay_seconds",
                  non_retryable_status=(400, 401, 403, 404), return_on_failure=None, max_retries=None):
    """
    Decorator to add retry logic with exponential backoff to functions making HTTP requests.
    Assumes the wrapped function:
    - Accepts a 'config' dictionary keyword argument (`config=...`) containing keys
      specified by `max_retries_key` and `delay_key`.
    - Returns the successful result, or raises a `requests.exceptions.RequestException`
      (typically via `response.raise_for_status()`) on failure.

    Timeouts, connection errors, 429 and 5xx responses are retried. Everything else,
    and exhausting the retries, makes the wrapper return `return_on_failure`.
    The decorated function never raises a requests exception to its caller.

    Args:
        max_retries_key (str): Key in the config dict for max retries.
        delay_key (str): Key in the config dict for base delay in seconds.
        non_retryable_status (tuple): HTTP status codes that should NOT trigger a retry.
        return_on_failure: Value returned when the request ultimately fails.
        max_retries (int): Fixed retry count that ignores the config, e.g. 0 for
            requests that must not be repeated.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            config = kwargs.get('config')
            if not isinstance(config, dict):
                logging.error(
                    f"Decorator @retry_request requires 'config' dictionary as a keyword argument "
                    f"for function {func.__name__}. Retries disabled."
                )
                config = {}
                retries_allowed = 0
            elif max_retries is not None:
                retries_allowed = max_retries
            else:
                retries_allowed = config.get(max_retries_key, 3)
            delay = config.get(delay_key, 1)
            call_desc = _describe_call(func, args, kwargs)

            retries = 0
            last_exception = None
            while True:
                if retries > 0:
                    wait_time = (2 ** (retries - 1)) * delay
                    logging.warning(f"Retrying request {call_desc} ({retries}/{retries_allowed}) after delay of {wait_time:.2f} seconds...")
                    time.sleep(wait_time)

                try:
                    return func(*args, **kwargs)

                except requests.exceptions.HTTPError as e:
                    last_exception = e
                    status_code = e.response.status_code if e.response is not None else None

                    if status_code in non_retryable_status:
                        logging.warning(f"HTTP error {status_code} {call_desc} is non-retryable. Failing.")
                        return return_on_failure

                    if status_code and (status_code == 429 or status_code >= 500):
                        if retries < retries_allowed:
                            logging.warning(f"Retryable HTTP error {status_code} {call_desc}.")
                            retries += 1
                            continue
                        break

                    logging.error(f"Unhandled HTTP error ({status_code or 'no status code'}) encountered {call_desc}: {e}")
                    return return_on_failure

                except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                    last_exception = e
                    if retries < retries_allowed:
                        logging.warning(f"{type(e).__name__} occurred {call_desc}.")
                        retries += 1
                        continue
                    break

                except requests.exceptions.RequestException as e:
                    # Other request exceptions (invalid URL, too many redirects...) are not retried
                    logging.error(f"Unhandled RequestException {call_desc}: {e}")
                    return return_on_failure

            logging.error(f"Request failed {call_desc} after {retries_allowed} retries. Last exception: {last_exception}")
            return return_on_failure

        return wrapper
    return decorator
