# Logging configuration for the command line front end
import logging
import sys
import os

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(log_file, verbose=False):
    """
    Sends log records to `log_file` and to stdout.

    With `verbose` the root logger runs at DEBUG, which also shows per-image
    progress and queue bookkeeping. urllib3 stays at WARNING either way.
    """
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Repeated calls (tests, several commands in one process) must not stack handlers
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    try:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    except OSError as e:
        print(f"Error: Could not open log file {log_file}: {e}", file=sys.stderr)
        sys.exit(1)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.debug(f"Logging to {log_file} at {logging.getLevelName(level)}")
