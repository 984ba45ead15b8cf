import pytest
import sys
import os
import logging

# Ensure the project root is in the Python path for imports in tests
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

import constants


@pytest.fixture(autouse=True)
def configure_logging(caplog):
    """Ensure logging is configured to capture DEBUG level messages for all tests."""
    caplog.set_level(logging.DEBUG, logger="root")


@pytest.fixture
def base_config(tmp_path):
    """A fully defaulted config dictionary pointing at a temporary download directory."""
    download_dir = tmp_path / "entries"
    return {
        'server_address': 'https://reader.example.com',
        'api_token': 'test-token',
        'download_dir': str(download_dir),
        'log_file': str(tmp_path / 'reader.log'),
        'include_images': True,
        'user_agent': 'TestAgent/1.0',
        'max_retries': 2,
        'image_max_retries': 0,
        'connectivity_max_retries': 0,
        'request_delay_seconds': 0,
        'api_connect_timeout': 5,
        'api_timeout': 10,
        'image_connect_timeout': 5,
        'image_timeout': 10,
        'image_max_bytes': constants.DEFAULT_IMAGE_MAX_BYTES,
        'cancel_check_interval': 1.0,
        'queue_retry_limit': 3,
        'queue_file': str(download_dir / constants.DEFAULT_QUEUE_FILENAME),
        'max_workers': 2,
    }
