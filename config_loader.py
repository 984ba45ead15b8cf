# Module for loading and validating configuration
import json
import os
import sys
import constants # Import constants

def load_config(config_path="config.json"): # Keep default path simple
    """Loads configuration from a JSON file, validates, and sets defaults."""
    try:
        with open(config_path, 'r') as f:
            config = json.load(f)

        if not isinstance(config, dict):
            raise ValueError(f"Config file '{config_path}' must contain a JSON object.")

        # --- Validation ---
        required_keys = ["server_address", "api_token", "download_dir", "log_file"]
        if not all(key in config for key in required_keys):
            # Find missing keys for a better error message
            missing_keys = [key for key in required_keys if key not in config]
            raise ValueError(f"Config file '{config_path}' is missing required keys: {', '.join(missing_keys)}")

        # --- Set Defaults for Optional Keys ---
        config['server_address'] = config['server_address'].rstrip('/')
        config['include_images'] = config.get('include_images', True)
        config['user_agent'] = config.get('user_agent', constants.DEFAULT_USER_AGENT)
        config['max_retries'] = config.get('max_retries', constants.DEFAULT_MAX_RETRIES)
        config['request_delay_seconds'] = config.get('request_delay_seconds', constants.DEFAULT_REQUEST_DELAY)
        config['image_max_retries'] = config.get('image_max_retries', constants.DEFAULT_IMAGE_MAX_RETRIES)
        config['connectivity_max_retries'] = config.get('connectivity_max_retries', constants.DEFAULT_CONNECTIVITY_MAX_RETRIES)

        config['api_connect_timeout'] = config.get('api_connect_timeout', constants.DEFAULT_API_CONNECT_TIMEOUT)
        config['api_timeout'] = config.get('api_timeout', constants.DEFAULT_API_TIMEOUT)
        config['image_connect_timeout'] = config.get('image_connect_timeout', constants.DEFAULT_IMAGE_CONNECT_TIMEOUT)
        config['image_timeout'] = config.get('image_timeout', constants.DEFAULT_IMAGE_TIMEOUT)
        config['image_max_bytes'] = config.get('image_max_bytes', constants.DEFAULT_IMAGE_MAX_BYTES)

        config['cancel_check_interval'] = config.get('cancel_check_interval', constants.DEFAULT_CANCEL_CHECK_INTERVAL)
        config['queue_retry_limit'] = config.get('queue_retry_limit', constants.DEFAULT_QUEUE_RETRY_LIMIT)
        config['queue_file'] = config.get(
            'queue_file', os.path.join(config['download_dir'], constants.DEFAULT_QUEUE_FILENAME))
        config['max_workers'] = config.get('max_workers', constants.DEFAULT_MAX_WORKERS)

        # --- Further Validation ---
        if not isinstance(config['server_address'], str) or not config['server_address'].startswith(('http://', 'https://')):
            raise ValueError("Config 'server_address' must be an http(s) URL.")
        if not isinstance(config['include_images'], bool):
            raise ValueError("Config 'include_images' must be true or false.")
        if not isinstance(config['request_delay_seconds'], (int, float)) or config['request_delay_seconds'] < 0:
            raise ValueError("Config 'request_delay_seconds' must be a non-negative number.")
        for key in ('max_retries', 'image_max_retries', 'connectivity_max_retries', 'queue_retry_limit'):
            if not isinstance(config[key], int) or config[key] < 0:
                raise ValueError(f"Config '{key}' must be a non-negative integer.")
        for key in ('api_connect_timeout', 'api_timeout', 'image_connect_timeout', 'image_timeout', 'cancel_check_interval'):
            if not isinstance(config[key], (int, float)) or config[key] <= 0:
                raise ValueError(f"Config '{key}' must be a positive number.")
        if not isinstance(config['image_max_bytes'], int) or config['image_max_bytes'] < constants.IMAGE_MIN_BYTES:
            raise ValueError(f"Config 'image_max_bytes' must be an integer of at least {constants.IMAGE_MIN_BYTES}.")
        if not isinstance(config['max_workers'], int) or config['max_workers'] < 1:
            # Use print here as logging might not be configured yet
            print(f"Warning: Invalid max_workers '{config['max_workers']}' in config. Defaulting to {constants.DEFAULT_MAX_WORKERS}.", file=sys.stderr)
            config['max_workers'] = constants.DEFAULT_MAX_WORKERS

        return config

    except FileNotFoundError:
        raise # Re-raise the FileNotFoundError
    except json.JSONDecodeError as e:
        raise ValueError(f"Error decoding JSON from config file '{config_path}': {e}") from e
    except ValueError:
        raise # Let the ValueError raised during validation propagate
    except Exception as e: # Catch any other unexpected errors during loading/validation
        raise RuntimeError(f"An unexpected error occurred loading configuration from '{config_path}': {e}") from e
