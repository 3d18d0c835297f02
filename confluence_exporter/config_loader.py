"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from typing import Any, Dict
from urllib.parse import urlparse

import yaml

from .models import ExportFormat


DEFAULT_CONFIG: Dict[str, Any] = {
    'confluence': {
        'base_url': None,
        'username': None,
        'api_token': None,
        'pagination': 'offset',
        'page_size': 50,
    },
    'export': {
        'output_directory': 'output',
        'format': 'markdown',
        'preserve_hierarchy': True,
        'include_images': True,
        'include_attachments': True,
        'create_index_files': True,
        'max_assets_per_page': 10,
        'include_spaces': [],
        'exclude_spaces': [],
        'show_progress': True,
    },
    'advanced': {
        'max_concurrent_requests': 5,
        'request_delay_ms': 100,
        'request_timeout': 300,
        'max_retries': 3,
        'retry_backoff_factor': 2.0,
        'circuit_breaker': {
            'failure_threshold': 5,
            'reset_timeout': 30,
        },
    },
    'logging': {
        'level': None,
        'file': None,
    },
    'reporting': {
        'enabled': False,
        'endpoint': 'https://marketplace.atlassian.com/',
        'installation_id': None,
    },
}


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        The file values are layered over DEFAULT_CONFIG.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Parsed configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        if config_data is None:
            config_data = {}
        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a dictionary")

        config_data = cls._substitute_env_vars_recursive(config_data)

        return cls.with_defaults(config_data)

    @classmethod
    def with_defaults(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of DEFAULT_CONFIG with ``config`` deep-merged on top."""
        return _deep_merge(copy.deepcopy(DEFAULT_CONFIG), config)

    @classmethod
    def validate(cls, config: Dict[str, Any], require_credentials: bool = True) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate
            require_credentials: Whether Confluence connection settings are mandatory

        Raises:
            ValueError: If validation fails
        """
        if require_credentials:
            cls._validate_required_field(config, 'confluence.base_url')
            cls._validate_required_field(config, 'confluence.username')
            cls._validate_required_field(config, 'confluence.api_token')

        base_url = get_nested(config, 'confluence.base_url')
        if base_url:
            cls._validate_url(base_url, 'confluence.base_url')

        pagination = get_nested(config, 'confluence.pagination', 'offset')
        if pagination not in ['offset', 'cursor']:
            raise ValueError("confluence.pagination must be 'offset' or 'cursor'")

        page_size = get_nested(config, 'confluence.page_size', 50)
        if not _is_int(page_size) or page_size < 1:
            raise ValueError("confluence.page_size must be a positive integer")

        export_format = str(get_nested(config, 'export.format', 'markdown')).lower()
        try:
            ExportFormat(export_format)
        except ValueError:
            raise ValueError(
                f"export.format must be one of: {[f.value for f in ExportFormat]}"
            )

        cls._validate_required_field(config, 'export.output_directory')
        output_dir = get_nested(config, 'export.output_directory')
        if os.path.exists(output_dir) and not os.path.isdir(output_dir):
            raise ValueError(f"export.output_directory '{output_dir}' is not a directory")

        for flag in ['preserve_hierarchy', 'include_images', 'include_attachments',
                     'create_index_files', 'show_progress']:
            value = get_nested(config, f'export.{flag}', True)
            if not isinstance(value, bool):
                raise ValueError(f"export.{flag} must be a boolean")

        for key_list in ['include_spaces', 'exclude_spaces']:
            value = get_nested(config, f'export.{key_list}', [])
            if not isinstance(value, (list, tuple)) or not all(isinstance(k, str) for k in value):
                raise ValueError(f"export.{key_list} must be a list of space keys")

        max_assets = get_nested(config, 'export.max_assets_per_page', 10)
        if not _is_int(max_assets) or max_assets < 0:
            raise ValueError("export.max_assets_per_page must be a non-negative integer")

        concurrency = get_nested(config, 'advanced.max_concurrent_requests', 5)
        if not _is_int(concurrency) or concurrency < 1:
            raise ValueError("advanced.max_concurrent_requests must be a positive integer")

        delay = get_nested(config, 'advanced.request_delay_ms', 100)
        if not _is_int(delay) or delay < 0:
            raise ValueError("advanced.request_delay_ms must be a non-negative integer")

        timeout = get_nested(config, 'advanced.request_timeout', 300)
        if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
            raise ValueError("advanced.request_timeout must be a positive number")

        max_retries = get_nested(config, 'advanced.max_retries', 3)
        if not _is_int(max_retries) or max_retries < 0:
            raise ValueError("advanced.max_retries must be a non-negative integer")

        backoff = get_nested(config, 'advanced.retry_backoff_factor', 2.0)
        if not isinstance(backoff, (int, float)) or isinstance(backoff, bool) or backoff < 0:
            raise ValueError("advanced.retry_backoff_factor must be a non-negative number")

        threshold = get_nested(config, 'advanced.circuit_breaker.failure_threshold', 5)
        if not _is_int(threshold) or threshold < 1:
            raise ValueError("advanced.circuit_breaker.failure_threshold must be a positive integer")

        reset_timeout = get_nested(config, 'advanced.circuit_breaker.reset_timeout', 30)
        if not isinstance(reset_timeout, (int, float)) or isinstance(reset_timeout, bool) or reset_timeout < 0:
            raise ValueError("advanced.circuit_breaker.reset_timeout must be a non-negative number")

        if get_nested(config, 'reporting.enabled', False):
            cls._validate_required_field(config, 'reporting.endpoint')
            cls._validate_url(get_nested(config, 'reporting.endpoint'), 'reporting.endpoint')

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration file with CLI arguments.
        CLI arguments take precedence over config file values.

        Args:
            config: Base configuration dictionary
            args: CLI arguments with attributes matching config keys

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)

        for section in ['confluence', 'export', 'advanced', 'logging']:
            if section not in merged or merged[section] is None:
                merged[section] = {}

        # Connection settings
        if getattr(args, 'base_url', None):
            merged['confluence']['base_url'] = args.base_url.rstrip('/')

        if getattr(args, 'username', None):
            merged['confluence']['username'] = args.username

        if getattr(args, 'token', None):
            merged['confluence']['api_token'] = args.token

        # Export settings
        if getattr(args, 'output', None):
            merged['export']['output_directory'] = args.output

        if getattr(args, 'format', None):
            merged['export']['format'] = args.format

        flag_map = {
            'preserve_hierarchy': 'preserve_hierarchy',
            'include_images': 'include_images',
            'include_attachments': 'include_attachments',
            'create_index': 'create_index_files',
            'progress': 'show_progress',
        }
        for arg_name, config_key in flag_map.items():
            value = getattr(args, arg_name, None)
            if value is not None:
                merged['export'][config_key] = value

        if getattr(args, 'include_spaces', None):
            merged['export']['include_spaces'] = args.include_spaces

        if getattr(args, 'exclude_spaces', None):
            merged['export']['exclude_spaces'] = args.exclude_spaces

        # Throttling
        if getattr(args, 'concurrent', None) is not None:
            merged['advanced']['max_concurrent_requests'] = args.concurrent

        if getattr(args, 'delay', None) is not None:
            merged['advanced']['request_delay_ms'] = args.delay

        # Logging
        if getattr(args, 'log_file', None):
            merged['logging']['file'] = args.log_file

        return merged

    @classmethod
    def _substitute_env_vars_recursive(cls, data: Any) -> Any:
        """Recursively substitute environment variables in data structure."""
        if isinstance(data, dict):
            return {key: cls._substitute_env_vars_recursive(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars_recursive(item) for item in data]
        elif isinstance(data, str):
            return cls._substitute_env_vars(data)
        else:
            return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Substitute environment variables in a string value."""
        def replace_match(match):
            env_value = os.getenv(match.group(1))
            return env_value if env_value is not None else match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config: dict, field: str) -> None:
        """Validate that a required field exists and has a value."""
        value = get_nested(config, field)
        if value is None or value == '':
            raise ValueError(f"Missing required configuration: {field}")

        if isinstance(value, str):
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            if match:
                raise ValueError(
                    f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                    f"Please set the {match.group(1)} environment variable or provide a value in config file."
                )

    @staticmethod
    def _validate_url(url: str, field_name: str) -> None:
        """Validate URL format."""
        parsed = urlparse(url)
        if not parsed.scheme or parsed.scheme not in ['http', 'https']:
            raise ValueError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ValueError(f"{field_name} missing hostname: {url}")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into ``base`` recursively, returning ``base``."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "confluence.base_url")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    value = config

    for key in path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


__all__ = ['ConfigLoader', 'DEFAULT_CONFIG', 'get_nested']
