"""
Configuration management for hostmaint.

This module handles loading, validation, and management of configuration settings
from multiple sources including files, environment variables, and defaults.
"""

import os
import json
import logging
from pathlib import Path
from copy import deepcopy
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

ENV_PREFIX = "HOSTMAINT_"

# Default configuration values
DEFAULT_CONFIG = {
    # Locking
    "LOCK_DIR": "/var/run/hostmaint",
    "STALE_LOCK_AFTER": 0,  # seconds; 0 takes over a dead holder's lock at once

    # Notification (Telegram); empty values disable notification
    "TELEGRAM_BOT_TOKEN": "",
    "TELEGRAM_CHAT_ID": "",
    "NOTIFY_TIMEOUT": 10,
    "NOTIFY_MIN_SEVERITY": "info",

    # Preflight checks
    "MIN_FREE_SPACE_MB": 1024,
    "DISK_CHECK_PATH": "/var",
    "NETWORK_TEST_HOSTS": ["archive.ubuntu.com", "security.ubuntu.com", "8.8.8.8"],
    "NETWORK_TIMEOUT": 5,
    "PREFLIGHT_CHECKS": {},

    # System update
    "UPDATE_TYPE": "safe",
    "UPDATE_SECURITY_SOURCES": "/etc/apt/sources.list.d/security.list",
    "CRITICAL_SERVICES": ["docker", "mysql", "postgresql", "nginx", "apache2"],
    "REBOOT_REQUIRED_FILE": "/var/run/reboot-required",
    "AUTO_REBOOT": False,
    "REBOOT_DELAY": 60,  # seconds
    "MAX_LOG_DAYS": 30,

    # Log cleanup
    "CLEANUP_LOG_DIRS": ["/var/log", "/home/*/logs", "/opt/*/logs"],
    "CLEANUP_ARCHIVE_DIR": "/var/log/archive",
    "CLEANUP_MAX_AGE_DAYS": 30,
    "CLEANUP_MAX_ARCHIVE_DAYS": 90,
    "CLEANUP_MAX_SIZE_MB": 100,
    "CLEANUP_COMPRESS_AFTER_DAYS": 7,
    "CLEANUP_TAIL_LINES": 1000,
    "CLEANUP_JOURNAL": False,
    "CLEANUP_JOURNAL_MAX_SIZE": "500M",
    "CLEANUP_DOCKER": False,
    "CLEANUP_DOCKER_DIR": "/var/lib/docker/containers",
    "CLEANUP_DOCKER_MAX_MB": 100,
    "CLEANUP_PACKAGES": False,
    "CLEANUP_TEMP": False,
    "CLEANUP_TEMP_DIRS": ["/tmp", "/var/tmp"],
    "CLEANUP_TEMP_MAX_AGE_DAYS": 7,
    "CLEANUP_REPORT_MOUNTS": ["/", "/var", "/home"],

    # Certificates
    "CERT_DIR": "/etc/letsencrypt/live",
    "RENEWAL_THRESHOLD_DAYS": 30,
    "CERT_EMAIL": "",
    "CERT_WEBROOT": "/var/www/html",
    "RELOAD_SERVICES": ["nginx", "apache2", "haproxy"],

    # Logging configuration
    "LOG_LEVEL": "INFO",
    "LOG_DIR": "/var/log/hostmaint",
    "LOG_FILE": "/var/log/hostmaint/hostmaint.log",
    "MAX_LOG_SIZE": 10485760,    # 10MB
    "LOG_BACKUP_COUNT": 5,
    "LOG_JSON": False,
    "USE_SYSLOG": False,
    "LOG_COLORS": True,
    "JOB_LOG": True,

    # Debug settings
    "DEBUG_MODE": False
}

UPDATE_TYPES = ("safe", "full", "security")
SEVERITIES = ("debug", "info", "warning", "error")

class ConfigurationError(Exception):
    """Base exception for configuration-related errors."""
    pass

class ConfigValidationError(ConfigurationError):
    """Exception raised when configuration validation fails."""
    pass

class ConfigurationManager:
    """Manages loading and validation of configuration settings."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Optional path to configuration file
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = deepcopy(DEFAULT_CONFIG)
        self._load_paths = self._get_config_paths()

    def load_config(self) -> Dict[str, Any]:
        """
        Load and validate configuration from all sources.

        Returns:
            Dict containing merged configuration

        Raises:
            ConfigurationError: If configuration cannot be loaded or validated
        """
        if self.config_path:
            self._load_from_file(self.config_path)
        else:
            self._load_from_first_available()

        self._load_from_env()
        self._validate_config()

        return self.config

    def _get_config_paths(self) -> List[Path]:
        """Get list of standard configuration file locations."""
        return [
            Path.cwd() / "hostmaint.json",
            Path.home() / ".config" / "hostmaint" / "config.json",
            Path("/etc/hostmaint/config.json")
        ]

    def _load_from_first_available(self) -> None:
        """Load configuration from first available standard location."""
        for path in self._load_paths:
            if path.is_file():
                try:
                    self._load_from_file(str(path))
                    logger.info(f"Loaded configuration from {path}")
                    return
                except ConfigurationError as e:
                    logger.warning(f"Failed to load config from {path}: {e}")

        logger.debug("No configuration file found in standard locations")

    def _load_from_file(self, path: str) -> None:
        """
        Load configuration from specified file.

        Args:
            path: Path to configuration file

        Raises:
            ConfigurationError: If file cannot be loaded
        """
        try:
            with open(path) as f:
                file_config = json.load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in configuration file: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error loading configuration file: {e}")

        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Configuration file must hold a JSON object: {path}")
        self.config.update(file_config)

    def _load_from_env(self) -> None:
        """Load configuration from environment variables."""
        for key, value in os.environ.items():
            if key.startswith(ENV_PREFIX):
                config_key = key[len(ENV_PREFIX):]
                try:
                    # Try to parse as JSON for complex values
                    self.config[config_key] = json.loads(value)
                except json.JSONDecodeError:
                    # Use string value if not valid JSON
                    self.config[config_key] = value

    def _validate_config(self) -> None:
        """
        Validate configuration settings.

        Raises:
            ConfigValidationError: If validation fails
        """
        self._validate_numbers()
        self._validate_lists()
        self._validate_choices()
        self._validate_notification()

    def _validate_numbers(self) -> None:
        """Validate numeric settings."""
        number_checks = {
            'STALE_LOCK_AFTER': (0, None),
            'NOTIFY_TIMEOUT': (1, 300),
            'MIN_FREE_SPACE_MB': (0, None),
            'NETWORK_TIMEOUT': (1, 60),
            'REBOOT_DELAY': (0, None),
            'MAX_LOG_DAYS': (1, None),
            'CLEANUP_MAX_AGE_DAYS': (1, None),
            'CLEANUP_MAX_ARCHIVE_DAYS': (1, None),
            'CLEANUP_MAX_SIZE_MB': (1, None),
            'CLEANUP_COMPRESS_AFTER_DAYS': (0, None),
            'CLEANUP_TAIL_LINES': (0, None),
            'CLEANUP_DOCKER_MAX_MB': (1, None),
            'CLEANUP_TEMP_MAX_AGE_DAYS': (1, None),
            'RENEWAL_THRESHOLD_DAYS': (0, None),
            'MAX_LOG_SIZE': (1024, None),
            'LOG_BACKUP_COUNT': (0, None),
        }

        for key, (min_val, max_val) in number_checks.items():
            value = self.config.get(key, 0)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < min_val:
                raise ConfigValidationError(
                    f"{key} must be a number >= {min_val}"
                )
            if max_val is not None and value > max_val:
                raise ConfigValidationError(
                    f"{key} must be <= {max_val}"
                )

    def _validate_lists(self) -> None:
        """Validate list-of-string settings."""
        list_keys = [
            'NETWORK_TEST_HOSTS', 'CRITICAL_SERVICES', 'CLEANUP_LOG_DIRS',
            'CLEANUP_TEMP_DIRS', 'CLEANUP_REPORT_MOUNTS', 'RELOAD_SERVICES'
        ]
        for key in list_keys:
            value = self.config.get(key, [])
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigValidationError(f"{key} must be a list of strings")

        checks = self.config.get('PREFLIGHT_CHECKS', {})
        if not isinstance(checks, dict) or not all(isinstance(v, list) for v in checks.values()):
            raise ConfigValidationError(
                "PREFLIGHT_CHECKS must map job categories to lists of check names"
            )

    def _validate_choices(self) -> None:
        """Validate enumerated settings."""
        if self.config.get('UPDATE_TYPE') not in UPDATE_TYPES:
            raise ConfigValidationError(
                f"UPDATE_TYPE must be one of {', '.join(UPDATE_TYPES)}"
            )
        if self.config.get('NOTIFY_MIN_SEVERITY') not in SEVERITIES:
            raise ConfigValidationError(
                f"NOTIFY_MIN_SEVERITY must be one of {', '.join(SEVERITIES)}"
            )
        level = str(self.config.get('LOG_LEVEL', 'INFO')).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigValidationError(f"Invalid LOG_LEVEL: {level}")

    def _validate_notification(self) -> None:
        """Validate that notification settings come in pairs."""
        token = self.config.get('TELEGRAM_BOT_TOKEN')
        chat_id = self.config.get('TELEGRAM_CHAT_ID')
        if bool(token) != bool(chat_id):
            raise ConfigValidationError(
                "TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID must be set together"
            )

    def generate_example_config(self, output_path: str) -> None:
        """
        Generate example configuration file.

        Args:
            output_path: Path to write example configuration
        """
        example_config = deepcopy(DEFAULT_CONFIG)
        example_config.update({
            'TELEGRAM_BOT_TOKEN': 'your-telegram-bot-token',
            'TELEGRAM_CHAT_ID': 'your-telegram-chat-id',
            'CERT_EMAIL': 'admin@example.com'
        })

        try:
            parent = os.path.dirname(output_path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(output_path, 'w') as f:
                json.dump(example_config, f, indent=2)
            logger.info(f"Example configuration written to {output_path}")
        except OSError as e:
            raise ConfigurationError(f"Error writing example configuration: {e}")

def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from specified path or search standard locations.

    Args:
        config_path: Optional path to configuration file

    Returns:
        Dict containing configuration settings

    Raises:
        ConfigurationError: If configuration cannot be loaded
    """
    manager = ConfigurationManager(config_path)
    return manager.load_config()
