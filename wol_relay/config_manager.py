"""Configuration management for the Wake-on-LAN Relay."""

import copy
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
import ipaddress

from .magic_packet import MAGIC_PACKET_SIZE


logger = logging.getLogger(__name__)

SYSLOG_FACILITIES = [
    "auth", "cron", "daemon", "kern", "lpr", "mail", "news", "syslog", "user", "uucp",
    "local0", "local1", "local2", "local3", "local4", "local5", "local6", "local7"
]


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.json"):
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._default_config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values."""
        return {
            "relay": {
                "listen_address": "0.0.0.0",
                "listen_port": 9,
                "forward_port": 9,
                "receive_buffer_size": 256
            },
            "interfaces": {
                "max_interfaces": 10,
                "discovery_retry_interval": 5,
                "settle_delay": 1,
                "exclude": []
            },
            "logging": {
                "level": "INFO",
                "file": "",
                "max_size_mb": 10,
                "backup_count": 3,
                "console_output": True,
                "syslog_address": "/dev/log",
                "syslog_facility": "user"
            },
            "monitoring": {
                "health_check_enabled": False,
                "status_endpoint_port": 8080
            }
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file with validation."""
        try:
            if not self.config_path.exists():
                logger.warning(f"Config file {self.config_path} not found, using defaults")
                self._config = copy.deepcopy(self._default_config)
                return self._config

            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)

            # Merge with defaults to ensure all keys exist
            self._config = self._merge_config(self._default_config, loaded_config)

            self._validate_config()

            logger.info(f"Configuration loaded successfully from {self.config_path}")
            return self._config

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in config file: {e}")
            raise ValueError(f"Configuration file contains invalid JSON: {e}")
        except Exception as e:
            logger.error(f"Error loading configuration: {e}")
            raise

    def _merge_config(self, default: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge loaded config with defaults."""
        result = copy.deepcopy(default)

        for key, value in loaded.items():
            if key.startswith('_comment'):
                continue
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _validate_config(self) -> None:
        """Validate configuration values."""
        errors = []

        relay = self._config["relay"]
        if not self._validate_ipv4_address(relay["listen_address"]):
            errors.append(f"Invalid listen address: {relay['listen_address']}")

        # Port 0 binds an ephemeral port
        listen_port = relay["listen_port"]
        if not (listen_port == 0 or self._validate_port(listen_port)):
            errors.append(f"Invalid listen port: {listen_port}")

        if not self._validate_port(relay["forward_port"]):
            errors.append(f"Invalid forward port: {relay['forward_port']}")

        buffer_size = relay["receive_buffer_size"]
        if not isinstance(buffer_size, int) or buffer_size < MAGIC_PACKET_SIZE:
            errors.append(f"Invalid receive buffer size: {buffer_size}. "
                          f"Must be at least {MAGIC_PACKET_SIZE}")

        interfaces = self._config["interfaces"]
        max_interfaces = interfaces["max_interfaces"]
        if not isinstance(max_interfaces, int) or isinstance(max_interfaces, bool) or max_interfaces <= 0:
            errors.append(f"Invalid max_interfaces: {max_interfaces}")

        for key in ("discovery_retry_interval", "settle_delay"):
            value = interfaces[key]
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                errors.append(f"Invalid timing value for {key}: {value}")

        if not isinstance(interfaces["exclude"], list):
            errors.append(f"Invalid interface exclude list: {interfaces['exclude']}")

        # Validate logging configuration
        log_level = str(self._config["logging"]["level"]).upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level not in valid_levels:
            errors.append(f"Invalid log level: {log_level}. Must be one of {valid_levels}")

        facility = self._config["logging"]["syslog_facility"]
        if facility not in SYSLOG_FACILITIES:
            errors.append(f"Invalid syslog facility: {facility}")

        if not self._validate_port(self._config["monitoring"]["status_endpoint_port"]):
            errors.append(f"Invalid status endpoint port: {self._config['monitoring']['status_endpoint_port']}")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

    def _validate_ipv4_address(self, ip: str) -> bool:
        """Validate IPv4 address format."""
        try:
            ipaddress.IPv4Address(ip)
            return True
        except ValueError:
            return False

    def _validate_port(self, port: int) -> bool:
        """Validate port number."""
        return isinstance(port, int) and not isinstance(port, bool) and 1 <= port <= 65535

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'relay.listen_port')."""
        keys = key_path.split('.')
        value = self._config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def save_example_config(self, path: Optional[str] = None) -> None:
        """Save an example configuration file with comments."""
        if path is None:
            path = "config.json.example"

        example_config = {
            "_comment_relay": "Listening socket and forwarding settings",
            "relay": {
                "_comment": "Port 9 is the conventional Wake-on-LAN port",
                "listen_address": "0.0.0.0",
                "listen_port": 9,
                "forward_port": 9,
                "receive_buffer_size": 256
            },
            "_comment_interfaces": "Local interface discovery",
            "interfaces": {
                "_comment": "Timings in seconds; retries only apply in daemon mode",
                "max_interfaces": 10,
                "discovery_retry_interval": 5,
                "settle_delay": 1,
                "exclude": []
            },
            "_comment_logging": "Logging configuration (syslog is used in daemon mode)",
            "logging": {
                "level": "INFO",
                "file": "",
                "max_size_mb": 10,
                "backup_count": 3,
                "console_output": True,
                "syslog_address": "/dev/log",
                "syslog_facility": "user"
            },
            "_comment_monitoring": "Optional HTTP status endpoint",
            "monitoring": {
                "health_check_enabled": False,
                "status_endpoint_port": 8080
            }
        }

        with open(path, 'w', encoding='utf-8') as f:
            json.dump(example_config, f, indent=2, ensure_ascii=False)

        logger.info(f"Example configuration saved to {path}")
