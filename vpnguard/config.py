#!/usr/bin/env python3

"""
Configuration Management Module for the VPN enforcement monitors

This module provides centralized configuration with:
- Single source of truth for paths, poll intervals and collaborator commands
- Validation of every section on construction
- Optional JSON configuration file at a fixed path
- Environment variable overrides for the few settings operators change often

All three monitors run with no required flags; they read the same file.
"""

import os
import json
import socket
import ipaddress
from pathlib import Path
from typing import Dict, Any, List, Optional, Union
from dataclasses import dataclass, field, asdict

DEFAULT_CONFIG_FILE = Path("/usr/local/etc/vpnguard/config.json")
CONFIG_ENV_VAR = "VPNGUARD_CONFIG"


class ConfigError(ValueError):
    """Raised when a configuration section fails validation."""
    pass


def _default_server_name() -> str:
    return socket.gethostname().split('.')[0] or "server"


@dataclass
class NetworkConfig:
    """Interface discovery and address probing configuration."""
    tunnel_prefixes: List[str] = field(default_factory=lambda: ["utun"])
    physical_interfaces: List[str] = field(default_factory=lambda: ["en0", "en1", "en2"])
    loopback_address: str = "127.0.0.1"
    probe_url: str = "http://checkip.amazonaws.com"
    probe_timeout: int = 10  # seconds

    def __post_init__(self):
        """Validate network configuration after initialization."""
        self._validate_interfaces()
        try:
            ipaddress.ip_address(self.loopback_address)
        except ValueError as e:
            raise ConfigError(f"Invalid loopback address in network config: {e}")
        if not self.probe_url.startswith(("http://", "https://")):
            raise ConfigError(f"Invalid probe URL: {self.probe_url}")
        if self.probe_timeout <= 0:
            raise ConfigError(f"Invalid probe timeout: {self.probe_timeout}")

    def _validate_interfaces(self):
        """Validate interface names are non-empty strings."""
        if not self.tunnel_prefixes:
            raise ConfigError("At least one tunnel interface prefix is required")
        if not self.physical_interfaces:
            raise ConfigError("At least one physical interface candidate is required")
        for interface in list(self.tunnel_prefixes) + list(self.physical_interfaces):
            if not isinstance(interface, str) or not interface.strip():
                raise ConfigError(f"Invalid interface name: {interface}")


@dataclass
class PathConfig:
    """File system paths used by the monitors."""
    home_dir: Path = field(default_factory=Path.home)
    log_dir: Optional[Path] = None
    reference_dir: Optional[Path] = None
    reference_file: Path = field(init=False)
    pause_file: Path = field(init=False)

    # Collaborator paths
    pia_settings_file: Path = field(default_factory=lambda: Path("/Library/Preferences/com.privateinternetaccess.vpn/settings.json"))
    piactl_path: Path = field(default_factory=lambda: Path("/usr/local/bin/piactl"))
    transmission_settings_file: Optional[Path] = None

    def __post_init__(self):
        """Initialize derived paths."""
        self.home_dir = Path(self.home_dir)
        self.log_dir = Path(self.log_dir) if self.log_dir else self.home_dir / ".local" / "state"
        self.reference_dir = Path(self.reference_dir) if self.reference_dir else self.home_dir / ".local" / "etc"
        self.reference_file = self.reference_dir / "pia-split-tunnel-reference.json"
        self.pause_file = self.reference_dir / "pia-monitor-paused"
        self.pia_settings_file = Path(self.pia_settings_file)
        self.piactl_path = Path(self.piactl_path)
        if self.transmission_settings_file:
            self.transmission_settings_file = Path(self.transmission_settings_file)

    def log_file(self, server_name: str, monitor: str) -> Path:
        """Per-monitor log file, e.g. ``tilsit-vpn-monitor.log``."""
        return self.log_dir / f"{server_name.lower()}-{monitor}.log"


@dataclass
class ServiceConfig:
    """Poll intervals, retry policy and collaborator settings."""
    server_name: str = field(default_factory=_default_server_name)
    operator_username: Optional[str] = None

    # Link monitor
    link_poll_interval: int = 5  # seconds
    down_log_every: int = 60  # polls between "still down" lines
    transmission_process_name: str = "Transmission"
    transmission_backend: str = "app"  # app (Transmission.app) or daemon (transmission-daemon)
    transmission_app_name: str = "Transmission"
    transmission_defaults_domain: str = "org.m0k.transmission"
    transmission_daemon_path: str = "/usr/local/bin/transmission-daemon"
    quit_timeout: int = 2  # seconds before force kill
    force_settle: int = 1  # seconds after force kill before the final check
    launch_settle: int = 3  # seconds after a launch command

    # Drift watchdog
    drift_poll_interval: int = 60  # seconds
    max_restore_failures: int = 3
    restore_backoff: int = 300  # seconds
    reconnect_delay: int = 3  # seconds between disconnect and connect
    reconnect_settle: int = 10  # seconds after connect before verification

    # Bypass daemon
    bypass_poll_interval: int = 60  # seconds
    plex_port: int = 32400
    plex_api_url: str = "http://localhost:32400"
    plex_api_timeout: int = 10  # seconds

    def __post_init__(self):
        """Validate service configuration."""
        self._validate_ports()
        self._validate_timeouts()
        if self.transmission_backend not in ("app", "daemon"):
            raise ConfigError(f"Invalid transmission backend: {self.transmission_backend}. Must be 'app' or 'daemon'")
        if not self.server_name.strip():
            raise ConfigError("Server name must not be empty")
        if self.max_restore_failures < 1:
            raise ConfigError(f"Invalid max_restore_failures: {self.max_restore_failures}")

    def _validate_ports(self):
        """Validate port numbers are in valid range."""
        if not (1 <= self.plex_port <= 65535):
            raise ConfigError(f"Invalid plex port: {self.plex_port}")

    def _validate_timeouts(self):
        """Validate timeout values are positive."""
        timeouts = [
            self.link_poll_interval, self.down_log_every, self.quit_timeout,
            self.drift_poll_interval, self.restore_backoff,
            self.bypass_poll_interval, self.plex_api_timeout
        ]
        for timeout in timeouts:
            if timeout <= 0:
                raise ConfigError(f"Invalid timeout value: {timeout}")
        for delay in (self.force_settle, self.launch_settle, self.reconnect_delay, self.reconnect_settle):
            if delay < 0:
                raise ConfigError(f"Invalid delay value: {delay}")
        # a kill must finish within one link poll
        if self.quit_timeout + self.force_settle > self.link_poll_interval:
            raise ConfigError(
                f"quit_timeout + force_settle ({self.quit_timeout + self.force_settle}s) "
                f"exceeds link_poll_interval ({self.link_poll_interval}s)"
            )

    @property
    def hostname_lower(self) -> str:
        return self.server_name.lower()

    @property
    def pf_anchor(self) -> str:
        return f"com.apple/100.{self.hostname_lower}.vpn-bypass"


@dataclass
class LoggingConfig:
    """Logging configuration settings."""
    default_verbosity: int = 3
    log_to_console: bool = True
    notifications: bool = True

    def __post_init__(self):
        """Validate logging configuration."""
        if not (0 <= self.default_verbosity <= 5):
            raise ConfigError(f"Invalid default verbosity: {self.default_verbosity}")


class Config:
    """
    Main configuration class that aggregates all configuration sections.

    Sections are built from the JSON file (if any) with environment
    overrides applied on top; each section validates itself.
    """

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        """
        Initialize configuration.

        Args:
            config_file: Optional path to configuration file. Defaults to
                $VPNGUARD_CONFIG, then the fixed system path.
        """
        self.config_file = self._resolve_config_file(config_file)
        self._load_configuration()

    @staticmethod
    def _resolve_config_file(config_file: Optional[Union[str, Path]]) -> Optional[Path]:
        if config_file:
            return Path(config_file)
        if os.getenv(CONFIG_ENV_VAR):
            return Path(os.getenv(CONFIG_ENV_VAR))
        if DEFAULT_CONFIG_FILE.exists():
            return DEFAULT_CONFIG_FILE
        return None

    def _load_configuration(self):
        """Load configuration from file or use defaults."""
        config_data = {}

        if self.config_file:
            config_data = self._load_config_file(self.config_file)

        for section, values in self._load_environment_config().items():
            config_data.setdefault(section, {}).update(values)

        try:
            self.network = NetworkConfig(**config_data.get('network', {}))
            self.paths = PathConfig(**config_data.get('paths', {}))
            self.services = ServiceConfig(**config_data.get('services', {}))
            self.logging = LoggingConfig(**config_data.get('logging', {}))
        except TypeError as e:
            raise ConfigError(f"Unknown configuration key: {e}")

    def _load_config_file(self, config_file: Path) -> Dict[str, Any]:
        """Load configuration from JSON file."""
        if not config_file.exists():
            raise ConfigError(f"Configuration file not found: {config_file}")

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in configuration file {config_file}: {e}")
        except OSError as e:
            raise ConfigError(f"Error loading configuration file {config_file}: {e}")

        if not isinstance(config_data, dict):
            raise ConfigError(f"Configuration file {config_file} must contain a JSON object")
        return config_data

    def _load_environment_config(self) -> Dict[str, Any]:
        """Load overrides from environment variables."""
        env_config = {}

        if os.getenv('VPNGUARD_SERVER_NAME'):
            env_config.setdefault('services', {})['server_name'] = os.getenv('VPNGUARD_SERVER_NAME')

        if os.getenv('VPNGUARD_OPERATOR'):
            env_config.setdefault('services', {})['operator_username'] = os.getenv('VPNGUARD_OPERATOR')

        if os.getenv('VPNGUARD_LOG_DIR'):
            env_config.setdefault('paths', {})['log_dir'] = os.getenv('VPNGUARD_LOG_DIR')

        if os.getenv('VPNGUARD_VERBOSITY'):
            try:
                env_config.setdefault('logging', {})['default_verbosity'] = int(os.getenv('VPNGUARD_VERBOSITY'))
            except ValueError:
                raise ConfigError("Invalid VPNGUARD_VERBOSITY environment variable")

        return env_config

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary for serialization."""
        def plain(section):
            return {key: (str(value) if isinstance(value, Path) else value)
                    for key, value in asdict(section).items()}

        return {
            'network': plain(self.network),
            'paths': plain(self.paths),
            'services': plain(self.services),
            'logging': plain(self.logging),
        }


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_file: Optional[Union[str, Path]] = None) -> Config:
    """
    Get the global configuration instance.

    Args:
        config_file: Optional path to configuration file

    Returns:
        Configuration instance
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = Config(config_file)

    return _config_instance


def reset_config():
    """Reset the global configuration instance (primarily for testing)."""
    global _config_instance
    _config_instance = None
