"""
VPN Enforcement Supervisor

Three independent monitors that keep a media host's traffic where it belongs:

- link_monitor: kills the torrent client when the VPN tunnel drops, binds it to
  the tunnel address and relaunches it when the tunnel returns
- drift_watchdog: restores PIA's split tunnel settings when the client forgets them
- bypass_daemon: keeps media server remote access routed outside the VPN and
  tells the media server its public address

Shared pieces:

- logger: Logging setup and the numeric verbosity scale
- utils: Command execution, process lookup and file helpers
- config: Configuration sections, file and environment loading
- polling: Poll loop and failure backoff
"""

from .logger import setup_logging, log_message, log_event, FATAL
from .utils import (
    VpnGuardError, CommandError, run_command, find_pids, signal_processes,
    atomic_write_text
)
from .config import (
    Config, ConfigError, get_config, reset_config,
    NetworkConfig, PathConfig, ServiceConfig, LoggingConfig
)
from .polling import BackoffState, PollLoop
from .notify import Notifier, NullNotifier
from .interfaces import InterfaceSnapshot, InterfaceReader, PhysicalNetwork
from .transmission import (
    TransmissionController, DefaultsBindAddressStore, SettingsJsonBindAddressStore,
    ProcessControlError, BindAddressError, ManagedProcessHandle
)
from .link_monitor import LinkMonitor, LinkState, LinkStatus, next_link_state
from .drift_watchdog import ConfigDriftWatchdog
from .pf import PfAnchor, RuleSet, RuleLoadError
from .plex import (
    PlexClient, PlexTokenLocator, PublicAddressProbe, SourceAddressAdapter,
    PlexApiError, ProbeError
)
from .bypass_daemon import BypassRouteDaemon

__all__ = [
    # Logger functions
    'setup_logging',
    'log_message',
    'log_event',
    'FATAL',

    # Utility functions
    'VpnGuardError',
    'CommandError',
    'run_command',
    'find_pids',
    'signal_processes',
    'atomic_write_text',

    # Configuration management
    'Config',
    'ConfigError',
    'get_config',
    'reset_config',
    'NetworkConfig',
    'PathConfig',
    'ServiceConfig',
    'LoggingConfig',

    # Polling
    'BackoffState',
    'PollLoop',
    'Notifier',
    'NullNotifier',

    # Link monitor
    'InterfaceSnapshot',
    'InterfaceReader',
    'PhysicalNetwork',
    'TransmissionController',
    'DefaultsBindAddressStore',
    'SettingsJsonBindAddressStore',
    'ProcessControlError',
    'BindAddressError',
    'ManagedProcessHandle',
    'LinkMonitor',
    'LinkState',
    'LinkStatus',
    'next_link_state',

    # Drift watchdog
    'ConfigDriftWatchdog',

    # Bypass daemon
    'PfAnchor',
    'RuleSet',
    'RuleLoadError',
    'PlexClient',
    'PlexTokenLocator',
    'PublicAddressProbe',
    'SourceAddressAdapter',
    'PlexApiError',
    'ProbeError',
    'BypassRouteDaemon',
]

__version__ = "1.0.0"
__author__ = "HOMESERVER Team"
__description__ = "VPN kill-switch, split tunnel watchdog and media server bypass for macOS hosts"
