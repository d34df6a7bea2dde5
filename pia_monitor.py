#!/usr/bin/env python3

"""
PIA Split Tunnel Monitor.

Compares PIA's split tunnel settings with a saved reference every minute and
restores them through piactl when they drift.

Usage:
    pia_monitor.py [LEVEL]                    # run the watchdog
    pia_monitor.py --save-reference [LEVEL]   # save current settings as reference and exit

To change PIA settings on purpose: create the pause marker, edit PIA, then
run --save-reference (which also removes the marker).
"""

import argparse
import sys

from vpnguard import (
    setup_logging, log_message, Config, ConfigError,
    ConfigDriftWatchdog, Notifier, PollLoop
)

MONITOR_TAG = "pia-monitor"


def main():
    parser = argparse.ArgumentParser(
        description="Detect and repair drift of PIA split tunnel settings."
    )
    parser.add_argument(
        "verbosity",
        type=int,
        nargs='?',
        default=None,
        choices=range(6),
        help="Set verbosity level (0=STATUS, 1=ERROR, 2=SUCCESS, 3=INFO, 4=VARIABLES, 5=DEBUG). Default from config (3).",
        metavar="LEVEL"
    )
    parser.add_argument("--config", help="Path to configuration JSON file.")
    parser.add_argument(
        "--save-reference",
        action="store_true",
        help="Save current PIA settings as the reference, clear the pause marker, and exit."
    )
    args = parser.parse_args()

    try:
        config = Config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    services, paths = config.services, config.paths
    verbosity = args.verbosity if args.verbosity is not None else config.logging.default_verbosity
    setup_logging(MONITOR_TAG, paths.log_file(services.server_name, MONITOR_TAG),
                  verbosity, console=config.logging.log_to_console)

    notifier = Notifier(MONITOR_TAG, enabled=config.logging.notifications)
    watchdog = ConfigDriftWatchdog.from_config(config, notifier)

    if args.save_reference:
        sys.exit(0 if watchdog.save_reference() else 1)

    log_message(0, "=" * 40)
    log_message(0, f"PIA split tunnel monitor starting on {services.server_name}")
    log_message(0, f"Settings: {paths.pia_settings_file}")
    log_message(0, f"Reference: {paths.reference_file}")
    log_message(0, "=" * 40)

    if not watchdog.reference.exists():
        log_message(1, f"No reference config found at {paths.reference_file}")
        log_message(1, "Run with --save-reference first to capture the correct config")
        sys.exit(1)

    saved_at = watchdog.reference.saved_at()
    if saved_at:
        log_message(3, f"Reference saved at {saved_at}")
    if not watchdog.piactl.available():
        log_message(1, f"WARNING: piactl not found at {paths.piactl_path}; auto-fix disabled (detect-only mode)")
    if watchdog.pause.is_set():
        log_message(3, f"Monitor starts PAUSED ({paths.pause_file} exists)")

    loop = PollLoop("PIA Monitor", services.drift_poll_interval)
    loop.install_signal_handlers()
    loop.run(watchdog.poll)
    sys.exit(0)


if __name__ == "__main__":
    main()
