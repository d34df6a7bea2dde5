#!/usr/bin/env python3

"""
VPN Monitor: Transmission kill-switch.

Polls the tunnel interfaces every few seconds. Transmission only runs while
the VPN is up and is always bound to the tunnel address; on VPN loss it is
killed within one poll.
"""

import argparse
import sys

from vpnguard import (
    setup_logging, log_message, Config, ConfigError,
    InterfaceReader, TransmissionController, LinkMonitor, Notifier, PollLoop
)

MONITOR_TAG = "vpn-monitor"


def main():
    parser = argparse.ArgumentParser(
        description="Kill Transmission when the VPN drops; bind it to the tunnel address when it is up."
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
    args = parser.parse_args()

    try:
        config = Config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    services = config.services
    verbosity = args.verbosity if args.verbosity is not None else config.logging.default_verbosity
    setup_logging(MONITOR_TAG, config.paths.log_file(services.server_name, MONITOR_TAG),
                  verbosity, console=config.logging.log_to_console)

    try:
        controller = TransmissionController.from_config(config)
    except ValueError as e:
        log_message(1, f"Configuration error: {e}")
        sys.exit(1)

    notifier = Notifier(MONITOR_TAG, enabled=config.logging.notifications)
    monitor = LinkMonitor.from_config(config, InterfaceReader(), controller, notifier)

    log_message(0, "=" * 40)
    log_message(0, f"VPN Monitor starting on {services.server_name} (poll every {services.link_poll_interval}s)")
    log_message(0, "=" * 40)

    loop = PollLoop("VPN Monitor", services.link_poll_interval)
    loop.install_signal_handlers()
    loop.run(monitor.poll)
    sys.exit(0)


if __name__ == "__main__":
    main()
