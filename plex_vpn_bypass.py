#!/usr/bin/env python3

"""
Plex VPN Bypass.

Routes Plex remote access around the VPN with PF rules in a private anchor
and keeps Plex's customConnections pointed at the real public address.

Must run as root (pfctl). Run with --flush to remove the rules and exit.
"""

import argparse
import os
import sys

from vpnguard import (
    setup_logging, log_message, Config, ConfigError,
    InterfaceReader, PfAnchor, PublicAddressProbe, PlexClient, PlexTokenLocator,
    BypassRouteDaemon, RuleLoadError, Notifier, PollLoop
)

MONITOR_TAG = "plex-vpn-bypass"


def main():
    parser = argparse.ArgumentParser(
        description="Keep Plex remote access outside the VPN and advertise the real public address."
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
        "--flush",
        action="store_true",
        help="Remove all bypass rules from the PF anchor and exit."
    )
    args = parser.parse_args()

    try:
        config = Config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    services, network = config.services, config.network
    verbosity = args.verbosity if args.verbosity is not None else config.logging.default_verbosity
    setup_logging(MONITOR_TAG, config.paths.log_file(services.server_name, MONITOR_TAG),
                  verbosity, console=config.logging.log_to_console)

    if os.geteuid() != 0:
        log_message(1, "This script must run as root to manage PF rules.")
        sys.exit(1)

    anchor = PfAnchor(services.pf_anchor)

    if args.flush:
        try:
            anchor.flush()
        except RuleLoadError as e:
            log_message(1, str(e))
            sys.exit(1)
        sys.exit(0)

    operator = services.operator_username
    operator_home = os.path.expanduser(f"~{operator}") if operator else str(config.paths.home_dir)
    plex = PlexClient(services.plex_api_url, PlexTokenLocator(operator_home), timeout=services.plex_api_timeout)
    probe = PublicAddressProbe(network.probe_url, network.probe_timeout)
    notifier = Notifier(MONITOR_TAG, as_user=operator, enabled=config.logging.notifications)
    daemon = BypassRouteDaemon.from_config(config, InterfaceReader(), anchor, probe, plex, notifier)

    log_message(0, "=" * 40)
    log_message(0, f"Plex VPN Bypass starting on {services.server_name}")
    log_message(0, f"PF anchor: {services.pf_anchor}")
    log_message(0, "=" * 40)

    loop = PollLoop("Plex VPN Bypass", services.bypass_poll_interval)
    loop.install_signal_handlers()
    loop.run(daemon.poll)
    sys.exit(0)


if __name__ == "__main__":
    main()
