#!/usr/bin/env python3
"""
Command-Line Interface for the Greenhouse Hub

Usage:
    python -m greenhouse_hub                       # Run with default config
    python -m greenhouse_hub -c config.yaml        # Run with custom config
    python -m greenhouse_hub --api                 # Run with REST API server
    python -m greenhouse_hub --sync-once           # One reconciliation cycle
    python -m greenhouse_hub --show-settings       # Print stored node settings
"""

import argparse
import sys

from .controller import HubController
from .exceptions import GreenhouseHubError
from .models import HubConfig
from .settings_store import SettingsStore


def show_settings(config: HubConfig):
    """Print the persisted settings of every node slot."""
    store = SettingsStore(config.settings_path, config.node_capacity)
    settings = store.load_all()

    print("\n" + "=" * 60)
    print(f"STORED NODE SETTINGS ({config.settings_path})")
    print("=" * 60)
    for node_id, node_settings in settings.items():
        schedule = node_settings.schedule
        mode = "auto" if node_settings.auto_mode else "manual"
        print(
            f"Node {node_id}: threshold={node_settings.temperature_threshold:.1f}C "
            f"hysteresis={node_settings.hysteresis:.1f} mode={mode} "
            f"schedule={schedule.open_hour:02d}:{schedule.open_minute:02d}-"
            f"{schedule.close_hour:02d}:{schedule.close_minute:02d}"
            f"{'' if schedule.enabled else ' (off)'}"
        )
    print("=" * 60)


def main():
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description="Greenhouse Hub",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m greenhouse_hub                         # Run with default config
  python -m greenhouse_hub -c config.yaml          # Run with custom config
  python -m greenhouse_hub --sync-once             # Run one cycle against the remote store
  python -m greenhouse_hub --show-settings         # Print stored node settings and exit
  python -m greenhouse_hub --api                   # Run with REST API server
  python -m greenhouse_hub --api --api-port 8000   # Custom API port
        """
    )
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--sync-once",
        action="store_true",
        help="Run a single reconciliation cycle without the radio and exit",
    )
    parser.add_argument(
        "--show-settings",
        action="store_true",
        help="Print the persisted node settings and exit",
    )
    parser.add_argument(
        "--api",
        action="store_true",
        help="Run with REST API server for the local UI",
    )
    parser.add_argument(
        "--api-host",
        default=None,
        help="API server host (default: from config or 0.0.0.0)",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        default=None,
        help="API server port (default: from config or 8080)",
    )

    args = parser.parse_args()

    # Load config
    try:
        config = HubConfig.from_yaml(args.config)
    except FileNotFoundError:
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)
    except GreenhouseHubError as e:
        print(f"Error in config: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"Error loading config: {e}")
        sys.exit(1)

    # Handle --show-settings
    if args.show_settings:
        show_settings(config)
        sys.exit(0)

    hub = HubController(config)

    # Handle --sync-once
    if args.sync_once:
        report = hub.sync_now()
        hub.shutdown()

        print("\n" + "=" * 50)
        print("RECONCILIATION CYCLE")
        print("=" * 50)
        print(f"Skipped:  {report.skipped}")
        print(f"Pushed:   {report.pushed}")
        print(f"Pulled:   {report.pulled}")
        print(f"Changed:  {report.dirty}")
        print(f"Failures: {len(report.failures)}")
        for failure in report.failures:
            print(f"  {failure}")
        print("=" * 50)
        sys.exit(1 if report.failures else 0)

    # Handle --api or config.api.enabled
    if args.api or config.api.enabled:
        api_host = args.api_host or config.api.host
        api_port = args.api_port or config.api.port

        print("\n" + "=" * 50)
        print("GREENHOUSE HUB + REST API")
        print("=" * 50)
        print(f"API Host:        {api_host}")
        print(f"API Port:        {api_port}")
        print(f"Nodes:           1..{config.node_capacity}")
        print(f"Private Channel: {config.private_channel_index}")
        print(f"Private Port:    {config.private_port_num}")
        print("=" * 50)

        hub.run_with_api(
            api_host=api_host,
            api_port=api_port,
        )
        sys.exit(0)

    # Run main loop (no API)
    if not hub.run():
        sys.exit(1)


if __name__ == "__main__":
    main()
