#!/usr/bin/env python3
"""
Field Relay - Entry Point

Polls local devices and relays their readings to the collector over a
WebSocket, executing on/off commands sent back by the collector.

Usage:
    fieldrelay                      # Start with default config
    fieldrelay --config my.yaml     # Use custom config file
    fieldrelay --dry-run            # Validate config and exit
    fieldrelay --verbose            # Enable debug logging
"""

import argparse
import asyncio
import sys

from fieldrelay import __version__
from fieldrelay.agent import run_agent
from fieldrelay.common.config import (
    DEFAULT_CONFIG_PATH,
    RelayConfig,
    load_config_file,
    validate_config,
)
from fieldrelay.common.exceptions import ConfigError
from fieldrelay.common.logging_setup import configure_logging, get_service_logger


def print_startup_banner(config: RelayConfig):
    """Print startup information."""
    print()
    print("=" * 60)
    print(f"  FIELD RELAY v{__version__}")
    print("=" * 60)
    print()
    print(f"  Collector: {config.server_url}")
    print(f"  Poll interval: {config.poll_interval_s:g}s")
    print(f"  Channel capacity: {config.channel_capacity} batches")
    print(f"  Backoff: {config.backoff_initial_s:g}s .. {config.backoff_max_s:g}s")
    print()
    print(f"  Devices ({len(config.devices)}):")
    for device in config.devices:
        address = device.address or "cloud"
        print(f"    - {device.name:<20} {device.device_type.value:<11} {address}")
    print()
    if config.health.enabled:
        print(f"  Health: http://{config.health.host}:{config.health.port}/health")
    else:
        print("  Health: disabled")
    print()
    print("=" * 60)
    print()


async def main_async(config: RelayConfig, verbose: bool = False):
    """
    Async main function that runs the agent.

    Args:
        config: Loaded configuration
        verbose: Enable verbose logging
    """
    if verbose:
        # Plain text in verbose/debug mode
        configure_logging("DEBUG", json_format=False)
    else:
        configure_logging(config.logging.level, json_format=config.logging.json_format)

    logger = get_service_logger("main")
    logger.info("Starting field relay")

    await run_agent(config)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Field Relay - device telemetry relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    fieldrelay                      # Start with default config
    fieldrelay --config my.yaml     # Use custom config file
    fieldrelay --dry-run            # Validate config and exit
    fieldrelay -v                   # Enable debug logging

Environment:
    FIELDRELAY_SERVER_URL, FIELDRELAY_API_KEY,
    FIELDRELAY_LOG_LEVEL, FIELDRELAY_LOG_FORMAT override the config file
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without starting"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Field Relay v{__version__}"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config_file(args.config)
    except ConfigError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    # Validate configuration
    errors = validate_config(config)
    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)

    print_startup_banner(config)

    if args.dry_run:
        print("Dry run mode - configuration valid")
        print("Exiting without starting the relay")
        sys.exit(0)

    print("Starting relay...")
    print("Press Ctrl+C to stop")
    print()

    try:
        asyncio.run(main_async(config, verbose=args.verbose))
    except KeyboardInterrupt:
        print("\nStopped by user")


if __name__ == "__main__":
    main()
