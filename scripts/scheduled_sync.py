#!/usr/bin/env python3
"""
Scheduled synchronization script for the folder sync task.

This script performs an incremental one-way synchronization:
- Detects created, updated, deleted and renamed files on both folders
- Applies the source changes to the destination, recycling replaced files
- Prints the diagnostics of the run

Designed to be run on a schedule (e.g., via cron, systemd timers or Task Scheduler).

Usage:
    python scripts/scheduled_sync.py [--config CONFIG_PATH] [--source DIR --destination DIR]

Exit codes:
    0: Synchronization succeeded
    1: Synchronization failed
    130: Synchronization was cancelled (SIGINT / SIGTERM)
"""

import argparse
import signal
import sys
import threading

import structlog

from filesync.sync.errors import SyncCancelledError
from filesync.task import TaskStatus, run_from_config
from filesync.utils.config_loader import ConfigLoader, ConfigurationError
from filesync.utils.logging_config import configure_logging_from_config

log = structlog.stdlib.get_logger()


def install_cancel_handlers(cancel_event: threading.Event) -> None:
    """Turn SIGINT and SIGTERM into a cooperative cancellation request."""

    def request_cancel(signum, frame):
        log.warning("cancellation_requested", signal=signal.Signals(signum).name)
        cancel_event.set()

    signal.signal(signal.SIGINT, request_cancel)
    signal.signal(signal.SIGTERM, request_cancel)


def main():
    """Main entry point for scheduled sync script."""
    parser = argparse.ArgumentParser(description="Scheduled one-way folder synchronization")
    parser.add_argument("--config", type=str, help="Path to configuration file", default=None)
    parser.add_argument("--source", type=str, help="Override sync.source_path", default=None)
    parser.add_argument("--destination", type=str, help="Override sync.destination_path", default=None)

    args = parser.parse_args()

    config_loader = ConfigLoader()
    try:
        config = config_loader.load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.source:
        config.sync.source_path = args.source
    if args.destination:
        config.sync.destination_path = args.destination

    configure_logging_from_config(config.logging)
    for warning in config_loader.validate_config(config):
        print(f"Warning: {warning}", file=sys.stderr)

    cancel_event = threading.Event()
    install_cancel_handlers(cancel_event)

    try:
        result = run_from_config(config, cancel_event=cancel_event)
    except SyncCancelledError as e:
        for line in e.diagnostics:
            print(line)
        print("Status: CANCELLED")
        sys.exit(130)

    print("\n" + "=" * 60)
    print("SYNCHRONIZATION SUMMARY")
    print("=" * 60)
    for line in result.diagnostics:
        print(line)
    print("-" * 60)

    if result.status == TaskStatus.SUCCESS:
        print("Status: ✓ SUCCESS")
    else:
        print("Status: ✗ FAILED")

    if result.run_result is not None:
        print(f"Applied: {result.run_result.applied_count}")
        print(f"Skipped: {result.run_result.skipped_count}")
        print(f"Duration: {result.run_result.duration_seconds:.2f} seconds")

    print("=" * 60)

    sys.exit(0 if result.status == TaskStatus.SUCCESS else 1)


if __name__ == "__main__":
    main()
