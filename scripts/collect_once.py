#!/usr/bin/env python3
"""Standalone script to run one collection cycle over a look-back window."""

import argparse
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add parent directory to path to import event_collector without installing it
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog
from pydantic import ValidationError

from event_collector.collector import Collector, TargetResolver
from event_collector.config import ConfigError, ConfigProvider
from event_collector.log_setup import configure_logging
from event_collector.sources import JournalSourceClient

logger = structlog.get_logger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Collect log records once into the output file")
    parser.add_argument("--config", help="Configuration file (default: config/collector.yaml)")
    parser.add_argument("--minutes", type=int, default=60, help="Minutes of records to collect (default: 60)")
    parser.add_argument("--hosts", help="Hosts to query, comma separated (overrides configuration)")
    parser.add_argument("--logs", help="Log names to query, comma separated (overrides configuration)")
    parser.add_argument("--output", help="Output file (overrides configuration)")
    parser.add_argument("--list-targets", action="store_true", help="Only list the targets that would be queried")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def list_targets(config) -> bool:
    with JournalSourceClient(timeout=config.query_timeout_seconds, ssh=config.ssh) as client:
        resolution = TargetResolver(client).resolve(config.hosts, config.logs)

    for target in resolution.targets:
        print(f"{target.host}\t{target.log_name}")
    for host, error in resolution.failed_hosts.items():
        print(f"{host}\tFAILED: {error}", file=sys.stderr)
    return not resolution.failed_hosts


def main(argv=None) -> bool:
    """Run a single cycle and print its summary."""
    args = parse_args(argv)

    try:
        config = ConfigProvider(args.config, required=args.config is not None).reload()
    except ConfigError as e:
        configure_logging("INFO")
        logger.critical("Cannot read configuration", error=str(e))
        return False

    overrides = {
        "hosts": args.hosts,
        "logs": args.logs,
        "output_path": args.output,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if overrides:
        try:
            config = config.model_validate({**config.model_dump(), **overrides})
        except ValidationError as e:
            configure_logging("INFO")
            logger.critical("Invalid command line override", error=str(e))
            return False

    configure_logging("DEBUG" if args.verbose else config.log_level, config.log_file)

    if args.list_targets:
        return list_targets(config)

    window_end = datetime.now(timezone.utc)
    window_start = window_end - timedelta(minutes=args.minutes)
    logger.info("Starting collection", minutes=args.minutes)

    collector = Collector(config)
    report = collector.run_cycle(window_start, window_end)

    # Print summary
    print("\n" + "="*50)
    print("COLLECTION SUMMARY")
    print("="*50)
    print(f"Window: {window_start.astimezone():%Y-%m-%d %H:%M:%S} - {window_end.astimezone():%Y-%m-%d %H:%M:%S}")
    print(f"Records collected: {report.records_collected}")
    print(f"Records written: {report.records_written}")

    print("\nPer Host:")
    for host, tally in report.per_host.items():
        print(f"  {host}: {tally.succeeded}/{tally.attempted} logs read")
    for host, error in report.failed_hosts.items():
        print(f"  {host}: FAILED ({error})")

    if report.failed_targets:
        print("\nFailed logs:")
        for target in report.failed_targets:
            print(f"  {target.host}: {target.log_name}")

    if report.write_error:
        print(f"\nWrite error: {report.write_error}")

    print(f"\nOutput: {config.resolved_output_path}")

    return report.ok


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
