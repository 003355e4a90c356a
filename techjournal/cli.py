"""Command line entry point for loading technology journals into ClickHouse.

Usage:
    techjournal-load /var/log/1c/tj
    techjournal-load -c /etc/techjournal/config.yaml -d /var/log/1c/tj
"""

import argparse
import logging
import os
import sys
import time
from typing import List, Optional, Sequence

from techjournal.config.loader_config import ConfigurationError, LoaderConfig, get_config
from techjournal.ingestion.coordinator import IngestionCoordinator, IngestionSummary
from techjournal.ingestion.discovery import FileDiscovery
from techjournal.ingestion.sink import ClickHouseSink, SchemaError
from techjournal.utils.clickhouse_client import ensure_database, get_clickhouse_connection
from techjournal.utils.logging_config import setup_logging

log = logging.getLogger(__name__)


def build_discovery(config: LoaderConfig) -> FileDiscovery:
    return FileDiscovery(config.log_extension, config.threshold_size_hash_by_attr)


def run_once(config: LoaderConfig, paths: Sequence[str], discovery: FileDiscovery) -> IngestionSummary:
    """Discover new or changed journal files under ``paths`` and load them.

    Files that failed to load, or every file of a run that could not
    reach ClickHouse, are forgotten by ``discovery`` so the next call
    retries them.

    Args:
        config: Loader configuration.
        paths: Directories or files to scan.
        discovery: Discovery instance; reuse it between calls to skip
            unchanged files.

    Returns:
        Totals of the run.

    Raises:
        ConfigurationError: If ClickHouse is unreachable.
        SchemaError: If the event/property table cannot be used.
    """
    tasks = discovery.scan(paths)
    if not tasks:
        log.info("No new journal files to load")
        return IngestionSummary()

    try:
        ensure_database(config.clickhouse, create=True)
        engine = get_clickhouse_connection(config.clickhouse)
        try:
            sink = ClickHouseSink(engine, config.clickhouse.database)
            summary = IngestionCoordinator(config, sink).run(tasks)
        finally:
            engine.dispose()
    except (ConfigurationError, SchemaError):
        discovery.forget(task.path for task in tasks)
        raise
    discovery.forget(summary.failed_files)
    return summary


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="techjournal-load",
        description="Load technology journal files into ClickHouse",
    )
    parser.add_argument(
        "paths",
        nargs="*",
        help="Directories or files to scan (default: current directory)",
    )
    parser.add_argument(
        "-d", "--daemon",
        action="store_true",
        help="Keep scanning every monitoring_interval_sec seconds",
    )
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to the YAML configuration file (default: $PATH_TO_CONFIG or config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level, overrides the configured one",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = get_config(args.config)
    except ConfigurationError as exc:
        log.error("Invalid configuration: %s", exc)
        return 1
    if not args.log_level:
        setup_logging(config.log_level)
    if args.daemon:
        config.daemon_mode = True

    paths = args.paths or [os.getcwd()]
    discovery = build_discovery(config)

    cycle = 0
    try:
        while True:
            cycle += 1
            try:
                run_once(config, paths, discovery)
            except (ConfigurationError, SchemaError) as exc:
                if cycle == 1 or not config.daemon_mode:
                    raise
                log.error("Load cycle %d failed, retrying on the next scan: %s", cycle, exc)
            if not config.daemon_mode:
                break
            log.debug("Next scan in %d seconds", config.monitoring_interval_sec)
            time.sleep(config.monitoring_interval_sec)
    except (ConfigurationError, SchemaError) as exc:
        log.error("Cannot load journals: %s", exc)
        return 1
    except KeyboardInterrupt:
        log.info("Interrupted, stopping")
    return 0


if __name__ == "__main__":
    sys.exit(main())
