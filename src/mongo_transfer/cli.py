#!/usr/bin/env python3
"""
CLI for moving MongoDB collections to and from JSON/CSV files.

Usage:
    mongo-transfer export --db shop --data-dir ./data [--format csv] [--clear-output]
    mongo-transfer import --db shop --data-dir ./data [--conflict upsert] [--clear] [--no-verify]
    mongo-transfer verify --data-dir ./data

Exit code is 1 only when a run cannot start (configuration, connection,
data directory). Failures of single collections or files are listed in the
summary and the exit code stays 0. verify exits 1 when any file fails.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config.config_loader import SUPPORTED_FORMATS, SUPPORTED_STRATEGIES, TransferConfig
from .core.exceptions import ConfigError, DatabaseConnectionError, DataDirectoryError
from .core.logging import configure_logging, flush_logs
from .core.models import RunSummary
from .transfer.checksums import verify_folder
from .transfer.exporter import ExportPipeline
from .transfer.importer import ImportPipeline
from .transfer.mongo_client import MongoSession
from .transfer.progress import LoggingProgressSink, ProgressSink, TqdmProgressSink

logger = logging.getLogger("mongo_transfer.cli")


def load_config(args) -> TransferConfig:
    """Build the run configuration: file and environment first, then flags."""
    config = TransferConfig.load(config_path=args.config)
    config = config.with_overrides(
        mongo_uri=args.uri,
        db_name=args.db,
        data_folder=args.data_dir,
        file_format=args.format,
        batch_size=args.batch_size,
        max_workers=getattr(args, "workers", None),
        clear_output=True if getattr(args, "clear_output", False) else None,
        clear_collections=True if getattr(args, "clear", False) else None,
        conflict_strategy=getattr(args, "conflict", None),
        verify_checksums=False if getattr(args, "no_verify", False) else None,
        log_level="debug" if args.verbose else None,
    )
    config.validate()
    return config


def make_progress(args) -> ProgressSink:
    if args.no_progress:
        return LoggingProgressSink()
    return TqdmProgressSink()


def print_summary(summary: RunSummary, as_json: bool) -> None:
    if as_json:
        print(json.dumps(summary.to_dict(), indent=2))
    else:
        print(summary.summary())


def cmd_export(args, config: TransferConfig) -> int:
    """Export every collection of the database to the data folder."""
    progress = make_progress(args)
    try:
        with MongoSession(config) as database:
            summary = ExportPipeline(database, config, progress=progress).run()
    except (DatabaseConnectionError, DataDirectoryError) as e:
        logger.error(f"Export aborted: {e}")
        return 1
    finally:
        progress.close()
        flush_logs()

    print_summary(summary, args.json)
    return 0


def cmd_import(args, config: TransferConfig) -> int:
    """Import the files of the data folder into the database."""
    progress = make_progress(args)
    try:
        with MongoSession(config) as database:
            summary = ImportPipeline(database, config, progress=progress).run()
    except (DatabaseConnectionError, DataDirectoryError) as e:
        logger.error(f"Import aborted: {e}")
        return 1
    finally:
        progress.close()
        flush_logs()

    print_summary(summary, args.json)
    return 0


def cmd_verify(args, config: TransferConfig) -> int:
    """Check the data folder against manifest.sha256."""
    try:
        summary = verify_folder(config.data_path)
    except DataDirectoryError as e:
        logger.error(f"Verify aborted: {e}")
        return 1
    finally:
        flush_logs()

    print_summary(summary, args.json)
    return 0 if summary.failed == 0 else 1


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="YAML configuration file")
    common.add_argument("--data-dir", help="Data folder (default: ./data or DATA_FOLDER)")
    common.add_argument("--format", choices=SUPPORTED_FORMATS, help="File format (default: json)")
    common.add_argument("--json", action="store_true", help="Output summary as JSON")
    common.add_argument("--no-progress", action="store_true", help="Log progress instead of drawing bars")
    common.add_argument("-v", "--verbose", action="store_true", help="Enable verbose/debug logging")

    database = argparse.ArgumentParser(add_help=False)
    database.add_argument("--uri", help="MongoDB connection string (default: MONGO_URI)")
    database.add_argument("--db", help="Database name (default: DB_NAME)")
    database.add_argument("--batch-size", type=int, help="Documents per batch")

    parser = argparse.ArgumentParser(
        prog="mongo-transfer",
        description="Move MongoDB collections to and from JSON/CSV files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Export command
    export_parser = subparsers.add_parser("export", parents=[common, database], help="Export collections to files")
    export_parser.add_argument("--workers", type=int, help="Collections exported concurrently")
    export_parser.add_argument("--clear-output", action="store_true", help="Empty the data folder first")

    # Import command
    import_parser = subparsers.add_parser("import", parents=[common, database], help="Import files into collections")
    import_parser.add_argument("--conflict", choices=SUPPORTED_STRATEGIES,
                               help="What to do with documents whose _id already exists")
    import_parser.add_argument("--clear", action="store_true", help="Empty each target collection first")
    import_parser.add_argument("--no-verify", action="store_true", help="Skip checksum verification")

    # Verify command
    verify_parser = subparsers.add_parser("verify", parents=[common], help="Check files against manifest.sha256")
    verify_parser.set_defaults(uri=None, db=None, batch_size=None)

    return parser.parse_args(argv)


COMMANDS = {
    "export": cmd_export,
    "import": cmd_import,
    "verify": cmd_verify,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command not in COMMANDS:
        print("No command specified. Use --help for usage.", file=sys.stderr)
        return 1

    try:
        config = load_config(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    show_bars = args.command != "verify" and not args.no_progress
    try:
        configure_logging(
            level=config.log_level,
            log_file=config.log_file,
            buffer_console=show_bars,
        )
    except OSError as e:
        print(f"Cannot open log file {config.log_file}: {e}", file=sys.stderr)
        return 1
    logger.debug(f"Configuration: {config.to_dict()}")

    return COMMANDS[args.command](args, config)


if __name__ == "__main__":
    sys.exit(main())
