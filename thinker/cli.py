"""Command-line interface: ``thinker clone`` and ``thinker sync``.

Examples:
  # Copy every table of `app` that is missing on the replica
  thinker clone -s db1:28015 -t db2:28015 --source-db app --target-db app

  # Converge two tables, deleting extra documents without asking
  thinker sync -s db1 -t db2 --source-db app --target-db app --pick-tables users orders -y
"""

import argparse
import asyncio
import sys
from typing import Callable, Sequence, TextIO

import structlog

from thinker.clone.pipeline import ClonePipeline
from thinker.driver.base import Driver
from thinker.errors import DriverError
from thinker.models.config import DEFAULT_PORT, AppConfig, ConnectionConfig, SyncSettings
from thinker.sync.collaborators import (
    ConfirmationProvider,
    ConsoleConfirmation,
    DeleteGate,
    LoggingProgressObserver,
    NullProgressObserver,
)
from thinker.sync.models import RunReport
from thinker.sync.orchestrator import SyncOrchestrator
from thinker.utils.config_loader import ConfigLoader, ConfigurationError
from thinker.utils.logging_config import configure_logging

log = structlog.stdlib.get_logger()

EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

DriverFactory = Callable[[ConnectionConfig], Driver]


def parse_host(value: str) -> tuple[str, int]:
    """Split ``host[:port]`` into its parts.

    Raises:
        argparse.ArgumentTypeError: If the port is not a valid number
    """
    host, sep, port = value.rpartition(":")
    if not sep:
        return value, DEFAULT_PORT
    if not host:
        raise argparse.ArgumentTypeError(f"missing host in {value!r}")
    try:
        number = int(port)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port in {value!r}") from None
    if not 1 <= number <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range in {value!r}")
    return host, number


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--source-host", "-s", type=parse_host, default=None, metavar="HOST[:PORT]",
        help=f"Source server (default: localhost:{DEFAULT_PORT})",
    )
    common.add_argument(
        "--target-host", "-t", type=parse_host, default=None, metavar="HOST[:PORT]",
        help=f"Target server (default: localhost:{DEFAULT_PORT})",
    )
    common.add_argument("--source-db", default=None, help="Source database name")
    common.add_argument("--target-db", default=None, help="Target database name")
    common.add_argument(
        "--pick-tables", nargs="+", default=None, metavar="TABLE",
        help="Only process these tables (default: all tables of the source database)",
    )
    common.add_argument(
        "--no-progress", action="store_true", default=False,
        help="Do not report progress after every batch",
    )
    common.add_argument(
        "--batch-size", type=_positive_int, default=None,
        help="Documents fetched per page (overrides config)",
    )
    common.add_argument(
        "--workers", type=_positive_int, default=None,
        help="Tables processed concurrently (overrides config)",
    )
    common.add_argument("--user", default=None, help="User for both servers")
    common.add_argument("--password", default=None, help="Password for both servers")
    common.add_argument(
        "--config", "-c", default=None,
        help="Path to configuration YAML file (default: config/default.yaml if present)",
    )
    common.add_argument(
        "--verbose", "-v", action="store_true", default=False,
        help="Enable verbose logging (DEBUG level)",
    )

    parser = argparse.ArgumentParser(
        prog="thinker",
        description="Clone and sync RethinkDB databases",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("\n\n", 1)[1],
    )
    commands = parser.add_subparsers(dest="command", required=True)

    clone = commands.add_parser(
        "clone", parents=[common], help="Create missing tables and copy their documents"
    )
    clone.add_argument(
        "--existing", choices=["skip", "sync"], default="skip",
        help="What to do with tables that already exist in the target (default: skip)",
    )
    clone.add_argument(
        "--yes", "-y", action="store_true", default=False,
        help="Do not ask before deleting documents (only with --existing sync)",
    )

    sync = commands.add_parser(
        "sync", parents=[common], help="Insert, update and delete documents so targets match"
    )
    sync.add_argument(
        "--yes", "-y", action="store_true", default=False,
        help="Do not ask before deleting documents",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> AppConfig:
    """Load configuration and apply command-line overrides.

    Raises:
        ConfigurationError: If configuration is invalid or a database name is missing
    """
    config = ConfigLoader().load_config(args.config)

    source = config.source.model_dump()
    target = config.target.model_dump()
    if args.source_host:
        source["host"], source["port"] = args.source_host
    if args.target_host:
        target["host"], target["port"] = args.target_host
    if args.source_db:
        source["db"] = args.source_db
    if args.target_db:
        target["db"] = args.target_db
    for endpoint in (source, target):
        if args.user is not None:
            endpoint["user"] = args.user
        if args.password is not None:
            endpoint["password"] = args.password

    sync = config.sync.model_dump()
    if args.batch_size:
        sync["batch_size"] = args.batch_size
    if args.workers:
        sync["workers"] = args.workers

    try:
        config = config.model_copy(
            update={
                "source": ConnectionConfig(**source),
                "target": ConnectionConfig(**target),
                "sync": SyncSettings(**sync),
            }
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid command-line option: {e}") from e

    if not config.source.db or not config.target.db:
        raise ConfigurationError("--source-db and --target-db are required")
    return config


def setup_logging(verbose: bool, config: AppConfig) -> None:
    """Configure logging based on verbosity level and config."""
    configure_logging(
        log_level="DEBUG" if verbose else config.logging.log_level,
        json_logs=config.logging.json_logs,
        log_file=config.logging.log_file,
    )


async def run_command(
    args: argparse.Namespace,
    config: AppConfig,
    driver_factory: DriverFactory,
    confirmation: ConfirmationProvider | None = None,
) -> RunReport:
    """Connect to both servers, run the command and always disconnect.

    Raises:
        DriverError: If a server cannot be reached or the source database listed
    """
    source = driver_factory(config.source)
    destination = driver_factory(config.target)
    observer = NullProgressObserver() if args.no_progress else LoggingProgressObserver()
    gate = DeleteGate(confirmation or ConsoleConfirmation(), assume_yes=args.yes)

    try:
        await source.connect()
        await destination.connect()

        orchestrator = SyncOrchestrator(
            source,
            destination,
            config.source.db,
            config.target.db,
            settings=config.sync,
            observer=observer,
            delete_gate=gate,
        )
        if args.command == "sync":
            return await orchestrator.run(args.pick_tables)

        pipeline = ClonePipeline(
            source,
            destination,
            config.source.db,
            config.target.db,
            settings=config.sync,
            observer=observer,
            existing=args.existing,
            orchestrator=orchestrator,
        )
        return await pipeline.run(args.pick_tables)
    finally:
        await source.close()
        await destination.close()


def print_summary(report: RunReport, stream: TextIO | None = None) -> None:
    """Print a per-table summary of the run."""
    out = stream or sys.stdout
    for table in report.tables:
        progress = table.progress
        mark = "✓" if table.clean else ("!" if table.success else "✗")
        counts = f"+{progress.inserted} ~{progress.updated} -{progress.deleted}"
        if progress.skipped_deletes:
            counts += f", {progress.skipped_deletes} deletes skipped"
        print(
            f"{mark} {table.table}: {table.status.value} "
            f"({counts}, {table.duration_seconds:.2f}s)",
            file=out,
        )
        for anomaly in table.anomalies[:5]:
            print(f"    warning: {anomaly}", file=out)
        if len(table.anomalies) > 5:
            print(f"    ... and {len(table.anomalies) - 5} more warnings", file=out)
        for error in table.errors:
            print(f"    error: {error}", file=out)

    failed = report.failed_tables()
    if failed:
        print(f"\n✗ {report.operation} finished with problems in: {', '.join(failed)}", file=out)
    else:
        print(f"\n✓ {report.operation} completed for {len(report.tables)} tables", file=out)


def _default_driver_factory(config: ConnectionConfig) -> Driver:
    from thinker.driver.rethinkdb_driver import RethinkDBDriver

    return RethinkDBDriver(config)


def main(
    argv: Sequence[str] | None = None,
    driver_factory: DriverFactory | None = None,
    confirmation: ConfirmationProvider | None = None,
) -> int:
    """Entry point of the ``thinker`` console script.

    Returns:
        Exit code: 0 on success, 1 if any table failed or is incomplete,
        2 on configuration or connection errors, 130 when interrupted
    """
    args = parse_arguments(argv)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        configure_logging(log_level="INFO")
        log.error("configuration_error", error=str(e))
        print(f"✗ {e}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(args.verbose, config)
    for warning in ConfigLoader().validate_config(config):
        print(f"warning: {warning}", file=sys.stderr)

    try:
        report = asyncio.run(
            run_command(args, config, driver_factory or _default_driver_factory, confirmation)
        )
    except DriverError as e:
        log.error("command_failed", command=args.command, error=str(e))
        print(f"✗ {args.command} failed: {e}", file=sys.stderr)
        return EXIT_USAGE
    except KeyboardInterrupt:
        log.warning("interrupted", command=args.command)
        return EXIT_INTERRUPTED

    print_summary(report)
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
