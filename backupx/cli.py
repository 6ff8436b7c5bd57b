"""
Command-line interface for backupx.

Commands:
- start:    run every configured target once
- schedule: run the batch on a cron schedule
- list:     show the entries of an archive
- extract:  restore an archive into a directory
- version:  print the version
"""

import argparse
import sys
from typing import List, Optional

from backupx import __version__, configure_logging
from backupx.backup.archive import extract_archive, list_archive
from backupx.backup.compression import format_bytes
from backupx.backup.errors import BackupError
from backupx.backup.executor import BackupManager
from backupx.config import Config, ConfigError, load_config
from backupx.logs import BackupLog


def print_error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def start_command(args: argparse.Namespace) -> int:
    """
    Run the configured batch once.

    Returns:
        0 when every target succeeded, 1 otherwise
    """
    try:
        config = load_config(args.config)
    except ConfigError as e:
        return print_error(str(e))

    if args.verbose is not None:
        config.verbose = args.verbose
    if args.output:
        config.output_path = args.output

    if not config.targets:
        return print_error("No backup targets configured. Add 'databases' or 'files' to your configuration file.")

    summary = BackupManager(config, BackupLog(verbose=config.verbose)).run()

    for result in summary.results:
        if result.success:
            print(f"OK      {result.name}: {result.output_filename} ({format_bytes(result.size_bytes)})")
        else:
            print(f"FAILED  {result.name}: {result.error}")
    print(f"{summary.success_count} succeeded, {summary.failure_count} failed "
          f"in {summary.total_duration_ms:.2f}ms")

    return 0 if summary.failure_count == 0 else 1


def schedule_command(args: argparse.Namespace) -> int:
    """Run the batch on a cron schedule until interrupted."""
    from backupx.scheduler import init_scheduler, start_scheduler, stop_scheduler

    try:
        load_config(args.config)
    except ConfigError as e:
        return print_error(str(e))

    try:
        init_scheduler(args.cron, config_path=args.config)
    except ValueError as e:
        return print_error(f"Invalid cron expression '{args.cron}': {e}")

    try:
        start_scheduler()
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        stop_scheduler()
    return 0


def list_command(args: argparse.Namespace) -> int:
    """Print the entries of an archive."""
    try:
        entries = list_archive(args.archive)
    except BackupError as e:
        return print_error(str(e))

    for entry in entries:
        print(f"{entry.size_bytes:>12}  {entry.relative_path}")
    print(f"{len(entries)} files, {format_bytes(sum(e.size_bytes for e in entries))}")
    return 0


def extract_command(args: argparse.Namespace) -> int:
    """Restore an archive into a directory."""
    try:
        entries = extract_archive(args.archive, args.destination)
    except BackupError as e:
        return print_error(str(e))

    print(f"Restored {len(entries)} files to {args.destination}")
    return 0


def version_command(args: argparse.Namespace) -> int:
    print(__version__)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='backupx',
        description="Back up databases, files and directories."
    )
    parser.add_argument('--version', action='version', version=__version__)
    parser.add_argument('--debug', action='store_true', help="Emit debug logging")
    parser.add_argument('--log-dir', default=Config.LOG_DIR, help="Directory for a rotating log file")
    subparsers = parser.add_subparsers(dest='command')

    start_parser = subparsers.add_parser('start', help="Start the backup process")
    start_parser.add_argument('--config', '-c', help="Configuration file (JSON or YAML)")
    start_parser.add_argument('--output', '-o', help="Override the output directory")
    verbosity = start_parser.add_mutually_exclusive_group()
    verbosity.add_argument('--verbose', dest='verbose', action='store_true', default=None,
                           help="Enable verbose logging")
    verbosity.add_argument('--quiet', dest='verbose', action='store_false',
                           help="Disable verbose logging")

    schedule_parser = subparsers.add_parser('schedule', help="Run backups on a cron schedule")
    schedule_parser.add_argument('--cron', required=True, help="Crontab expression, e.g. '0 2 * * *'")
    schedule_parser.add_argument('--config', '-c', help="Configuration file (JSON or YAML)")

    list_parser = subparsers.add_parser('list', help="List the files in an archive")
    list_parser.add_argument('archive', help="Archive file")

    extract_parser = subparsers.add_parser('extract', help="Restore an archive")
    extract_parser.add_argument('archive', help="Archive file")
    extract_parser.add_argument('destination', help="Directory to restore into")

    subparsers.add_parser('version', help="Show the version")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    command_handlers = {
        'start': start_command,
        'schedule': schedule_command,
        'list': list_command,
        'extract': extract_command,
        'version': version_command,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    configure_logging(debug=args.debug, log_dir=args.log_dir, level=Config.LOG_LEVEL)
    return handler(args)


if __name__ == '__main__':
    sys.exit(main())
