"""
Command-line interface for retention safes.

Provides CLI tools for storing file versions, promoting and inspecting the
history kept in a safe.
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

import structlog

from layersafe.storage.file_ops import parse_copy_file_name
from layersafe.storage.retention_safe import RetentionSafe
from layersafe.storage.safe_config import create_retention_safe, load_safe_config
from layersafe.storage.safe_errors import SafeError


def setup_logging(verbose: bool = False, log_level: str = "INFO"):
    """Set up logging configuration; --verbose overrides the configured level."""
    level = logging.DEBUG if verbose else getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger().setLevel(level)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def _format_copy(copy: Path) -> str:
    parsed = parse_copy_file_name(copy.name)
    if parsed is None:
        stamp = "unknown"
    else:
        stamp = datetime.fromtimestamp(parsed[1] / 1000).isoformat(sep=" ", timespec="seconds")
    return f"{stamp}  {copy.name}"


def store_command(safe: RetentionSafe, args):
    """Store new versions of files."""
    for path in args.files:
        copy = safe.store_file(path)
        print(f"✅ Stored {path} -> {copy.name}")


def promote_command(safe: RetentionSafe, args):
    """Promote the history of one file or of all files."""
    if args.file:
        changed = safe.promote(args.file)
    else:
        changed = safe.promote()
    print("✅ Promotion completed" + ("" if changed else " (no change)"))


def history_command(safe: RetentionSafe, args):
    """Show the stored history of a file."""
    history = safe.get_history(args.file)
    if not history:
        print(f"No history stored for {args.file}.")
        return
    print(f"History of {args.file} ({len(history)} copies, youngest first):")
    for copy in history:
        print(f"   {_format_copy(copy)}")


def list_command(safe: RetentionSafe, args):
    """List tracked files."""
    files = sorted(safe.get_files())
    if not files:
        print("No files tracked.")
        return
    print(f"Found {len(files)} tracked file(s):")
    for path in files:
        print(f"📦 {path} ({len(safe.get_history(path))} copies)")


def clear_command(safe: RetentionSafe, args):
    """Remove stored copies of one file or of all files."""
    if args.file:
        if safe.clear_file(args.file):
            print(f"✅ Cleared {args.file}")
        else:
            print(f"{args.file} is not tracked.")
    else:
        safe.clear()
        print("✅ Safe cleared")


def report_command(safe: RetentionSafe, args):
    """Print the safe report."""
    print(safe.report())
    stats = safe.get_stats()
    print(f"\nTotal: {stats.tracked_files} file(s), {stats.total_copies} copies, "
          f"{stats.total_size_bytes / 1024 / 1024:.2f} MB")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Generational backup retention safe',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  layersafe store notes.txt
  layersafe history notes.txt
  layersafe promote
  layersafe report
        """
    )
    parser.add_argument('--config', type=Path, default=None,
                        help='Path to safe configuration file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    store_parser = subparsers.add_parser('store', help='Store new file versions')
    store_parser.add_argument('files', nargs='+', help='Files to store')
    store_parser.set_defaults(func=store_command)

    promote_parser = subparsers.add_parser('promote', help='Promote stored histories')
    promote_parser.add_argument('file', nargs='?', help='Single file to promote')
    promote_parser.set_defaults(func=promote_command)

    history_parser = subparsers.add_parser('history', help='Show file history')
    history_parser.add_argument('file', help='Tracked file')
    history_parser.set_defaults(func=history_command)

    list_parser = subparsers.add_parser('list', help='List tracked files')
    list_parser.set_defaults(func=list_command)

    clear_parser = subparsers.add_parser('clear', help='Remove stored copies')
    clear_parser.add_argument('file', nargs='?', help='Single file to clear')
    clear_parser.set_defaults(func=clear_command)

    report_parser = subparsers.add_parser('report', help='Show safe report')
    report_parser.set_defaults(func=report_command)

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_safe_config(args.config)
    except FileNotFoundError as e:
        print(f"❌ {e}")
        return 1
    except SafeError as e:
        print(f"❌ {e}")
        return 1

    setup_logging(args.verbose, config.log_level)

    try:
        safe = create_retention_safe(config)
        args.func(safe, args)
    except FileNotFoundError as e:
        print(f"❌ {e}")
        return 1
    except SafeError as e:
        print(f"❌ {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
