"""
Message Store - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line administration of a message store.

- Creates the registry and shared tables
- Lists, creates and deletes topics
- Exports a topic's records as CSV
- Runs a manual retention pass

Connection settings come from the environment (.env loaded).

============================================================
USAGE
============================================================
python -m message_store.cli init
python -m message_store.cli create sensor/temp --field value:number --dedicated
python -m message_store.cli export sensor/temp --order desc --limit 100

============================================================
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .config import StoreConfig
from .errors import MessageStoreError
from .export import csv_filename
from .store import MessageStore, create_message_store
from .types import SortOrder, StorageMode


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="message-store",
        description="Schema-driven message store administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  init       - Create the registry and shared tables
  topics     - List registered topics
  create     - Register a topic (or overwrite its schema)
  delete     - Delete a topic and all its records
  export     - Write a topic's records as CSV
  retention  - Run a retention pass on a topic's storage

Examples:
  %(prog)s init
  %(prog)s create sensor/temp --field value:number --field unit:string --dedicated
  %(prog)s export sensor/temp --order desc --limit 100 --output temp.csv
        """
    )

    parser.add_argument(
        "--env-file",
        type=str,
        metavar="PATH",
        help="Load environment variables from this file",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the registry and shared tables")
    subparsers.add_parser("topics", help="List registered topics")

    # --------------------------------------------------------
    # Topic Commands
    # --------------------------------------------------------
    create_cmd = subparsers.add_parser("create", help="Register a topic")
    create_cmd.add_argument("topic", help="Topic name")
    create_cmd.add_argument(
        "--field", "-f",
        action="append",
        default=[],
        metavar="NAME:TYPE",
        help="Schema field, repeatable (types: string, number, integer, boolean, date, timestamp, array, object)",
    )
    create_cmd.add_argument(
        "--dedicated",
        action="store_true",
        help="Store the topic in its own table",
    )

    delete_cmd = subparsers.add_parser("delete", help="Delete a topic")
    delete_cmd.add_argument("topic", help="Topic name")

    # --------------------------------------------------------
    # Data Commands
    # --------------------------------------------------------
    export_cmd = subparsers.add_parser("export", help="Export records as CSV")
    export_cmd.add_argument("topic", help="Topic name")
    export_cmd.add_argument("--limit", type=int, default=None, help="Maximum records")
    export_cmd.add_argument("--offset", type=int, default=0, help="Records to skip (default: 0)")
    export_cmd.add_argument(
        "--order",
        type=str,
        choices=[o.value for o in SortOrder],
        default=None,
        help="Order by receipt time (default: DEFAULT_READ_ORDER or asc)",
    )
    export_cmd.add_argument(
        "--output", "-o",
        type=str,
        metavar="PATH",
        help="Output file, '-' for stdout (default: <topic>_messages.csv)",
    )

    retention_cmd = subparsers.add_parser("retention", help="Run a retention pass")
    retention_cmd.add_argument("topic", help="Topic name")

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def parse_fields(arguments: List[str]) -> Dict[str, str]:
    """
    Parse --field NAME:TYPE arguments, keeping their order.

    Raises:
        ValueError: If an argument has no type
    """
    fields: Dict[str, str] = {}
    for argument in arguments:
        name, sep, field_type = argument.rpartition(":")
        if not sep or not name or not field_type:
            raise ValueError(f"Invalid field {argument!r}, expected NAME:TYPE")
        fields[name] = field_type
    return fields


def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors = []

    if args.command == "create":
        if not args.field:
            errors.append("create requires at least one --field")
        try:
            parse_fields(args.field)
        except ValueError as e:
            errors.append(str(e))

    if args.command == "export":
        if args.limit is not None and args.limit < 0:
            errors.append("--limit cannot be negative")
        if args.offset < 0:
            errors.append("--offset cannot be negative")

    return errors


# ============================================================
# COMMANDS
# ============================================================

def run_command(store: MessageStore, args: argparse.Namespace) -> int:
    """Dispatch one parsed command against an initialized store."""
    if args.command == "init":
        print("Message store initialized")
        return 0

    if args.command == "topics":
        for topic in store.list_topics():
            created = topic.created_at.isoformat() if topic.created_at else "-"
            print(f"{topic.name:40s} {topic.storage_mode.value:10s} {created}  {json.dumps(topic.fields)}")
        return 0

    if args.command == "create":
        mode = StorageMode.DEDICATED if args.dedicated else StorageMode.SHARED
        topic = store.create_topic(args.topic, parse_fields(args.field), mode)
        print(f"Topic {topic.name} created ({topic.storage_mode.value})")
        return 0

    if args.command == "delete":
        store.delete_topic(args.topic)
        print(f"Topic {args.topic} deleted")
        return 0

    if args.command == "export":
        content = store.export_csv(
            args.topic, limit=args.limit, offset=args.offset, order=args.order
        )
        if args.output == "-":
            sys.stdout.write(content)
            return 0
        path = Path(args.output or csv_filename(args.topic))
        path.write_text(content, encoding="utf-8")
        print(f"Exported {args.topic} to {path}")
        return 0

    if args.command == "retention":
        deleted = store.enforce_retention(args.topic)
        print(f"Retention pass on {args.topic}: {deleted} rows deleted")
        return 0

    return 1


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = StoreConfig.from_env(args.env_file)
        store = create_message_store(config)
    except MessageStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, (args.log_level or config.log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    try:
        store.initialize()
        return run_command(store, args)
    except MessageStoreError as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    finally:
        store.close()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
