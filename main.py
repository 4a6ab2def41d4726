"""Command-line interface for the user directory service."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Sequence

from userhub.application import build_database
from userhub.config import ConfigurationError, resolve_config_path
from userhub.database import Database, StoreError
from userhub.importer import DecodeError, import_users

logger = logging.getLogger("userhub.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to a YAML file with a 'database' section (defaults to USERHUB_CONFIG)",
    )

    parser = argparse.ArgumentParser(description="User directory utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", parents=[common], help="Create the users table if it is missing")
    subparsers.add_parser("list", parents=[common], help="Print every stored user")

    import_parser = subparsers.add_parser(
        "import", parents=[common], help="Import users from an .xlsx file"
    )
    import_parser.add_argument("file", type=Path, help="Spreadsheet whose first sheet holds the users")

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Start the HTTP service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the service")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP service (default: 8000)",
    )
    serve_parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the users table before serving",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "list", "import"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _open_database(config: str | None) -> Database:
    config_path = resolve_config_path(config or os.getenv("USERHUB_CONFIG"))
    if config_path is None:
        return build_database()
    return build_database(config_path=config_path)


def _serve(*, database: Database, host: str, port: int, init_db: bool) -> None:
    from userhub.application import create_application
    import uvicorn

    logger.info("Starting user directory on http://%s:%s", host, port)

    app = create_application(database=database, initialize_database=init_db)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _list_users(database: Database) -> None:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  Created")
    print("-" * 80)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S") if user.created_at else "-"
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {created}")


def _import_file(database: Database, path: Path) -> int:
    try:
        payload = path.read_bytes()
    except OSError as exc:
        print(f"Unable to read {path}: {exc}", file=sys.stderr)
        return 1

    try:
        report = import_users(database, payload)
    except (DecodeError, StoreError) as exc:
        print(f"Import failed: {exc}", file=sys.stderr)
        return 1

    print(f"Inserted {report.total_inserted} of {report.total_rows} row(s).")
    for outcome in report.skipped:
        print(f"  row {outcome.row}: skipped ({outcome.reason})")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        database = _open_database(args.config)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    try:
        if args.command == "serve":
            _serve(database=database, host=args.host, port=args.port, init_db=args.init_db)
        elif args.command == "init-db":
            database.initialize()
            print("Database initialisation complete.")
        elif args.command == "list":
            _list_users(database)
        elif args.command == "import":
            return _import_file(database, args.file)
    except StoreError as exc:
        print(f"Database error: {exc}", file=sys.stderr)
        return 1
    finally:
        database.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
