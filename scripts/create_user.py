import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userhub.application import build_database
from userhub.config import ConfigurationError, DatabaseSettings, resolve_config_path
from userhub.database import StoreError, ValidationError


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user record")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Email address for the user")
    parser.add_argument(
        "--database-url",
        dest="database_url",
        default=None,
        help="SQLAlchemy URL of the database (defaults to DATABASE_URL or the DB_* variables)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        if args.database_url:
            database = build_database(settings=DatabaseSettings(url=args.database_url))
        else:
            config_path = resolve_config_path(os.getenv("USERHUB_CONFIG"))
            database = build_database(config_path=config_path)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    try:
        user = database.create_user(args.name, args.email)
    except (ValidationError, StoreError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        database.close()

    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
