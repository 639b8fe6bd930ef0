"""Command-line interface for the tally service."""

from __future__ import annotations
import argparse
import json
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from tally.backup import IMPORT_MODES, MODE_APPEND, BackupService
from tally.config import Settings, load_settings
from tally.database import PASSWORD_MIN_LENGTH, Database
from tally.errors import TallyError

logger = logging.getLogger("tally.main")

KNOWN_COMMANDS = {"serve", "init-db", "reset-password", "export-backup", "import-backup"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tally expiration tracker")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (defaults to TALLY_CONFIG when set)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: 8080)")

    subparsers.add_parser("init-db", help="Initialise the database and the default account")

    reset_parser = subparsers.add_parser("reset-password", help="Set a new password for an account")
    reset_parser.add_argument("username", help="Account whose password should be replaced")

    export_parser = subparsers.add_parser("export-backup", help="Write a JSON backup of all resources")
    export_parser.add_argument(
        "--output",
        default=None,
        help="File to write the backup to (default: standard output)",
    )

    import_parser = subparsers.add_parser("import-backup", help="Restore resources from a JSON backup")
    import_parser.add_argument("file", help="Backup file produced by export-backup or the web UI")
    import_parser.add_argument(
        "--mode",
        choices=IMPORT_MODES,
        default=MODE_APPEND,
        help="overwrite replaces every existing resource; append keeps them (default: append)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first == "--config":
            command_index = 2
        elif first.startswith("--config="):
            command_index = 1
        else:
            command_index = 0
        if command_index >= len(args_list) or args_list[command_index] not in KNOWN_COMMANDS:
            if not any(flag in args_list for flag in ("-h", "--help")):
                args_list = [*args_list[:command_index], "serve", *args_list[command_index:]]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    from tally.api import prepare_database

    database = prepare_database(Database(settings.database_path), settings)
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str | None, port: int | None) -> None:
    from tally.application import create_application
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port
    logger.info("Starting tally on http://%s:%s", bind_host, bind_port)

    app = create_application(settings=settings, database=database)
    uvicorn.run(app, host=bind_host, port=bind_port, log_level="info")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"New password (min {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _reset_password(database: Database, username: str) -> int:
    user = database.get_user_by_username(username)
    if user is None:
        print(f"No account named {username!r} exists.", file=sys.stderr)
        return 1

    password = _prompt_for_password()
    if password is None:
        print("Failed to set password after three attempts.", file=sys.stderr)
        return 1

    database.set_user_password(user.id, password)
    print(f"Password updated for {user.username}.")
    return 0


def _export_backup(database: Database, output: str | None) -> int:
    snapshot = BackupService(database).export_backup()
    text = json.dumps(snapshot, indent=2, ensure_ascii=False)
    if output is None:
        print(text)
        return 0

    path = Path(output).expanduser()
    path.write_text(text + "\n", encoding="utf-8")
    print(f"Exported {len(snapshot['resources'])} resource(s) to {path}")
    return 0


def _import_backup(database: Database, file: str, mode: str) -> int:
    path = Path(file).expanduser()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        print(f"Unable to read backup file {path}: {exc}", file=sys.stderr)
        return 1

    try:
        result = BackupService(database).import_backup(mode, payload)
    except TallyError as exc:
        print(f"Restore failed: {exc.message}", file=sys.stderr)
        return 1

    print(f"Imported {result['imported']} resource(s) in {result['mode']} mode.")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = load_settings(Path(args.config).expanduser() if args.config else None)
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(settings=settings, database=database, host=args.host, port=args.port)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    elif args.command == "reset-password":
        return _reset_password(database, args.username)
    elif args.command == "export-backup":
        return _export_backup(database, args.output)
    elif args.command == "import-backup":
        return _import_backup(database, args.file, args.mode)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
