"""
credmirror CLI — entry point for all operations.

Usage:
    credmirror serve            # Start the credential API
    credmirror migrate          # Create the credential table (idempotent)
    credmirror rebuild          # Rewrite the auth directory from the database
    credmirror ingest [PATH..]  # Push auth files into the database (no paths = full scan)
    credmirror list             # Show stored credentials
    credmirror version          # Show version
"""

from __future__ import annotations

import argparse
import logging
import sys


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="credmirror",
        description="credmirror — PostgreSQL credential store mirrored to a watched auth directory.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")

    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the credential API")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: CREDMIRROR_HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: CREDMIRROR_PORT)")

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Create the credential table")
    migrate_parser.add_argument("--dry-run", action="store_true", help="Print SQL without executing")

    # rebuild
    rebuild_parser = subparsers.add_parser(
        "rebuild", help="Wipe the auth directory and rewrite it from the database"
    )
    rebuild_parser.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation")

    # ingest
    ingest_parser = subparsers.add_parser("ingest", help="Sync auth files into the database")
    ingest_parser.add_argument("paths", nargs="*", help="Files to ingest (default: scan the auth dir)")

    # list
    subparsers.add_parser("list", help="Show stored credentials")

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from credmirror import __version__

        print(f"credmirror {__version__}")
        return 0

    _configure_logging()

    if args.command == "serve":
        return _cmd_serve(args)
    elif args.command == "migrate":
        return _cmd_migrate(args)
    elif args.command == "rebuild":
        return _cmd_rebuild(args)
    elif args.command == "ingest":
        return _cmd_ingest(args)
    elif args.command == "list":
        return _cmd_list()
    else:
        parser.print_help()
        return 0


def _configure_logging() -> None:
    from credmirror.config import get_config

    logging.basicConfig(
        level=getattr(logging, get_config().log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _cmd_serve(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn is required. Install with: pip install credmirror")
        return 1

    from credmirror.config import get_config

    cfg = get_config()
    host = args.host or cfg.host
    port = args.port or cfg.port
    print(f"Starting credmirror API on {host}:{port} (auth dir {cfg.auth_dir})...")
    uvicorn.run("credmirror.api.app:app", host=host, port=port)
    return 0


def _cmd_migrate(args: argparse.Namespace) -> int:
    from credmirror.config import get_config
    from credmirror.store import dal

    cfg = get_config()
    if args.dry_run:
        print("-- Dry run: the following SQL would be executed --")
        print(dal.schema_sql(cfg.db.table, cfg.db.schema))
        return 0

    from credmirror.store import MirrorStore, StoreError

    try:
        MirrorStore.from_config(cfg).ensure_schema()
    except StoreError as e:
        print(f"Error: Migration failed: {e}")
        print("Check CREDMIRROR_DB_* environment variables and ensure PostgreSQL is running.")
        return 1
    print(f"Credential table {cfg.db.table} ready.")
    return 0


def _cmd_rebuild(args: argparse.Namespace) -> int:
    from credmirror.config import get_config
    from credmirror.store import MirrorStore, StoreError, rebuild_from_database

    cfg = get_config()
    if not args.yes:
        answer = input(f"This deletes everything under {cfg.auth_dir}. Continue? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return 1
    try:
        written = rebuild_from_database(MirrorStore.from_config(cfg))
    except StoreError as e:
        print(f"Error: Rebuild failed: {e}")
        return 1
    print(f"Wrote {written} credential file(s) to {cfg.auth_dir}.")
    return 0


def _cmd_ingest(args: argparse.Namespace) -> int:
    from credmirror.store import MirrorStore, StoreError, ingest_directory

    try:
        store = MirrorStore.from_config()
        report = store.persist_auth_files(*args.paths) if args.paths else ingest_directory(store)
    except StoreError as e:
        print(f"Error: Ingest failed: {e}")
        return 1
    print(
        f"Upserted {report.upserted}, deleted {report.deleted}, skipped {report.skipped} "
        f"({len(report.changed)} changed)."
    )
    return 0


def _cmd_list() -> int:
    from credmirror.store import MirrorStore, StoreError

    try:
        records = MirrorStore.from_config().list()
    except StoreError as e:
        print(f"Error: {e}")
        return 1
    if not records:
        print("No credentials stored.")
        return 0
    for rec in records:
        status = rec.status.value if rec.status else "-"
        print(f"  {rec.provider:<12} {rec.id:<48} {status:<8} {rec.label}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
