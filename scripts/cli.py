"""Minimal CLI entry point for triggering and inspecting the Cosense mail sync."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from cosense_mail_sync.config.settings import SyncSettings
from cosense_mail_sync.pipeline.sync import SyncOrchestrator
from cosense_mail_sync.storage.crypto import TokenCipher
from cosense_mail_sync.storage.kv_store import KeyValueStore
from cosense_mail_sync.storage.records import ImportRecordStore
from cosense_mail_sync.storage.users import UserStore


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="cosense-mail-sync - Import labeled Gmail messages into Cosense"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sync_parser = subparsers.add_parser("sync", help="Run one sync pass over all users")
    sync_parser.add_argument(
        "--batch-limit",
        type=int,
        default=None,
        dest="batch_limit",
        help="Override the per-user message cap for this run",
    )

    subparsers.add_parser("users", help="List registered user ids")

    records_parser = subparsers.add_parser("records", help="List import records for a user")
    records_parser.add_argument("user_id", type=int)

    configure_parser = subparsers.add_parser(
        "configure", help="Set a user's Cosense project and session"
    )
    configure_parser.add_argument("user_id", type=int)
    configure_parser.add_argument("--project", help="Cosense project name")
    configure_parser.add_argument("--session-id", dest="session_id", help="connect.sid cookie")
    configure_parser.add_argument("--webhook", help="Notification webhook URL")

    return parser


def _validate_args(args: argparse.Namespace) -> None:
    """Reject a non-positive batch limit."""
    if getattr(args, "batch_limit", None) is not None and args.batch_limit <= 0:
        print("Error: --batch-limit must be positive", file=sys.stderr)
        sys.exit(1)


def _run_sync(settings: SyncSettings) -> int:
    orchestrator = SyncOrchestrator.from_settings(settings)
    try:
        batch = orchestrator.run_sync()
    finally:
        orchestrator.close()

    print(json.dumps(batch.to_dict(), ensure_ascii=False, indent=2))
    return 0 if batch.success else 1


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    _validate_args(args)

    settings = SyncSettings()
    if getattr(args, "batch_limit", None) is not None:
        settings = settings.model_copy(update={"batch_limit": args.batch_limit})
    setup_logging(settings.log_level)

    try:
        if args.command == "sync":
            sys.exit(_run_sync(settings))

        settings.ensure_directories()
        with KeyValueStore(settings.database_path) as kv:
            if args.command == "users":
                users = UserStore(kv, TokenCipher(settings.token_encryption_key))
                for user_id in users.list_user_ids():
                    print(user_id)

            elif args.command == "records":
                records = ImportRecordStore(kv).list(args.user_id)
                print(f"\n{len(records)} import records for user {args.user_id}:\n")
                for message_id, record in sorted(
                    records.items(), key=lambda item: item[1].imported_at
                ):
                    print(f"  {message_id:20s} {record.imported_at:%Y-%m-%d %H:%M}  {record.page_title}")

            elif args.command == "configure":
                users = UserStore(kv, TokenCipher(settings.token_encryption_key))
                config = users.update_user_config(
                    args.user_id,
                    cosense_project_name=args.project,
                    cosense_session_id=args.session_id,
                    notification_webhook_url=args.webhook,
                )
                if config is None:
                    print("Configuration incomplete: both --project and --session-id are required")
                else:
                    print(f"Configured user {args.user_id} for project {config.cosense_project_name}")

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
