"""
chatsync Command Line Interface

Operator commands for schema migrations, backup, restore and sync passes.
Results are printed as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

from chatsync.config import ChatSyncConfig, get_config, set_config
from chatsync.errors import SyncError
from chatsync.log_config import setup_logging
from chatsync.persistence.stack import PersistenceStack


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatsync",
        description="chatsync - chat session persistence tooling",
    )
    parser.add_argument("--config", type=Path, help="JSON configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Migrate commands
    migrate_parser = subparsers.add_parser("migrate", help="Durable schema migrations")
    migrate_sub = migrate_parser.add_subparsers(dest="migrate_command")
    migrate_sub.add_parser("up", help="Apply all pending migrations")
    migrate_sub.add_parser("down", help="Revert the latest migration")
    migrate_sub.add_parser("status", help="Show migration status")

    # Backup command
    backup_parser = subparsers.add_parser("backup", help="Copy fast store to durable store")
    backup_parser.add_argument("--session", help="Back up only this session")

    # Restore command
    restore_parser = subparsers.add_parser("restore", help="Copy durable store to fast store")
    restore_parser.add_argument("--session", help="Restore only this session")
    restore_parser.add_argument(
        "--force", action="store_true", help="Overwrite sessions already in the fast store"
    )

    subparsers.add_parser("sync", help="Run one sync pass now")
    subparsers.add_parser("run", help="Run the background sync loop until interrupted")

    parser.set_defaults(migrate_parser=migrate_parser)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "migrate" and args.migrate_command is None:
        args.migrate_parser.print_help()
        return 0

    if args.config is not None:
        set_config(ChatSyncConfig.from_file(args.config))
    config = get_config()
    setup_logging(config.log_level.value, config.log_format)

    try:
        result = asyncio.run(run_command(args, config))
    except (SyncError, RuntimeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

    if result is not None:
        print(json.dumps(result, indent=2, default=str))
    return 0


async def run_command(args: argparse.Namespace, config: ChatSyncConfig) -> Any:
    async with PersistenceStack(config) as stack:
        if args.command == "migrate":
            return await cmd_migrate(stack, args.migrate_command)
        if args.command == "backup":
            return await cmd_backup(stack, args.session)
        if args.command == "restore":
            return await cmd_restore(stack, args.session, args.force)
        if args.command == "sync":
            summary = await stack.manager.trigger()
            return summary.to_dict()
        if args.command == "run":
            await stack.manager.run()
            return None
    raise ValueError(f"Unknown command: {args.command}")


async def cmd_migrate(stack: PersistenceStack, action: str) -> Any:
    """Apply, revert or report durable schema migrations."""
    migrator = stack.migrator
    if action == "up":
        applied = await migrator.up()
        return {
            "applied": [s.to_dict() for s in applied],
            "current_version": await migrator.get_current_version(),
        }
    if action == "down":
        reverted = await migrator.down()
        return {
            "reverted": reverted.to_dict(),
            "current_version": await migrator.get_current_version(),
        }
    return {
        "current_version": await migrator.get_current_version(),
        "latest_version": await migrator.get_latest_version(),
        "up_to_date": await migrator.is_up_to_date(),
        "migrations": [s.to_dict() for s in await migrator.status()],
    }


async def cmd_backup(stack: PersistenceStack, session_id: Optional[str]) -> dict:
    if session_id:
        result = await stack.backup.backup_session(session_id)
    else:
        result = await stack.backup.backup_all()
    return result.to_dict()


async def cmd_restore(stack: PersistenceStack, session_id: Optional[str], force: bool) -> dict:
    if session_id:
        result = await stack.restore.restore_session(session_id, force=force)
    else:
        result = await stack.restore.restore_all(force=force)
    return result.to_dict()


if __name__ == "__main__":
    sys.exit(main())
