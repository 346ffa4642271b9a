from __future__ import annotations

import argparse
import logging
import shutil
from pathlib import Path

from storyforge.config import configure_logging
from storyforge.game.world import initialize_world
from storyforge.storage.graph import GraphStore

logger = logging.getLogger(__name__)


def _clone_path(src: Path, dst: Path, *, replace: bool) -> None:
    """复制数据库文件或目录；replace=False 时拒绝覆盖已有备份。"""
    if not src.exists():
        raise FileNotFoundError(f"path not found: {src}")
    if dst.exists():
        if not replace:
            raise FileExistsError(f"backup path already exists: {dst}")
        if dst.is_dir():
            shutil.rmtree(dst)
        else:
            dst.unlink()
    copy = shutil.copytree if src.is_dir() else shutil.copy2
    copy(src, dst)


def run_migrations(db_path: Path, *, initialize: bool = True) -> str | None:
    """建表、补齐旧数据，并按需初始化世界；返回默认根节点 id。"""
    store = GraphStore(db_path=db_path)
    try:
        store.run_backfill_migrations()
        if initialize:
            return initialize_world(store)
        return None
    finally:
        store.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Run explicit graph migrations or rollback from backup."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate = subparsers.add_parser(
        "migrate", help="Ensure schema, backfill legacy nodes and initialize the world."
    )
    migrate.add_argument("--db-path", required=True, help="Path to the Kuzu DB.")
    migrate.add_argument(
        "--backup-path",
        required=False,
        help="Optional backup path before migration.",
    )
    migrate.add_argument(
        "--skip-init",
        action="store_true",
        help="Do not create the default root node and seed spells.",
    )

    rollback = subparsers.add_parser("rollback", help="Restore DB from backup.")
    rollback.add_argument("--db-path", required=True, help="Path to the Kuzu DB.")
    rollback.add_argument("--backup-path", required=True, help="Path to the backup.")

    args = parser.parse_args(argv)
    configure_logging()
    db_path = Path(args.db_path)

    if args.command == "migrate":
        backup_path = Path(args.backup_path) if args.backup_path else None
        if backup_path and db_path.exists():
            _clone_path(db_path, backup_path, replace=False)
            logger.info("backed up %s to %s", db_path, backup_path)
        root_id = run_migrations(db_path, initialize=not args.skip_init)
        if root_id:
            logger.info("default root: %s", root_id)
        return

    if args.command == "rollback":
        backup_path = Path(args.backup_path)
        _clone_path(backup_path, db_path, replace=True)
        logger.info("restored %s from %s", db_path, backup_path)
        return

    raise RuntimeError(f"Unsupported command: {args.command}")


if __name__ == "__main__":
    main()
