"""Kùzu Graph 存储封装：建表、迁移与事务入口。"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

import kuzu

from storyforge.config import WRITE_LOCK_TIMEOUT_SECONDS
from storyforge.models import CONTENT_VERSION
from storyforge.storage.transaction import TransactionContext

logger = logging.getLogger(__name__)


class GraphStore:
    """封装 Kùzu 数据库；所有领域读写都通过 begin() 打开的事务进行。

    写事务共用一把 writer_lock 排队，同一进程内并发写入按到达顺序串行执行。
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        write_lock_timeout: float = WRITE_LOCK_TIMEOUT_SECONDS,
    ):
        self.db_path = Path(db_path)
        self.write_lock_timeout = write_lock_timeout
        self._writer_lock = threading.Lock()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db = kuzu.Database(str(self.db_path))
        self.conn = kuzu.Connection(self.db)
        self._ensure_schema()

    def close(self) -> None:
        self.conn.close()
        self.db.close()

    def begin(self, *, read_only: bool = False) -> TransactionContext:
        return TransactionContext(
            self.db,
            read_only=read_only,
            writer_lock=self._writer_lock,
            lock_timeout=self.write_lock_timeout,
        ).begin()

    def _table_columns(self, table: str) -> set[str]:
        result = self.conn.execute(f"CALL table_info('{table}') RETURN *;")
        columns: set[str] = set()
        while result.has_next():
            columns.add(result.get_next()[1])
        return columns

    def _ensure_columns(self, table: str, columns: dict[str, str]) -> None:
        existing = self._table_columns(table)
        for name, type_ in columns.items():
            if name in existing:
                continue
            logger.info("adding column %s.%s", table, name)
            self.conn.execute(f"ALTER TABLE {table} ADD {name} {type_};")

    def _ensure_schema(self) -> None:
        self.conn.execute(
            """
            CREATE NODE TABLE IF NOT EXISTS StoryNode(
                id STRING,
                parent_id STRING,
                fork_position INT64,
                fork_spell_id STRING,
                created_at STRING,
                created_by STRING,
                content_json STRING,
                content_version INT64,
                paragraph_count INT64,
                PRIMARY KEY (id)
            );
            """
        )
        self.conn.execute(
            """
            CREATE REL TABLE IF NOT EXISTS Continues(
                FROM StoryNode TO StoryNode,
                fork_position INT64,
                fork_spell_id STRING
            );
            """
        )
        self.conn.execute(
            """
            CREATE NODE TABLE IF NOT EXISTS RootIndex(
                node_id STRING,
                seq INT64,
                PRIMARY KEY (node_id)
            );
            """
        )
        self.conn.execute(
            """
            CREATE NODE TABLE IF NOT EXISTS Spell(
                id STRING,
                name STRING,
                emoji STRING,
                description STRING,
                created_at STRING,
                created_by STRING,
                PRIMARY KEY (id)
            );
            """
        )
        self.conn.execute(
            """
            CREATE NODE TABLE IF NOT EXISTS Recipe(
                canonical_key STRING,
                ingredients STRING[],
                product_id STRING,
                created_at STRING,
                created_by STRING,
                PRIMARY KEY (canonical_key)
            );
            """
        )
        self.conn.execute(
            """
            CREATE NODE TABLE IF NOT EXISTS InventoryEntry(
                id STRING,
                user_id STRING,
                spell_id STRING,
                amount INT64,
                PRIMARY KEY (id)
            );
            """
        )
        self.conn.execute(
            """
            CREATE NODE TABLE IF NOT EXISTS UserAccount(
                id STRING,
                name STRING,
                created_at STRING,
                in_node STRING,
                PRIMARY KEY (id)
            );
            """
        )
        self.conn.execute(
            """
            CREATE NODE TABLE IF NOT EXISTS Property(
                id STRING,
                value_json STRING,
                PRIMARY KEY (id)
            );
            """
        )

        self._ensure_columns(
            "StoryNode",
            {
                "fork_position": "INT64",
                "fork_spell_id": "STRING",
                "content_version": "INT64",
                "paragraph_count": "INT64",
            },
        )
        self._ensure_columns("Recipe", {"created_by": "STRING"})

    def run_backfill_migrations(self) -> int:
        """为旧版本节点补齐 content_version / paragraph_count，返回补齐数量。"""
        with self._writer_lock:
            return self._backfill_legacy_nodes()

    def _backfill_legacy_nodes(self) -> int:
        result = self.conn.execute(
            "MATCH (n:StoryNode) "
            "WHERE n.paragraph_count IS NULL OR n.content_version IS NULL "
            "RETURN n.id, n.content_json;"
        )
        pending: list[tuple[str, str]] = []
        while result.has_next():
            row = result.get_next()
            pending.append((row[0], row[1]))
        for node_id, content_json in pending:
            if not content_json:
                raise ValueError(f"StoryNode content missing (no backfill): node_id={node_id}")
            document = json.loads(content_json)
            paragraphs = document.get("paragraphs")
            if not isinstance(paragraphs, list):
                raise ValueError(f"StoryNode content malformed: node_id={node_id}")
            document["version"] = CONTENT_VERSION
            self.conn.execute(
                "MATCH (n:StoryNode) WHERE n.id = $id "
                "SET n.content_json = $content, n.content_version = $version, "
                "n.paragraph_count = $count;",
                {
                    "id": node_id,
                    "content": json.dumps(document, ensure_ascii=False),
                    "version": CONTENT_VERSION,
                    "count": len(paragraphs),
                },
            )
        if pending:
            logger.info("backfilled %d story nodes", len(pending))
        return len(pending)
