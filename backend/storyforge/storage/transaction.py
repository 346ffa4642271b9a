"""事务上下文：一次工作单元内的全部读写，提交或回滚均为原子操作。"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

import kuzu

from storyforge.errors import (
    ConflictError,
    InternalError,
    TransactionStateError,
)
from storyforge.models import new_id

logger = logging.getLogger(__name__)

_UNIQUE_VIOLATION_MARKERS = (
    "duplicated primary key",
    "violates the uniqueness constraint",
)


class TransactionState(str, Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


def _is_unique_violation(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _UNIQUE_VIOLATION_MARKERS)


class TransactionContext:
    """封装单个 Kùzu 连接上的显式事务。

    begin() 时固定一个 UTC 时间戳，事务内写入的所有 created_at 都使用它。
    状态机：Open -> Committed | RolledBack，两者均为终态；终态后的任何操作
    都会抛出 TransactionStateError。

    Kùzu 同一时刻只允许一个写事务，并且会直接拒绝第二个 BEGIN。写事务因此
    在 begin() 中先取得 writer_lock 排队等待，到终态时释放；只读事务不排队。
    """

    def __init__(
        self,
        database: kuzu.Database,
        *,
        read_only: bool = False,
        writer_lock: threading.Lock | None = None,
        lock_timeout: float = -1,
    ):
        self.id = new_id()
        self.read_only = read_only
        self.state: TransactionState | None = None
        self.now: datetime | None = None
        self._database = database
        self._conn: kuzu.Connection | None = None
        self._writer_lock = None if read_only else writer_lock
        self._lock_timeout = lock_timeout
        self._holds_lock = False

    def begin(self) -> "TransactionContext":
        if self.state is not None:
            raise TransactionStateError(
                f"Transaction already begun: tx_id={self.id} state={self.state.value}"
            )
        self._acquire_writer()
        statement = "BEGIN TRANSACTION READ ONLY;" if self.read_only else "BEGIN TRANSACTION;"
        try:
            self._conn = kuzu.Connection(self._database)
            self._conn.execute(statement)
        except RuntimeError as exc:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._release_writer()
            raise InternalError(f"Failed to begin transaction: {exc}") from exc
        self.now = datetime.now(timezone.utc)
        self.state = TransactionState.OPEN
        logger.debug("tx %s begin read_only=%s", self.id, self.read_only)
        return self

    def _acquire_writer(self) -> None:
        if self._writer_lock is None:
            return
        if not self._writer_lock.acquire(timeout=self._lock_timeout):
            raise InternalError(
                f"Timed out waiting for the write transaction slot: tx_id={self.id}"
            )
        self._holds_lock = True

    def _release_writer(self) -> None:
        if self._holds_lock:
            self._holds_lock = False
            self._writer_lock.release()

    @property
    def is_open(self) -> bool:
        return self.state == TransactionState.OPEN

    @property
    def timestamp(self) -> str:
        """事务固定时间戳的存储形式。"""
        self._require_open()
        return self.now.isoformat()

    def _require_open(self) -> None:
        if self.state != TransactionState.OPEN:
            state = self.state.value if self.state else "not_begun"
            raise TransactionStateError(
                f"Transaction is not open: tx_id={self.id} state={state}"
            )

    def execute(
        self, query: str, parameters: Mapping[str, Any] | None = None
    ) -> list[list[Any]]:
        """执行单条 Cypher 语句并取回全部结果行。"""
        self._require_open()
        try:
            result = self._conn.execute(query, dict(parameters or {}))
        except RuntimeError as exc:
            if _is_unique_violation(exc):
                raise ConflictError(str(exc)) from exc
            raise InternalError(f"Store operation failed: {exc}") from exc
        rows: list[list[Any]] = []
        while result.has_next():
            rows.append(result.get_next())
        return rows

    def fetch_one(
        self, query: str, parameters: Mapping[str, Any] | None = None
    ) -> list[Any] | None:
        rows = self.execute(query, parameters)
        return rows[0] if rows else None

    def commit(self) -> None:
        self._require_open()
        try:
            self._conn.execute("COMMIT;")
        except RuntimeError as exc:
            # 保持 Open，调用方可以显式 rollback()
            raise InternalError(f"Failed to commit transaction: {exc}") from exc
        self._finish(TransactionState.COMMITTED)

    def rollback(self) -> None:
        self._require_open()
        try:
            self._conn.execute("ROLLBACK;")
        except RuntimeError as exc:
            # 出错的语句可能已让存储自行中止事务
            logger.warning("tx %s rollback reported by store: %s", self.id, exc)
        self._finish(TransactionState.ROLLED_BACK)

    def _finish(self, state: TransactionState) -> None:
        self.state = state
        try:
            self._conn.close()
        finally:
            self._conn = None
            self._release_writer()
        logger.debug("tx %s %s", self.id, state.value)

    def __enter__(self) -> "TransactionContext":
        if self.state is None:
            self.begin()
        self._require_open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.is_open:
            return
        if exc_type is not None:
            self.rollback()
            return
        try:
            self.commit()
        except BaseException:
            if self.is_open:
                self.rollback()
            raise

    def get_property(self, key: str, default: Any = None) -> Any:
        row = self.fetch_one(
            "MATCH (p:Property) WHERE p.id = $key RETURN p.value_json;",
            {"key": key},
        )
        if row is None or row[0] is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as exc:
            raise InternalError(f"Property is not valid JSON: key={key}") from exc

    def set_property(self, key: str, value: Any) -> None:
        self.execute(
            "MERGE (p:Property {id: $key}) SET p.value_json = $value;",
            {"key": key, "value": json.dumps(value, ensure_ascii=False)},
        )
