"""用户位置记录：认证由外部子系统负责，这里只处理核心需要的读写。"""

from __future__ import annotations

from datetime import datetime

from storyforge.errors import NotFoundError, ValidationError
from storyforge.models import User, UserLink, UserRef
from storyforge.storage.transaction import TransactionContext


def user_link(tx: TransactionContext, user_id: str) -> UserLink | UserRef:
    """能查到用户时返回完整链接，否则退化为仅含 id 的引用。"""
    row = tx.fetch_one(
        "MATCH (u:UserAccount) WHERE u.id = $id RETURN u.name;",
        {"id": user_id},
    )
    if row is None:
        return UserRef(user_id=user_id)
    return UserLink(user_id=user_id, name=row[0])


class UserDirectory:
    def __init__(self, tx: TransactionContext):
        self.tx = tx

    def _require_node(self, node_id: str) -> None:
        row = self.tx.fetch_one(
            "MATCH (n:StoryNode) WHERE n.id = $id RETURN n.id;",
            {"id": node_id},
        )
        if row is None:
            raise NotFoundError(f"Node not found: node_id={node_id}")

    def insert_user(self, *, user_id: str, name: str, in_node: str) -> User:
        if not name.strip():
            raise ValidationError("name must not be blank")
        self._require_node(in_node)
        if self.find_user(user_id) is not None:
            raise ValidationError(f"User already exists: user_id={user_id}")
        self.tx.execute(
            "CREATE (:UserAccount {id: $id, name: $name, created_at: $created_at, "
            "in_node: $in_node});",
            {
                "id": user_id,
                "name": name,
                "created_at": self.tx.timestamp,
                "in_node": in_node,
            },
        )
        return self.fetch_user(user_id)

    def find_user(self, user_id: str) -> User | None:
        row = self.tx.fetch_one(
            "MATCH (u:UserAccount) WHERE u.id = $id "
            "RETURN u.id, u.name, u.created_at, u.in_node;",
            {"id": user_id},
        )
        if row is None:
            return None
        return User(
            user_id=row[0],
            name=row[1],
            created_at=datetime.fromisoformat(row[2]) if row[2] else None,
            in_node=row[3],
        )

    def fetch_user(self, user_id: str) -> User:
        user = self.find_user(user_id)
        if user is None:
            raise NotFoundError(f"User not found: user_id={user_id}")
        return user

    def move_user(self, *, user_id: str, node_id: str) -> User:
        self._require_node(node_id)
        rows = self.tx.execute(
            "MATCH (u:UserAccount) WHERE u.id = $id SET u.in_node = $node_id RETURN u.id;",
            {"id": user_id, "node_id": node_id},
        )
        if not rows:
            raise NotFoundError(f"User not found: user_id={user_id}")
        return self.fetch_user(user_id)
