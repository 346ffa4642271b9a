"""用户背包账本：每个 (user, spell) 至多一行，只做累加。"""

from __future__ import annotations

from storyforge.errors import NotFoundError, ValidationError
from storyforge.game.spells import spell_exists, spell_from_row
from storyforge.models import SpellAmount
from storyforge.storage.transaction import TransactionContext


class InventoryLedger:
    def __init__(self, tx: TransactionContext):
        self.tx = tx

    @staticmethod
    def _entry_key(*, user_id: str, spell_id: str) -> str:
        return f"{user_id}::{spell_id}"

    def add(self, user_id: str, spell_id: str, amount: int) -> int:
        """不存在则以 amount 创建，存在则原子累加；返回累加后的总量。"""
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError(f"amount must be an integer: amount={amount!r}")
        if amount < 0:
            raise ValidationError(f"amount must be non-negative: amount={amount}")
        if not spell_exists(self.tx, spell_id):
            raise NotFoundError(f"Spell not found: spell_id={spell_id}")
        row = self.tx.fetch_one(
            "MERGE (e:InventoryEntry {id: $id}) "
            "ON CREATE SET e.user_id = $user_id, e.spell_id = $spell_id, e.amount = $amount "
            "ON MATCH SET e.amount = e.amount + $amount "
            "RETURN e.amount;",
            {
                "id": self._entry_key(user_id=user_id, spell_id=spell_id),
                "user_id": user_id,
                "spell_id": spell_id,
                "amount": amount,
            },
        )
        return int(row[0])

    def amount(self, user_id: str, spell_id: str) -> int:
        row = self.tx.fetch_one(
            "MATCH (e:InventoryEntry) WHERE e.id = $id RETURN e.amount;",
            {"id": self._entry_key(user_id=user_id, spell_id=spell_id)},
        )
        return int(row[0]) if row else 0

    def fetch(self, user_id: str) -> list[SpellAmount]:
        """返回用户的全部条目，无序；排序属于展示层。"""
        rows = self.tx.execute(
            "MATCH (e:InventoryEntry), (s:Spell) "
            "WHERE e.user_id = $user_id AND s.id = e.spell_id "
            "RETURN s.id, s.name, s.emoji, s.description, s.created_at, s.created_by, "
            "e.amount;",
            {"user_id": user_id},
        )
        return [
            SpellAmount(spell=spell_from_row(self.tx, row), amount=int(row[6]))
            for row in rows
        ]
