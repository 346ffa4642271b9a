"""法术记录的读写，供合成、背包与节点分叉共用。"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from storyforge.errors import NotFoundError
from storyforge.game.users import user_link
from storyforge.models import Spell, new_id
from storyforge.storage.transaction import TransactionContext

_SPELL_COLUMNS = "s.id, s.name, s.emoji, s.description, s.created_at, s.created_by"


def spell_from_row(tx: TransactionContext, row: Sequence) -> Spell:
    spell_id, name, emoji, description, created_at, created_by = row[:6]
    return Spell(
        spell_id=spell_id,
        name=name,
        emoji=emoji,
        description=description,
        created_at=datetime.fromisoformat(created_at),
        created_by=user_link(tx, created_by) if created_by else None,
    )


def insert_spell(
    tx: TransactionContext,
    *,
    name: str,
    emoji: str,
    description: str,
    created_by: str | None = None,
    spell_id: str | None = None,
) -> Spell:
    """写入新法术；created_at 取事务固定时间。"""
    props = {
        "id": spell_id or new_id(),
        "name": name,
        "emoji": emoji,
        "description": description,
        "created_at": tx.timestamp,
    }
    if created_by:
        props["created_by"] = created_by
    assignments = ", ".join(f"{key}: ${key}" for key in props)
    tx.execute(f"CREATE (:Spell {{{assignments}}});", props)
    return fetch_spell(tx, props["id"])


def find_spell(tx: TransactionContext, spell_id: str) -> Spell | None:
    row = tx.fetch_one(
        f"MATCH (s:Spell) WHERE s.id = $id RETURN {_SPELL_COLUMNS};",
        {"id": spell_id},
    )
    if row is None:
        return None
    return spell_from_row(tx, row)


def fetch_spell(tx: TransactionContext, spell_id: str) -> Spell:
    spell = find_spell(tx, spell_id)
    if spell is None:
        raise NotFoundError(f"Spell not found: spell_id={spell_id}")
    return spell


def spell_exists(tx: TransactionContext, spell_id: str) -> bool:
    row = tx.fetch_one(
        "MATCH (s:Spell) WHERE s.id = $id RETURN s.id;",
        {"id": spell_id},
    )
    return row is not None


def spell_names(tx: TransactionContext, spell_ids: Sequence[str]) -> list[str]:
    """按给定顺序解析法术名；重复 id 对应重复名称。"""
    rows = tx.execute(
        "MATCH (s:Spell) WHERE list_contains($ids, s.id) RETURN s.id, s.name;",
        {"ids": sorted(set(spell_ids))},
    )
    names = {row[0]: row[1] for row in rows}
    missing = [spell_id for spell_id in spell_ids if spell_id not in names]
    if missing:
        raise NotFoundError(
            "Spells not found: spell_ids=" + ",".join(sorted(set(missing)))
        )
    return [names[spell_id] for spell_id in spell_ids]


def list_spells(tx: TransactionContext) -> list[Spell]:
    rows = tx.execute(f"MATCH (s:Spell) RETURN {_SPELL_COLUMNS};")
    return [spell_from_row(tx, row) for row in rows]
