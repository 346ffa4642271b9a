from __future__ import annotations

from typing import Sequence

import pytest

from storyforge.game.nodes import NodeGraph, create_node_content
from storyforge.game.spells import list_spells
from storyforge.game.world import initialize_world
from storyforge.models import CraftingProduct, Node, ParentLink, UserRef
from storyforge.storage.graph import GraphStore


class RecordingProvider:
    """按原料名称返回预设产物，并记录每次调用。"""

    def __init__(self, products: dict[tuple[str, ...], CraftingProduct] | None = None):
        self.products = products or {}
        self.calls: list[list[str]] = []

    async def craft(self, ingredient_names: Sequence[str]) -> CraftingProduct:
        names = list(ingredient_names)
        self.calls.append(names)
        product = self.products.get(tuple(names))
        if product is not None:
            return product
        return CraftingProduct(
            name="+".join(names),
            emoji="✨",
            description=f"made from {len(names)} ingredients",
        )


class FailingProvider:
    def __init__(self, exc: Exception):
        self.exc = exc
        self.calls = 0

    async def craft(self, ingredient_names: Sequence[str]) -> CraftingProduct:
        self.calls += 1
        raise self.exc


@pytest.fixture
def store(tmp_path):
    graph_store = GraphStore(db_path=tmp_path / "storyforge.db")
    yield graph_store
    graph_store.close()


@pytest.fixture
def root_id(store) -> str:
    return initialize_world(store)


@pytest.fixture
def seed_spells(store, root_id) -> dict[str, str]:
    """初始法术名 -> spell_id。"""
    with store.begin(read_only=True) as tx:
        return {spell.name: spell.spell_id for spell in list_spells(tx)}


def count_rows(store: GraphStore, query: str, parameters: dict | None = None) -> int:
    with store.begin(read_only=True) as tx:
        row = tx.fetch_one(query, parameters)
    return int(row[0])


def build_chain(
    store: GraphStore,
    parent_id: str,
    paragraph_counts: Sequence[int],
    *,
    author: str | None = None,
) -> list[str]:
    """从 parent_id 向下追加一串自然续写节点，返回新节点 id（由浅到深）。"""
    ids: list[str] = []
    with store.begin() as tx:
        graph = NodeGraph(tx)
        current = parent_id
        for idx, count in enumerate(paragraph_counts):
            text = "\n".join(f"Paragraph {idx}.{line}" for line in range(count))
            node = graph.insert(
                Node(
                    parent=ParentLink(node_id=current),
                    created_by=UserRef(user_id=author) if author else None,
                    content=create_node_content(text),
                )
            )
            ids.append(node.node_id)
            current = node.node_id
    return ids
