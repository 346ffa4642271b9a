"""世界初始化：一次性写入默认根节点与初始法术。"""

from __future__ import annotations

import logging
from typing import Sequence

from storyforge.game.nodes import (
    DEFAULT_ROOT_PROPERTY,
    NodeGraph,
    create_node_content,
    create_root_node,
)
from storyforge.game.spells import insert_spell
from storyforge.models import CraftingProduct
from storyforge.storage.graph import GraphStore

logger = logging.getLogger(__name__)

INITIALIZED_PROPERTY = "world.initialized"

ROOT_TEXT = (
    "This is the beginning of your story.\n"
    "There's nothing here yet, besides these words."
)

DEFAULT_SEED_SPELLS: tuple[CraftingProduct, ...] = (
    CraftingProduct(name="water", emoji="💧", description="Clear, cold and always moving."),
    CraftingProduct(name="fire", emoji="🔥", description="Hungry light that eats what it touches."),
    CraftingProduct(name="earth", emoji="🪨", description="Patient ground under everything."),
    CraftingProduct(name="air", emoji="🌬️", description="Invisible, yet it carries every voice."),
)


def initialize_world(
    store: GraphStore,
    *,
    seed_spells: Sequence[CraftingProduct] = DEFAULT_SEED_SPELLS,
) -> str:
    """幂等：已初始化时直接返回默认根节点 id。"""
    with store.begin() as tx:
        graph = NodeGraph(tx)
        if tx.get_property(INITIALIZED_PROPERTY, False):
            return graph.default_root()

        logger.info("initializing world state")
        root = graph.insert(create_root_node(create_node_content(ROOT_TEXT)))
        for seed in seed_spells:
            insert_spell(tx, name=seed.name, emoji=seed.emoji, description=seed.description)
        tx.set_property(DEFAULT_ROOT_PROPERTY, root.node_id)
        tx.set_property(INITIALIZED_PROPERTY, True)
    logger.info("world initialized: root=%s seed_spells=%d", root.node_id, len(seed_spells))
    return root.node_id
