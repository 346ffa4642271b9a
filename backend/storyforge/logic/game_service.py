"""游戏服务：组合节点图、背包与合成，供外部 HTTP 层调用的单一入口。"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence

from pydantic import ValidationError as PydanticValidationError

from storyforge import config
from storyforge.errors import ValidationError
from storyforge.game.crafting import CraftingResolver
from storyforge.game.inventory import InventoryLedger
from storyforge.game.nodes import NodeGraph, create_node_content
from storyforge.game.spells import fetch_spell
from storyforge.game.users import UserDirectory
from storyforge.game.world import initialize_world
from storyforge.llm.topone_gateway import ToponeGateway
from storyforge.models import Fork, Node, ParentLink, SpellAmount, SpellRef, User, UserRef
from storyforge.schemas import (
    CURRENT_NODE,
    CraftingRequest,
    CraftingResponse,
    ExtendStoryRequest,
    InventoryResponse,
    NodeResponse,
    NodesParams,
    NodesResponse,
)
from storyforge.services.llm_engine import CraftingProvider, LLMEngine, LocalCraftingEngine
from storyforge.services.topone_client import ToponeClient
from storyforge.storage.graph import GraphStore

logger = logging.getLogger(__name__)


def _parse(model: Any, **values: Any) -> Any:
    try:
        return model(**values)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc


class GameService:
    """每个操作在一个事务内完成，整体提交或整体回滚。"""

    def __init__(
        self,
        store: GraphStore,
        provider: CraftingProvider,
        *,
        deduplicate_ingredients: bool = False,
    ):
        self.store = store
        self.resolver = CraftingResolver(
            store, provider, deduplicate_ingredients=deduplicate_ingredients
        )

    def initialize(self) -> str:
        return initialize_world(self.store)

    def register_user(self, user_id: str, name: str) -> User:
        """新用户放在默认根节点上。"""
        with self.store.begin() as tx:
            root_id = NodeGraph(tx).default_root()
            user = UserDirectory(tx).insert_user(user_id=user_id, name=name, in_node=root_id)
        logger.info("registered user %s at root %s", user_id, root_id)
        return user

    def current_node(self, user_id: str) -> NodeResponse:
        with self.store.begin(read_only=True) as tx:
            node = NodeGraph(tx).fetch_current_position(user_id)
        return NodeResponse(node=node)

    def get_node(self, node_id: str) -> NodeResponse:
        with self.store.begin(read_only=True) as tx:
            node = NodeGraph(tx).fetch(node_id)
        return NodeResponse(node=node)

    def nodes(
        self,
        start_id: str = CURRENT_NODE,
        *,
        user_id: str | None = None,
        limit_paragraphs: int | None = None,
        limit_nodes: int | None = None,
    ) -> NodesResponse:
        """从 start_id（或用户当前位置）开始向上分页读取阅读历史。"""
        params = _parse(
            NodesParams, limit_paragraphs=limit_paragraphs, limit_nodes=limit_nodes
        )
        if start_id == CURRENT_NODE and user_id is None:
            raise ValidationError("user_id is required when start_id is 'current'")
        with self.store.begin(read_only=True) as tx:
            graph = NodeGraph(tx)
            if start_id == CURRENT_NODE:
                start_id = UserDirectory(tx).fetch_user(user_id).in_node
            nodes = list(
                graph.traverse_ancestors(
                    start_id,
                    limit_nodes=params.resolved_limit_nodes(),
                    limit_paragraphs=params.resolved_limit_paragraphs(),
                )
            )
        return NodesResponse(nodes=nodes)

    async def craft(self, user_id: str, ingredient_ids: Sequence[str]) -> CraftingResponse:
        request = _parse(CraftingRequest, ingredient_ids=ingredient_ids)
        result = await self.resolver.craft(user_id, request.ingredient_ids)
        return CraftingResponse(product=result.product, first_discovery=result.first_discovery)

    def grant(self, user_id: str, spell_id: str, amount: int = 1) -> SpellAmount:
        """显式把法术计入背包（合成本身不修改背包）。"""
        with self.store.begin() as tx:
            total = InventoryLedger(tx).add(user_id, spell_id, amount)
            spell = fetch_spell(tx, spell_id)
        return SpellAmount(spell=spell, amount=total)

    def inventory(self, user_id: str) -> InventoryResponse:
        with self.store.begin(read_only=True) as tx:
            entries = InventoryLedger(tx).fetch(user_id)
        return InventoryResponse(entries=entries)

    def extend_story(
        self,
        user_id: str,
        parent_id: str,
        text: str,
        *,
        fork_spell_id: str | None = None,
        fork_position: int | None = None,
    ) -> Node:
        """在 parent 之后续写一个节点，并把作者移动到新节点上。

        给出 fork_spell_id 时创建分叉；未给位置则取下一个空闲位置。
        """
        request = _parse(
            ExtendStoryRequest,
            parent_id=parent_id,
            text=text,
            fork_spell_id=fork_spell_id,
            fork_position=fork_position,
        )
        content = create_node_content(request.text)
        if not content.paragraphs:
            raise ValidationError("text must contain at least one paragraph")
        with self.store.begin() as tx:
            graph = NodeGraph(tx)
            users = UserDirectory(tx)
            users.fetch_user(user_id)
            fork = None
            if request.fork_spell_id is not None:
                position = request.fork_position
                if position is None:
                    _, forks = graph.children(request.parent_id)
                    position = max((child.fork.position for child in forks), default=-1) + 1
                fork = Fork(position=position, spell=SpellRef(spell_id=request.fork_spell_id))
            elif request.fork_position is not None:
                raise ValidationError("fork_position requires fork_spell_id")
            node = graph.insert(
                Node(
                    parent=ParentLink(node_id=request.parent_id, fork=fork),
                    created_by=UserRef(user_id=user_id),
                    content=content,
                )
            )
            users.move_user(user_id=user_id, node_id=node.node_id)
        return node


def build_provider(mode: str) -> CraftingProvider:
    if mode == "local":
        return LocalCraftingEngine()
    if mode == "llm":
        return LLMEngine()
    if mode == "gemini":
        return ToponeGateway(ToponeClient())
    raise RuntimeError(f"Unsupported provider mode: {mode}")


@lru_cache(maxsize=1)
def get_game_service(db_path: str | Path | None = None) -> GameService:
    """GameService 单例：按配置选择生成服务并初始化世界。"""
    store = GraphStore(db_path=db_path or config.db_path())
    service = GameService(
        store,
        build_provider(config.provider_mode()),
        deduplicate_ingredients=config.deduplicate_ingredients(),
    )
    service.initialize()
    return service
