"""对外（HTTP 层）请求 / 响应结构。"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from storyforge.config import (
    LIMIT_NODES_DEFAULT,
    LIMIT_NODES_MAX,
    LIMIT_PARAGRAPHS_DEFAULT,
    LIMIT_PARAGRAPHS_MAX,
)
from storyforge.models import Node, Spell, SpellAmount

CURRENT_NODE = "current"


class NodesParams(BaseModel):
    """分页参数：缺省取默认值，超出上限时截断到上限。"""

    limit_paragraphs: Optional[int] = Field(default=None, ge=1)
    limit_nodes: Optional[int] = Field(default=None, ge=1)

    def resolved_limit_paragraphs(self) -> int:
        value = self.limit_paragraphs or LIMIT_PARAGRAPHS_DEFAULT
        return min(LIMIT_PARAGRAPHS_MAX, value)

    def resolved_limit_nodes(self) -> int:
        value = self.limit_nodes or LIMIT_NODES_DEFAULT
        return min(LIMIT_NODES_MAX, value)


class NodeResponse(BaseModel):
    node: Node


class NodesResponse(BaseModel):
    nodes: List[Node] = Field(default_factory=list)


class CraftingRequest(BaseModel):
    ingredient_ids: List[str]


class CraftingResponse(BaseModel):
    product: Spell
    first_discovery: bool


class InventoryResponse(BaseModel):
    entries: List[SpellAmount] = Field(default_factory=list)


class ExtendStoryRequest(BaseModel):
    parent_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    fork_spell_id: Optional[str] = Field(default=None, min_length=1)
    fork_position: Optional[int] = Field(default=None, ge=0)
