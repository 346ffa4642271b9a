"""核心领域模型定义：故事节点图、法术、配方与背包。"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

CONTENT_VERSION = 1


def new_id() -> str:
    return str(uuid4())


class Atom(BaseModel):
    """段落文本上的词法片段。"""

    start: int = Field(..., ge=0)
    length: int = Field(..., ge=0)


class Paragraph(BaseModel):
    text: str
    atoms: List[Atom] = Field(default_factory=list)


class Content(BaseModel):
    """节点正文：有序段落序列。"""

    paragraphs: List[Paragraph] = Field(default_factory=list)


class UserRef(BaseModel):
    """仅含 id 的用户引用，写入时使用。"""

    kind: Literal["ref"] = "ref"
    user_id: str = Field(..., min_length=1)

    def identifier(self) -> str:
        return self.user_id


class UserLink(BaseModel):
    """带展示名的完整用户链接，读取时返回。"""

    kind: Literal["full"] = "full"
    user_id: str = Field(..., min_length=1)
    name: str

    def identifier(self) -> str:
        return self.user_id


UserField = Annotated[Union[UserRef, UserLink], Field(discriminator="kind")]


class SpellRef(BaseModel):
    kind: Literal["ref"] = "ref"
    spell_id: str = Field(..., min_length=1)

    def identifier(self) -> str:
        return self.spell_id


class Spell(BaseModel):
    """可合成的法术物品。"""

    kind: Literal["full"] = "full"
    spell_id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    emoji: str
    description: str
    created_at: datetime
    created_by: Optional[UserField] = None

    def identifier(self) -> str:
        return self.spell_id


SpellField = Annotated[Union[SpellRef, Spell], Field(discriminator="kind")]


class Fork(BaseModel):
    """分叉：在兄弟节点中第 position 位，由使用 spell 产生。"""

    position: int = Field(..., ge=0)
    spell: SpellField


class ParentLink(BaseModel):
    node_id: str = Field(..., min_length=1)
    fork: Optional[Fork] = None


class ForkChild(BaseModel):
    node_id: str
    fork: Fork


class Node(BaseModel):
    """故事节点：承载段落的内容单元。"""

    node_id: str = Field(default_factory=new_id)
    parent: Optional[ParentLink] = None
    natural_child: Optional[str] = None
    fork_children: List[ForkChild] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    created_by: Optional[UserField] = None
    content: Content

    @model_validator(mode="after")
    def check_children(self) -> "Node":
        positions = [child.fork.position for child in self.fork_children]
        if len(positions) != len(set(positions)):
            raise ValueError("fork_children positions must be unique")
        if self.natural_child is not None and any(
            child.node_id == self.natural_child for child in self.fork_children
        ):
            raise ValueError("natural_child must not also be a fork child")
        return self

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def paragraph_count(self) -> int:
        return len(self.content.paragraphs)


class Recipe(BaseModel):
    """配方记忆：规范化原料序列 -> 产物法术。"""

    canonical_key: str
    ingredients: List[str] = Field(..., min_length=1)
    product: str
    created_at: Optional[datetime] = None
    created_by: Optional[UserField] = None


class SpellAmount(BaseModel):
    spell: Spell
    amount: int = Field(..., ge=0)


class User(BaseModel):
    user_id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    created_at: Optional[datetime] = None
    in_node: str


class CraftingProduct(BaseModel):
    """生成服务返回的候选物品描述。"""

    name: str = Field(..., min_length=1)
    emoji: str = Field(..., min_length=1)
    description: str

    @field_validator("name")
    @classmethod
    def ensure_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be empty")
        return value.strip()


class CraftingResult(BaseModel):
    product: Spell
    first_discovery: bool
