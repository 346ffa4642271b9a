"""LLM 结构化输出 Schema（Pydantic v2）。"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class ToponeMessage(BaseModel):
    role: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)


class ToponeGeneratePayload(BaseModel):
    model: str | None = None
    system_instruction: str | None = None
    messages: List[ToponeMessage]
    generation_config: dict | None = None
    timeout: float | None = None


class CraftingPayload(BaseModel):
    """发给生成服务的请求：按规范顺序排列的原料名称。"""

    ingredient_names: List[str] = Field(..., min_length=1)
