"""合成生成服务抽象层：Protocol + Instructor 实现 + 本地确定性实现。"""

from __future__ import annotations

import hashlib
import inspect
from typing import Protocol, Sequence

from storyforge.errors import ProviderError
from storyforge.llm import prompts
from storyforge.models import CraftingProduct

ROLE_SYSTEM = "system"
ROLE_USER = "user"


class CraftingProvider(Protocol):
    """原料名称有序列表 -> 候选物品；不得修改核心数据。"""

    async def craft(self, ingredient_names: Sequence[str]) -> CraftingProduct: ...


class LLMEngine:
    """instructor + Gemini 结构化输出；客户端首次合成时才创建，也可直接注入。"""

    def __init__(self, client=None, model_name: str = "gemini-1.5-pro"):
        self.model_name = model_name
        self.client = client

    def _gemini_client(self):
        if self.client is not None:
            return self.client
        try:
            import instructor
            from google.generativeai import GenerativeModel
        except ImportError as exc:  # pragma: no cover
            raise ProviderError(
                "LLM crafting needs `instructor` and `google-generativeai` installed"
            ) from exc
        try:
            self.client = instructor.from_gemini(GenerativeModel(self.model_name))
        except Exception as exc:  # pragma: no cover
            raise ProviderError(f"Cannot build Gemini client for {self.model_name}: {exc}") from exc
        return self.client

    async def craft(self, ingredient_names: Sequence[str]) -> CraftingProduct:
        reply = self._gemini_client().chat.completions.create(
            model=self.model_name,
            response_model=CraftingProduct,
            messages=[
                {"role": ROLE_SYSTEM, "content": prompts.CRAFTING_SYSTEM_PROMPT},
                {"role": ROLE_USER, "content": prompts.crafting_user_text(list(ingredient_names))},
            ],
        )
        # instructor 的同步与异步客户端都可能被注入
        if inspect.isawaitable(reply):
            reply = await reply
        return reply


_LOCAL_EMOJIS = ("✨", "🔥", "💧", "🌪️", "🪨", "🌱", "⚡", "❄️", "🌙", "🧪")


class LocalCraftingEngine:
    """无外部依赖的本地引擎：同样的原料序列总是得到同样的产物。"""

    async def craft(self, ingredient_names: Sequence[str]) -> CraftingProduct:
        names = [name.strip() for name in ingredient_names]
        if not names or any(not name for name in names):
            raise ProviderError("ingredient names must not be empty")
        digest = hashlib.sha256("\x1f".join(names).encode("utf-8")).digest()
        emoji = _LOCAL_EMOJIS[digest[0] % len(_LOCAL_EMOJIS)]
        if len(names) == 1:
            name = f"essence of {names[0].lower()}"
        else:
            name = "-".join(name.lower() for name in names)
        return CraftingProduct(
            name=name,
            emoji=emoji,
            description=f"What remains when {', '.join(names)} are bound together.",
        )
