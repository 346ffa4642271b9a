"""TopOne 统一网关：LLM 输出 -> JSON -> Pydantic 校验（快速失败）。"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Mapping, Sequence, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from storyforge.errors import ProviderError
from storyforge.llm import prompts
from storyforge.llm.schemas import CraftingPayload, ToponeGeneratePayload, ToponeMessage
from storyforge.models import CraftingProduct
from storyforge.services.topone_client import ToponeClient

T = TypeVar("T")

logger = logging.getLogger(__name__)


class LLMRole(str, Enum):
    CREATIVE = "creative"
    FLASH = "flash"


def _model_for_role(client: ToponeClient, role: LLMRole) -> str:
    if role == LLMRole.FLASH:
        return client.secondary_model
    return client.default_model


def _extract_text(payload: Mapping[str, Any]) -> str:
    candidates = payload["candidates"]
    first = candidates[0]
    parts = first["content"]["parts"]
    return "".join(part["text"] for part in parts)


def _strip_code_fence(text: str) -> str:
    if not text.startswith("```"):
        return text
    lines = text.splitlines()[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


async def _generate_structured_output(
    *,
    client: ToponeClient,
    role: LLMRole,
    system_prompt: str,
    user_text: str,
    output_type: Any,
    generation_config: Mapping[str, Any] | None = None,
) -> T:
    request = ToponeGeneratePayload(
        model=_model_for_role(client, role),
        system_instruction=system_prompt,
        messages=[ToponeMessage(role="user", text=user_text)],
        generation_config=dict(generation_config) if generation_config else None,
    )
    try:
        response = await client.generate_content(
            messages=[message.model_dump() for message in request.messages],
            system_instruction=request.system_instruction,
            generation_config=request.generation_config,
            model=request.model,
        )
        text = _strip_code_fence(_extract_text(response).strip())
        parsed = json.loads(text)
        return TypeAdapter(output_type).validate_python(parsed)
    except (httpx.HTTPError, ValueError, KeyError, IndexError, ValidationError) as exc:
        raise ProviderError(f"Generation failed: {type(exc).__name__}: {exc}") from exc


class ToponeGateway:
    """对业务层暴露的 TopOne 单一入口，实现合成生成接口。"""

    def __init__(self, client: ToponeClient) -> None:
        self._client = client

    async def craft(self, ingredient_names: Sequence[str]) -> CraftingProduct:
        payload = CraftingPayload(ingredient_names=list(ingredient_names))
        logger.debug("requesting crafting product for %s", payload.ingredient_names)
        return await _generate_structured_output(
            client=self._client,
            role=LLMRole.CREATIVE,
            system_prompt=prompts.CRAFTING_SYSTEM_PROMPT,
            user_text=prompts.crafting_user_text(payload.ingredient_names),
            output_type=CraftingProduct,
            generation_config={"responseMimeType": "application/json"},
        )
