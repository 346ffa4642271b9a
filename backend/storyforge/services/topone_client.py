"""TopOne generateContent 的最小异步客户端，只服务于合成生成。"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

import httpx

from storyforge import config


def _visible_parts(response: dict[str, Any]) -> dict[str, Any]:
    """丢弃 thought 内容块，只把最终回答交给网关解析。"""
    for candidate in response.get("candidates", []):
        content = candidate.get("content") or {}
        if "parts" in content:
            content["parts"] = [p for p in content["parts"] if not p.get("thought")]
    return response


class ToponeClient:
    """模型只能是 default_model 或 secondary_model；未传入的参数取 env 配置。"""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str | None = None,
        secondary_model: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = config.TOPONE_API_KEY if api_key is None else api_key
        self.base_url = base_url or config.TOPONE_BASE_URL
        self.default_model = default_model or config.TOPONE_DEFAULT_MODEL
        self.secondary_model = secondary_model or config.TOPONE_SECONDARY_MODEL
        self.timeout_seconds = timeout_seconds or config.TOPONE_TIMEOUT_SECONDS
        self.transport = transport

    def _request_body(
        self,
        messages: Iterable[Mapping[str, str]],
        system_instruction: str | None,
        generation_config: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": [
                {"role": message["role"], "parts": [{"text": message["text"]}]}
                for message in messages
            ]
        }
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        if generation_config:
            body["generationConfig"] = dict(generation_config)
        return body

    async def generate_content(
        self,
        *,
        messages: Iterable[Mapping[str, str]],
        system_instruction: str | None = None,
        generation_config: Mapping[str, Any] | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        model_name = model or self.default_model
        if model_name not in (self.default_model, self.secondary_model):
            raise ValueError(f"Unsupported model: {model_name}")
        if not self.api_key:
            raise ValueError("TOPONE_API_KEY is required for real LLM calls")

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self.transport,
        ) as client:
            response = await client.post(
                f"/v1beta/models/{model_name}:generateContent",
                params={"key": self.api_key},
                json=self._request_body(messages, system_instruction, generation_config),
            )
            response.raise_for_status()
            return _visible_parts(response.json())
