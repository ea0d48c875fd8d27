"""
LLM Client（三个 provider，对外只有一个能力接口）。

目标：
- **尽量薄**：只做协议适配与错误处理
- **统一接口**：调用方只依赖 `LLMClient.complete_json`，不知道背后是哪个 provider
- **严格 JSON**：输出必须能解析并通过 schema 校验，否则直接抛错（由 reviewer 分类收敛）
- provider 在构造时由配置选定（`build_llm_client`），运行期不再切换
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Protocol

import httpx
from google import genai
from google.genai import types as genai_types
from openai import AsyncAzureOpenAI, AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from app.config import LLMConfig
from app.errors import ModelUnavailableError

logger = logging.getLogger(__name__)

_JSON_FENCE_OPEN = re.compile(r"^```(?:json)?\s*")
_JSON_FENCE_CLOSE = re.compile(r"\s*```$")


class ChatMessage(BaseModel):
    """OpenAI chat message 的最小结构。"""

    role: str
    content: str


class LLMClient(Protocol):
    """模型能力接口：给定消息，返回通过 schema 校验的结构化结果。"""

    async def complete_json(self, messages: Sequence[ChatMessage], schema: type[BaseModel]) -> BaseModel: ...


def _normalize_base_url(base_url: str) -> str:
    normalized = base_url.rstrip("/")
    if normalized.endswith("/v1"):
        return normalized
    return f"{normalized}/v1"


def parse_json_content(content: str, schema: type[BaseModel]) -> BaseModel:
    """
    解析模型原文为 schema 实例。

    - 只剥掉最外层的 ```json ... ``` 围栏（部分模型即使开了 JSON mode 也会加）
    - 解析失败/校验失败抛 `ValueError`
    """
    cleaned = _JSON_FENCE_OPEN.sub("", content.strip())
    cleaned = _JSON_FENCE_CLOSE.sub("", cleaned.strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error(f"Invalid JSON from LLM. Raw content: {content[:500]}")
        raise ValueError("LLM did not return valid JSON") from exc

    try:
        validated = schema.model_validate(parsed)
    except ValidationError as exc:
        logger.error(f"Schema validation failed: {exc}")
        raise ValueError(f"LLM JSON does not match schema {schema.__name__}: {exc}") from exc

    logger.info(f"Successfully validated JSON to {schema.__name__}")
    return validated


class OpenAICompatLLMClient:
    """OpenAI（或任意 OpenAI-compatible 网关）。"""

    def __init__(
        self,
        api_key: str,
        model: str,
        http_client: httpx.AsyncClient,
        base_url: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> None:
        """
        - api_key: LLM API key
        - model: 模型名（例如 `gpt-4o`）
        - http_client: 复用 httpx.AsyncClient 连接池
        - base_url: 可选，OpenAI-compatible base URL（不填走官方地址）
        """
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        normalized = _normalize_base_url(base_url) if base_url else None
        self._client: AsyncOpenAI = AsyncOpenAI(api_key=api_key, base_url=normalized, http_client=http_client)

    @property
    def model(self) -> str:
        return self._model

    async def complete_json(self, messages: Sequence[ChatMessage], schema: type[BaseModel]) -> BaseModel:
        """
        约定：让模型输出"纯 JSON"，然后做严格 schema 校验。

        - **JSON mode**：使用 response_format 确保返回纯 JSON
        - **失败策略**：API 错误原样抛出；解析/校验失败抛 `ValueError`
        """
        try:
            logger.info(f"LLM JSON request: model={self._model}, schema={schema.__name__}")
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[m.model_dump() for m in messages],
                response_format={"type": "json_object"},
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except OpenAIError as exc:
            logger.error(f"LLM API error: {exc}")
            raise
        except httpx.HTTPError as exc:
            logger.error(f"LLM HTTP error: {exc}")
            raise

        content = response.choices[0].message.content
        if content is None:
            logger.error("LLM returned None content")
            raise RuntimeError("LLM returned None content")

        logger.info(f"LLM JSON response: {len(content)} chars")
        return parse_json_content(content, schema)


class AzureOpenAILLMClient(OpenAICompatLLMClient):
    """Azure OpenAI：请求格式与 OpenAI 相同，只是 endpoint/鉴权/部署名不同。"""

    def __init__(
        self,
        api_key: str,
        instance_name: str,
        deployment_name: str,
        api_version: str,
        http_client: httpx.AsyncClient,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> None:
        self._model = deployment_name
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._client = AsyncAzureOpenAI(
            api_key=api_key,
            azure_endpoint=f"https://{instance_name}.openai.azure.com",
            azure_deployment=deployment_name,
            api_version=api_version,
            http_client=http_client,
        )


class GeminiLLMClient:
    """Google Gemini（google-genai SDK 的 async 接口）。"""

    def __init__(self, api_key: str, model: str, temperature: float = 0.7) -> None:
        self._model = model
        self._temperature = temperature
        self._client = genai.Client(api_key=api_key)

    @property
    def model(self) -> str:
        return self._model

    async def complete_json(self, messages: Sequence[ChatMessage], schema: type[BaseModel]) -> BaseModel:
        # Gemini 没有 system role：system 消息并入 system_instruction
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        contents = "\n\n".join(m.content for m in messages if m.role != "system")
        config = genai_types.GenerateContentConfig(
            system_instruction=system or None,
            response_mime_type="application/json",
            temperature=self._temperature,
        )
        logger.info(f"LLM JSON request: model={self._model}, schema={schema.__name__}")
        response = await self._client.aio.models.generate_content(
            model=self._model,
            contents=contents,
            config=config,
        )
        content = response.text
        if content is None:
            logger.error("LLM returned None content")
            raise RuntimeError("LLM returned None content")

        logger.info(f"LLM JSON response: {len(content)} chars")
        return parse_json_content(content, schema)


def build_llm_client(config: LLMConfig, http_client: httpx.AsyncClient) -> LLMClient:
    """
    根据配置选择唯一的 provider。

    - 没有任何可用 key（或 MODEL_TYPE 指定的 provider 没有 key）抛 `ModelUnavailableError`
    - Azure OpenAI 还需要 instance/deployment，缺失同样视为不可用
    """
    model_type = config.resolve_model_type()
    if model_type is None:
        raise ModelUnavailableError("No AI model API key provided")

    if model_type == "azure":
        if not config.azure_openai_instance_name or not config.azure_openai_deployment_name:
            raise ModelUnavailableError(
                "Azure OpenAI requires AZURE_OPENAI_API_INSTANCE_NAME and AZURE_OPENAI_API_DEPLOYMENT_NAME"
            )
        logger.info(f"Using Azure OpenAI deployment {config.azure_openai_deployment_name}")
        return AzureOpenAILLMClient(
            api_key=config.azure_openai_api_key or "",
            instance_name=config.azure_openai_instance_name,
            deployment_name=config.azure_openai_deployment_name,
            api_version=config.azure_openai_api_version,
            http_client=http_client,
        )
    if model_type == "openai":
        logger.info(f"Using OpenAI model {config.openai_model}")
        return OpenAICompatLLMClient(
            api_key=config.openai_api_key or "",
            model=config.openai_model,
            http_client=http_client,
            base_url=config.openai_base_url,
        )
    logger.info(f"Using Gemini model {config.gemini_model}")
    return GeminiLLMClient(api_key=config.gemini_api_key or "", model=config.gemini_model)
