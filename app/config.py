"""
应用配置加载。

设计目标：
- **边界处构造一次**：`load_config_from_env` 在 app factory 里调用，之后作为参数显式传递
- **宽松加载、按请求校验**：缺少必填项不会让服务起不来，而是在每次 webhook 里返回
  `missing-configuration`（500），便于从触发端直接看到问题
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ModelType = Literal["openai", "azure", "gemini"]

DEFAULT_AZURE_DEVOPS_BASE_URL = "https://dev.azure.com"
DEFAULT_AZURE_OPENAI_API_VERSION = "2023-12-01-preview"
DEFAULT_REVIEW_TIMEOUT_SECONDS = 25.0


class AzureDevOpsConfig(BaseModel):
    """Azure DevOps 连接配置。project/repo 只是 webhook 缺省时的兜底值。"""

    base_url: str = DEFAULT_AZURE_DEVOPS_BASE_URL
    pat: str | None = None
    organization: str | None = None
    project: str | None = None
    repo: str | None = None


class LLMConfig(BaseModel):
    """三个 provider 的配置集合；实际只会启用其中一个。"""

    model_config = ConfigDict(protected_namespaces=())

    model_type: ModelType | None = None
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_model: str = "gpt-4o"
    azure_openai_api_key: str | None = None
    azure_openai_instance_name: str | None = None
    azure_openai_deployment_name: str | None = None
    azure_openai_api_version: str = DEFAULT_AZURE_OPENAI_API_VERSION
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-pro"

    def resolve_model_type(self) -> ModelType | None:
        """
        选择启用的 provider。

        - 显式 `MODEL_TYPE` 优先（但对应 key 必须存在）
        - 否则按 Azure OpenAI -> OpenAI -> Gemini 的顺序取第一个有 key 的
        - 都没有返回 None
        """
        available: dict[ModelType, str | None] = {
            "azure": self.azure_openai_api_key,
            "openai": self.openai_api_key,
            "gemini": self.gemini_api_key,
        }
        if self.model_type is not None:
            return self.model_type if available[self.model_type] else None
        for model_type, key in available.items():
            if key:
                return model_type
        return None


class AppConfig(BaseModel):
    """应用运行配置。"""

    azure_devops: AzureDevOpsConfig = Field(default_factory=AzureDevOpsConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    instruction_source: str | None = None
    create_new_pr: bool = False
    review_timeout_seconds: float = DEFAULT_REVIEW_TIMEOUT_SECONDS

    def missing_required_keys(self) -> list[str]:
        """返回缺失的必填环境变量名（按声明顺序）。"""
        required: tuple[tuple[str, str | None], ...] = (
            ("AZURE_PAT", self.azure_devops.pat),
            ("INSTRUCTION_SOURCE", self.instruction_source),
        )
        return [name for name, value in required if not value]


def _optional(environ: Mapping[str, str], key: str) -> str | None:
    value = environ.get(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def _parse_bool(value: str | None) -> bool:
    return value is not None and value.strip().lower() == "true"


def _parse_model_type(value: str | None) -> ModelType | None:
    if value is None:
        return None
    lowered = value.lower()
    if lowered not in ("openai", "azure", "gemini"):
        raise ValueError(f"Unsupported MODEL_TYPE: {value}")
    return lowered  # type: ignore[return-value]


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：只有格式错误（非法 MODEL_TYPE / 超时不是数字）才抛 `ValueError`；
      必填项缺失交给 `AppConfig.missing_required_keys()` 在请求时判断
    """
    timeout_raw = _optional(environ, "REVIEW_TIMEOUT_SECONDS")
    timeout = float(timeout_raw) if timeout_raw is not None else DEFAULT_REVIEW_TIMEOUT_SECONDS
    if timeout <= 0:
        raise ValueError("REVIEW_TIMEOUT_SECONDS must be > 0")

    azure_devops = AzureDevOpsConfig(
        base_url=(_optional(environ, "AZURE_DEVOPS_BASE_URL") or DEFAULT_AZURE_DEVOPS_BASE_URL).rstrip("/"),
        pat=_optional(environ, "AZURE_PAT"),
        organization=_optional(environ, "AZURE_ORG"),
        project=_optional(environ, "AZURE_PROJECT"),
        repo=_optional(environ, "AZURE_REPO"),
    )
    llm = LLMConfig(
        model_type=_parse_model_type(_optional(environ, "MODEL_TYPE")),
        openai_api_key=_optional(environ, "OPENAI_API_KEY"),
        openai_base_url=_optional(environ, "OPENAI_BASE_URL"),
        openai_model=_optional(environ, "OPENAI_MODEL") or "gpt-4o",
        azure_openai_api_key=_optional(environ, "AZURE_OPENAI_API_KEY"),
        azure_openai_instance_name=_optional(environ, "AZURE_OPENAI_API_INSTANCE_NAME"),
        azure_openai_deployment_name=_optional(environ, "AZURE_OPENAI_API_DEPLOYMENT_NAME"),
        azure_openai_api_version=_optional(environ, "AZURE_OPENAI_API_VERSION") or DEFAULT_AZURE_OPENAI_API_VERSION,
        gemini_api_key=_optional(environ, "GEMINI_API_KEY"),
        gemini_model=_optional(environ, "GEMINI_MODEL") or "gemini-1.5-pro",
    )
    return AppConfig(
        azure_devops=azure_devops,
        llm=llm,
        instruction_source=_optional(environ, "INSTRUCTION_SOURCE"),
        create_new_pr=_parse_bool(environ.get("CREATE_NEW_PR")),
        review_timeout_seconds=timeout,
    )
