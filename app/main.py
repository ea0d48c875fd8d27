"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（只在这里读一次环境变量）
- 组装外部依赖（HTTP Client / orchestrator / webhook handler）
- 装配路由（health + Azure DevOps webhook）

注意：
- 业务流程不写在这里（由 `review/orchestrator.py` 负责）
- `httpx.AsyncClient` 会被复用（避免每个请求新建连接）
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from app.azure_devops.webhook import build_azure_devops_webhook_router
from app.config import load_config_from_env
from app.review.orchestrator import build_review_orchestrator
from app.review.orchestrator import build_webhook_handler


def build_app(environ: Mapping[str, str] | None = None) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：必填项缺失不阻止启动，由每次 webhook 返回 missing-configuration
    config = load_config_from_env(os.environ if environ is None else environ)

    # 2) 可复用的 HTTP client：供 Azure DevOps API / 规范下载 / LLM 调用使用
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    # 3) orchestrator：Azure DevOps client 按 organization 在请求里创建，LLM client 按配置选择 provider
    orchestrator = build_review_orchestrator(config=config, http_client=http_client)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await http_client.aclose()

    app = FastAPI(title="Azure DevOps AI PR Review", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于探活。"""
        return {"status": "ok"}

    app.include_router(build_azure_devops_webhook_router(handler=build_webhook_handler(orchestrator)))
    return app


logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())

# Uvicorn 默认会从模块级变量 `app` 读取 ASGI 应用
app = build_app()
