"""
Azure DevOps Webhook 接入层（event gate + 路由）。

职责：
- 校验 payload 结构（空 body / 缺 eventType / 缺 pullRequestId -> 400）
- 过滤掉不关心的事件（非 `git.pullrequest.*`、自己生成的修正 PR -> 200 ignored）
- 从 repository remoteUrl 解析 organization
- 调用业务 handler（真正的 review 流程在 orchestrator 里），把 `WebhookResult` 转成 HTTP 响应
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from urllib.parse import urlparse

from fastapi import APIRouter
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.azure_devops.schemas import PullRequestWebhookEvent
from app.errors import IgnoredEventError
from app.errors import InvalidPayloadError
from app.errors import MissingConfigurationError
from app.review.models import BRANCH_REF_PREFIX
from app.review.models import CORRECTION_BRANCH_PREFIX
from app.review.models import CORRECTION_PR_TITLE_MARKER
from app.review.models import WebhookResult

logger = logging.getLogger(__name__)

PULL_REQUEST_EVENT_PREFIX = "git.pullrequest."

WebhookHandler = Callable[[object, bool], Awaitable[WebhookResult]]


def parse_pull_request_event(payload: object) -> PullRequestWebhookEvent:
    """
    按顺序校验 payload，返回 PR 事件。

    - 空 payload / 缺 eventType / 缺 pullRequestId：`InvalidPayloadError`
    - 非 PR 事件：`IgnoredEventError`（在解析 resource 之前判断，其他事件的 resource 结构不同）
    """
    if not payload:
        raise InvalidPayloadError("Invalid webhook payload: Body is empty")
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Invalid webhook payload: expected a JSON object")

    event_type = payload.get("eventType")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidPayloadError("Missing eventType in payload")

    if not event_type.startswith(PULL_REQUEST_EVENT_PREFIX):
        raise IgnoredEventError(f"Ignoring non-PR event: {event_type}")

    resource = payload.get("resource")
    if not isinstance(resource, dict) or not resource.get("pullRequestId"):
        raise InvalidPayloadError("Missing PR information in payload")

    try:
        return PullRequestWebhookEvent.model_validate(payload)
    except ValidationError as exc:
        raise InvalidPayloadError(f"Invalid webhook payload: {exc.error_count()} validation error(s)") from exc


def is_generated_correction_pr(title: str | None, source_ref: str | None = None) -> bool:
    """
    判断 PR 是否由本服务的修正 PR 流程生成（避免自己 review 自己，无限循环）。

    - 标题以标记开头（大小写不敏感），或标题任意位置包含原样的标记
    - source 分支位于修正分支命名空间下
    """
    if title:
        stripped = title.strip()
        if stripped.lower().startswith(CORRECTION_PR_TITLE_MARKER.lower()):
            return True
        if CORRECTION_PR_TITLE_MARKER in stripped:
            return True
    if source_ref and source_ref.startswith(f"{BRANCH_REF_PREFIX}{CORRECTION_BRANCH_PREFIX}"):
        return True
    return False


def ensure_not_generated(event: PullRequestWebhookEvent) -> None:
    resource = event.resource
    if is_generated_correction_pr(resource.title, resource.sourceRefName):
        raise IgnoredEventError(f"Ignoring AI-generated correction PR #{resource.pullRequestId}")


def resolve_organization(remote_url: str | None, fallback: str | None = None) -> str:
    """
    从 remoteUrl 解析 organization。

    - `https://dev.azure.com/{org}/{project}/_git/{repo}`：取第一个 path 段
    - `https://{org}.visualstudio.com/{project}/_git/{repo}`：取子域名
    - path 段少于 3 个视为配置错误；remoteUrl 缺失时使用 `AZURE_ORG`
    """
    if not remote_url:
        if fallback:
            return fallback
        raise MissingConfigurationError("Cannot resolve organization: repository remoteUrl missing and AZURE_ORG not set")

    parsed = urlparse(remote_url)
    segments = [s for s in parsed.path.split("/") if s]
    if len(segments) < 3:
        raise MissingConfigurationError(f"Invalid repository URL format: {remote_url}")

    host = parsed.hostname or ""
    if host.endswith(".visualstudio.com"):
        return host.split(".", 1)[0]
    return segments[0]


def build_azure_devops_webhook_router(handler: WebhookHandler) -> APIRouter:
    """创建 Azure DevOps service hook 路由。"""
    router = APIRouter()

    @router.post("/azure-devops/webhook")
    async def azure_devops_webhook(request: Request) -> JSONResponse:
        body = await request.body()
        payload: object = None
        if body.strip():
            try:
                payload = json.loads(body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError):
                result = WebhookResult(
                    status="rejected",
                    kind=InvalidPayloadError.kind,
                    status_code=InvalidPayloadError.status_code,
                    message="Invalid webhook payload: Body is not valid JSON",
                )
                return _to_response(result)

        test_only = request.query_params.get("testOnly", "").lower() == "true"
        result = await handler(payload, test_only)
        return _to_response(result)

    return router


def _to_response(result: WebhookResult) -> JSONResponse:
    content: dict[str, object] = {"status": result.status, "message": result.message}
    if result.kind is not None:
        content["kind"] = result.kind
    if result.details is not None:
        content["details"] = result.details
    return JSONResponse(status_code=result.status_code, content=content)
