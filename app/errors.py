"""
错误分类（taxonomy）。

约定：
- 每个错误类型带 `kind`（对外的稳定标识）和 `status_code`（webhook 响应码）
- 只有“决定不了要 review 什么”的错误才会中止整个请求
- 单文件失败 / 修正 PR 失败由 orchestrator 就地收敛，不会抛到路由层
"""

from __future__ import annotations


class ReviewError(RuntimeError):
    """所有可预期错误的基类。"""

    kind: str = "internal-failure"
    status_code: int = 500


class InvalidPayloadError(ReviewError):
    """webhook payload 结构不合法（调用方错误，不重试）。"""

    kind = "invalid-payload"
    status_code = 400


class MissingConfigurationError(ReviewError):
    """必填配置缺失（需要运维修复）。"""

    kind = "missing-configuration"


class GuidelinesUnavailableError(ReviewError):
    """review 规范无法读取：没有规范就不做 review。"""

    kind = "guidelines-unavailable"


class RepositoryNotFoundError(ReviewError):
    kind = "remote-repository-not-found"


class PullRequestInvalidError(ReviewError):
    """远端 PR 状态不一致（缺 id / ref）。"""

    kind = "remote-pr-invalid"


class NoIterationsError(ReviewError):
    kind = "no-iterations"


class ModelUnavailableError(ReviewError):
    """没有任何可用的模型 provider 配置。"""

    kind = "ai-model-unavailable"


class CorrectionPublishError(ReviewError):
    """修正 PR 创建失败：只记录日志，不影响整体响应。"""

    kind = "correction-publish-failed"


class AzureDevOpsApiError(ReviewError):
    """Azure DevOps REST 调用失败（HTTP >= 400）。"""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"Azure DevOps API error {status_code}: {detail}")
        self.http_status = status_code


class IgnoredEventError(ReviewError):
    """不需要处理的事件（非 PR 事件 / 自己生成的修正 PR）：返回 200，触发端不会重试。"""

    kind = "ignored-event"
    status_code = 200
