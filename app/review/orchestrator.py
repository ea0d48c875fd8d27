"""
Review Orchestrator（核心流程编排）。

关键思想：
- **流程由工程代码控制**：gate -> 配置校验 -> 加载规范 -> 拉 PR / iteration -> 逐文件 pipeline -> 修正 PR
- **LLM 只负责“思考/生成结构化输出”**：每个文件单次调用，失败只影响该文件
- **配置显式传入**：`AppConfig` 在边界构造一次，这里不读任何全局状态

错误传播：
- 决定不了“review 什么”的错误（payload/配置/规范/PR/iteration）中止整个请求
- 单文件失败、修正 PR 失败只记录，不影响兄弟文件与最终响应
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from app.azure_devops.client import AzureDevOpsClient
from app.azure_devops.schemas import GitChangeEntry
from app.azure_devops.schemas import GitPullRequest
from app.azure_devops.schemas import PullRequestWebhookEvent
from app.azure_devops.webhook import WebhookHandler
from app.azure_devops.webhook import ensure_not_generated
from app.azure_devops.webhook import parse_pull_request_event
from app.azure_devops.webhook import resolve_organization
from app.config import AppConfig
from app.config import LLMConfig
from app.errors import AzureDevOpsApiError
from app.errors import MissingConfigurationError
from app.errors import NoIterationsError
from app.errors import PullRequestInvalidError
from app.errors import RepositoryNotFoundError
from app.errors import ReviewError
from app.llm.client import LLMClient
from app.llm.client import build_llm_client
from app.review.comments import post_comment
from app.review.content import ContentFetcher
from app.review.corrections import build_correction
from app.review.guidelines import load_guidelines
from app.review.models import ChangedFile
from app.review.models import CorrectionBatch
from app.review.models import FileReport
from app.review.models import PullRequestRef
from app.review.models import ReviewReport
from app.review.models import ReviewRequest
from app.review.models import WebhookResult
from app.review.models import pull_request_web_url
from app.review.publisher import publish_corrections
from app.review.reviewer import review_file

logger = logging.getLogger(__name__)

AzureClientFactory = Callable[[str], AzureDevOpsClient]
LLMClientFactory = Callable[[LLMConfig], LLMClient]


@dataclass(frozen=True)
class ReviewOrchestrator:
    """Orchestrator 运行时依赖集合（全部在 app factory 里装配，测试可替换）。"""

    config: AppConfig
    azure_client_factory: AzureClientFactory
    llm_client_factory: LLMClientFactory
    http_client: httpx.AsyncClient


def build_review_orchestrator(config: AppConfig, http_client: httpx.AsyncClient) -> ReviewOrchestrator:
    """用真实的 Azure DevOps / LLM client 装配 orchestrator。"""

    def azure_client_factory(organization: str) -> AzureDevOpsClient:
        return AzureDevOpsClient(
            base_url=config.azure_devops.base_url,
            organization=organization,
            token=config.azure_devops.pat or "",
            http_client=http_client,
        )

    def llm_client_factory(llm_config: LLMConfig) -> LLMClient:
        return build_llm_client(llm_config, http_client=http_client)

    return ReviewOrchestrator(
        config=config,
        azure_client_factory=azure_client_factory,
        llm_client_factory=llm_client_factory,
        http_client=http_client,
    )


def build_review_request(event: PullRequestWebhookEvent, config: AppConfig) -> ReviewRequest:
    """从事件构造工作单元；project/repo 只有在事件缺失时才回退到配置。"""
    repository = event.resource.repository
    organization = resolve_organization(
        repository.remoteUrl if repository else None,
        fallback=config.azure_devops.organization,
    )
    project = (repository.project.name if repository and repository.project else None) or config.azure_devops.project
    repo_name = (repository.name if repository else None) or config.azure_devops.repo
    if not project or not repo_name:
        raise MissingConfigurationError("Cannot resolve project/repository: set AZURE_PROJECT and AZURE_REPO")
    pull_request_id = event.resource.pullRequestId
    if pull_request_id is None:
        raise PullRequestInvalidError("Missing pullRequestId")
    return ReviewRequest(
        organization=organization,
        project=project,
        repository=repo_name,
        pull_request_id=pull_request_id,
    )


def to_pull_request_ref(pr: GitPullRequest) -> PullRequestRef:
    if not pr.pullRequestId or not pr.sourceRefName or not pr.targetRefName:
        raise PullRequestInvalidError("PR not found or missing ref names")
    web_url = pull_request_web_url(pr.repository.webUrl if pr.repository else None, pr.pullRequestId)
    return PullRequestRef(
        pull_request_id=pr.pullRequestId,
        title=pr.title or "",
        is_draft=pr.isDraft,
        source_ref=pr.sourceRefName,
        target_ref=pr.targetRefName,
        description=pr.description or "",
        web_url=web_url or pr.url or "",
    )


def to_changed_files(entries: list[GitChangeEntry]) -> list[ChangedFile]:
    """只保留非目录、path 非空的条目。"""
    files: list[ChangedFile] = []
    for entry in entries:
        item = entry.item
        if item is None or not item.path or item.isFolder:
            continue
        files.append(ChangedFile(path=item.path, is_folder=item.isFolder, change_type=entry.changeType or "edit"))
    return files


async def review_changed_file(
    client: AzureDevOpsClient,
    fetcher: ContentFetcher,
    llm_client: LLMClient,
    repo_id: str,
    pull_request: PullRequestRef,
    change: ChangedFile,
    guidelines: str,
    project: str,
    timeout_seconds: float,
    batch: CorrectionBatch,
    report: FileReport,
) -> None:
    """
    单文件 pipeline：取内容 -> review -> 逐条发评论 -> 记录修正。

    结果直接写进 `report`，中途抛错时已发出的评论数仍然保留。
    删除的文件不 review：source 分支上已经没有这个路径，既不能挂评论也不能提交修正。
    """
    if change.is_deleted:
        logger.info(f"Skipping deleted file {change.path}")
        report.skipped = True
        return

    snapshot = await fetcher.fetch_snapshot(repo_id=repo_id, change=change, pull_request=pull_request, project=project)

    outcome = await review_file(
        llm_client=llm_client,
        old_content=snapshot.old_content,
        new_content=snapshot.new_content,
        path=change.path,
        guidelines=guidelines,
        timeout_seconds=timeout_seconds,
    )
    if not outcome.ok:
        report.error = outcome.error
        return

    # 同一文件的评论按模型返回顺序依次发出
    for comment in outcome.comments:
        await post_comment(
            client=client,
            repo_id=repo_id,
            pr_id=pull_request.pull_request_id,
            path=change.path,
            line_number=comment.line_number,
            text=comment.text,
            project=project,
        )
        report.comments_posted += 1

    correction = build_correction(change.path, snapshot.new_content, outcome)
    if correction is not None:
        batch.add(correction)
        report.corrected = True


async def run_review(
    orchestrator: ReviewOrchestrator,
    client: AzureDevOpsClient,
    llm_client: LLMClient,
    request: ReviewRequest,
    guidelines: str,
) -> ReviewReport | None:
    """
    跑一次完整 review。草稿 PR 返回 None（跳过）。

    - 文件逐个串行处理（模型调用是主要延迟，且 provider 有限流）
    - 单文件异常在这里收敛为该文件的 error
    """
    config = orchestrator.config

    try:
        repos = await client.list_repositories(request.project)
    except AzureDevOpsApiError as exc:
        if exc.http_status != 404:
            raise
        raise RepositoryNotFoundError(f"Project not found: {request.project}") from exc
    repo = next((r for r in repos if r.name == request.repository), None)
    if repo is None or not repo.id:
        raise RepositoryNotFoundError(f"Repository not found: {request.project}/{request.repository}")

    try:
        remote_pr = await client.get_pull_request(repo.id, request.pull_request_id, request.project)
    except AzureDevOpsApiError as exc:
        if exc.http_status != 404:
            raise
        raise PullRequestInvalidError(f"PR not found: #{request.pull_request_id}") from exc
    if remote_pr.isDraft:
        logger.info(f"Skipping draft pull request #{request.pull_request_id}")
        return None
    pull_request = to_pull_request_ref(remote_pr)

    iterations = await client.list_pull_request_iterations(repo.id, pull_request.pull_request_id, request.project)
    latest_iteration_id = iterations[-1].id if iterations else None
    if not latest_iteration_id:
        raise NoIterationsError(f"No iterations found for PR #{pull_request.pull_request_id}")

    changes = await client.get_iteration_changes(
        repo.id, pull_request.pull_request_id, latest_iteration_id, request.project
    )
    changed_files = to_changed_files(changes.changeEntries)
    logger.info(f"Reviewing {len(changed_files)} file(s) from iteration {latest_iteration_id}")

    fetcher = ContentFetcher(client)
    batch = CorrectionBatch()
    report = ReviewReport()
    for change in changed_files:
        file_report = FileReport(path=change.path)
        try:
            await review_changed_file(
                client=client,
                fetcher=fetcher,
                llm_client=llm_client,
                repo_id=repo.id,
                pull_request=pull_request,
                change=change,
                guidelines=guidelines,
                project=request.project,
                timeout_seconds=config.review_timeout_seconds,
                batch=batch,
                report=file_report,
            )
        except Exception as exc:
            logger.exception(f"Failed to review {change.path}")
            file_report.error = str(exc)
        report.files.append(file_report)

    report.corrections = len(batch)
    if batch.is_empty:
        logger.info("No AI-suggested changes to apply.")
    elif config.create_new_pr:
        try:
            report.correction_pr_url = await publish_corrections(
                client=client,
                repo_id=repo.id,
                original_pr=pull_request,
                batch=batch,
                project=request.project,
            )
        except Exception as exc:
            logger.exception("Failed to create correction PR")
            report.correction_error = str(exc)
    else:
        logger.info("AI-suggested changes available. To apply these changes, set CREATE_NEW_PR=true")
    return report


def _configuration_summary(config: AppConfig, request: ReviewRequest) -> dict[str, object]:
    return {
        "PROJECT": request.project,
        "REPO_NAME": request.repository,
        "PR_ID": request.pull_request_id,
        "INSTRUCTION_SOURCE": config.instruction_source,
        "CREATE_NEW_PR": config.create_new_pr,
    }


async def handle_webhook(orchestrator: ReviewOrchestrator, payload: object, test_only: bool = False) -> WebhookResult:
    """处理单次 webhook 投递，返回终态（不会抛异常）。"""
    logger.info("PR Review triggered by webhook")
    logger.debug(f"Received webhook payload: {payload}")
    try:
        return await _handle(orchestrator, payload, test_only)
    except ReviewError as exc:
        return _error_result(exc)
    except Exception as exc:
        logger.exception("PR review failed")
        return WebhookResult(
            status="failed",
            kind="internal-failure",
            status_code=500,
            message=f"PR review failed: {exc}",
        )


async def _handle(orchestrator: ReviewOrchestrator, payload: object, test_only: bool) -> WebhookResult:
    config = orchestrator.config

    event = parse_pull_request_event(payload)
    ensure_not_generated(event)
    request = build_review_request(event, config)

    missing = config.missing_required_keys()
    if missing:
        raise MissingConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    summary = _configuration_summary(config, request)
    logger.info(f"Configuration: {summary}")
    if test_only:
        return WebhookResult(status="accepted", message="Test run completed successfully", details=summary)

    guidelines = await load_guidelines(config.instruction_source or "", http_client=orchestrator.http_client)
    logger.info("Successfully loaded review guidelines")

    llm_client = orchestrator.llm_client_factory(config.llm)
    client = orchestrator.azure_client_factory(request.organization)
    report = await run_review(orchestrator, client, llm_client, request, guidelines)
    if report is None:
        return WebhookResult(status="skipped", message="Skipping draft pull request")

    if report.correction_error is not None:
        logger.error(f"Failed to create correction PR: {report.correction_error}")
    return WebhookResult(status="accepted", message=report.summary(config.create_new_pr))


def _error_result(exc: ReviewError) -> WebhookResult:
    if exc.status_code == 200:
        logger.info(str(exc))
        return WebhookResult(status="ignored", kind=exc.kind, message=str(exc))
    if exc.status_code < 500:
        logger.warning(str(exc))
        return WebhookResult(status="rejected", kind=exc.kind, status_code=exc.status_code, message=str(exc))
    logger.error(str(exc))
    return WebhookResult(status="failed", kind=exc.kind, status_code=exc.status_code, message=str(exc))


def build_webhook_handler(orchestrator: ReviewOrchestrator) -> WebhookHandler:
    """
    装配 webhook handler：把 orchestrator 绑定进去，
    返回一个 `async def handle(payload, test_only)` 给 webhook 路由调用。
    """

    async def handle(payload: object, test_only: bool) -> WebhookResult:
        return await handle_webhook(orchestrator, payload, test_only)

    return handle
