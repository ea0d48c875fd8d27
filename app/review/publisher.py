"""
Correction PR Publisher。

流程（任一步失败都中止，不做清理）：
1. 生成新分支名 `ai-fix/<source 短名>-<毫秒时间戳>`
2. 读取 source 分支的 tip commit
3. 一个 commit 包含所有修正文件（每个文件一个 edit change），parent 为 tip
4. 一次 push 同时创建新分支 ref（oldObjectId 全 0）+ 提交 commit
5. 从新分支向**原 PR 的 target 分支**开 PR，标题带修正 PR 标记
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from app.azure_devops.client import AzureDevOpsClient
from app.errors import CorrectionPublishError
from app.review.models import BRANCH_REF_PREFIX
from app.review.models import CORRECTION_BRANCH_PREFIX
from app.review.models import CORRECTION_PR_TITLE_MARKER
from app.review.models import CorrectionBatch
from app.review.models import PullRequestRef
from app.review.models import pull_request_web_url
from app.review.models import short_branch_name

logger = logging.getLogger(__name__)

COMMIT_MESSAGE = "AI-suggested code improvements based on review guidelines"

# 新建 ref 时远端要求 oldObjectId 为全 0；分支起点由 commit 的 parent 决定
NEW_REF_OBJECT_ID = "0" * 40


def _now_ms() -> int:
    return int(time.time() * 1000)


def correction_branch_name(source_ref: str, timestamp_ms: int) -> str:
    return f"{CORRECTION_BRANCH_PREFIX}{short_branch_name(source_ref)}-{timestamp_ms}"


def correction_pr_title(original_title: str) -> str:
    return f"{CORRECTION_PR_TITLE_MARKER} {original_title}"


def build_push_payload(repo_id: str, new_branch_ref: str, base_commit_id: str, batch: CorrectionBatch) -> dict[str, object]:
    changes = [
        {
            "changeType": "edit",
            "item": {"path": c.path},
            "newContent": {"content": c.corrected_content, "contentType": "rawtext"},
        }
        for c in batch.corrections
    ]
    return {
        "refUpdates": [{"name": new_branch_ref, "oldObjectId": NEW_REF_OBJECT_ID}],
        "commits": [{"comment": COMMIT_MESSAGE, "changes": changes, "parents": [base_commit_id]}],
        "repository": {"id": repo_id},
    }


async def publish_corrections(
    client: AzureDevOpsClient,
    repo_id: str,
    original_pr: PullRequestRef,
    batch: CorrectionBatch,
    project: str,
    clock: Callable[[], int] = _now_ms,
) -> str:
    """创建修正 PR，返回新 PR 的 URL。失败抛 `CorrectionPublishError`。"""
    if batch.is_empty:
        raise CorrectionPublishError("No corrections to publish")

    source_branch = short_branch_name(original_pr.source_ref)
    new_branch = correction_branch_name(original_pr.source_ref, clock())
    new_branch_ref = f"{BRANCH_REF_PREFIX}{new_branch}"

    branch = await client.get_branch(repo_id=repo_id, branch=source_branch, project=project)
    base_commit_id = branch.commit.commitId if branch.commit is not None else None
    if not base_commit_id:
        raise CorrectionPublishError(f"Couldn't get base commit for {source_branch}")

    push = build_push_payload(repo_id=repo_id, new_branch_ref=new_branch_ref, base_commit_id=base_commit_id, batch=batch)
    await client.create_push(repo_id=repo_id, project=project, push=push)
    logger.info(f"Pushed {len(batch)} correction(s) to {new_branch_ref}")

    description = "Automated code improvements based on review guidelines"
    if original_pr.web_url:
        description = f"{description}\n\nOriginal PR: {original_pr.web_url}"

    created = await client.create_pull_request(
        repo_id=repo_id,
        project=project,
        source_ref=new_branch_ref,
        target_ref=original_pr.target_ref,
        title=correction_pr_title(original_pr.title),
        description=description,
    )
    repository_web_url = created.repository.webUrl if created.repository else None
    url = pull_request_web_url(repository_web_url, created.pullRequestId) or created.url or ""
    logger.info(f"Created new PR with corrections: {url}")
    return url
