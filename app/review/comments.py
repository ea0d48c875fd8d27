"""
Comment Placement：把校验过的评论写回 PR（每条评论一个独立 thread）。

- 不合并、不复用 thread、不去重：同一 iteration 重跑会重复评论
- 评论正文统一加上来源标记，便于区分 AI 评论与人工评论
"""

from __future__ import annotations

import logging

from app.azure_devops.client import AzureDevOpsClient
from app.review.models import COMMENT_PROVENANCE_MARKER

logger = logging.getLogger(__name__)


def format_comment(text: str) -> str:
    return f"{COMMENT_PROVENANCE_MARKER} {text}"


async def post_comment(
    client: AzureDevOpsClient,
    repo_id: str,
    pr_id: int,
    path: str,
    line_number: int,
    text: str,
    project: str,
) -> None:
    line = max(1, line_number)
    await client.create_thread(
        repo_id=repo_id,
        pr_id=pr_id,
        project=project,
        file_path=path,
        line=line,
        content=format_comment(text),
    )
    logger.info(f"Added comment to {path} line {line}")
