"""
Content Fetcher：按分支读取文件内容，组装单文件的新旧快照。

读取失败策略：
- 读取失败直接抛错（该文件失败，不伪造“空文件”，避免对着空内容生成假 diff）
- 新增文件不读 target 侧、删除文件不读 source 侧，这两种情况的空内容是真实的
- 其他情况下读到空内容只打 warning（空文件与缺失在远端不好区分，值得暴露出来）
"""

from __future__ import annotations

import logging

import anyio

from app.azure_devops.client import AzureDevOpsClient
from app.review.models import ChangedFile
from app.review.models import FileSnapshot
from app.review.models import PullRequestRef
from app.review.models import short_branch_name

logger = logging.getLogger(__name__)


class ContentFetcher:
    def __init__(self, client: AzureDevOpsClient) -> None:
        self._client = client

    async def fetch(self, repo_id: str, path: str, ref: str, project: str) -> str:
        branch = short_branch_name(ref)
        content = await self._client.get_item_content(repo_id=repo_id, path=path, branch=branch, project=project)
        if not content:
            logger.warning(f"Fetched empty content for {path} at {branch}")
        return content

    async def fetch_snapshot(
        self,
        repo_id: str,
        change: ChangedFile,
        pull_request: PullRequestRef,
        project: str,
    ) -> FileSnapshot:
        """
        并发读取 target（旧）与 source（新）两侧内容，两者都完成后返回。

        任一侧失败时另一侧被取消，抛出的是那一侧的原始异常（不是 ExceptionGroup）。
        """
        sides: dict[str, str] = {"old": "", "new": ""}

        async def read(side: str, ref: str) -> None:
            sides[side] = await self.fetch(repo_id, change.path, ref, project)

        try:
            async with anyio.create_task_group() as tg:
                if not change.is_added:
                    tg.start_soon(read, "old", pull_request.target_ref)
                if not change.is_deleted:
                    tg.start_soon(read, "new", pull_request.source_ref)
        except ExceptionGroup as group:
            raise group.exceptions[0]

        return FileSnapshot(path=change.path, old_content=sides["old"], new_content=sides["new"])
