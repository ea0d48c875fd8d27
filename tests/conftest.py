from __future__ import annotations

from collections.abc import Callable, Sequence

import anyio
import pytest
from pydantic import BaseModel

from app.azure_devops.schemas import GitBranchStats
from app.azure_devops.schemas import GitChangeEntry
from app.azure_devops.schemas import GitCommentThread
from app.azure_devops.schemas import GitPullRequest
from app.azure_devops.schemas import GitPullRequestIteration
from app.azure_devops.schemas import GitPullRequestIterationChanges
from app.azure_devops.schemas import GitPush
from app.azure_devops.schemas import GitRepository
from app.errors import AzureDevOpsApiError
from app.llm.client import ChatMessage
from app.review.models import ModelReviewResult


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeAzureDevOpsClient:
    """内存版 Azure DevOps client：记录所有写操作，读操作从构造参数返回。"""

    def __init__(
        self,
        contents: dict[tuple[str, str], str] | None = None,
        pull_request: GitPullRequest | None = None,
        change_entries: list[GitChangeEntry] | None = None,
        iteration_ids: list[int] | None = None,
        repositories: list[GitRepository] | None = None,
        branch_tip: str | None = "base-sha",
        fail_thread_paths: set[str] | None = None,
        fail_thread_lines: set[int] | None = None,
        read_errors: dict[str, Exception] | None = None,
        read_delay: float = 0.0,
    ) -> None:
        self.contents = {} if contents is None else contents
        self.pull_request = pull_request or GitPullRequest(
            pullRequestId=7,
            title="Add feature",
            isDraft=False,
            sourceRefName="refs/heads/feature/x",
            targetRefName="refs/heads/main",
            repository=GitRepository(id="repo-1", name="repo", webUrl="https://dev.azure.com/org/proj/_git/repo"),
        )
        self.change_entries = [] if change_entries is None else change_entries
        self.iteration_ids = [1] if iteration_ids is None else iteration_ids
        self.repositories = [GitRepository(id="repo-1", name="repo")] if repositories is None else repositories
        self.branch_tip = branch_tip
        self.fail_thread_paths = fail_thread_paths or set()
        self.fail_thread_lines = fail_thread_lines or set()
        self.read_errors = read_errors or {}
        self.read_delay = read_delay
        self.reads_in_flight = 0
        self.peak_reads_in_flight = 0
        self.threads: list[dict[str, object]] = []
        self.pushes: list[dict[str, object]] = []
        self.created_prs: list[dict[str, object]] = []
        self.calls: list[str] = []

    async def list_repositories(self, project: str) -> list[GitRepository]:
        self.calls.append("list_repositories")
        if "list_repositories" in self.read_errors:
            raise self.read_errors["list_repositories"]
        return self.repositories

    async def get_pull_request(self, repo_id: str, pr_id: int, project: str) -> GitPullRequest:
        self.calls.append("get_pull_request")
        if "get_pull_request" in self.read_errors:
            raise self.read_errors["get_pull_request"]
        return self.pull_request

    async def list_pull_request_iterations(self, repo_id: str, pr_id: int, project: str) -> list[GitPullRequestIteration]:
        self.calls.append("list_pull_request_iterations")
        return [GitPullRequestIteration(id=i) for i in self.iteration_ids]

    async def get_iteration_changes(
        self, repo_id: str, pr_id: int, iteration_id: int, project: str
    ) -> GitPullRequestIterationChanges:
        self.calls.append("get_iteration_changes")
        return GitPullRequestIterationChanges(changeEntries=self.change_entries)

    async def get_item_content(self, repo_id: str, path: str, branch: str, project: str) -> str:
        self.calls.append(f"get_item_content:{path}@{branch}")
        self.reads_in_flight += 1
        self.peak_reads_in_flight = max(self.peak_reads_in_flight, self.reads_in_flight)
        try:
            if self.read_delay:
                await anyio.sleep(self.read_delay)
        finally:
            self.reads_in_flight -= 1
        if (path, branch) not in self.contents:
            raise AzureDevOpsApiError(status_code=404, detail=f"{path} not found at {branch}")
        return self.contents[(path, branch)]

    async def create_thread(
        self, repo_id: str, pr_id: int, project: str, file_path: str, line: int, content: str
    ) -> GitCommentThread:
        if file_path in self.fail_thread_paths or line in self.fail_thread_lines:
            raise AzureDevOpsApiError(status_code=500, detail="thread failed")
        self.threads.append({"path": file_path, "line": line, "content": content})
        return GitCommentThread(id=len(self.threads))

    async def get_branch(self, repo_id: str, branch: str, project: str) -> GitBranchStats:
        self.calls.append(f"get_branch:{branch}")
        return GitBranchStats.model_validate({"name": branch, "commit": {"commitId": self.branch_tip}})

    async def create_push(self, repo_id: str, project: str, push: dict[str, object]) -> GitPush:
        self.pushes.append(push)
        return GitPush(pushId=1)

    async def create_pull_request(
        self, repo_id: str, project: str, source_ref: str, target_ref: str, title: str, description: str
    ) -> GitPullRequest:
        self.created_prs.append(
            {"source_ref": source_ref, "target_ref": target_ref, "title": title, "description": description}
        )
        return GitPullRequest(
            pullRequestId=99,
            title=title,
            sourceRefName=source_ref,
            targetRefName=target_ref,
            repository=GitRepository(id=repo_id, name="repo", webUrl="https://dev.azure.com/org/proj/_git/repo"),
        )


Responder = Callable[[Sequence[ChatMessage]], ModelReviewResult]


class FakeLLMClient:
    """按调用顺序返回结果；`delay` 用来模拟慢模型，`error` 用来模拟调用失败。"""

    def __init__(
        self,
        responder: Responder | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self._responder = responder
        self._delay = delay
        self._error = error
        self.calls: list[Sequence[ChatMessage]] = []

    async def complete_json(self, messages: Sequence[ChatMessage], schema: type[BaseModel]) -> BaseModel:
        self.calls.append(messages)
        if self._delay:
            await anyio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        if self._responder is None:
            return ModelReviewResult(comments=[], newContent="")
        return self._responder(messages)
