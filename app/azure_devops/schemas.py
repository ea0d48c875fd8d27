"""
Azure DevOps Webhook / REST response schemas（Pydantic）。

说明：
- 字段名直接沿用 Azure DevOps 的 camelCase，避免再做一层映射
- 字段只覆盖当前闭环需要的子集；多余字段默认忽略
- 远端经常缺字段（例如 PR 没有 description），所以大多是 Optional，
  真正的一致性检查放在 orchestrator 里做（缺了就报 `remote-pr-invalid`）
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class WebhookProject(BaseModel):
    name: str | None = None


class WebhookRepository(BaseModel):
    """Service hook payload 里的 resource.repository 子结构。"""

    id: str | None = None
    name: str | None = None
    remoteUrl: str | None = None
    project: WebhookProject | None = None


class WebhookPullRequestResource(BaseModel):
    """`git.pullrequest.*` 事件的 resource（最小结构）。"""

    pullRequestId: int | None = None
    title: str | None = None
    sourceRefName: str | None = None
    targetRefName: str | None = None
    repository: WebhookRepository | None = None


class PullRequestWebhookEvent(BaseModel):
    """
    Azure DevOps service hook 事件。

    eventType: git.pullrequest.created / git.pullrequest.updated / ...
    """

    eventType: str
    resource: WebhookPullRequestResource


class GitRepository(BaseModel):
    id: str
    name: str
    remoteUrl: str | None = None
    webUrl: str | None = None


class GitRepositoryList(BaseModel):
    value: list[GitRepository] = Field(default_factory=list)


class GitPullRequest(BaseModel):
    """GET/POST pullrequests 的返回结构（子集）。"""

    pullRequestId: int | None = None
    title: str | None = None
    description: str | None = None
    isDraft: bool = False
    sourceRefName: str | None = None
    targetRefName: str | None = None
    url: str | None = None
    repository: GitRepository | None = None


class GitPullRequestIteration(BaseModel):
    id: int | None = None


class GitPullRequestIterationList(BaseModel):
    value: list[GitPullRequestIteration] = Field(default_factory=list)


class GitItem(BaseModel):
    path: str | None = None
    isFolder: bool = False


class GitChangeEntry(BaseModel):
    """iteration changes 里的单个条目。changeType 例如 `add` / `edit` / `delete` / `edit, rename`。"""

    changeType: str | None = None
    item: GitItem | None = None


class GitPullRequestIterationChanges(BaseModel):
    changeEntries: list[GitChangeEntry] = Field(default_factory=list)


class GitCommitRef(BaseModel):
    commitId: str | None = None


class GitBranchStats(BaseModel):
    """GET stats/branches?name=... 的返回结构（只关心 tip commit）。"""

    name: str | None = None
    commit: GitCommitRef | None = None


class GitPush(BaseModel):
    pushId: int | None = None


class GitCommentThread(BaseModel):
    id: int | None = None
