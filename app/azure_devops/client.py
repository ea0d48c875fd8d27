"""
Azure DevOps REST API 客户端（外部系统连接器）。

约定：
- 这里只做“HTTP 调用 + 错误处理 + schema 校验”，不做业务决策。
- 发生错误时**直接抛错**（`AzureDevOpsApiError`），不要吞异常；是否收敛由 orchestrator 决定。
- 不做重试：重试策略属于更外层（或 httpx transport）的职责。
"""

from __future__ import annotations

import base64
from urllib.parse import quote

import httpx

from app.azure_devops.schemas import GitBranchStats
from app.azure_devops.schemas import GitCommentThread
from app.azure_devops.schemas import GitPullRequest
from app.azure_devops.schemas import GitPullRequestIteration
from app.azure_devops.schemas import GitPullRequestIterationChanges
from app.azure_devops.schemas import GitPullRequestIterationList
from app.azure_devops.schemas import GitPush
from app.azure_devops.schemas import GitRepository
from app.azure_devops.schemas import GitRepositoryList
from app.errors import AzureDevOpsApiError

API_VERSION = "7.1"


class AzureDevOpsClient:
    """最小 Azure DevOps Git API client（一个 organization 一个实例）。"""

    def __init__(self, base_url: str, organization: str, token: str, http_client: httpx.AsyncClient) -> None:
        """
        - base_url: 例如 `https://dev.azure.com`（不包含末尾 /）
        - organization: 从 repository remoteUrl 解析出来的 organization
        - token: PAT（建议用专用服务账号）
        - http_client: 复用的 httpx.AsyncClient
        """
        self._base_url = base_url.rstrip("/")
        self._organization = organization
        self._token = token
        self._http_client = http_client

    @property
    def organization(self) -> str:
        return self._organization

    def _headers(self) -> dict[str, str]:
        """PAT 走 basic auth：用户名留空，密码为 PAT。"""
        encoded = base64.b64encode(f":{self._token}".encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {encoded}", "Accept": "application/json"}

    def _git_url(self, project: str, suffix: str) -> str:
        return f"{self._base_url}/{quote(self._organization)}/{quote(project)}/_apis/git/{suffix}"

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise AzureDevOpsApiError(status_code=response.status_code, detail=response.text)

    async def _get_json(self, url: str, params: dict[str, str] | None = None) -> object:
        query = {"api-version": API_VERSION, **(params or {})}
        response = await self._http_client.get(url, headers=self._headers(), params=query)
        self._raise_for_status(response)
        return response.json()

    async def _post_json(self, url: str, payload: dict[str, object]) -> object:
        response = await self._http_client.post(
            url,
            headers=self._headers(),
            params={"api-version": API_VERSION},
            json=payload,
        )
        self._raise_for_status(response)
        return response.json()

    async def list_repositories(self, project: str) -> list[GitRepository]:
        data = await self._get_json(self._git_url(project, "repositories"))
        return GitRepositoryList.model_validate(data).value

    async def get_pull_request(self, repo_id: str, pr_id: int, project: str) -> GitPullRequest:
        data = await self._get_json(self._git_url(project, f"repositories/{repo_id}/pullrequests/{pr_id}"))
        return GitPullRequest.model_validate(data)

    async def list_pull_request_iterations(
        self, repo_id: str, pr_id: int, project: str
    ) -> list[GitPullRequestIteration]:
        data = await self._get_json(self._git_url(project, f"repositories/{repo_id}/pullRequests/{pr_id}/iterations"))
        return GitPullRequestIterationList.model_validate(data).value

    async def get_iteration_changes(
        self, repo_id: str, pr_id: int, iteration_id: int, project: str
    ) -> GitPullRequestIterationChanges:
        url = self._git_url(project, f"repositories/{repo_id}/pullRequests/{pr_id}/iterations/{iteration_id}/changes")
        data = await self._get_json(url)
        return GitPullRequestIterationChanges.model_validate(data)

    async def get_item_content(self, repo_id: str, path: str, branch: str, project: str) -> str:
        """
        读取某个分支上的文件原文。

        - branch 必须是短名（`main`，不是 `refs/heads/main`）
        - 文件不存在时远端返回 404，这里照常抛 `AzureDevOpsApiError`
        """
        response = await self._http_client.get(
            self._git_url(project, f"repositories/{repo_id}/items"),
            headers=self._headers(),
            params={
                "api-version": API_VERSION,
                "path": path,
                "versionDescriptor.version": branch,
                "versionDescriptor.versionType": "branch",
                "$format": "octetStream",
            },
        )
        self._raise_for_status(response)
        return response.text

    async def create_thread(
        self,
        repo_id: str,
        pr_id: int,
        project: str,
        file_path: str,
        line: int,
        content: str,
    ) -> GitCommentThread:
        """在 PR 的右侧（新版本）某一行创建一个独立的评论 thread。"""
        payload: dict[str, object] = {
            "comments": [{"parentCommentId": 0, "content": content, "commentType": "text"}],
            "status": "active",
            "threadContext": {
                "filePath": file_path,
                "rightFileStart": {"line": line, "offset": 1},
                "rightFileEnd": {"line": line, "offset": 1},
            },
        }
        data = await self._post_json(self._git_url(project, f"repositories/{repo_id}/pullRequests/{pr_id}/threads"), payload)
        return GitCommentThread.model_validate(data)

    async def get_branch(self, repo_id: str, branch: str, project: str) -> GitBranchStats:
        data = await self._get_json(self._git_url(project, f"repositories/{repo_id}/stats/branches"), {"name": branch})
        return GitBranchStats.model_validate(data)

    async def create_push(self, repo_id: str, project: str, push: dict[str, object]) -> GitPush:
        """一次 push 同时完成：新建 ref + 提交一个 commit（原子操作）。"""
        data = await self._post_json(self._git_url(project, f"repositories/{repo_id}/pushes"), push)
        return GitPush.model_validate(data)

    async def create_pull_request(
        self,
        repo_id: str,
        project: str,
        source_ref: str,
        target_ref: str,
        title: str,
        description: str,
    ) -> GitPullRequest:
        payload: dict[str, object] = {
            "sourceRefName": source_ref,
            "targetRefName": target_ref,
            "title": title,
            "description": description,
        }
        data = await self._post_json(self._git_url(project, f"repositories/{repo_id}/pullrequests"), payload)
        return GitPullRequest.model_validate(data)
