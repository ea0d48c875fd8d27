from __future__ import annotations

import base64
import json

import httpx
import pytest

from app.azure_devops.client import AzureDevOpsClient
from app.errors import AzureDevOpsApiError


def _client(handler: httpx.MockTransport) -> AzureDevOpsClient:
    return AzureDevOpsClient(
        base_url="https://dev.azure.com/",
        organization="org",
        token="pat",
        http_client=httpx.AsyncClient(transport=handler),
    )


@pytest.mark.anyio
async def test_list_repositories_uses_basic_auth_and_api_version() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"count": 1, "value": [{"id": "r1", "name": "repo"}]})

    repos = await _client(httpx.MockTransport(handler)).list_repositories("My Project")

    assert [r.id for r in repos] == ["r1"]
    request = seen[0]
    assert request.url.path == "/org/My Project/_apis/git/repositories"
    assert request.url.params["api-version"] == "7.1"
    expected = base64.b64encode(b":pat").decode("ascii")
    assert request.headers["Authorization"] == f"Basic {expected}"


@pytest.mark.anyio
async def test_get_item_content_uses_branch_descriptor() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="print('hi')\n")

    content = await _client(httpx.MockTransport(handler)).get_item_content("r1", "/src/a.py", "main", "proj")

    assert content == "print('hi')\n"
    params = seen[0].url.params
    assert params["path"] == "/src/a.py"
    assert params["versionDescriptor.version"] == "main"
    assert params["versionDescriptor.versionType"] == "branch"


@pytest.mark.anyio
async def test_http_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="not found")

    with pytest.raises(AzureDevOpsApiError) as exc_info:
        await _client(httpx.MockTransport(handler)).get_item_content("r1", "/missing.py", "main", "proj")
    assert exc_info.value.http_status == 404


@pytest.mark.anyio
async def test_create_thread_anchors_right_file_line() -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        assert request.url.path == "/org/proj/_apis/git/repositories/r1/pullRequests/7/threads"
        return httpx.Response(200, json={"id": 3})

    thread = await _client(httpx.MockTransport(handler)).create_thread(
        repo_id="r1", pr_id=7, project="proj", file_path="/a.py", line=4, content="[AI Review] hi"
    )

    assert thread.id == 3
    body = bodies[0]
    assert body["comments"] == [{"parentCommentId": 0, "content": "[AI Review] hi", "commentType": "text"}]
    assert body["threadContext"] == {
        "filePath": "/a.py",
        "rightFileStart": {"line": 4, "offset": 1},
        "rightFileEnd": {"line": 4, "offset": 1},
    }


@pytest.mark.anyio
async def test_iterations_and_changes_are_validated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/iterations"):
            return httpx.Response(200, json={"value": [{"id": 1}, {"id": 2}]})
        return httpx.Response(
            200,
            json={
                "changeEntries": [
                    {"changeType": "edit", "item": {"path": "/a.py"}},
                    {"changeType": "add", "item": {"path": "/dir", "isFolder": True}},
                ]
            },
        )

    client = _client(httpx.MockTransport(handler))
    iterations = await client.list_pull_request_iterations("r1", 7, "proj")
    changes = await client.get_iteration_changes("r1", 7, 2, "proj")

    assert [i.id for i in iterations] == [1, 2]
    assert changes.changeEntries[1].item is not None
    assert changes.changeEntries[1].item.isFolder is True


@pytest.mark.anyio
async def test_get_branch_returns_tip_commit() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["name"] == "feature/x"
        return httpx.Response(200, json={"name": "feature/x", "commit": {"commitId": "abc"}})

    branch = await _client(httpx.MockTransport(handler)).get_branch("r1", "feature/x", "proj")
    assert branch.commit is not None
    assert branch.commit.commitId == "abc"


@pytest.mark.anyio
async def test_create_push_posts_payload_to_pushes() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"pushId": 12})

    push = {
        "refUpdates": [{"name": "refs/heads/ai-fix/x-1", "oldObjectId": "0" * 40}],
        "commits": [{"comment": "m", "changes": [], "parents": ["abc"]}],
    }
    result = await _client(httpx.MockTransport(handler)).create_push("r1", "proj", push)

    assert result.pushId == 12
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/org/proj/_apis/git/repositories/r1/pushes"
    assert request.url.params["api-version"] == "7.1"
    assert json.loads(request.content) == push


@pytest.mark.anyio
async def test_create_pull_request_posts_refs_and_title() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            201,
            json={
                "pullRequestId": 99,
                "sourceRefName": "refs/heads/ai-fix/x-1",
                "targetRefName": "refs/heads/main",
                "title": "[AI Suggested Fixes] t",
            },
        )

    created = await _client(httpx.MockTransport(handler)).create_pull_request(
        repo_id="r1",
        project="proj",
        source_ref="refs/heads/ai-fix/x-1",
        target_ref="refs/heads/main",
        title="[AI Suggested Fixes] t",
        description="d",
    )

    assert created.pullRequestId == 99
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/org/proj/_apis/git/repositories/r1/pullrequests"
    assert json.loads(request.content) == {
        "sourceRefName": "refs/heads/ai-fix/x-1",
        "targetRefName": "refs/heads/main",
        "title": "[AI Suggested Fixes] t",
        "description": "d",
    }
