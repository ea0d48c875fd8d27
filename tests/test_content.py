from __future__ import annotations

import anyio
import pytest
from conftest import FakeAzureDevOpsClient

from app.errors import AzureDevOpsApiError
from app.review.content import ContentFetcher
from app.review.models import ChangedFile
from app.review.models import PullRequestRef

PR = PullRequestRef(
    pull_request_id=7,
    title="t",
    is_draft=False,
    source_ref="refs/heads/feature/x",
    target_ref="refs/heads/main",
)


@pytest.mark.anyio
async def test_fetch_strips_branch_prefix() -> None:
    client = FakeAzureDevOpsClient(contents={("/a.py", "main"): "x\n"})
    content = await ContentFetcher(client).fetch("repo-1", "/a.py", "refs/heads/main", "proj")  # type: ignore[arg-type]
    assert content == "x\n"


@pytest.mark.anyio
async def test_snapshot_reads_both_sides() -> None:
    client = FakeAzureDevOpsClient(contents={("/a.py", "main"): "x\n", ("/a.py", "feature/x"): "y\n"})
    snapshot = await ContentFetcher(client).fetch_snapshot(  # type: ignore[arg-type]
        "repo-1", ChangedFile(path="/a.py"), PR, "proj"
    )
    assert snapshot.old_content == "x\n"
    assert snapshot.new_content == "y\n"


@pytest.mark.anyio
async def test_added_file_has_empty_old_side_without_fetch() -> None:
    client = FakeAzureDevOpsClient(contents={("/new.py", "feature/x"): "y\n"})
    snapshot = await ContentFetcher(client).fetch_snapshot(  # type: ignore[arg-type]
        "repo-1", ChangedFile(path="/new.py", change_type="add"), PR, "proj"
    )
    assert snapshot.old_content == ""
    assert snapshot.new_content == "y\n"
    assert "get_item_content:/new.py@main" not in client.calls


@pytest.mark.anyio
async def test_deleted_file_has_empty_new_side() -> None:
    client = FakeAzureDevOpsClient(contents={("/gone.py", "main"): "x\n"})
    snapshot = await ContentFetcher(client).fetch_snapshot(  # type: ignore[arg-type]
        "repo-1", ChangedFile(path="/gone.py", change_type="delete"), PR, "proj"
    )
    assert snapshot.new_content == ""


@pytest.mark.anyio
async def test_missing_content_propagates() -> None:
    client = FakeAzureDevOpsClient(contents={("/a.py", "feature/x"): "y\n"})
    with pytest.raises(AzureDevOpsApiError):
        await ContentFetcher(client).fetch_snapshot(  # type: ignore[arg-type]
            "repo-1", ChangedFile(path="/a.py", change_type="edit"), PR, "proj"
        )


@pytest.mark.anyio
async def test_snapshot_reads_both_sides_concurrently() -> None:
    client = FakeAzureDevOpsClient(
        contents={("/a.py", "main"): "x\n", ("/a.py", "feature/x"): "y\n"},
        read_delay=0.2,
    )
    started = anyio.current_time()
    snapshot = await ContentFetcher(client).fetch_snapshot(  # type: ignore[arg-type]
        "repo-1", ChangedFile(path="/a.py"), PR, "proj"
    )
    elapsed = anyio.current_time() - started

    assert client.peak_reads_in_flight == 2
    assert elapsed < 0.35
    assert (snapshot.old_content, snapshot.new_content) == ("x\n", "y\n")
