from __future__ import annotations

import pytest

from app.azure_devops.webhook import is_generated_correction_pr
from app.azure_devops.webhook import parse_pull_request_event
from app.azure_devops.webhook import resolve_organization
from app.errors import IgnoredEventError
from app.errors import InvalidPayloadError
from app.errors import MissingConfigurationError


def _payload(**resource: object) -> dict[str, object]:
    base: dict[str, object] = {
        "pullRequestId": 7,
        "title": "Add feature",
        "repository": {
            "name": "repo",
            "remoteUrl": "https://org@dev.azure.com/org/proj/_git/repo",
            "project": {"name": "proj"},
        },
    }
    base.update(resource)
    return {"eventType": "git.pullrequest.created", "resource": base}


@pytest.mark.parametrize("payload", [None, {}, ""])
def test_empty_payload_is_invalid(payload: object) -> None:
    with pytest.raises(InvalidPayloadError):
        parse_pull_request_event(payload)


def test_missing_event_type_is_invalid() -> None:
    with pytest.raises(InvalidPayloadError, match="eventType"):
        parse_pull_request_event({"resource": {"pullRequestId": 1}})


@pytest.mark.parametrize("event_type", ["git.push", "build.complete", "ms.vss-code.git-pullrequest-comment-event"])
def test_non_pr_events_are_ignored(event_type: str) -> None:
    with pytest.raises(IgnoredEventError):
        parse_pull_request_event({"eventType": event_type, "resource": {"anything": True}})


def test_missing_pull_request_id_is_invalid() -> None:
    payload = _payload()
    del payload["resource"]["pullRequestId"]  # type: ignore[attr-defined]
    with pytest.raises(InvalidPayloadError, match="Missing PR information"):
        parse_pull_request_event(payload)


def test_valid_event_parses() -> None:
    event = parse_pull_request_event(_payload())
    assert event.eventType == "git.pullrequest.created"
    assert event.resource.pullRequestId == 7
    assert event.resource.repository is not None
    assert event.resource.repository.name == "repo"


@pytest.mark.parametrize(
    "title",
    [
        "[AI Suggested Fixes] Add feature",
        "[ai suggested fixes] Add feature",
        "Re: [AI Suggested Fixes] Add feature",
    ],
)
def test_generated_titles_are_detected(title: str) -> None:
    assert is_generated_correction_pr(title)


def test_regular_titles_are_not_detected() -> None:
    assert not is_generated_correction_pr("Add feature")
    assert not is_generated_correction_pr(None)


def test_correction_branch_is_detected() -> None:
    assert is_generated_correction_pr("Add feature", "refs/heads/ai-fix/feature-1700000000000")


def test_resolve_organization_from_dev_azure_url() -> None:
    assert resolve_organization("https://org@dev.azure.com/org/proj/_git/repo") == "org"


def test_resolve_organization_from_visualstudio_url() -> None:
    assert resolve_organization("https://contoso.visualstudio.com/proj/_git/repo") == "contoso"


def test_resolve_organization_too_few_segments() -> None:
    with pytest.raises(MissingConfigurationError):
        resolve_organization("https://dev.azure.com/org/repo")


def test_resolve_organization_falls_back_when_url_missing() -> None:
    assert resolve_organization(None, fallback="org") == "org"
    with pytest.raises(MissingConfigurationError):
        resolve_organization(None)
