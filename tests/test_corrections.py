from __future__ import annotations

from app.review.corrections import build_correction
from app.review.corrections import validate_correction
from app.review.models import ReviewOutcome


def test_validate_rejects_blank_content() -> None:
    assert validate_correction("a\n", "") is False
    assert validate_correction("a\n", "  \n\t ") is False
    assert validate_correction("a\n", "b\n") is True


def test_correction_recorded_when_content_differs() -> None:
    outcome = ReviewOutcome(status="reviewed", suggested_content="b\n")
    correction = build_correction("/a.py", "a\n", outcome)

    assert correction is not None
    assert correction.path == "/a.py"
    assert correction.original_content == "a\n"
    assert correction.corrected_content == "b\n"


def test_no_correction_when_content_identical() -> None:
    outcome = ReviewOutcome(status="reviewed", suggested_content="a\n")
    assert build_correction("/a.py", "a\n", outcome) is None


def test_whitespace_suggestion_is_rejected() -> None:
    outcome = ReviewOutcome(status="reviewed", suggested_content="   \n")
    assert build_correction("/a.py", "a\n", outcome) is None


def test_failed_outcome_never_produces_correction() -> None:
    outcome = ReviewOutcome(status="failed", suggested_content="a\n", error="analysis failed")
    assert build_correction("/a.py", "a\n", outcome) is None
