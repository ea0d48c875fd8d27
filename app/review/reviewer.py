"""
文件级 Review Engine（基于 review 规范 + 带行号的新旧全文）。

约定：
- 新旧内容一致：直接返回 unchanged，不调用模型
- 模型调用受固定超时约束（默认 25s），超时只影响当前文件
- 任何失败都以 `ReviewOutcome(status="failed")` 返回，**不会**抛出到文件循环之外；
  对外的 error 只是分类后的短消息，完整细节只进日志
- 行号按新版本的行数校验，越界评论直接丢弃
"""

from __future__ import annotations

import logging

import anyio
import httpx
from openai import APIConnectionError

from app.config import DEFAULT_REVIEW_TIMEOUT_SECONDS
from app.llm.client import ChatMessage
from app.llm.client import LLMClient
from app.review.lines import line_count
from app.review.lines import number_lines
from app.review.models import ModelComment
from app.review.models import ModelReviewResult
from app.review.models import ReviewComment
from app.review.models import ReviewOutcome

logger = logging.getLogger(__name__)

ERROR_TIMED_OUT = "request timed out"
ERROR_NETWORK = "network failure reaching model service"
ERROR_ANALYSIS_FAILED = "analysis failed"


def _system_prompt() -> str:
    """system prompt：强制 JSON-only 输出。"""
    return (
        "You are a senior code reviewer. "
        "Respond with a single strict JSON object only: no markdown, no explanations."
    )


def build_review_prompt(guidelines: str, numbered_old: str, numbered_new: str) -> str:
    """user prompt：规范 + 带行号的新旧版本 + 输出格式约束。"""
    return (
        "Follow these code review guidelines:\n"
        f"{guidelines}\n\n"
        "ANALYZE THESE CHANGES:\n"
        "- OLD VERSION (numbered):\n"
        f"{numbered_old}\n\n"
        "- NEW VERSION (numbered):\n"
        f"{numbered_new}\n\n"
        "INSTRUCTIONS:\n"
        "1. Only comment on changed lines\n"
        "2. Use EXACT line numbers from NEW VERSION\n"
        "3. Reference guidelines like: [Guideline X]\n"
        "4. Generate corrected version of the FULL FILE\n"
        "5. Maintain original code structure where possible\n\n"
        "RESPONSE FORMAT (JSON):\n"
        '{"comments": [{"lineNumber": <ACTUAL_NEW_LINE_NUMBER>, "comment": "[Guideline] - <TEXT>"}], '
        '"newContent": "<FULL_CORRECTED_CODE_WITHOUT_LINE_NUMBERS>"}\n\n'
        "EXAMPLE:\n"
        '{"comments": [{"lineNumber": 42, "comment": "[Security 3.1] - Fix SQL injection risk"}], '
        '"newContent": "function safe() {\\n  // fixed code\\n}"}\n'
    )


def clamp_comments(comments: list[ModelComment], new_line_count: int) -> list[ReviewComment]:
    """
    先把行号夹到 [1, new_line_count]，再要求夹完后的值与原值相同。

    效果：只有原本就在范围内的评论会保留；0、负数、超出末行、非整数一律丢弃，保持原有顺序。
    """
    kept: list[ReviewComment] = []
    for c in comments:
        if c.lineNumber is None:
            continue
        clamped = min(max(1, c.lineNumber), new_line_count)
        if clamped != c.lineNumber:
            logger.info(f"Dropping comment with out-of-range line {c.lineNumber} (file has {new_line_count} lines)")
            continue
        kept.append(ReviewComment(line_number=clamped, text=c.comment))
    return kept


def classify_model_error(exc: BaseException) -> str:
    if isinstance(exc, TimeoutError):
        return ERROR_TIMED_OUT
    if isinstance(exc, (APIConnectionError, httpx.ConnectError, httpx.TimeoutException, ConnectionRefusedError)):
        return ERROR_NETWORK
    return ERROR_ANALYSIS_FAILED


async def review_file(
    llm_client: LLMClient,
    old_content: str,
    new_content: str,
    path: str,
    guidelines: str,
    timeout_seconds: float = DEFAULT_REVIEW_TIMEOUT_SECONDS,
) -> ReviewOutcome:
    """对单个文件做一次 review，永远返回 `ReviewOutcome`（失败也是值）。"""
    if old_content == new_content:
        return ReviewOutcome(status="unchanged", suggested_content=new_content)

    messages = [
        ChatMessage(role="system", content=_system_prompt()),
        ChatMessage(
            role="user",
            content=build_review_prompt(
                guidelines=guidelines,
                numbered_old=number_lines(old_content),
                numbered_new=number_lines(new_content),
            ),
        ),
    ]

    try:
        with anyio.fail_after(timeout_seconds):
            result = await llm_client.complete_json(messages=messages, schema=ModelReviewResult)
        if not isinstance(result, ModelReviewResult):
            raise TypeError("LLM file review did not validate to ModelReviewResult")
    except Exception as exc:
        error = classify_model_error(exc)
        logger.error(f"AI analysis failed for {path}: {error}", exc_info=exc)
        return ReviewOutcome(status="failed", suggested_content=new_content, error=error)

    comments = clamp_comments(result.comments, line_count(new_content))
    logger.info(f"AI analysis for {path}: {len(comments)}/{len(result.comments)} comment(s) kept")
    return ReviewOutcome(status="reviewed", comments=tuple(comments), suggested_content=result.newContent)
