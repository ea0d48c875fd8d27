"""
Correction 收集与校验。

只有当模型给出的全文与原内容不同、且通过校验时才记录修正。
目前的校验只拒绝“清空文件”式的修正；语法检查等更严格的规则可以在 `validate_correction` 里追加。
"""

from __future__ import annotations

from app.review.models import FileCorrection
from app.review.models import ReviewOutcome


def validate_correction(original: str, corrected: str) -> bool:
    if not corrected.strip():
        return False
    return True


def build_correction(path: str, original_content: str, outcome: ReviewOutcome) -> FileCorrection | None:
    """失败的 review 不产生修正（其 suggested_content 就是原内容）。"""
    if not outcome.ok:
        return None
    suggested = outcome.suggested_content
    if suggested == original_content:
        return None
    if not validate_correction(original_content, suggested):
        return None
    return FileCorrection(path=path, original_content=original_content, corrected_content=suggested)
