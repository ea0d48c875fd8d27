"""
Review 领域模型（Pydantic）。

用途：
- 明确 pipeline 各阶段输入/输出的数据结构（全部是请求级别，不跨请求存活）
- 作为 LLM JSON 输出的 schema 校验（`ModelReviewResult`）
- 修正 PR 的标题标记 / 分支前缀：publisher 写入、webhook gate 识别，两边共用同一个常量
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# publisher 写、gate 读：改一边必须同时改另一边
CORRECTION_PR_TITLE_MARKER = "[AI Suggested Fixes]"
CORRECTION_BRANCH_PREFIX = "ai-fix/"
COMMENT_PROVENANCE_MARKER = "[AI Review]"
BRANCH_REF_PREFIX = "refs/heads/"


def short_branch_name(ref: str) -> str:
    """`refs/heads/feature/x` -> `feature/x`（非 branch ref 原样返回）。"""
    return ref.removeprefix(BRANCH_REF_PREFIX)


class ReviewRequest(BaseModel):
    """一次 review 的工作单元标识（从 webhook 构造后不可变）。"""

    model_config = ConfigDict(frozen=True)

    organization: str
    project: str
    repository: str
    pull_request_id: int


class PullRequestRef(BaseModel):
    """远端 PR 的快照：只读，只在创建修正 PR 时被引用。"""

    model_config = ConfigDict(frozen=True)

    pull_request_id: int
    title: str
    is_draft: bool
    source_ref: str
    target_ref: str
    description: str = ""
    web_url: str = ""


class ChangedFile(BaseModel):
    """最新 iteration 的单个变更条目；path 是稳定的身份 key。"""

    model_config = ConfigDict(frozen=True)

    path: str
    is_folder: bool = False
    change_type: str = "edit"

    @property
    def is_added(self) -> bool:
        return "add" in _change_kinds(self.change_type)

    @property
    def is_deleted(self) -> bool:
        return "delete" in _change_kinds(self.change_type)


def _change_kinds(change_type: str) -> set[str]:
    return {part.strip().lower() for part in change_type.split(",") if part.strip()}


class FileSnapshot(BaseModel):
    """单个文件的新旧内容（旧=target ref，新=source ref）。任意一侧都可以是空字符串。"""

    path: str
    old_content: str
    new_content: str


class ReviewComment(BaseModel):
    """校验过的单条行内评论：1 <= line_number <= 新文件行数。"""

    model_config = ConfigDict(frozen=True)

    line_number: int = Field(ge=1)
    text: str


class ReviewOutcome(BaseModel):
    """
    单文件 review 的结果（显式的 tagged variant）。

    - reviewed：模型正常返回
    - unchanged：新旧内容一致，没有调用模型
    - failed：超时/网络/解析失败；comments 为空，suggested_content 等于原内容，error 是分类后的短消息
    """

    model_config = ConfigDict(frozen=True)

    status: Literal["reviewed", "unchanged", "failed"]
    comments: tuple[ReviewComment, ...] = ()
    suggested_content: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


class FileCorrection(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    original_content: str
    corrected_content: str


class CorrectionBatch(BaseModel):
    """一次请求里收集到的全部修正；非空时作为一个 commit 原子提交。"""

    corrections: list[FileCorrection] = Field(default_factory=list)

    def add(self, correction: FileCorrection) -> None:
        self.corrections.append(correction)

    @property
    def is_empty(self) -> bool:
        return not self.corrections

    def __len__(self) -> int:
        return len(self.corrections)


class ModelComment(BaseModel):
    """LLM 输出里的单条评论（未校验行号）。行号不是整数时视为 None，后续直接丢弃。"""

    lineNumber: int | None = None
    comment: str = ""

    @field_validator("lineNumber", mode="before")
    @classmethod
    def _coerce_line_number(cls, value: object) -> int | None:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                return None
        return None


class ModelReviewResult(BaseModel):
    """LLM 文件级输出 schema：`{comments: [{lineNumber, comment}], newContent}`。"""

    comments: list[ModelComment] = Field(default_factory=list)
    newContent: str


class FileReport(BaseModel):
    """orchestrator 对单个文件的处理记录（只用于日志与响应摘要）。"""

    path: str
    comments_posted: int = 0
    corrected: bool = False
    skipped: bool = False
    error: str | None = None


class ReviewReport(BaseModel):
    files: list[FileReport] = Field(default_factory=list)
    corrections: int = 0
    correction_pr_url: str | None = None
    correction_error: str | None = None

    def summary(self, create_new_pr: bool) -> str:
        reviewed = sum(1 for f in self.files if not f.skipped)
        skipped = len(self.files) - reviewed
        failed = sum(1 for f in self.files if f.error is not None)
        posted = sum(f.comments_posted for f in self.files)
        head = f"PR review completed: {reviewed} file(s) reviewed, {posted} comment(s) posted, {failed} file(s) failed."
        if skipped:
            head = f"{head} {skipped} deleted file(s) skipped."
        if self.corrections == 0:
            return f"{head} No AI-suggested changes to apply."
        if not create_new_pr:
            return f"{head} AI-suggested changes available for {self.corrections} file(s); set CREATE_NEW_PR=true to apply them."
        if self.correction_pr_url is not None:
            return f"{head} Created correction PR: {self.correction_pr_url}"
        return f"{head} Failed to create correction PR."


WebhookStatus = Literal["accepted", "ignored", "skipped", "rejected", "failed"]


class WebhookResult(BaseModel):
    """一次 webhook 投递的终态（路由层直接转成 HTTP 响应）。"""

    status: WebhookStatus
    message: str
    status_code: int = 200
    kind: str | None = None
    details: dict[str, object] | None = None


def pull_request_web_url(repository_web_url: str | None, pr_id: int | None) -> str | None:
    """Azure DevOps PR 页面地址：`<repo webUrl>/pullrequest/<id>`。"""
    if not repository_web_url or pr_id is None:
        return None
    return f"{repository_web_url.rstrip('/')}/pullrequest/{pr_id}"
