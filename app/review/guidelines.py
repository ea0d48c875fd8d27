"""
Review 规范加载（本地文件或 URL）。

- URL：httpx GET；HTML 页面只保留可见文本
- 本地路径：相对路径按当前工作目录解析
- 任意失败都转成 `GuidelinesUnavailableError`（没有规范就不做 review）
"""

from __future__ import annotations

import logging
from html.parser import HTMLParser
from pathlib import Path

import anyio
import httpx

from app.errors import GuidelinesUnavailableError

logger = logging.getLogger(__name__)

_SKIPPED_TAGS = {"script", "style", "noscript", "head"}


class _TextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__()
        self._skip_depth = 0
        self.chunks: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in _SKIPPED_TAGS:
            self._skip_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag in _SKIPPED_TAGS and self._skip_depth > 0:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if self._skip_depth == 0 and data.strip():
            self.chunks.append(data.strip())


def html_to_text(html: str) -> str:
    extractor = _TextExtractor()
    extractor.feed(html)
    extractor.close()
    return "\n".join(extractor.chunks)


def _is_url(source: str) -> bool:
    return source.startswith("http://") or source.startswith("https://")


async def _load_from_url(source: str, http_client: httpx.AsyncClient) -> str:
    response = await http_client.get(source, follow_redirects=True)
    if response.status_code >= 400:
        raise GuidelinesUnavailableError(f"Failed to load review guidelines: HTTP {response.status_code} from {source}")
    content_type = response.headers.get("content-type", "")
    if "html" in content_type:
        return html_to_text(response.text)
    return response.text


async def _load_from_path(source: str, base_dir: Path | None) -> str:
    path = Path(source)
    if not path.is_absolute():
        path = (base_dir or Path.cwd()) / path
    return await anyio.Path(path).read_text(encoding="utf-8")


async def load_guidelines(source: str, http_client: httpx.AsyncClient, base_dir: Path | None = None) -> str:
    """读取规范文本；空内容同样视为不可用。"""
    try:
        if _is_url(source):
            text = await _load_from_url(source, http_client)
        else:
            text = await _load_from_path(source, base_dir)
    except GuidelinesUnavailableError:
        raise
    except (OSError, UnicodeDecodeError, httpx.HTTPError) as exc:
        logger.error(f"Failed to load guidelines from {source}: {exc}")
        raise GuidelinesUnavailableError(f"Failed to load review guidelines: {exc}") from exc

    if not text.strip():
        raise GuidelinesUnavailableError(f"Failed to load review guidelines: {source} is empty")
    return text
