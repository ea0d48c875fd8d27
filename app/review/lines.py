from __future__ import annotations

import re

_LINE_BREAK = re.compile(r"\r?\n")


def split_lines(content: str) -> list[str]:
    # 空字符串也算一行；末尾换行会产生一个空的最后一行
    return _LINE_BREAK.split(content)


def line_count(content: str) -> int:
    return len(split_lines(content))


def number_lines(content: str) -> str:
    """`"a\\nb"` -> `"1: a\\n2: b"`（1-based）。"""
    return "\n".join(f"{index}: {line}" for index, line in enumerate(split_lines(content), start=1))
