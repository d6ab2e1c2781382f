"""Render-time formatting of raw message text.

Stored messages always hold raw text; these helpers only shape it for display.
"""

from __future__ import annotations

import re

from rich.syntax import Syntax
from rich.text import Text

_FENCE_RE = re.compile(r"```(?:(?P<lang>[^\n`]*)\n)?(?P<code>.*?)```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")

INLINE_CODE_STYLE = "bold magenta"


def split_message(text: str) -> list[tuple[str, str | None]]:
    """Split *text* into alternating prose and fenced code segments.

    Returns ``(content, lang)`` tuples where ``lang`` is ``None`` for prose
    and the fence language (possibly empty) for code blocks.
    """
    segments: list[tuple[str, str | None]] = []
    cursor = 0
    for match in _FENCE_RE.finditer(text):
        start, end = match.span()
        if start > cursor:
            prose = text[cursor:start]
            if prose.strip():
                segments.append((prose, None))
        segments.append((match.group("code"), (match.group("lang") or "").strip()))
        cursor = end
    tail = text[cursor:]
    if tail.strip():
        segments.append((tail, None))
    return segments


def render_prose(text: str) -> Text:
    """Render prose with inline code highlighted; newlines are kept as breaks."""
    rendered = Text()
    cursor = 0
    for match in _INLINE_CODE_RE.finditer(text):
        rendered.append(text[cursor : match.start()])
        rendered.append(match.group(1), style=INLINE_CODE_STYLE)
        cursor = match.end()
    rendered.append(text[cursor:])
    return rendered


def render_segments(text: str) -> list[Text | Syntax]:
    """Render *text* into a list of Rich renderables, one per segment."""
    renderables: list[Text | Syntax] = []
    for content, lang in split_message(text):
        if lang is None:
            renderables.append(render_prose(content.strip("\n")))
        else:
            renderables.append(
                Syntax(
                    content.rstrip("\n"),
                    lang or "text",
                    theme="monokai",
                    line_numbers=False,
                    word_wrap=True,
                )
            )
    return renderables
