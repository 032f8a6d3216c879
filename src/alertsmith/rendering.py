"""Markdown rendering of extension-authored alert text."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

import markdown

COMMENT_FIELD = "comment"

_LEADING_INDENT = re.compile(r"^[ \t]+", re.MULTILINE)


def render_markdown(text: str) -> str:
    """Convert Markdown to HTML for the preview."""
    return markdown.markdown(text)


def render_comment(text: str) -> str:
    """Render an alert comment.

    Comments are usually written as indented multi-line strings inside the
    extension, so leading indentation is stripped from every line first.
    Otherwise Markdown would turn them into code blocks.
    """
    return render_markdown(_LEADING_INDENT.sub("", text))


def compile_alerts(alerts: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Render the ``comment`` field of every alert that has one.

    Alerts are copied; the input mappings are left untouched.
    """
    compiled = []
    for alert in alerts:
        if isinstance(alert.get(COMMENT_FIELD), str):
            alert = {**alert, COMMENT_FIELD: render_comment(alert[COMMENT_FIELD])}
        compiled.append(alert)
    return compiled
