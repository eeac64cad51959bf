"""Helpers shared by the comment services."""

from __future__ import annotations

import logging

from reviewhound.core import Comment, Severity

logger = logging.getLogger(__name__)

BODY_PREFIX = "<sub>reported by reviewhound :dog:</sub><br>"


class PostedComments:
    """Comments already posted: path to line number to comment bodies."""

    def __init__(self) -> None:
        self._comments: dict[str, dict[int, list[str]]] = {}

    def is_posted(self, comment: Comment, line_num: int, body: str) -> bool:
        """Tell whether a comment with this path, line and body exists."""
        path = comment.result.diagnostic.location.path
        return body in self._comments.get(path, {}).get(line_num, [])

    def add_posted_comment(self, path: str, line_num: int, body: str) -> None:
        self._comments.setdefault(path, {}).setdefault(line_num, []).append(body)

    def debug_log(self) -> None:
        for filename, lines in self._comments.items():
            for line in lines:
                logger.debug("posted: %s:%d", filename, line)


def markdown_comment(comment: Comment) -> str:
    """Build the markdown body of a review comment."""
    diagnostic = comment.result.diagnostic
    parts = []
    mark = _severity_mark(comment)
    if mark:
        parts.append(mark + " ")
    tool = _tool_name(comment)
    if tool:
        parts.append(f"**[{tool}]** ")
    code = diagnostic.code.value
    if code:
        url = diagnostic.code.url
        parts.append(f"<[{code}]({url})> " if url else f"<{code}> ")
    parts.append(BODY_PREFIX)
    parts.append(diagnostic.message)
    return "".join(parts)


def _tool_name(comment: Comment) -> str:
    return comment.result.diagnostic.source.name or comment.tool_name


_SEVERITY_MARKS = {
    Severity.ERROR: "🚫",
    Severity.WARNING: "⚠️",
    Severity.INFO: "📝",
}


def _severity_mark(comment: Comment) -> str:
    return _SEVERITY_MARKS.get(comment.result.diagnostic.severity, "")