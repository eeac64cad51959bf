"""GitHub pull request service: review comments and pull request diffs."""

from __future__ import annotations

import os
import threading
from urllib.parse import parse_qs, urlparse

import requests

from reviewhound.commentutil import PostedComments, markdown_comment
from reviewhound.core import Comment, Suggestion
from reviewhound.githubutils import (
    linked_markdown_diagnostic,
    report_as_github_actions_log,
)
from reviewhound.serviceutil import git_rel_workdir

MAX_COMMENTS_PER_REQUEST = 30
INVALID_SUGGESTION_PRE = "<details><summary>reviewhound suggestion error</summary>"
INVALID_SUGGESTION_POST = "</details>"
DEFAULT_API_URL = "https://api.github.com"


class GitHubClient:
    """A minimal GitHub REST API client for pull request reviews."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        token: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self._headers = {"Accept": "application/vnd.github.v3+json"}
        if token:
            self._headers["Authorization"] = f"token {token}"

    def _request(self, method: str, path: str, *, headers: dict | None = None, **kwargs) -> requests.Response:
        merged = {**self._headers, **(headers or {})}
        resp = self.session.request(
            method, f"{self.base_url}{path}", headers=merged, timeout=30, **kwargs
        )
        resp.raise_for_status()
        return resp

    def list_pull_request_comments(
        self, owner: str, repo: str, pr: int, page: int = 1, per_page: int = 100
    ) -> tuple[list[dict], int]:
        """Return one page of review comments and the next page number (0 if none)."""
        resp = self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls/{pr}/comments",
            params={"page": page, "per_page": per_page},
        )
        next_page = 0
        link = resp.links.get("next")
        if link:
            values = parse_qs(urlparse(link["url"]).query).get("page")
            if values and values[0].isdigit():
                next_page = int(values[0])
        return resp.json(), next_page

    def create_review(self, owner: str, repo: str, pr: int, review: dict) -> dict:
        resp = self._request("POST", f"/repos/{owner}/{repo}/pulls/{pr}/reviews", json=review)
        return resp.json() if resp.content else {}

    def get_pull_request_diff(self, owner: str, repo: str, pr: int) -> bytes:
        resp = self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls/{pr}",
            headers={"Accept": "application/vnd.github.v3.diff"},
        )
        return resp.content


def _join_slash(wd: str, path: str) -> str:
    joined = os.path.join(wd, path) if wd else path
    if not joined:
        return ""
    return os.path.normpath(joined).replace(os.sep, "/")


def _in_github_actions() -> bool:
    return bool(os.environ.get("GITHUB_ACTIONS"))


class PullRequest:
    """Comment and diff service for a GitHub pull request."""

    def __init__(self, cli: GitHubClient, owner: str, repo: str, pr: int, sha: str) -> None:
        try:
            workdir = git_rel_workdir()
        except RuntimeError as err:
            raise RuntimeError(f"PullRequest needs 'git' command: {err}") from err
        self.cli = cli
        self.owner = owner
        self.repo = repo
        self.pr = pr
        self.sha = sha
        self.wd = workdir
        self._lock = threading.Lock()
        self._post_comments: list[Comment] = []
        self._posted = PostedComments()

    def post(self, comment: Comment) -> None:
        """Hold a comment; flush sends the held comments as one review."""
        location = comment.result.diagnostic.location
        location.path = _join_slash(self.wd, location.path)
        with self._lock:
            self._post_comments.append(comment)

    def flush(self) -> None:
        with self._lock:
            self._set_posted_comments()
            self._post_as_review_comment()

    def diff(self) -> bytes:
        return self.cli.get_pull_request_diff(self.owner, self.repo, self.pr)

    def strip(self) -> int:
        return 1

    def _post_as_review_comment(self) -> None:
        drafts: list[dict] = []
        remaining: list[Comment] = []
        for comment in self._post_comments:
            if not comment.result.in_diff_context:
                # The review API cannot report outside the diff; fall back to
                # the Actions log when running there.
                if _in_github_actions():
                    report_as_github_actions_log(
                        comment.tool_name, "warning", comment.result.diagnostic
                    )
                continue
            body = build_body(comment)
            if self._posted.is_posted(comment, _comment_line_range(comment)[1], body):
                continue
            # Limit comments per request to avoid abuse-detection rate limits.
            if len(drafts) >= MAX_COMMENTS_PER_REQUEST:
                remaining.append(comment)
                continue
            drafts.append(_build_draft_review_comment(comment, body))

        if not drafts:
            return
        review = {
            "commit_id": self.sha,
            "event": "COMMENT",
            "comments": drafts,
            "body": self._remaining_comments_summary(remaining),
        }
        self.cli.create_review(self.owner, self.repo, self.pr, review)

    def _remaining_comments_summary(self, remaining: list[Comment]) -> str:
        if not remaining:
            return ""
        per_tool: dict[str, list[Comment]] = {}
        for comment in remaining:
            per_tool.setdefault(comment.tool_name, []).append(comment)
        lines = [
            "Remaining comments which cannot be posted as a review comment "
            "to avoid GitHub Rate Limit\n",
            "\n",
        ]
        for tool, comments in per_tool.items():
            lines.append("<details>\n")
            lines.append(f"<summary>{tool}</summary>\n")
            lines.append("\n")
            for comment in comments:
                lines.append(
                    linked_markdown_diagnostic(
                        self.owner, self.repo, self.sha, comment.result.diagnostic
                    )
                    + "\n"
                )
            lines.append("</details>\n")
        return "".join(lines)

    def _set_posted_comments(self) -> None:
        self._posted = PostedComments()
        for item in self._comments():
            line, path, body = item.get("line"), item.get("path"), item.get("body")
            if line is None or path is None or body is None:
                continue
            self._posted.add_posted_comment(path, line, body)

    def _comments(self) -> list[dict]:
        collected: list[dict] = []
        page = 1
        while True:
            comments, next_page = self.cli.list_pull_request_comments(
                self.owner, self.repo, self.pr, page=page, per_page=100
            )
            collected.extend(comments)
            if next_page == 0:
                return collected
            page = next_page


def _build_draft_review_comment(comment: Comment, body: str) -> dict:
    start_line, end_line = _comment_line_range(comment)
    draft = {
        "path": comment.result.diagnostic.location.path,
        "side": "RIGHT",
        "body": body,
        "line": end_line,
    }
    # The start line must precede the end line.
    if start_line < end_line:
        draft["start_side"] = "RIGHT"
        draft["start_line"] = start_line
    return draft


def _comment_line_range(comment: Comment) -> tuple[int, int]:
    """Return the (start, end) lines the review comment is attached to."""
    result = comment.result
    suggestions = result.diagnostic.suggestions
    if result.first_suggestion_in_diff_context and suggestions:
        rng = suggestions[0].range
    else:
        rng = result.diagnostic.location.range
    start = rng.start.line
    end = rng.end.line or start
    return start, end


def build_body(comment: Comment) -> str:
    """Build the review comment body including any code suggestions."""
    body = markdown_comment(comment)
    suggestions = _build_suggestions(comment)
    if suggestions:
        body += "\n" + suggestions
    return body


def _build_suggestions(comment: Comment) -> str:
    parts = []
    for suggestion in comment.result.diagnostic.suggestions:
        try:
            parts.append(_build_single_suggestion(comment, suggestion) + "\n")
        except ValueError as err:
            parts.append(INVALID_SUGGESTION_PRE + str(err) + INVALID_SUGGESTION_POST + "\n")
    return "".join(parts)


def _build_single_suggestion(comment: Comment, suggestion: Suggestion) -> str:
    start = suggestion.range.start
    end = suggestion.range.end
    start_line = start.line
    end_line = end.line or start_line
    g_start, g_end = _comment_line_range(comment)
    if start_line != g_start or end_line != g_end:
        raise ValueError(
            "GitHub comment range and suggestion line range must be same. "
            f"L{g_start}-L{g_end} v.s. L{start_line}-L{end_line}"
        )
    if start.column > 0 or end.column > 0:
        return _build_non_line_based_suggestion(comment, suggestion)
    text = suggestion.text
    return "```suggestion\n" + (text + "\n" if text else "") + "```"


def _build_non_line_based_suggestion(comment: Comment, suggestion: Suggestion) -> str:
    source_lines = comment.result.source_lines
    if not source_lines:
        raise ValueError("source lines are not available")
    start = suggestion.range.start
    end = suggestion.range.end
    start_content = _source_line(source_lines, start.line)
    end_content = _source_line(source_lines, end.line)
    return (
        "```suggestion\n"
        + start_content[: max(start.column - 1, 0)]
        + suggestion.text
        + end_content[max(end.column - 1, 0):]
        + "\n```"
    )


def _source_line(source_lines: dict[int, str], line: int) -> str:
    try:
        return source_lines[line]
    except KeyError:
        raise ValueError(
            f"source line (L={line}) is not available for this suggestion"
        ) from None