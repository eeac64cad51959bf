"""GitLab merge request services: commit comments, discussions and diffs."""

from __future__ import annotations

import os
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable
from urllib.parse import quote

import requests

from reviewhound.commentutil import PostedComments, markdown_comment
from reviewhound.core import Comment
from reviewhound.serviceutil import git_rel_workdir

DEFAULT_API_URL = "https://gitlab.com/api/v4"
_MAX_WORKERS = 8


class GitLabClient:
    """A minimal GitLab REST API (v4) client."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        token: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self._headers: dict[str, str] = {}
        if token:
            self._headers["PRIVATE-TOKEN"] = token

    @staticmethod
    def _project(project: str | int) -> str:
        return quote(str(project), safe="")

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        resp = self.session.request(
            method, f"{self.base_url}{path}", headers=self._headers, timeout=30, **kwargs
        )
        resp.raise_for_status()
        return resp

    def get_merge_request(self, project: str | int, mr: int) -> dict:
        return self._request(
            "GET", f"/projects/{self._project(project)}/merge_requests/{mr}"
        ).json()

    def get_branch(self, project: str | int, branch: str) -> dict:
        return self._request(
            "GET",
            f"/projects/{self._project(project)}/repository/branches/{quote(branch, safe='')}",
        ).json()

    def get_merge_request_commits(self, project: str | int, mr: int) -> list[dict]:
        return self._request(
            "GET", f"/projects/{self._project(project)}/merge_requests/{mr}/commits"
        ).json()

    def get_commit_comments(self, project: str | int, sha: str) -> list[dict]:
        return self._request(
            "GET",
            f"/projects/{self._project(project)}/repository/commits/{quote(sha, safe='')}/comments",
        ).json()

    def post_commit_comment(self, project: str | int, sha: str, comment: dict) -> dict:
        resp = self._request(
            "POST",
            f"/projects/{self._project(project)}/repository/commits/{quote(sha, safe='')}/comments",
            json=comment,
        )
        return resp.json() if resp.content else {}

    def list_merge_request_discussions(
        self, project: str | int, mr: int, page: int = 1, per_page: int = 100
    ) -> tuple[list[dict], int]:
        """Return one page of discussions and the next page number (0 if none)."""
        resp = self._request(
            "GET",
            f"/projects/{self._project(project)}/merge_requests/{mr}/discussions",
            params={"page": page, "per_page": per_page},
        )
        next_header = resp.headers.get("X-Next-Page", "").strip()
        next_page = int(next_header) if next_header.isdigit() else 0
        return resp.json(), next_page

    def create_merge_request_discussion(
        self, project: str | int, mr: int, discussion: dict
    ) -> dict:
        resp = self._request(
            "POST",
            f"/projects/{self._project(project)}/merge_requests/{mr}/discussions",
            json=discussion,
        )
        return resp.json() if resp.content else {}


def _join_slash(wd: str, path: str) -> str:
    joined = os.path.join(wd, path) if wd else path
    if not joined:
        return ""
    return os.path.normpath(joined).replace(os.sep, "/")


def _workdir(service: str) -> str:
    try:
        return git_rel_workdir()
    except RuntimeError as err:
        raise RuntimeError(f"{service} needs 'git' command: {err}") from err


def _run_all(tasks: list[Callable[[], Any]]) -> None:
    """Run tasks concurrently, wait for all, and raise the first error."""
    if not tasks:
        return
    with ThreadPoolExecutor(max_workers=min(len(tasks), _MAX_WORKERS)) as pool:
        futures = [pool.submit(task) for task in tasks]
    for future in futures:
        err = future.exception()
        if err is not None:
            raise err


def _git_output(args: list[str]) -> bytes:
    return subprocess.run(["git", *args], capture_output=True, check=True).stdout


def _git_diff(base_sha: str, target_sha: str) -> bytes:
    try:
        merge_base = _git_output(["merge-base", target_sha, base_sha]).decode().strip("\n")
    except (subprocess.CalledProcessError, OSError) as err:
        raise RuntimeError(f"failed to get merge-base commit: {err}") from err
    try:
        return _git_output(["diff", "--find-renames", merge_base, base_sha])
    except (subprocess.CalledProcessError, OSError) as err:
        raise RuntimeError(f"failed to run git diff: {err}") from err


class _HeldComments:
    """Holds comments until flush, rewriting paths relative to the repo root."""

    def __init__(self, wd: str) -> None:
        self.wd = wd
        self._lock = threading.Lock()
        self._post_comments: list[Comment] = []

    def _hold(self, comment: Comment) -> None:
        location = comment.result.diagnostic.location
        location.path = _join_slash(self.wd, location.path)
        with self._lock:
            self._post_comments.append(comment)


class MergeRequestCommitCommenter(_HeldComments):
    """Comment service posting commit comments for a GitLab merge request."""

    def __init__(self, cli: GitLabClient, owner: str, repo: str, pr: int, sha: str) -> None:
        super().__init__(_workdir("MergeRequestCommitCommenter"))
        self.cli = cli
        self.pr = pr
        self.sha = sha
        self.projects = f"{owner}/{repo}"
        self._posted = PostedComments()

    def post(self, comment: Comment) -> None:
        """Hold a comment; flush sends the held comments."""
        self._hold(comment)

    def flush(self) -> None:
        with self._lock:
            self._set_posted_comments()
            self._post_comments_for_each()

    def _post_comments_for_each(self) -> None:
        tasks = []
        for comment in self._post_comments:
            location = comment.result.diagnostic.location
            lnum = location.range.start.line
            body = markdown_comment(comment)
            if (
                not comment.result.in_diff_file
                or lnum == 0
                or self._posted.is_posted(comment, lnum, body)
            ):
                continue
            tasks.append(partial(self._post_one, location.path, lnum, body))
        _run_all(tasks)

    def _post_one(self, path: str, lnum: int, body: str) -> None:
        try:
            commit_id = self._last_commit_id(path, lnum)
        except RuntimeError:
            commit_id = self.sha
        self.cli.post_commit_comment(
            self.projects,
            commit_id,
            {"note": body, "path": path, "line": lnum, "line_type": "new"},
        )

    @staticmethod
    def _last_commit_id(path: str, line: int) -> str:
        try:
            out = _git_output(["blame", "-l", "-L", f"{line},{line}", path])
        except (subprocess.CalledProcessError, OSError) as err:
            raise RuntimeError(f"failed to get commitID: {err}") from err
        return out.decode().split(" ")[0]

    def _set_posted_comments(self) -> None:
        self._posted = PostedComments()
        for item in self._comments():
            line, path, note = item.get("line") or 0, item.get("path") or "", item.get("note") or ""
            # Skip resolved comments and those without path or body.
            if not line or not path or not note:
                continue
            self._posted.add_posted_comment(path, line, note)

    def _comments(self) -> list[dict]:
        commits = self.cli.get_merge_request_commits(self.projects, self.pr)
        collected: list[dict] = []
        for commit in commits:
            try:
                collected.extend(self.cli.get_commit_comments(self.projects, commit["id"]))
            except requests.RequestException:
                continue
        return collected


class MergeRequestDiff:
    """Diff service for a GitLab merge request, computed with local git."""

    def __init__(self, cli: GitLabClient, owner: str, repo: str, pr: int, sha: str) -> None:
        self.wd = _workdir("MergeRequestDiff")
        self.cli = cli
        self.pr = pr
        self.sha = sha
        self.projects = f"{owner}/{repo}"

    def diff(self) -> bytes:
        """Return the diff of sha against the merge request's target branch.

        The diff is computed locally so that renames are detected.
        """
        mr = self.cli.get_merge_request(self.projects, self.pr)
        target = self.cli.get_branch(mr["target_project_id"], mr["target_branch"])
        return _git_diff(self.sha, target["commit"]["id"])

    def strip(self) -> int:
        return 1


class MergeRequestDiscussionCommenter(_HeldComments):
    """Comment service posting discussions on a GitLab merge request."""

    def __init__(self, cli: GitLabClient, owner: str, repo: str, pr: int, sha: str) -> None:
        super().__init__(_workdir("MergeRequestDiscussionCommenter"))
        self.cli = cli
        self.pr = pr
        self.sha = sha
        self.projects = f"{owner}/{repo}"

    def post(self, comment: Comment) -> None:
        """Hold a comment; flush sends the held comments."""
        self._hold(comment)

    def flush(self) -> None:
        with self._lock:
            try:
                posted = self._create_posted_comments()
            except Exception as err:
                raise RuntimeError(f"failed to create posted comments: {err}") from err
            self._post_comments_for_each(posted)

    def _create_posted_comments(self) -> PostedComments:
        posted = PostedComments()
        try:
            discussions = self._all_discussions()
        except Exception as err:
            raise RuntimeError(
                f"failed to list all merge request discussions: {err}"
            ) from err
        for discussion in discussions:
            for note in discussion.get("notes") or []:
                pos = note.get("position")
                body = note.get("body") or ""
                if not pos or not pos.get("new_path") or not pos.get("new_line") or not body:
                    continue
                posted.add_posted_comment(pos["new_path"], pos["new_line"], body)
        return posted

    def _all_discussions(self) -> list[dict]:
        collected: list[dict] = []
        page = 1
        while True:
            discussions, next_page = self.cli.list_merge_request_discussions(
                self.projects, self.pr, page=page, per_page=100
            )
            collected.extend(discussions)
            if next_page == 0:
                return collected
            page = next_page

    def _post_comments_for_each(self, posted: PostedComments) -> None:
        try:
            mr = self.cli.get_merge_request(self.projects, self.pr)
        except Exception as err:
            raise RuntimeError(f"failed to get merge request: {err}") from err
        target = self.cli.get_branch(mr["target_project_id"], mr["target_branch"])
        target_sha = target["commit"]["id"]

        tasks = []
        for comment in self._post_comments:
            location = comment.result.diagnostic.location
            lnum = location.range.start.line
            body = markdown_comment(comment)
            if (
                not comment.result.in_diff_file
                or lnum == 0
                or posted.is_posted(comment, lnum, body)
            ):
                continue
            position = {
                "start_sha": target_sha,
                "head_sha": self.sha,
                "base_sha": target_sha,
                "position_type": "text",
                "new_path": location.path,
                "new_line": lnum,
            }
            if comment.result.old_path and comment.result.old_line:
                position["old_path"] = comment.result.old_path
                position["old_line"] = comment.result.old_line
            tasks.append(partial(self._create, {"body": body, "position": position}))
        _run_all(tasks)

    def _create(self, discussion: dict) -> None:
        try:
            self.cli.create_merge_request_discussion(self.projects, self.pr, discussion)
        except Exception as err:
            raise RuntimeError(f"failed to create merge request discussion: {err}") from err