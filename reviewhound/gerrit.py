"""Gerrit change diff and review comment services."""

from __future__ import annotations

import json
import os
import subprocess
import threading
from urllib.parse import quote

import requests

from reviewhound.core import Comment
from reviewhound.serviceutil import git_rel_workdir

STRIP_DIFF_RESULT = 1


class GerritClient:
    """A minimal Gerrit REST API client."""

    def __init__(self, base_url: str, session: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    @staticmethod
    def _decode(resp: requests.Response) -> dict:
        # Responses start with an XSRF-defeating line that must be skipped.
        _, sep, rest = resp.text.partition("\n")
        if not sep:
            raise ValueError("malformed Gerrit response: missing XSRF prefix line")
        return json.loads(rest)

    def get_change_detail(self, change_id: str, fields: list[str] | None = None) -> dict:
        resp = self.session.get(
            f"{self.base_url}/changes/{quote(change_id, safe='')}/detail",
            params={"o": list(fields or [])},
            timeout=30,
        )
        resp.raise_for_status()
        return self._decode(resp)

    def set_review(self, change_id: str, revision_id: str, review: dict) -> dict:
        resp = self.session.post(
            f"{self.base_url}/changes/{quote(change_id, safe='')}"
            f"/revisions/{quote(revision_id, safe='')}/review",
            json=review,
            timeout=30,
        )
        resp.raise_for_status()
        return self._decode(resp)


def _git_output(args: list[str]) -> bytes:
    return subprocess.run(["git", *args], capture_output=True, check=True).stdout


class ChangeDiff:
    """Diff service for a Gerrit change, computed with local git."""

    def __init__(self, cli: GerritClient, branch: str, change_id: str) -> None:
        try:
            workdir = git_rel_workdir()
        except RuntimeError as err:
            raise RuntimeError(f"ChangeDiff needs 'git' command: {err}") from err
        self.cli = cli
        self.branch = branch
        self.change_id = change_id
        self.wd = workdir

    def diff(self) -> bytes:
        """Return the diff of the change's current revision against the branch."""
        change = self.cli.get_change_detail(self.change_id, ["CURRENT_REVISION"])
        return self._git_diff(change.get("current_revision", ""), self.branch)

    @staticmethod
    def _git_diff(base_sha: str, target_sha: str) -> bytes:
        try:
            merge_base = _git_output(["merge-base", target_sha, base_sha]).decode().strip("\n")
        except (subprocess.CalledProcessError, OSError) as err:
            raise RuntimeError(f"failed to get merge-base commit: {err}") from err
        try:
            return _git_output(["diff", "--find-renames", merge_base, base_sha])
        except (subprocess.CalledProcessError, OSError) as err:
            raise RuntimeError(f"failed to run git diff: {err}") from err

    def strip(self) -> int:
        return STRIP_DIFF_RESULT


class ChangeReviewCommenter:
    """Comment service posting to a Gerrit change revision review."""

    def __init__(self, cli: GerritClient, change_id: str, revision_id: str) -> None:
        try:
            workdir = git_rel_workdir()
        except RuntimeError as err:
            raise RuntimeError(f"ChangeReviewCommenter needs 'git' command: {err}") from err
        self.cli = cli
        self.change_id = change_id
        self.revision_id = revision_id
        self.wd = workdir
        self._lock = threading.Lock()
        self._post_comments: list[Comment] = []

    def post(self, comment: Comment) -> None:
        """Hold a comment; flush sends the held comments as one review."""
        location = comment.result.diagnostic.location
        joined = os.path.join(self.wd, location.path) if self.wd else location.path
        location.path = os.path.normpath(joined) if joined else ""
        with self._lock:
            self._post_comments.append(comment)

    def flush(self) -> None:
        with self._lock:
            comments: dict[str, list[dict]] = {}
            for comment in self._post_comments:
                if not comment.result.in_diff_file:
                    continue
                location = comment.result.diagnostic.location
                comments.setdefault(location.path, []).append(
                    {
                        "line": location.range.start.line,
                        "message": comment.result.diagnostic.message,
                    }
                )
            self.cli.set_review(self.change_id, self.revision_id, {"comments": comments})