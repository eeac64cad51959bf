"""Comment service publishing findings as Bitbucket Code Insights reports."""

from __future__ import annotations

import contextlib
import dataclasses
import hashlib
import json
import os
import threading

from reviewhound.bitbucket import (
    ANNOTATION_SEVERITY_HIGH,
    ANNOTATION_SEVERITY_LOW,
    ANNOTATION_SEVERITY_MEDIUM,
    ANNOTATION_TYPE_CODE_SMELL,
    REPORT_RESULT_FAILED,
    REPORT_RESULT_PASSED,
    REPORT_RESULT_PENDING,
    REPORT_TYPE_BUG,
    APIClient,
    BitbucketAPIError,
)
from reviewhound.core import Comment, Diagnostic, Severity

REPORTER = "reviewhound"
# Maximum number of annotations sent in one batch call.
ANNOTATIONS_BATCH_SIZE = 100

_SEVERITY_MAP = {
    Severity.INFO: ANNOTATION_SEVERITY_LOW,
    Severity.WARNING: ANNOTATION_SEVERITY_MEDIUM,
    Severity.ERROR: ANNOTATION_SEVERITY_HIGH,
}


def report_id(*args: str) -> str:
    """Build a report id from its parts."""
    return "-".join(args).lower().replace(" ", "_")


def report_title(tool: str, reporter: str) -> str:
    return f"[{tool}] {reporter} report"


def external_id_from_diagnostic(diagnostic: Diagnostic) -> str:
    """Hash the diagnostic content into a stable annotation id."""
    try:
        data = json.dumps(
            dataclasses.asdict(diagnostic), sort_keys=True, ensure_ascii=False, default=str
        ).encode("utf-8")
    except (TypeError, ValueError):
        data = diagnostic.original_output.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def _join_slash(wd: str, path: str) -> str:
    joined = os.path.join(wd, path) if wd else path
    if not joined:
        return ""
    return os.path.normpath(joined).replace(os.sep, "/")


class ReportAnnotator:
    """Holds findings per tool and publishes one report per tool on flush."""

    def __init__(
        self, cli: APIClient, owner: str, repo: str, sha: str, runners: list[str] | None = None
    ) -> None:
        self.cli = cli
        self.owner = owner
        self.repo = repo
        self.sha = sha
        self.wd = ""
        self._lock = threading.Lock()
        self._annotations: dict[str, list[dict]] = {}
        self._seen: set[str] = set()
        # Known runners get a report even when they report nothing, so that
        # a passed report shows up for them.
        for runner in runners or []:
            if not runner:
                continue
            self._annotations[runner] = []
            with contextlib.suppress(BitbucketAPIError):
                self._create_or_update_report(
                    report_id(runner, REPORTER),
                    report_title(runner, REPORTER),
                    REPORT_RESULT_PENDING,
                )

    def post(self, comment: Comment) -> None:
        """Hold a comment; flush publishes the held comments."""
        location = comment.result.diagnostic.location
        location.path = _join_slash(self.wd, location.path)
        with self._lock:
            annotation = self._annotation(comment)
            # Some tools report the same finding twice and the API rejects
            # duplicated external ids.
            ext_id = annotation["external_id"]
            if ext_id not in self._seen:
                self._annotations.setdefault(comment.tool_name, []).append(annotation)
            self._seen.add(ext_id)

    def flush(self) -> None:
        """Create or update one report per tool and attach its annotations."""
        with self._lock:
            for tool, annotations in self._annotations.items():
                rid = report_id(tool, REPORTER)
                title = report_title(tool, REPORTER)
                if not annotations:
                    self._create_or_update_report(rid, title, REPORT_RESULT_PASSED)
                    continue
                self._create_or_update_report(rid, title, REPORT_RESULT_FAILED)
                for start in range(0, len(annotations), ANNOTATIONS_BATCH_SIZE):
                    batch = annotations[start:start + ANNOTATIONS_BATCH_SIZE]
                    try:
                        self.cli.bulk_create_or_update_annotations(
                            self.owner, self.repo, self.sha, rid, batch
                        )
                    except BitbucketAPIError as err:
                        raise BitbucketAPIError(
                            f"bitbucket.bulk_create_or_update_annotations: {err}"
                        ) from err

    @staticmethod
    def _annotation(comment: Comment) -> dict:
        diagnostic = comment.result.diagnostic
        annotation = {
            "annotation_type": ANNOTATION_TYPE_CODE_SMELL,
            "external_id": external_id_from_diagnostic(diagnostic),
            "summary": diagnostic.message,
            "details": f"[{comment.tool_name}] {diagnostic.message}",
            "line": diagnostic.location.range.start.line,
            "path": diagnostic.location.path,
        }
        severity = _SEVERITY_MAP.get(diagnostic.severity)
        if severity is not None:
            annotation["severity"] = severity
        if diagnostic.code.url:
            annotation["link"] = diagnostic.code.url
        return annotation

    def _create_or_update_report(self, rid: str, title: str, status: str) -> None:
        if status == REPORT_RESULT_PASSED:
            details = "Great news! reviewhound couldn't spot any issues!"
        elif status == REPORT_RESULT_PENDING:
            details = "Please wait for reviewhound to finish checking your code for issues."
        else:
            details = "Woof-Woof! This report generated for you by reviewhound."
        report = {
            "title": title,
            "report_type": REPORT_TYPE_BUG,
            "reporter": REPORTER,
            "result": status,
            "details": details,
        }
        try:
            self.cli.create_or_update_report(self.owner, self.repo, self.sha, rid, report)
        except BitbucketAPIError as err:
            raise BitbucketAPIError(f"bitbucket.create_or_update_report: {err}") from err