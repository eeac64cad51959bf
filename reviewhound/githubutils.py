"""GitHub helpers: markdown links and GitHub Actions log annotations."""

from __future__ import annotations

import sys
import threading

from reviewhound.core import Comment, Diagnostic, Severity

MAX_LOGGING_ANNOTATIONS_PER_STEP = 10


def linked_markdown_diagnostic(owner: str, repo: str, sha: str, diagnostic: Diagnostic) -> str:
    """Return markdown linking the diagnostic location, followed by its message."""
    path = diagnostic.location.path
    msg = diagnostic.message
    if not path:
        return msg
    loc = basic_location_format(diagnostic)
    line = diagnostic.location.range.start.line
    link = path_link(owner, repo, sha, path, line)
    return f"[{loc}]({link}) {msg}"


def path_link(owner: str, repo: str, sha: str, path: str, line: int) -> str:
    """Build a link to a file (and line) at a given commit on GitHub."""
    sha = sha or "master"
    fragment = f"#L{line}" if line > 0 else ""
    return f"http://github.com/{owner}/{repo}/blob/{sha}/{path}{fragment}"


def basic_location_format(diagnostic: Diagnostic) -> str:
    """Format a diagnostic location as ``path|line col column|``."""
    start = diagnostic.location.range.start
    out = diagnostic.location.path + "|"
    if start.line:
        out += str(start.line)
        if start.column:
            out += f" col {start.column}"
    return out + "|"


def _escape_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def _escape_property(value: str) -> str:
    return _escape_data(value).replace(":", "%3A").replace(",", "%2C")


def _issue(command: str, message: str, file: str = "", line: int = 0, col: int = 0) -> None:
    props = []
    if file:
        props.append(f"file={_escape_property(file)}")
    if line:
        props.append(f"line={line}")
    if col:
        props.append(f"col={col}")
    head = f"::{command}"
    if props:
        head += " " + ",".join(props)
    sys.stdout.write(f"{head}::{_escape_data(message)}\n")
    sys.stdout.flush()


def report_as_github_actions_log(tool_name: str, default_level: str, diagnostic: Diagnostic) -> None:
    """Report a diagnostic as a GitHub Actions logging command annotation."""
    message = (
        f"[{tool_name}] reported by reviewhound 🐶\n{diagnostic.message}"
        f"\n\nRaw Output:\n{diagnostic.original_output}"
    )
    start = diagnostic.location.range.start
    where = {"file": diagnostic.location.path, "line": start.line, "col": start.column}

    level = default_level
    if diagnostic.severity == Severity.ERROR:
        level = "error"
    elif diagnostic.severity in (Severity.INFO, Severity.WARNING):
        level = "warning"

    # There is no info command that carries location data.
    if level in ("warning", "info"):
        _issue("warning", message, **where)
    elif level in ("error", ""):
        _issue("error", message, **where)
    else:
        _issue("error", f"Unknown level: {level}")
        _issue("error", message, **where)


_warn_lock = threading.Lock()
_warned = False

_TOO_MANY_MESSAGE = """reviewhound: Too many results (annotations) in diff.
You may miss some annotations due to GitHub limitation for annotation created by logging command.
Please check GitHub Actions log console to see all results.

Limitation:
- 10 warning annotations and 10 error annotations per step
- 50 annotations per job (sum of annotations from all the steps)
- 50 annotations per run (separate from the job annotations, these annotations aren't created by users)"""


def warn_too_many_annotation_once() -> bool:
    """Emit the too-many-annotations warning once per process.

    Returns True if the warning was emitted by this call.
    """
    global _warned
    with _warn_lock:
        if _warned:
            return False
        _warned = True
    _issue("error", _TOO_MANY_MESSAGE)
    return True


class GitHubActionLogWriter:
    """Reports comments as GitHub Actions logging command annotations."""

    def __init__(self, level: str) -> None:
        self.level = level
        self.report_num = 0

    def post(self, comment: Comment) -> None:
        self.report_num += 1
        if self.report_num == MAX_LOGGING_ANNOTATIONS_PER_STEP:
            warn_too_many_annotation_once()
        report_as_github_actions_log(comment.tool_name, self.level, comment.result.diagnostic)

    def flush(self) -> None:
        """Raise if more annotations were reported than a step can show."""
        if self.report_num > MAX_LOGGING_ANNOTATIONS_PER_STEP - 1:
            raise RuntimeError(
                f"GitHubActionLogWriter: reported too many annotation (N={self.report_num})"
            )