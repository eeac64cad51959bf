"""Diagnostic model, result maps and the main review workflow."""

from __future__ import annotations

import enum
import os
import threading
from dataclasses import dataclass, field
from typing import IO, Any, Callable, Iterable, Protocol


class Severity(enum.IntEnum):
    """Severity of a diagnostic."""

    UNKNOWN_SEVERITY = 0
    ERROR = 1
    WARNING = 2
    INFO = 3


@dataclass
class Position:
    """A 1-based line and column; 0 means unset."""

    line: int = 0
    column: int = 0


@dataclass
class Range:
    start: Position = field(default_factory=Position)
    end: Position = field(default_factory=Position)


@dataclass
class Location:
    path: str = ""
    range: Range = field(default_factory=Range)


@dataclass
class Code:
    value: str = ""
    url: str = ""


@dataclass
class Source:
    name: str = ""
    url: str = ""


@dataclass
class Suggestion:
    range: Range = field(default_factory=Range)
    text: str = ""


@dataclass
class Diagnostic:
    """A single finding reported by a linter or compiler."""

    message: str = ""
    location: Location = field(default_factory=Location)
    severity: Severity = Severity.UNKNOWN_SEVERITY
    source: Source = field(default_factory=Source)
    code: Code = field(default_factory=Code)
    suggestions: list[Suggestion] = field(default_factory=list)
    original_output: str = ""


@dataclass
class FilteredDiagnostic:
    """A diagnostic annotated with its relation to the diff."""

    diagnostic: Diagnostic = field(default_factory=Diagnostic)
    should_report: bool = False
    in_diff_file: bool = False
    in_diff_context: bool = False
    first_suggestion_in_diff_context: bool = False
    source_lines: dict[int, str] = field(default_factory=dict)
    old_path: str = ""
    old_line: int = 0


@dataclass
class Comment:
    """A reported result, posted as a review comment."""

    result: FilteredDiagnostic
    tool_name: str = ""


class ViolationsFoundError(Exception):
    """Raised when findings were reported and failing on error is requested."""

    def __init__(self, message: str = "input data has violations") -> None:
        super().__init__(message)


@dataclass
class Result:
    """Diagnostics produced by one runner."""

    name: str
    level: str = ""
    diagnostics: list[Diagnostic] = field(default_factory=list)
    # A command error does not by itself mean failure: linters commonly exit
    # non-zero when they have findings.
    cmd_err: BaseException | None = None

    def check_unexpected_failure(self) -> None:
        """Raise if the command failed without producing any finding."""
        if self.cmd_err is not None and not self.diagnostics:
            raise RuntimeError(
                f"{self.name} failed with zero findings: The command itself "
                f"failed ({self.cmd_err}) or reviewhound cannot parse the results"
            )


@dataclass
class FilteredResult:
    level: str = ""
    filtered_diagnostics: list[FilteredDiagnostic] = field(default_factory=list)


def _missing_key(key: str) -> KeyError:
    return KeyError(f"fail to get the value of key {key!r} from results")


class ResultMap:
    """Thread-safe map from runner name to Result."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, Result] = {}

    def store(self, key: str, result: Result) -> None:
        """Save a result under key."""
        if not isinstance(result, Result):
            raise TypeError("stored type in ResultMap is invalid")
        with self._lock:
            self._data[key] = result

    def load(self, key: str) -> Result:
        """Return the result stored under key."""
        with self._lock:
            try:
                return self._data[key]
            except KeyError:
                raise _missing_key(key) from None

    def items(self) -> list[tuple[str, Result]]:
        """Return a snapshot of the stored (key, result) pairs."""
        with self._lock:
            return list(self._data.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class FilteredResultMap:
    """Thread-safe map from runner name to FilteredResult."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, FilteredResult] = {}

    def store(self, key: str, result: FilteredResult) -> None:
        """Save a filtered result under key."""
        if not isinstance(result, FilteredResult):
            raise TypeError("stored type in FilteredResultMap is invalid")
        with self._lock:
            self._data[key] = result

    def load(self, key: str) -> FilteredResult:
        """Return the filtered result stored under key."""
        with self._lock:
            try:
                return self._data[key]
            except KeyError:
                raise _missing_key(key) from None

    def items(self) -> list[tuple[str, FilteredResult]]:
        """Return a snapshot of the stored (key, result) pairs."""
        with self._lock:
            return list(self._data.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class _CommentService(Protocol):
    def post(self, comment: Comment) -> None: ...


class _DiffService(Protocol):
    def diff(self) -> bytes: ...

    def strip(self) -> int: ...


class _Parser(Protocol):
    def parse(self, stream: IO[Any]) -> list[Diagnostic]: ...


_Checker = Callable[
    [list[Diagnostic], bytes, int, str, Any], Iterable[FilteredDiagnostic]
]


def run_from_result(
    comment_service: _CommentService,
    results: list[Diagnostic],
    diff_text: bytes,
    strip: int,
    toolname: str,
    filter_mode: Any,
    fail_on_error: bool,
    checker: _Checker,
) -> None:
    """Filter results against a diff and post the ones to report."""
    wd = os.getcwd()
    has_violations = False
    for check in checker(results, diff_text, strip, wd, filter_mode):
        if not check.should_report:
            continue
        comment_service.post(Comment(result=check, tool_name=toolname))
        has_violations = True

    flush = getattr(comment_service, "flush", None)
    if callable(flush):
        flush()

    if fail_on_error and has_violations:
        raise ViolationsFoundError()


class Reviewdog:
    """Parses tool output, filters it by diff and reports the findings."""

    def __init__(
        self,
        toolname: str,
        parser: _Parser,
        comment_service: _CommentService,
        diff_service: _DiffService,
        filter_mode: Any,
        fail_on_error: bool,
        checker: _Checker,
    ) -> None:
        self.toolname = toolname
        self.parser = parser
        self.comment_service = comment_service
        self.diff_service = diff_service
        self.filter_mode = filter_mode
        self.fail_on_error = fail_on_error
        self.checker = checker

    def run(self, stream: IO[Any]) -> None:
        """Run the whole workflow on the tool output read from stream."""
        try:
            results = self.parser.parse(stream)
        except Exception as err:
            raise RuntimeError(f"parse error: {err}") from err
        try:
            diff_text = self.diff_service.diff()
        except Exception as err:
            raise RuntimeError(f"fail to get diff: {err}") from err
        run_from_result(
            self.comment_service,
            results,
            diff_text,
            self.diff_service.strip(),
            self.toolname,
            self.filter_mode,
            self.fail_on_error,
            self.checker,
        )