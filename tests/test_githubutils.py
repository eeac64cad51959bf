import pytest

from reviewhound.core import (
    Comment,
    Diagnostic,
    FilteredDiagnostic,
    Location,
    Position,
    Range,
    Severity,
)
from reviewhound.githubutils import (
    GitHubActionLogWriter,
    basic_location_format,
    linked_markdown_diagnostic,
    path_link,
    report_as_github_actions_log,
    warn_too_many_annotation_once,
)


def diag(path="", line=0, column=0, message="msg", **kwargs):
    return Diagnostic(
        message=message,
        location=Location(path=path, range=Range(start=Position(line, column))),
        **kwargs,
    )


@pytest.mark.parametrize(
    "d, want",
    [
        (
            diag("path/to/file.txt", 1414, 14),
            "[path/to/file.txt|1414 col 14|](http://github.com/o/r/blob/s/path/to/file.txt#L1414) msg",
        ),
        (
            diag("path/to/file.txt", 1414, 0),
            "[path/to/file.txt|1414|](http://github.com/o/r/blob/s/path/to/file.txt#L1414) msg",
        ),
        (
            diag("path/to/file.txt"),
            "[path/to/file.txt||](http://github.com/o/r/blob/s/path/to/file.txt) msg",
        ),
    ],
)
def test_linked_markdown_diagnostic(d, want):
    assert linked_markdown_diagnostic("o", "r", "s", d) == want


def test_linked_markdown_diagnostic_without_path():
    assert linked_markdown_diagnostic("o", "r", "s", diag(message="only")) == "only"


def test_path_link_defaults_to_master():
    assert path_link("o", "r", "", "a.go", 0) == "http://github.com/o/r/blob/master/a.go"


def test_basic_location_format_ignores_column_without_line():
    assert basic_location_format(diag("a.go", 0, 5)) == "a.go||"


def test_report_error_severity(capsys):
    d = diag("a.go", 3, 4, message="msg", severity=Severity.ERROR, original_output="raw")
    report_as_github_actions_log("tool", "warning", d)
    out = capsys.readouterr().out
    assert out == (
        "::error file=a.go,line=3,col=4::"
        "[tool] reported by reviewhound 🐶%0Amsg%0A%0ARaw Output:%0Araw\n"
    )


def test_report_info_severity_is_warning(capsys):
    d = diag("a.go", 1, 0, severity=Severity.INFO)
    report_as_github_actions_log("tool", "error", d)
    assert capsys.readouterr().out.startswith("::warning file=a.go,line=1::")


def test_report_uses_default_level(capsys):
    report_as_github_actions_log("tool", "info", diag("a.go", 2))
    assert capsys.readouterr().out.startswith("::warning file=a.go,line=2::")


def test_report_empty_level_is_error(capsys):
    report_as_github_actions_log("tool", "", diag("a.go", 2))
    assert capsys.readouterr().out.startswith("::error file=a.go,line=2::")


def test_report_unknown_level(capsys):
    report_as_github_actions_log("tool", "bogus", diag("a.go", 2))
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "::error::Unknown level: bogus"
    assert lines[1].startswith("::error file=a.go,line=2::")


def test_report_escapes_file_property(capsys):
    report_as_github_actions_log("tool", "error", diag("a:b,c.go", 1))
    assert capsys.readouterr().out.startswith("::error file=a%3Ab%2Cc.go,line=1::")


def test_warn_too_many_annotation_once(capsys):
    first = warn_too_many_annotation_once()
    second = warn_too_many_annotation_once()
    out = capsys.readouterr().out
    assert second is False
    assert out.count("Too many results") == (1 if first else 0)


def make_comment(line):
    return Comment(
        result=FilteredDiagnostic(diagnostic=diag("a.go", line)), tool_name="tool"
    )


def test_log_writer_few_annotations(capsys):
    writer = GitHubActionLogWriter("warning")
    for i in range(1, 4):
        writer.post(make_comment(i))
    writer.flush()
    lines = [l for l in capsys.readouterr().out.splitlines() if l.startswith("::warning")]
    assert len(lines) == 3
    assert writer.report_num == 3


def test_log_writer_too_many_annotations(capsys):
    writer = GitHubActionLogWriter("warning")
    for i in range(1, 11):
        writer.post(make_comment(i))
    with pytest.raises(RuntimeError, match=r"reported too many annotation \(N=10\)"):
        writer.flush()
    warnings = [l for l in capsys.readouterr().out.splitlines() if l.startswith("::warning")]
    assert len(warnings) == 10