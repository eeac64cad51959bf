import json
import subprocess
from urllib.parse import parse_qs, urlparse

import pytest
import responses

from reviewhound.commentutil import BODY_PREFIX
from reviewhound.core import (
    Comment,
    Diagnostic,
    FilteredDiagnostic,
    Location,
    Position,
    Range,
    Suggestion,
)
from reviewhound.github import (
    INVALID_SUGGESTION_POST,
    INVALID_SUGGESTION_PRE,
    GitHubClient,
    PullRequest,
    build_body,
)

API = "https://github.example.com/api/v3"
COMMENTS_URL = f"{API}/repos/o/r/pulls/14/comments"
REVIEWS_URL = f"{API}/repos/o/r/pulls/14/reviews"


@pytest.fixture
def git_repo(tmp_path, monkeypatch):
    subprocess.run(["git", "init", "-q", str(tmp_path)], check=True, capture_output=True)
    (tmp_path / "cmd").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
    return tmp_path


def _rng(start_line, start_col=0, end_line=0, end_col=0):
    return Range(start=Position(start_line, start_col), end=Position(end_line, end_col))


def _comment(message, rng=None, suggestions=(), source_lines=None,
             in_diff_context=True, first_suggestion=False, tool_name=""):
    return Comment(
        result=FilteredDiagnostic(
            diagnostic=Diagnostic(
                message=message,
                location=Location(path="reviewdog.go", range=rng or Range()),
                suggestions=list(suggestions),
            ),
            in_diff_context=in_diff_context,
            first_suggestion_in_diff_context=first_suggestion,
            source_lines=dict(source_lines or {}),
        ),
        tool_name=tool_name,
    )


def _sugg(rng, text):
    return Suggestion(range=rng, text=text)


def _draft(body, line, start_line=None):
    d = {"path": "reviewdog.go", "side": "RIGHT", "body": body, "line": line}
    if start_line is not None:
        d["start_side"] = "RIGHT"
        d["start_line"] = start_line
    return d


def _body(*lines):
    return BODY_PREFIX + "\n".join(lines) + "\n"


def test_post_flush_review_api(git_repo):
    state = {"list": 0, "post": 0, "review": None}

    def list_cb(request):
        state["list"] += 1
        page = parse_qs(urlparse(request.url).query).get("page", [""])[0]
        if page == "2":
            cs = [
                {"path": "reviewdog.go", "line": 15, "body": BODY_PREFIX + "already commented 2"},
                {"path": "reviewdog.go", "start_line": 15, "line": 16,
                 "body": BODY_PREFIX + "multiline existing comment"},
                {"path": "reviewdog.go", "start_line": 15, "line": 17,
                 "body": BODY_PREFIX + "multiline existing comment (line-break)"},
            ]
            return 200, {}, json.dumps(cs)
        cs = [{"path": "reviewdog.go", "line": 2, "body": BODY_PREFIX + "already commented"}]
        headers = {"Link": f'<{COMMENTS_URL}?page=2>; rel="next"'}
        return 200, headers, json.dumps(cs)

    def review_cb(request):
        state["post"] += 1
        state["review"] = json.loads(request.body)
        return 200, {}, "{}"

    comments = [
        _comment("already commented", _rng(2)),
        _comment("already commented 2", _rng(15)),
        _comment("new comment", _rng(15)),
        _comment("multiline existing comment", _rng(15, 0, 16)),
        _comment("multiline existing comment (line-break)", _rng(15, 1, 17, 1)),
        _comment("multiline new comment", _rng(15, 0, 16)),
        _comment("should not be reported via GitHub Review API", in_diff_context=False),
        _comment("multiline suggestion comment", _rng(15, 0, 16),
                 [_sugg(_rng(15, 0, 16), "line1\nline2\nline3")]),
        _comment("singleline suggestion comment", _rng(15),
                 [_sugg(_rng(15), "line1\nline2")]),
        _comment("invalid lines suggestion comment", _rng(15, 0, 16),
                 [_sugg(_rng(16, 0, 17), "line1\nline2\nline3")]),
        _comment("Use suggestion range as GitHub comment range if the suggestion is in diff context",
                 _rng(15), [_sugg(_rng(14, 0, 16), "line1\nline2\nline3")],
                 source_lines={14: "line 14 before", 15: "line 15 before", 16: "line 16 before"},
                 first_suggestion=True),
        _comment("Partially invalid suggestions", _rng(15),
                 [_sugg(_rng(14, 0, 16), "line1\nline2\nline3"),
                  _sugg(_rng(14, 0, 14), "line1\nline2")],
                 source_lines={14: "line 14 before", 15: "line 15 before", 16: "line 16 before"},
                 first_suggestion=True),
        _comment("non-line based suggestion comment (no source lines)", _rng(15, 0, 16),
                 [_sugg(_rng(15, 5, 16, 7), "replacement")]),
        _comment("range suggestion (single line)", _rng(15, 5, 15, 7),
                 [_sugg(_rng(15, 5, 15, 7), "14")], source_lines={15: "haya15busa"}),
        _comment("range suggestion (multi-line)", _rng(15, 5, 16, 4),
                 [_sugg(_rng(15, 5, 16, 4), "14")],
                 source_lines={15: "haya???", 16: "???busa (multi-line)"}),
        _comment("range suggestion (line-break, remove)", _rng(15, 9, 17, 1),
                 [_sugg(_rng(15, 9, 17, 1), "")],
                 source_lines={15: "line 15 xxx", 16: "line 16", 17: "(content at line 15)"}),
        _comment("range suggestion (insert)", _rng(15, 5, 15, 5),
                 [_sugg(_rng(15, 5, 15, 5), "14")], source_lines={15: "hayabusa"}),
        _comment("multiple suggestions", _rng(15, 5, 15, 7),
                 [_sugg(_rng(15, 5, 15, 7), "1"), _sugg(_rng(15, 5, 15, 7), "4"),
                  _sugg(_rng(15, 5, 15, 7), "14")],
                 source_lines={15: "haya??busa"}),
        _comment("range suggestion with start only location", _rng(15, 5),
                 [_sugg(_rng(15, 5, 15, 7), "14")], source_lines={15: "haya15busa"}),
    ]

    want = [
        _draft(BODY_PREFIX + "new comment", 15),
        _draft(BODY_PREFIX + "multiline new comment", 16, 15),
        _draft(_body("multiline suggestion comment", "```suggestion", "line1", "line2", "line3", "```"), 16, 15),
        _draft(_body("singleline suggestion comment", "```suggestion", "line1", "line2", "```"), 15),
        _draft(_body("invalid lines suggestion comment",
                     INVALID_SUGGESTION_PRE + "GitHub comment range and suggestion line range must be same. "
                     "L15-L16 v.s. L16-L17" + INVALID_SUGGESTION_POST), 16, 15),
        _draft(_body("Use suggestion range as GitHub comment range if the suggestion is in diff context",
                     "```suggestion", "line1", "line2", "line3", "```"), 16, 14),
        _draft(_body("Partially invalid suggestions", "```suggestion", "line1", "line2", "line3", "```",
                     INVALID_SUGGESTION_PRE + "GitHub comment range and suggestion line range must be same. "
                     "L14-L16 v.s. L14-L14" + INVALID_SUGGESTION_POST), 16, 14),
        _draft(_body("non-line based suggestion comment (no source lines)",
                     INVALID_SUGGESTION_PRE + "source lines are not available" + INVALID_SUGGESTION_POST),
               16, 15),
        _draft(_body("range suggestion (single line)", "```suggestion", "haya14busa", "```"), 15),
        _draft(_body("range suggestion (multi-line)", "```suggestion", "haya14busa (multi-line)", "```"),
               16, 15),
        _draft(_body("range suggestion (line-break, remove)", "```suggestion",
                     "line 15 (content at line 15)", "```"), 17, 15),
        _draft(_body("range suggestion (insert)", "```suggestion", "haya14busa", "```"), 15),
        _draft(_body("multiple suggestions", "```suggestion", "haya1busa", "```",
                     "```suggestion", "haya4busa", "```", "```suggestion", "haya14busa", "```"), 15),
        _draft(_body("range suggestion with start only location", "```suggestion", "haya14busa", "```"), 15),
    ]

    with responses.RequestsMock() as rsps:
        rsps.add_callback(responses.GET, COMMENTS_URL, callback=list_cb)
        rsps.add_callback(responses.POST, REVIEWS_URL, callback=review_cb)
        g = PullRequest(GitHubClient(API), "o", "r", 14, "sha")
        for c in comments:
            g.post(c)
        g.flush()

    assert state["list"] == 2
    assert state["post"] == 1
    review = state["review"]
    assert review["event"] == "COMMENT"
    assert review["body"] == ""
    assert review["commit_id"] == "sha"
    assert review["comments"] == want
    new_body = build_body(comments[2])
    assert new_body == BODY_PREFIX + "new comment"
    assert review["comments"][0]["body"] == new_body


def test_post_too_many(git_repo):
    state = {"list": 0, "review": None}

    def list_cb(request):
        state["list"] += 1
        return 200, {}, "[]"

    def review_cb(request):
        state["review"] = json.loads(request.body)
        return 200, {}, "{}"

    comments = [_comment("comment", _rng(i), tool_name="tool") for i in range(100)]
    with responses.RequestsMock() as rsps:
        rsps.add_callback(responses.GET, COMMENTS_URL, callback=list_cb)
        rsps.add_callback(responses.POST, REVIEWS_URL, callback=review_cb)
        g = PullRequest(GitHubClient(API), "o", "r", 14, "sha")
        for c in comments:
            g.post(c)
        g.flush()
        assert len(rsps.calls) == 2

    assert state["list"] == 1
    assert len(state["review"]["comments"]) == 30
    summary = state["review"]["body"]
    assert summary.startswith("Remaining comments which cannot be posted")
    assert "<summary>tool</summary>" in summary
    first_body = build_body(comments[0])
    assert first_body == "**[tool]** " + BODY_PREFIX + "comment"
    assert state["review"]["comments"][0]["body"] == first_body


def test_workdir(git_repo, monkeypatch):
    g = PullRequest(None, "", "", 0, "")
    assert g.wd == ""
    c = Comment(result=FilteredDiagnostic(diagnostic=Diagnostic(location=Location(path="a/b/c"))))
    g.post(c)
    assert c.result.diagnostic.location.path == "a/b/c"

    monkeypatch.chdir(git_repo / "cmd")
    g = PullRequest(None, "", "", 0, "")
    assert g.wd == "cmd/"
    c = Comment(result=FilteredDiagnostic(diagnostic=Diagnostic(location=Location(path="a/b/c"))))
    g.post(c)
    assert c.result.diagnostic.location.path == "cmd/a/b/c"


def test_diff_fake(git_repo):
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, f"{API}/repos/o/r/pulls/14", body="Pull Request diff")
        g = PullRequest(GitHubClient(API), "o", "r", 14, "sha")
        assert g.diff() == b"Pull Request diff"
        assert len(rsps.calls) == 1
        assert "diff" in rsps.calls[0].request.headers["Accept"]
    assert g.strip() == 1


def test_outside_diff_reported_to_actions_log(git_repo, monkeypatch, capsys):
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, COMMENTS_URL, json=[])
        g = PullRequest(GitHubClient(API), "o", "r", 14, "sha")
        g.post(_comment("outside", _rng(3), in_diff_context=False, tool_name="tool"))
        g.flush()
        assert len(rsps.calls) == 1
    out = capsys.readouterr().out
    assert out.startswith("::warning file=reviewdog.go,line=3::")


def test_build_body_without_suggestions():
    c = _comment("plain", _rng(1))
    assert build_body(c) == BODY_PREFIX + "plain"


def test_missing_source_line_for_suggestion():
    c = _comment("m", _rng(15, 5, 15, 7), [_sugg(_rng(15, 5, 15, 7), "x")], source_lines={14: "abc"})
    assert build_body(c) == _body(
        "m",
        INVALID_SUGGESTION_PRE + "source line (L=15) is not available for this suggestion"
        + INVALID_SUGGESTION_POST,
    )