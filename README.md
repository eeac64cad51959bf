# reviewhound

reviewhound takes the findings of a linter or compiler, keeps the ones a
filter reports as belonging to a diff, and posts them as review comments to a
code review service: GitHub pull requests, GitLab merge requests, Gerrit
changes or Bitbucket Code Insights reports.

## Installation

```
pip install .
```

Install the test extra to run the test suite:

```
pip install ".[test]"
pytest
```

## Building blocks

- `reviewhound.core`: the diagnostic model (`Diagnostic`, `Location`,
  `Range`, `Position`, `Code`, `Source`, `Suggestion`, `Severity`),
  `FilteredDiagnostic`, the `Comment` handed to comment services, `Result`,
  `ResultMap` and `FilteredResultMap` (thread-safe maps keyed by runner
  name), and the `Reviewdog` application with its `run_from_result` helper.
  When `fail_on_error` is set and something was reported,
  `ViolationsFoundError` is raised. A comment service that has a `flush()`
  method gets it called after all comments are posted.
- `reviewhound.config`: `parse()` reads a YAML configuration and returns a
  `Config` whose `runner` maps keys to `Runner` entries (`cmd`, `name`,
  `format`, `errorformat`, `level`).
- `reviewhound.project`: `run_and_parse()` starts each configured runner
  command through the shell, reads its stdout and stderr, parses them and
  collects a `ResultMap`; `run()` also fetches the diff and posts the
  comments. Runner commands get the environment without the
  `REVIEWDOG_GITHUB_API_TOKEN`, `REVIEWDOG_GITLAB_API_TOKEN` and
  `REVIEWDOG_TOKEN` variables (see `filtered_environ()`). With tee mode on,
  runners run one at a time and their output is copied to the console.
- Comment and diff services:
  - `reviewhound.github.PullRequest` (with `GitHubClient`) posts one review
    per flush, code suggestions included, skipping comments already posted;
    at most 30 comments go in, the rest are listed in the review body.
  - `reviewhound.gitlab.MergeRequestCommitCommenter`,
    `MergeRequestDiscussionCommenter` and `MergeRequestDiff` (with
    `GitLabClient`) work with GitLab merge requests.
  - `reviewhound.gerrit.ChangeReviewCommenter` and `ChangeDiff` (with
    `GerritClient`) work with Gerrit changes.
  - `reviewhound.bitbucket_annotator.ReportAnnotator` creates one Code
    Insights report per tool, with annotations sent in batches of 100;
    `reviewhound.bitbucket` holds the `APIClient`, `new_api_client()` and
    `BitbucketAPIError`.
  - `reviewhound.githubutils.GitHubActionLogWriter` reports findings as
    GitHub Actions logging-command annotations.
- `reviewhound.commentutil`: `markdown_comment()` builds a comment body and
  `PostedComments` records comments already on the review.

The GitHub, GitLab and Gerrit services need the `git` command in `PATH`: they
resolve paths relative to the repository root, and the GitLab and Gerrit diff
services compute the diff with `git merge-base` and `git diff --find-renames`.

## Configuration

```yaml
runner:
  golint:
    cmd: golint ./...
    level: info
    errorformat:
      - "%f:%l:%c: %m"
  govet:
    cmd: go vet ./...
    format: govet
    level: warning
```

```python
from reviewhound.config import parse

with open("reviewhound.yml", "rb") as fh:
    conf = parse(fh.read())
for key, runner in conf.runner.items():
    print(key, runner.cmd, runner.level)
```

A runner with no `name` takes the name of its key.

## What you supply

reviewhound does not parse tool output and does not parse diffs or decide
which findings fall inside them. `Reviewdog` and `project.run()` take:

- a parser with a `parse(stream)` method returning a list of `Diagnostic`
  (in `project`, built by a `parser_factory(format_name, errorformat)`);
- a `checker(results, diff_text, strip, workdir, filter_mode)` returning
  `FilteredDiagnostic` objects; only those with `should_report` set are
  posted.

There is no command that runs a review; use the functions above from Python.

## Triggering dependency updates

`reviewhound-depup` sends a `depup` repository dispatch event to every
repository in an organisation whose name starts with `action-` (only the
first page of the organisation's repositories is read). It takes the API
token from the `DEPUP_GITHUB_API_TOKEN` environment variable:

```
DEPUP_GITHUB_API_TOKEN=token reviewhound-depup --org my-org
```

`--api-url` points it at another API endpoint. The command exits with status
1 if the token is missing or if any dispatch fails.