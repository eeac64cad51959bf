import pytest
import yaml

from reviewhound.config import Config, Runner, parse

YML = """
# reviewhound.yml

runner:
  golint:
    cmd: golint ./...
    level: info
    errorformat:
      - "%f:%l:%c: %m"
  govet:
    cmd: go tool vet -all -shadowstrict .
    format: govet
    level: warning
  namekey:
    cmd: echo 'name'
    name: nameoverwritten
    format: checkstyle
    level: error
"""


def test_parse():
    want = Config(
        runner={
            "golint": Runner(
                cmd="golint ./...",
                errorformat=["%f:%l:%c: %m"],
                name="golint",
                level="info",
            ),
            "govet": Runner(
                cmd="go tool vet -all -shadowstrict .",
                format="govet",
                name="govet",
                level="warning",
            ),
            "namekey": Runner(
                cmd="echo 'name'",
                format="checkstyle",
                name="nameoverwritten",
                level="error",
            ),
        }
    )
    assert parse(YML.encode()) == want


def test_parse_empty():
    assert parse("") == Config(runner={})


def test_parse_runner_without_settings_takes_key_as_name():
    conf = parse("runner:\n  test:\n")
    assert conf.runner == {"test": Runner(name="test")}


def test_parse_invalid_yaml():
    with pytest.raises(yaml.YAMLError):
        parse("runner: [unclosed")


def test_parse_bad_errorformat_type():
    with pytest.raises(ValueError, match="errorformat"):
        parse("runner:\n  x:\n    errorformat: '%f'\n")


def test_parse_runner_not_mapping():
    with pytest.raises(ValueError, match="runner"):
        parse("runner:\n  - a\n")