"""Project configuration: the runners to execute and how to parse them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import yaml


@dataclass
class Runner:
    """Configuration of one runner."""

    cmd: str = ""
    name: str = ""
    format: str = ""
    errorformat: list[str] = field(default_factory=list)
    level: str = ""


@dataclass
class Config:
    runner: dict[str, Runner] = field(default_factory=dict)


def _string(value: Any, what: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return str(value)
    raise ValueError(f"{what}: expected a string, got {type(value).__name__}")


def _runner(key: str, data: Any) -> Runner:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"runner {key!r}: expected a mapping")
    efm = data.get("errorformat")
    if efm is None:
        efm = []
    if not isinstance(efm, list):
        raise ValueError(f"runner {key!r}: errorformat must be a list")
    runner = Runner(
        cmd=_string(data.get("cmd"), f"runner {key!r} cmd"),
        name=_string(data.get("name"), f"runner {key!r} name"),
        format=_string(data.get("format"), f"runner {key!r} format"),
        errorformat=[_string(e, f"runner {key!r} errorformat") for e in efm],
        level=_string(data.get("level"), f"runner {key!r} level"),
    )
    if not runner.name:
        runner.name = key
    return runner


def parse(yml: str | bytes) -> Config:
    """Parse a YAML configuration; a runner without a name takes its key."""
    data = yaml.safe_load(yml)
    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ValueError("config: expected a mapping at the top level")
    runners = data.get("runner") or {}
    if not isinstance(runners, dict):
        raise ValueError("config: runner must be a mapping")
    return Config(runner={str(k): _runner(str(k), v) for k, v in runners.items()})