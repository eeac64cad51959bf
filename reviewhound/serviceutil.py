"""Utilities shared by the code-review services."""

from __future__ import annotations

import subprocess


def git_rel_workdir() -> str:
    """Return the current directory relative to the git repository root."""
    try:
        completed = subprocess.run(
            ["git", "rev-parse", "--show-prefix"],
            capture_output=True,
            text=True,
            check=True,
        )
    except (subprocess.CalledProcessError, OSError) as err:
        raise RuntimeError(
            f"failed to run 'git rev-parse --show-prefix': {err}"
        ) from err
    return completed.stdout.strip("\n")