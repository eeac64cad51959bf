"""Dispatch a "depup" event to every action repository of an organization."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import requests

DEFAULT_API_URL = "https://api.github.com"
TOKEN_ENV = "DEPUP_GITHUB_API_TOKEN"
ACTION_PREFIX = "action-"
EVENT_TYPE = "depup"

logger = logging.getLogger(__name__)


def dispatch_depup(org: str, token: str, api_url: str = DEFAULT_API_URL) -> list[str]:
    """Send the depup repository dispatch to the org's ``action-`` repositories.

    Returns the names of the repositories dispatched to. Every repository is
    tried; if any dispatch failed, the last error is raised afterwards.
    """
    if not token:
        raise ValueError(f"{TOKEN_ENV} is empty")
    base = api_url.rstrip("/")
    dispatched: list[str] = []
    last_err: requests.RequestException | None = None
    with requests.Session() as session:
        session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github.v3+json",
            }
        )
        # Only the first page of repositories is considered.
        resp = session.get(f"{base}/orgs/{org}/repos", timeout=30)
        resp.raise_for_status()
        for repo in resp.json():
            name = repo.get("name") or ""
            if not name.startswith(ACTION_PREFIX):
                continue
            logger.info("Dispatch depup to %s/%s...", org, name)
            try:
                reply = session.post(
                    f"{base}/repos/{org}/{name}/dispatches",
                    json={"event_type": EVENT_TYPE},
                    timeout=30,
                )
                reply.raise_for_status()
            except requests.RequestException as err:
                logger.warning("Dispatch depup to %s/%s failed: %s", org, name, err)
                last_err = err
                continue
            dispatched.append(name)
    if last_err is not None:
        raise last_err
    return dispatched


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Trigger depup in action repositories.")
    parser.add_argument("--org", default="reviewhound", help="target org name")
    parser.add_argument("--api-url", default=DEFAULT_API_URL, help="GitHub API URL")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        dispatch_depup(args.org, os.environ.get(TOKEN_ENV, ""), args.api_url)
    except (ValueError, requests.RequestException) as err:
        print(err, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())