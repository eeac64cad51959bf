"""Bitbucket Code Insights API client and its constants."""

from __future__ import annotations

from typing import Any

import requests

# Reports are only created as bug reports for now.
REPORT_TYPE_BUG = "BUG"

REPORT_RESULT_PASSED = "PASSED"
REPORT_RESULT_FAILED = "FAILED"
REPORT_RESULT_PENDING = "PENDING"

ANNOTATION_TYPE_CODE_SMELL = "CODE_SMELL"

ANNOTATION_SEVERITY_HIGH = "HIGH"
ANNOTATION_SEVERITY_MEDIUM = "MEDIUM"
ANNOTATION_SEVERITY_LOW = "LOW"

# Inside Bitbucket Pipelines a local proxy adds authentication to requests,
# and the HTTP endpoint has to be used to go through it.
PIPELINE_PROXY_URL = "http://localhost:29418"
HTTP_SERVER_URL = "http://api.bitbucket.org/2.0"
HTTPS_SERVER_URL = "https://api.bitbucket.org/2.0"
HTTP_TIMEOUT = 10.0


class BitbucketAPIError(Exception):
    """Raised when a Bitbucket API call fails."""


def check_api_error(response: requests.Response | None, expected_code: int) -> None:
    """Raise BitbucketAPIError unless the response carries the expected status."""
    if response is None:
        return
    status = response.status_code
    if status >= 300:
        raise BitbucketAPIError(
            "bitbucket API error:\n"
            f"\tResponse error: {status} {response.reason or ''}".rstrip()
            + f"\n\tResponse body: {response.text}"
        )
    if status != expected_code:
        msg = f"received unexpected {status} code from Bitbucket API"
        body = response.text
        if body:
            msg += " with message:\n" + body
        raise BitbucketAPIError(msg)


class APIClient:
    """A minimal client for the Bitbucket Code Insights reports API.

    ``auth`` is either anything requests accepts as ``auth`` (for example a
    ``(username, password)`` tuple) or a string used as a bearer access token.
    """

    def __init__(
        self,
        server_url: str = HTTPS_SERVER_URL,
        session: requests.Session | None = None,
        auth: Any = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.auth = auth

    def _send(self, method: str, path: str, payload: Any) -> Any:
        headers = {"Accept": "application/json"}
        auth = self.auth
        if isinstance(auth, str):
            headers["Authorization"] = f"Bearer {auth}"
            auth = None
        try:
            resp = self.session.request(
                method,
                f"{self.server_url}{path}",
                json=payload,
                headers=headers,
                auth=auth,
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as err:
            raise BitbucketAPIError(
                f"bitbucket API error:\n\tResponse error: {err}\n\tResponse body: "
            ) from err
        check_api_error(resp, 200)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    @staticmethod
    def _report_path(owner: str, repo: str, commit: str, report_id: str) -> str:
        return f"/repositories/{owner}/{repo}/commit/{commit}/reports/{report_id}"

    def create_or_update_report(
        self, owner: str, repo: str, commit: str, report_id: str, report: dict
    ) -> Any:
        """Create the report, or replace it if it already exists."""
        return self._send("PUT", self._report_path(owner, repo, commit, report_id), report)

    def bulk_create_or_update_annotations(
        self, owner: str, repo: str, commit: str, report_id: str, annotations: list[dict]
    ) -> Any:
        """Add several annotations to a report in one call."""
        path = self._report_path(owner, repo, commit, report_id) + "/annotations"
        return self._send("POST", path, list(annotations))


def new_api_client(is_in_pipeline: bool) -> APIClient:
    """Create a client, going through the Pipelines proxy when running there."""
    session = requests.Session()
    server = HTTPS_SERVER_URL
    if is_in_pipeline:
        server = HTTP_SERVER_URL
        session.proxies = {"http": PIPELINE_PROXY_URL, "https": PIPELINE_PROXY_URL}
    return APIClient(server, session=session)