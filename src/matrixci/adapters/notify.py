# adapters/notify.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import List, Optional, Protocol
from urllib.parse import urljoin

from pydantic import BaseModel, Field

from matrixci.ui.console import get_console

SUMMARY_LABEL = "testing"


class NotificationError(Exception):
    """Raised when a summary could not be delivered."""
    pass


class Notifier(Protocol):
    def post_summary(self, repo_identity: str, subject: str, body: str) -> None: ...


class ConsoleNotifier:
    """Prints the summary instead of posting it anywhere."""

    def post_summary(self, repo_identity: str, subject: str, body: str) -> None:
        console = get_console()
        console.print_header(f"{subject} ({repo_identity})")
        console.print_info(body)


# -------------------- Schemas --------------------

class Label(BaseModel):
    name: str


class IssueCreate(BaseModel):
    title: str
    body: str
    labels: List[str] = Field(default_factory=list)


class IssueCreated(BaseModel):
    number: int
    html_url: str = ""


# -------------------- Client --------------------

class GitHubIssueNotifier:
    """Posts the run summary as a GitHub issue."""

    def __init__(self, token: str, api_url: str = "https://api.github.com"):
        """
        Args:
            token: GitHub token with permission to open issues
            api_url: Base URL of the GitHub REST API
        """
        self.api_url = api_url.rstrip("/")
        self.token = token

    def _request(self, method: str, path: str, data: Optional[dict] = None):
        """
        Make an HTTP request to the API.

        Raises:
            NotificationError: If the request fails
        """
        url = urljoin(self.api_url + "/", path.lstrip("/"))
        req_headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        req_data = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(url, data=req_data, headers=req_headers, method=method)

        try:
            with urllib.request.urlopen(req) as response:
                response_data = response.read().decode("utf-8")
                return json.loads(response_data) if response_data else {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise NotificationError(f"GitHub request failed: {e.code} {e.reason}. {error_body}")
        except urllib.error.URLError as e:
            raise NotificationError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise NotificationError(f"Invalid JSON response: {e}")

    def list_labels(self, repo_identity: str) -> List[str]:
        raw = self._request("GET", f"/repos/{repo_identity}/labels")
        return [Label.model_validate(item).name for item in raw or []]

    def post_summary(self, repo_identity: str, subject: str, body: str) -> None:
        # Only apply the label when the repository already defines it.
        labels = [SUMMARY_LABEL] if SUMMARY_LABEL in self.list_labels(repo_identity) else []
        issue = IssueCreate(title=subject, body=body, labels=labels)
        created = IssueCreated.model_validate(
            self._request("POST", f"/repos/{repo_identity}/issues", data=issue.model_dump())
        )
        get_console().print_info(f"Posted summary issue #{created.number} {created.html_url}".rstrip())
