"""Tests for summary notifiers."""

from __future__ import annotations

import io
import json
import urllib.error
from unittest.mock import patch

import pytest

from matrixci.adapters.notify import ConsoleNotifier, GitHubIssueNotifier, NotificationError


class FakeResponse:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode("utf-8")

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeGitHub:
    """urlopen replacement answering the two endpoints the notifier uses."""

    def __init__(self, labels):
        self.labels = labels
        self.requests = []

    def __call__(self, req):
        body = json.loads(req.data.decode("utf-8")) if req.data else None
        self.requests.append((req.get_method(), req.full_url, body, dict(req.header_items())))
        if req.full_url.endswith("/labels"):
            return FakeResponse([{"name": n, "color": "fff"} for n in self.labels])
        return FakeResponse({"number": 12, "html_url": "https://github.com/owner/repo/issues/12"})


class TestGitHubIssueNotifier:
    """Tests for posting summaries as issues."""

    def test_posts_issue_with_existing_label(self):
        github = FakeGitHub(["bug", "testing"])
        with patch("urllib.request.urlopen", github):
            GitHubIssueNotifier("tok", api_url="https://api.example.com/").post_summary("owner/repo", "subject", "body")

        (m1, url1, _, headers), (m2, url2, issue, _) = github.requests
        assert (m1, url1) == ("GET", "https://api.example.com/repos/owner/repo/labels")
        assert (m2, url2) == ("POST", "https://api.example.com/repos/owner/repo/issues")
        assert issue == {"title": "subject", "body": "body", "labels": ["testing"]}
        assert headers["Authorization"] == "Bearer tok"

    def test_label_omitted_when_repo_lacks_it(self):
        github = FakeGitHub(["bug"])
        with patch("urllib.request.urlopen", github):
            GitHubIssueNotifier("tok").post_summary("owner/repo", "subject", "body")
        assert github.requests[1][2]["labels"] == []

    def test_http_error_raises(self):
        error = urllib.error.HTTPError(
            "https://api.github.com/repos/owner/repo/labels", 404, "Not Found", {}, io.BytesIO(b"{}")
        )
        with patch("urllib.request.urlopen", side_effect=error):
            with pytest.raises(NotificationError, match="404"):
                GitHubIssueNotifier("tok").post_summary("owner/repo", "subject", "body")

    def test_network_error_raises(self):
        with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("no route")):
            with pytest.raises(NotificationError, match="Network error"):
                GitHubIssueNotifier("tok").list_labels("owner/repo")


class TestConsoleNotifier:
    def test_prints_summary(self, capsys):
        ConsoleNotifier().post_summary("owner/repo", "subject", "the body")
        out = capsys.readouterr().out
        assert "subject (owner/repo)" in out
        assert "the body" in out
