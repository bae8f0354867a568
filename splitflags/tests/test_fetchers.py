"""
Unit tests for the fetch collaborators (HTTP and local file).

HTTP calls are intercepted with a fake ``requests.Session`` installed via
the constructor, so no network access happens.
"""


import json

import pytest
import requests

from splitflags.errors.handlers import FetchError
from splitflags.services.fetchers import (
    HttpSplitChangesFetcher,
    LocalFileSplitChangesFetcher,
    empty_changes,
)


class _FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self._text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._text is not None:
            return json.loads(self._text)
        return self._body


class _FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append(
            {"url": url, "params": params, "headers": headers, "timeout": timeout}
        )
        if self.error is not None:
            raise self.error
        return self.response


# ---------- HTTP fetcher ----------


def test_http_fetcher_sends_cursor_and_api_key():
    body = {"since": 5, "till": 9, "splits": []}
    session = _FakeSession(response=_FakeResponse(body=body))
    fetcher = HttpSplitChangesFetcher(
        "https://sdk.example.com/api/", "sdk-key", timeout=3, session=session
    )

    assert fetcher.fetch(5) == body

    sent = session.requests[0]
    assert sent["url"] == "https://sdk.example.com/api/splitChanges"
    assert sent["params"] == {"since": 5}
    assert sent["headers"]["Authorization"] == "Bearer sdk-key"
    assert sent["timeout"] == 3


def test_http_fetcher_wraps_transport_errors():
    session = _FakeSession(error=requests.ConnectionError("refused"))
    fetcher = HttpSplitChangesFetcher("https://x", "k", session=session)
    with pytest.raises(FetchError):
        fetcher.fetch(-1)


def test_http_fetcher_wraps_http_errors():
    session = _FakeSession(response=_FakeResponse(status_code=503))
    fetcher = HttpSplitChangesFetcher("https://x", "k", session=session)
    with pytest.raises(FetchError):
        fetcher.fetch(-1)


def test_http_fetcher_rejects_non_json_bodies():
    session = _FakeSession(response=_FakeResponse(text="<html>"))
    fetcher = HttpSplitChangesFetcher("https://x", "k", session=session)
    with pytest.raises(FetchError):
        fetcher.fetch(-1)


# ---------- Local file fetcher ----------


def test_local_file_fetcher_serves_document_once(tmp_path, raw_split):
    path = tmp_path / "splits.json"
    path.write_text(json.dumps({"till": 50, "splits": [raw_split()]}))
    fetcher = LocalFileSplitChangesFetcher(path)

    first = fetcher.fetch(-1)
    assert first["till"] == 50
    assert len(first["splits"]) == 1

    assert fetcher.fetch(50) == empty_changes(50)


def test_local_file_fetcher_missing_file_raises(tmp_path):
    fetcher = LocalFileSplitChangesFetcher(tmp_path / "missing.json")
    with pytest.raises(FetchError):
        fetcher.fetch(-1)


def test_local_file_fetcher_invalid_json_raises(tmp_path):
    path = tmp_path / "splits.json"
    path.write_text("{not json")
    with pytest.raises(FetchError):
        LocalFileSplitChangesFetcher(path).fetch(-1)
