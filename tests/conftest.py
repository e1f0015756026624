"""Shared fixtures for cosense-mail-sync tests."""

from __future__ import annotations

import base64
import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from urllib.parse import unquote

import httpx
import pytest

from cosense_mail_sync.core.exceptions import AuthError
from cosense_mail_sync.core.models import MailMessage, UserConfig
from cosense_mail_sync.storage.kv_store import KeyValueStore


def b64url(text: str) -> str:
    """Encode text the way the Gmail API encodes body data (unpadded base64url)."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_message(message_id: str = "msg_001", **overrides: Any) -> MailMessage:
    fields: dict[str, Any] = {
        "id": message_id,
        "thread_id": f"thread_{message_id}",
        "subject": f"Subject {message_id}",
        "body": "Hello,\r\nsee [this link] now.",
        "sender": "Alice <alice@example.com>",
        "to": "bob@example.com",
        "date": "2024-03-05T09:30:00",
    }
    fields.update(overrides)
    return MailMessage(**fields)


@pytest.fixture
def sample_message() -> MailMessage:
    """A fully populated message."""
    return make_message(
        return_path="<bounce@mail.example.com>",
        rfc_message_id="<abc123@example.com>",
        reply_to="support@example.com",
    )


@pytest.fixture
def multipart_alt_raw() -> dict[str, Any]:
    """Raw Gmail API response for a multipart/alternative email."""
    return {
        "id": "msg_alt",
        "threadId": "thread_alt",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": "Weekly report"},
                {"name": "From", "value": "Alice <alice@example.com>"},
                {"name": "To", "value": "bob@example.com"},
                {"name": "Date", "value": "Tue, 05 Mar 2024 09:30:00 +0000"},
                {"name": "Return-Path", "value": "<bounce@mail.example.com>"},
                {"name": "Message-ID", "value": "<abc123@example.com>"},
            ],
            "body": {"size": 0},
            "parts": [
                {
                    "mimeType": "text/plain",
                    "body": {"data": b64url("Plain body line 1\r\nline 2")},
                },
                {
                    "mimeType": "text/html",
                    "body": {"data": b64url("<p>HTML body</p>")},
                },
            ],
        },
    }


@pytest.fixture
def kv(tmp_path: Path) -> Iterator[KeyValueStore]:
    """Connected key-value store in a temporary SQLite file."""
    with KeyValueStore(tmp_path / "kv.db") as store:
        yield store


class FakeCosense:
    """In-memory Cosense project served over httpx.MockTransport.

    ``pages`` maps title -> description lines. A page mapped to [] exists but
    has no content.
    """

    def __init__(self, project: str = "my-project") -> None:
        self.project = project
        self.pages: dict[str, list[str]] = {}
        self.staged: list[dict[str, Any]] = []
        self.requests: list[tuple[str, str]] = []
        self.csrf_status = 200
        self.stage_status = 200
        self.commit_status = 200
        self.commit_message = "success"
        self.text_status_override: int | None = None
        self.detail_body_override: str | None = None

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handle))

    def write_calls(self) -> list[tuple[str, str]]:
        return [r for r in self.requests if r[0] == "POST"]

    def handle(self, request: httpx.Request) -> httpx.Response:
        raw_path = request.url.raw_path.decode("ascii").split("?")[0]
        segments = [unquote(s) for s in raw_path.split("/")]
        path = "/".join(segments)
        self.requests.append((request.method, path))

        if path == "/api/users/me":
            if self.csrf_status != 200:
                return httpx.Response(self.csrf_status, text="unauthorized")
            return httpx.Response(200, json={"csrfToken": "csrf-token"})

        if segments[1:3] == ["api", "pages"] and len(segments) == 6 and segments[5] == "text":
            if self.text_status_override is not None:
                return httpx.Response(self.text_status_override)
            title = segments[4]
            if title not in self.pages:
                return httpx.Response(404, json={"name": "NotFoundError"})
            return httpx.Response(200, text="\n".join([title, *self.pages[title]]))

        if segments[1:3] == ["api", "pages"] and len(segments) == 5:
            title = segments[4]
            if title not in self.pages:
                return httpx.Response(404, json={"name": "NotFoundError"})
            if self.detail_body_override is not None:
                return httpx.Response(200, text=self.detail_body_override)
            return httpx.Response(
                200, json={"title": title, "descriptions": self.pages[title][:5]}
            )

        if path == f"/api/page-data/import/{self.project}.json":
            assert request.headers["X-CSRF-TOKEN"] == "csrf-token"
            assert b'name="import-file"' in request.content
            if self.stage_status != 200:
                return httpx.Response(self.stage_status, text="stage rejected")
            start = request.content.index(b'{"pages"')
            end = request.content.rindex(b"}") + 1
            self.staged.append(json.loads(request.content[start:end]))
            return httpx.Response(200, json={"message": "Page data imported"})

        if path == f"/api/page-data/import-finish/{self.project}.json":
            if self.commit_status != 200:
                return httpx.Response(self.commit_status, text="finish rejected")
            if self.commit_message == "success":
                for data in self.staged:
                    for page in data["pages"]:
                        self.pages[page["title"]] = page["lines"][1:]
                self.staged.clear()
            return httpx.Response(200, json={"message": self.commit_message})

        return httpx.Response(404)


@pytest.fixture
def fake_cosense() -> FakeCosense:
    return FakeCosense()


class FakeMessageSource:
    """Candidate listing and message fetch backed by a dict."""

    def __init__(self) -> None:
        self.messages: dict[int, dict[str, MailMessage | None]] = {}
        self.failing_users: set[int] = set()
        self.list_calls: list[tuple[int, int | None]] = []
        self.fetch_calls: list[str] = []
        self.released: list[int] = []

    def add(self, user_id: int, message: MailMessage) -> None:
        self.messages.setdefault(user_id, {})[message.id] = message

    def list_candidate_ids(self, user_id: int, limit: int | None = None) -> list[str]:
        self.list_calls.append((user_id, limit))
        if user_id in self.failing_users:
            raise AuthError(f"Failed to authenticate with Gmail for user {user_id}")
        ids = list(self.messages.get(user_id, {}))
        return ids[:limit] if limit is not None else ids

    def fetch_message(self, user_id: int, message_id: str) -> MailMessage | None:
        self.fetch_calls.append(message_id)
        return self.messages.get(user_id, {}).get(message_id)

    def release(self, user_id: int) -> None:
        self.released.append(user_id)


@pytest.fixture
def fake_source() -> FakeMessageSource:
    return FakeMessageSource()


class FakeUserDirectory:
    def __init__(self, configs: dict[int, UserConfig | None]) -> None:
        self.configs = configs

    def list_user_ids(self) -> list[int]:
        return list(self.configs)

    def get_user_config(self, user_id: int) -> UserConfig | None:
        return self.configs.get(user_id)
