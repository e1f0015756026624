"""Dataclasses for the cosense-mail-sync domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class MailMessage:
    """A Gmail message reduced to the fields a Cosense page needs.

    ``body`` is already MIME-decoded plain text. ``return_path``,
    ``rfc_message_id`` and ``reply_to`` are None when the header is absent.
    """

    id: str
    thread_id: str
    subject: str
    body: str
    sender: str
    to: str
    date: str
    return_path: str | None = None
    rfc_message_id: str | None = None
    reply_to: str | None = None


@dataclass(frozen=True)
class ImportRecord:
    """Proof that a message has a live Cosense page."""

    page_title: str
    imported_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {"pageTitle": self.page_title, "importedAt": self.imported_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImportRecord:
        return cls(
            page_title=data["pageTitle"],
            imported_at=datetime.fromisoformat(data["importedAt"].replace("Z", "+00:00")),
        )


@dataclass(frozen=True)
class FormattedPage:
    """A Cosense page ready for import: title plus ordered lines."""

    title: str
    lines: tuple[str, ...]

    def to_import_payload(self) -> dict[str, Any]:
        return {"pages": [{"title": self.title, "lines": list(self.lines)}]}


class ImportStatus(str, Enum):
    """Transitions of the two-phase page import."""

    STAGED = "staged"
    COMMITTED = "committed"
    STAGE_FAILED = "stage_failed"
    COMMIT_FAILED = "commit_failed"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class ImportResult:
    """Outcome of one import step for a single page."""

    status: ImportStatus
    title: str
    error: str = ""
    details: Any = None

    @property
    def ok(self) -> bool:
        return self.status is ImportStatus.COMMITTED


@dataclass(frozen=True)
class User:
    """A registered user."""

    id: int
    email: str
    google_id: str
    name: str = ""
    picture: str = ""


@dataclass(frozen=True)
class UserConfig:
    """Per-user destination settings. ``cosense_session_id`` is plaintext here."""

    cosense_project_name: str
    cosense_session_id: str
    notification_webhook_url: str | None = None


@dataclass
class SyncResult:
    """Per-user outcome of one sync run."""

    user_id: int
    processed_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    deleted_stale_record_count: int = 0
    message: str = ""
    error: str | None = None
    imported_pages: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "userId": self.user_id,
            "processed": self.processed_count,
            "successful": self.success_count,
            "failed": self.failed_count,
            "deletedPages": self.deleted_stale_record_count,
            "message": self.message,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BatchResult:
    """Outcome of one invocation across all users."""

    success: bool
    results: list[SyncResult] = field(default_factory=list)
    total_users: int = 0
    error: str | None = None
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error, "details": self.details}
        return {
            "success": True,
            "results": [r.to_dict() for r in self.results],
            "totalUsers": self.total_users,
        }
