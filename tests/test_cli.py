"""Tests for CLI argument parsing and the storage-only subcommands."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

import scripts.cli as cli_module
from cosense_mail_sync.core.models import BatchResult
from cosense_mail_sync.storage.kv_store import KeyValueStore
from cosense_mail_sync.storage.records import ImportRecordStore


def _parse_args(argv: list[str]) -> argparse.Namespace:
    return cli_module.build_parser().parse_args(argv)


def _run_main(argv: list[str]) -> int:
    with patch.object(sys, "argv", ["cli.py", *argv]):
        with pytest.raises(SystemExit) as exc_info:
            cli_module.main()
            raise SystemExit(0)
    return exc_info.value.code or 0


@pytest.fixture
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    db_path = tmp_path / "data" / "kv.db"
    monkeypatch.setenv("COSENSE_SYNC_DATABASE_PATH", str(db_path))
    monkeypatch.setenv("COSENSE_SYNC_TOKEN_ENCRYPTION_KEY", "test-secret")
    return db_path


class TestArgs:
    def test_sync_defaults(self) -> None:
        assert _parse_args(["sync"]).batch_limit is None

    def test_sync_batch_limit(self) -> None:
        assert _parse_args(["sync", "--batch-limit", "10"]).batch_limit == 10

    def test_records_requires_integer_user(self) -> None:
        assert _parse_args(["records", "42"]).user_id == 42
        with pytest.raises(SystemExit):
            _parse_args(["records", "abc"])

    def test_configure_flags(self) -> None:
        args = _parse_args(
            ["configure", "1", "--project", "p", "--session-id", "sid", "--webhook", "https://h"]
        )
        assert (args.project, args.session_id, args.webhook) == ("p", "sid", "https://h")

    def test_rejects_non_positive_batch_limit(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli_module._validate_args(_parse_args(["sync", "--batch-limit", "0"]))
        assert exc_info.value.code == 1
        assert "--batch-limit must be positive" in capsys.readouterr().err


class TestCommands:
    def test_no_command_prints_help(self) -> None:
        assert _run_main([]) == 1

    def test_configure_then_users_and_records(
        self, env: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with KeyValueStore(env) as kv:
            kv.set("user:42", {"id": 42, "email": "a@example.com"})
            ImportRecordStore(kv).put(42, "msg_a", "(📮Email) | A")

        assert _run_main(["configure", "42", "--project", "p", "--session-id", "sid"]) == 0
        assert "Configured user 42 for project p" in capsys.readouterr().out

        assert _run_main(["users"]) == 0
        assert capsys.readouterr().out.split() == ["42"]

        assert _run_main(["records", "42"]) == 0
        out = capsys.readouterr().out
        assert "1 import records for user 42" in out
        assert "(📮Email) | A" in out

    def test_sync_prints_result_and_exit_code(
        self, env: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        orchestrator = MagicMock()
        orchestrator.run_sync.return_value = BatchResult(success=False, error="x", details="y")

        with patch.object(
            cli_module.SyncOrchestrator, "from_settings", return_value=orchestrator
        ) as mock_from_settings:
            assert _run_main(["sync", "--batch-limit", "5"]) == 1

        assert mock_from_settings.call_args.args[0].batch_limit == 5
        orchestrator.close.assert_called_once()
        assert '"success": false' in capsys.readouterr().out
