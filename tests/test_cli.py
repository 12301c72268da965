"""
Tests for CLI commands.
"""

import json
from contextlib import contextmanager

import pytest
from typer.testing import CliRunner

from chatuniverse.cli import app
from chatuniverse.indexing import IndexingStore

from conftest import make_conversation, make_turn

# Disable Rich formatting in tests using NO_COLOR environment variable
runner = CliRunner(env={"NO_COLOR": "1", "TERM": "dumb", "COLUMNS": "200"})


@pytest.fixture
def cli_db(db_session, monkeypatch):
    """Route the CLI's db_session() to the test session."""

    @contextmanager
    def test_db_session():
        yield db_session

    monkeypatch.setattr("chatuniverse.db.connection.db_session", test_db_session)
    return db_session


class TestReadCommands:
    """Tests for summary and browsing commands."""

    def test_summary(self, cli_db, nebula_threads):
        result = runner.invoke(app, ["summary"])

        assert result.exit_code == 0
        assert "Chats: 2" in result.stdout
        assert "Turns: 3" in result.stdout
        assert "Network edges: 1" in result.stdout

    def test_providers(self, cli_db, nebula_threads):
        result = runner.invoke(app, ["providers"])

        assert result.exit_code == 0
        assert "chatgpt" in result.stdout
        assert "Showing 2 of 2" in result.stdout

    def test_chats(self, cli_db, nebula_threads):
        result = runner.invoke(app, ["chats", "claude"])

        assert result.exit_code == 0
        assert "Showing 1 of 1" in result.stdout

    def test_turns(self, cli_db, nebula_threads):
        first, _ = nebula_threads

        result = runner.invoke(app, ["turns", str(first.thread.id)])

        assert result.exit_code == 0
        assert "nebula question" in result.stdout
        assert "nebula answer" in result.stdout

    def test_turns_unknown_chat(self, cli_db):
        result = runner.invoke(
            app, ["turns", "00000000-0000-0000-0000-000000000000"]
        )

        assert result.exit_code == 1
        assert "not found" in result.stdout.lower()

    def test_turns_malformed_chat_id(self, cli_db):
        result = runner.invoke(app, ["turns", "no-such-chat"])

        assert result.exit_code == 1
        assert "Chat not found: no-such-chat" in result.stdout

    def test_network_malformed_chat_id(self, cli_db, nebula_threads):
        result = runner.invoke(app, ["network", "no-such-chat"])

        assert result.exit_code == 0
        assert "Showing 0 of 0" in result.stdout

    def test_terms(self, cli_db, nebula_threads):
        result = runner.invoke(app, ["terms", "Nebula"])

        assert result.exit_code == 0
        assert "[nebula]" in result.stdout
        assert "Showing 3 of 3" in result.stdout

    def test_global_network(self, cli_db, nebula_threads):
        result = runner.invoke(app, ["network"])

        assert result.exit_code == 0
        assert "Showing 1 of 1" in result.stdout

    def test_chat_network(self, cli_db, nebula_threads):
        _, second = nebula_threads

        result = runner.invoke(app, ["network", str(second.thread.id)])

        assert result.exit_code == 0
        assert "Showing 1 of 1" in result.stdout


class TestRunCommands:
    """Tests for run bookkeeping commands."""

    def test_run_status(self, cli_db):
        run_id = IndexingStore(cli_db).create_ingest_run("/intake")

        result = runner.invoke(app, ["run-status", str(run_id)])

        assert result.exit_code == 0
        assert "Status: running" in result.stdout
        assert "/intake" in result.stdout

    def test_run_status_unknown(self, cli_db):
        result = runner.invoke(
            app, ["run-status", "00000000-0000-0000-0000-000000000000"]
        )

        assert result.exit_code == 1
        assert "Run not found" in result.stdout

    def test_run_status_malformed_id(self, cli_db):
        result = runner.invoke(app, ["run-status", "not-a-run-id"])

        assert result.exit_code == 1
        assert "Run not found: not-a-run-id" in result.stdout

    def test_runs(self, cli_db):
        IndexingStore(cli_db).create_ingest_run("/intake")

        result = runner.invoke(app, ["runs"])

        assert result.exit_code == 0
        assert "Showing 1 of 1" in result.stdout


class TestIngestCommand:
    """Tests for ingest command."""

    def _write_export(self, root):
        root.mkdir(parents=True, exist_ok=True)
        (root / "chat.json").write_text(
            json.dumps(
                {
                    "provider": "chatgpt",
                    "title": "CLI chat",
                    "sourcePath": "chatgpt/chat",
                    "turns": [
                        {"turnIndex": 0, "role": "user", "content": "hello world"},
                        {"turnIndex": 1, "role": "assistant", "content": "hi"},
                    ],
                }
            )
        )

    def test_ingest_dry_run(self, cli_db, tmp_path):
        self._write_export(tmp_path / "intake")

        result = runner.invoke(app, ["ingest", str(tmp_path / "intake")])

        assert result.exit_code == 0
        assert "Mode: dry-run" in result.stdout
        assert "Chats: 1" in result.stdout
        assert IndexingStore(cli_db).get_universe_summary().chats == 0

    def test_ingest_save(self, cli_db, tmp_path):
        self._write_export(tmp_path / "intake")

        result = runner.invoke(
            app,
            [
                "ingest",
                str(tmp_path / "intake"),
                "--save",
                "--report-dir",
                str(tmp_path / "reports"),
            ],
        )

        assert result.exit_code == 0
        assert "Status: completed" in result.stdout
        assert "Report:" in result.stdout
        assert IndexingStore(cli_db).get_universe_summary().chats == 1

    def test_ingest_reports_quarantine(self, cli_db, tmp_path):
        self._write_export(tmp_path / "intake" / ".git")

        result = runner.invoke(app, ["ingest", str(tmp_path / "intake")])

        assert result.exit_code == 0
        assert "Quarantined" in result.stdout
        assert "Files quarantined: 1" in result.stdout


class TestReindexCommand:
    """Tests for reindex command."""

    def test_reindex_wait(self, file_session_factory, monkeypatch):
        with file_session_factory() as session:
            IndexingStore(session).ingest_normalized_thread(
                make_conversation(turns=[make_turn(0, "user", "nebula question")])
            )
        monkeypatch.setattr(
            "chatuniverse.db.connection.db_session", file_session_factory
        )
        monkeypatch.setattr(
            "chatuniverse.db.connection.background_session", file_session_factory
        )

        result = runner.invoke(app, ["reindex", "--wait"])

        assert result.exit_code == 0
        assert "Started reindex run" in result.stdout
        assert "completed" in result.stdout
        assert "Threads: 1" in result.stdout
