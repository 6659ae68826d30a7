"""Tests for the repovault CLI."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from repovault.cli import main
from repovault.remote import LocalRemote, content_id


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "backend": "local",
        "local_root": str(tmp_path / "remote"),
        "local_db_path": str(tmp_path / "data" / "app.db"),
    }))
    return path


def _run(*args):
    return CliRunner().invoke(main, list(args))


class TestCLI:
    def test_help(self):
        result = _run("--help")
        assert result.exit_code == 0
        for group in ("verify", "db", "blob", "config"):
            assert group in result.output

    def test_verify_ok(self, config_file):
        result = _run("verify", "--config", str(config_file), "--json")
        assert result.exit_code == 0
        assert '"all_passed": true' in result.output

    def test_verify_lists_every_problem(self, tmp_path):
        result = _run("verify", "--config", str(tmp_path / "missing.yaml"))
        assert result.exit_code == 1
        assert "GITHUB_REPO_OWNER is not set" in result.output
        assert "GITHUB_TOKEN is not set" in result.output

    def test_config_show_masks_token(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text(yaml.dump({"owner": "o", "repo": "r", "token": "ghp_1234567890abcd"}))
        result = _run("config", "show", "--config", str(path))
        assert result.exit_code == 0
        assert "ghp_...abcd" in result.output
        assert "1234567890" not in result.output

    def test_db_pull_push_status(self, config_file, tmp_path):
        result = _run("db", "pull", "--config", str(config_file))
        assert result.exit_code == 0, result.output
        db = tmp_path / "data" / "app.db"
        assert db.exists()

        db.write_bytes(b"local edits")
        result = _run("db", "push", "--config", str(config_file))
        assert result.exit_code == 0, result.output

        remote_file = tmp_path / "remote" / "tree" / "main" / "data" / "app.db"
        assert remote_file.read_bytes() == b"local edits"

        result = _run("db", "status", "--config", str(config_file))
        assert result.exit_code == 0
        assert "in sync" in result.output

    def test_db_push_over_existing_object(self, config_file, tmp_path, caplog):
        LocalRemote(tmp_path / "remote").put_object("data/app.db", b"older", None)
        db = tmp_path / "data" / "app.db"
        db.parent.mkdir(parents=True)
        db.write_bytes(b"newer")

        with caplog.at_level(logging.WARNING, logger="repovault.synced_file"):
            result = _run("db", "push", "--config", str(config_file))

        assert result.exit_code == 0, result.output
        assert "Stale token" not in caplog.text
        remote_file = tmp_path / "remote" / "tree" / "main" / "data" / "app.db"
        assert remote_file.read_bytes() == b"newer"

    def test_config_save_writes_effective_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GITHUB_REPO_OWNER", "acme")
        monkeypatch.setenv("GITHUB_REPO_NAME", "store")
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_1234567890abcd")
        out = tmp_path / "saved.yaml"

        result = _run(
            "config", "save", "--config", str(tmp_path / "none.yaml"), "-o", str(out)
        )

        assert result.exit_code == 0, result.output
        data = yaml.safe_load(out.read_text())
        assert data["owner"] == "acme"
        assert data["repo"] == "store"
        assert "token" not in data

    def test_db_push_without_local_file(self, config_file):
        result = _run("db", "push", "--config", str(config_file))
        assert result.exit_code == 1

    def test_blob_put_get_move(self, config_file, tmp_path):
        source = tmp_path / "notes.pdf"
        source.write_bytes(b"%PDF-1.4 notes")
        cid = content_id(b"%PDF-1.4 notes")

        result = _run("blob", "put", str(source), "--key", "doc-1", "--config", str(config_file))
        assert result.exit_code == 0, result.output
        assert cid in result.output
        assert "pdfs/doc-1/notes.pdf" in result.output

        out = tmp_path / "out.pdf"
        result = _run("blob", "get", cid, "-o", str(out), "--config", str(config_file))
        assert result.exit_code == 0, result.output
        assert out.read_bytes() == b"%PDF-1.4 notes"

        result = _run(
            "blob", "move", "pdfs/doc-1/notes.pdf", cid, "doc-1", "--config", str(config_file)
        )
        assert result.exit_code == 0, result.output
        assert "banned-pdfs/doc-1/notes.pdf" in result.output

    def test_blob_get_unknown(self, config_file, tmp_path):
        result = _run(
            "blob", "get", "0" * 40, "-o", str(tmp_path / "x"), "--config", str(config_file)
        )
        assert result.exit_code == 1
        assert "NotFound" in result.output
