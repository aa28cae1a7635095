"""Tests for CLI commands.

These tests verify that the commands are registered and run end to end
against a local record store.
"""

import json

import pytest

from bankbook.credentials import decrypt
from bankbook.record_store import SqliteRecordStore
from bankbook.repository import Repository
from bankbook.runner.main import create_cli, main

from conftest import add_category

KEY = "1f" * 32

SQLITE_CONFIG = """
record_store:
  backend: "sqlite"
  sqlite_path: "{db}"
users:
  - id: "u1"
    business_entity: "business_1"
"""


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    @pytest.mark.parametrize(
        "command",
        ["scrape", "classify", "serve", "status", "rules", "generate-key", "init-config"],
    )
    def test_commands_registered(self, command):
        """Every command should parse."""
        assert create_cli().parse_args([command]).command == command

    def test_encrypt_credentials_arguments(self):
        """encrypt-credentials should accept inline JSON and a key."""
        args = create_cli().parse_args(["encrypt-credentials", "{}", "--key", KEY])

        assert args.credentials == "{}"
        assert args.key == KEY

    def test_rules_add_arguments(self):
        """rules add should take a pattern plus category, entity and type."""
        args = create_cli().parse_args(
            ["rules", "add", "NETFLIX", "--category", "recC", "--entity", "home", "--type", "expense"]
        )

        assert args.rules_command == "add"
        assert args.pattern == "NETFLIX"
        assert args.category == "recC"
        assert args.user == "cli"

    def test_no_command_prints_help(self, capsys):
        """Running without a command should fail with help."""
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out


class TestCommands:
    """End-to-end command runs."""

    def test_generate_key(self, capsys):
        """generate-key should print a 64-char hex key."""
        assert main(["generate-key"]) == 0

        key = capsys.readouterr().out.strip()
        assert len(key) == 64
        bytes.fromhex(key)

    def test_init_config_once(self, tmp_path, capsys):
        """init-config should refuse to overwrite."""
        path = tmp_path / "config.yaml"

        assert main(["-c", str(path), "init-config"]) == 0
        assert path.exists()
        assert main(["-c", str(path), "init-config"]) == 1

    def test_encrypt_credentials_round_trip(self, tmp_path, capsys):
        """encrypt-credentials output should decrypt back to the JSON object."""
        code = main(
            [
                "-c",
                str(tmp_path / "absent.yaml"),
                "encrypt-credentials",
                '{"userCode": "ab12", "password": "pw"}',
                "--key",
                KEY,
            ]
        )

        assert code == 0
        payload = capsys.readouterr().out.strip().splitlines()[-1]
        assert json.loads(decrypt(payload, KEY)) == {"userCode": "ab12", "password": "pw"}

    def test_encrypt_credentials_rejects_non_object(self, tmp_path):
        """Credentials must be a JSON object."""
        args = ["-c", str(tmp_path / "absent.yaml"), "encrypt-credentials", "[1, 2]", "--key", KEY]

        assert main(args) == 1

    def test_status_on_sqlite(self, tmp_path, capsys):
        """status should run against a local store."""
        path = tmp_path / "config.yaml"
        path.write_text(SQLITE_CONFIG.format(db=tmp_path / "records.db"))

        assert main(["-c", str(path), "status"]) == 0

        out = capsys.readouterr().out
        assert "Record store connection OK" in out
        assert "No accounts scraped yet" in out
        assert "Pending transactions: 0" in out

    def test_classify_on_empty_store(self, tmp_path, capsys):
        """classify should succeed with nothing pending."""
        path = tmp_path / "config.yaml"
        path.write_text(SQLITE_CONFIG.format(db=tmp_path / "records.db"))

        assert main(["-c", str(path), "classify"]) == 0
        assert "Processed:        0" in capsys.readouterr().out

    def test_invalid_config(self, tmp_path, capsys):
        """An airtable config without credentials should be rejected."""
        path = tmp_path / "config.yaml"
        path.write_text('users:\n  - id: "u1"\n    business_entity: "business_1"\n')

        assert main(["-c", str(path), "status"]) == 1
        assert "record_store.api_key" in capsys.readouterr().out

    def test_rules_add_and_list(self, tmp_path, capsys):
        """rules add should create a rule that rules list then shows."""
        db = tmp_path / "records.db"
        path = tmp_path / "config.yaml"
        path.write_text(SQLITE_CONFIG.format(db=db))
        category = add_category(Repository(SqliteRecordStore(db)), "Streaming")

        code = main(
            [
                "-c",
                str(path),
                "rules",
                "add",
                "NETFLIX",
                "--category",
                category,
                "--entity",
                "home",
                "--type",
                "expense",
            ]
        )

        assert code == 0
        assert "Created rule" in capsys.readouterr().out
        assert main(["-c", str(path), "rules", "list", "--type", "expense"]) == 0
        out = capsys.readouterr().out
        assert "Classification rules (1)" in out
        assert "'NETFLIX'" in out
        assert main(["-c", str(path), "rules", "list", "--type", "income"]) == 0
        assert "Classification rules (0)" in capsys.readouterr().out

    def test_rules_add_rejects_unknown_category(self, tmp_path, capsys):
        """rules add should fail for a category that does not exist."""
        path = tmp_path / "config.yaml"
        path.write_text(SQLITE_CONFIG.format(db=tmp_path / "records.db"))
        args = ["rules", "add", "NETFLIX", "--category", "recNope", "--entity", "home"]

        assert main(["-c", str(path), *args, "--type", "expense"]) == 1
        assert "category recNope not found" in capsys.readouterr().out
