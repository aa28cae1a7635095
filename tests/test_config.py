"""
Tests for configuration loading and validation.
"""

from pathlib import Path

import pytest

from bankbook.config import Config, UserConfig, create_default_config, load_config
from bankbook.schemas.models import Entity

CONFIG_YAML = """
timezone: "Asia/Jerusalem"
credentials_key: "{key}"
record_store:
  backend: "sqlite"
  sqlite_path: "{db}"
users:
  - id: "dana"
    business_entity: "business_1"
    chat_id: 1234
  - id: "avi"
    business_entity: "business_2"
accounts:
  - name: "Leumi"
    company_type: "leumi"
    user_id: "dana"
    credentials_env: "LEUMI_CREDENTIALS"
    account_numbers: [12345]
ledger:
  business_1_base_id: "appB1"
  business_2_base_id: "appB2"
tables:
  transactions:
    name: "Bank Transactions"
  labels:
    status:
      pending: "Awaiting"
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML.format(key="ab" * 32, db=tmp_path / "records.db"))
    return path


class TestValidation:
    """Test Config.validate."""

    def test_defaults_are_invalid(self):
        """Test an empty config reports the missing store and users."""
        errors = Config().validate()

        assert any("record_store.api_key" in e for e in errors)
        assert any("record_store.base_id" in e for e in errors)
        assert any("at least one user" in e for e in errors)

    def test_optional_layers_never_fail_validation(self):
        """Test missing invoice, ledger and chat settings are not errors."""
        config = Config(users=[UserConfig(id="u1", business_entity=Entity.BUSINESS_1)])
        config.record_store.backend = "sqlite"

        assert config.validate() == []
        assert not config.invoice.is_configured()
        assert not config.ledger.is_configured()
        assert not config.notifications.is_configured()

    def test_user_entity_must_be_business(self):
        """Test users cannot own the household entity."""
        config = Config(users=[UserConfig(id="u1", business_entity=Entity.HOME)])
        config.record_store.backend = "sqlite"

        assert any("business_entity" in e for e in config.validate())

    def test_account_with_unknown_user(self, config_file):
        """Test accounts must reference configured users."""
        config = load_config(config_file)
        config.accounts[0].user_id = "ghost"

        assert any("unknown user_id ghost" in e for e in config.validate())

    def test_accounts_need_key(self, config_file):
        """Test the encryption key is required once accounts exist."""
        config = load_config(config_file)
        config.credentials_key = ""

        assert any("encryption key" in e for e in config.validate())


class TestLoadConfig:
    """Test YAML parsing and environment overrides."""

    def test_parses_yaml(self, config_file, tmp_path):
        """Test values are read from the file."""
        config = load_config(config_file)

        assert config.validate() == []
        assert config.record_store.backend == "sqlite"
        assert config.record_store.sqlite_path == tmp_path / "records.db"
        assert [u.id for u in config.users] == ["dana", "avi"]
        assert config.users[0].chat_id == "1234"
        assert config.get_user_by_chat(1234).id == "dana"
        assert config.business_entity_for("avi") is Entity.BUSINESS_2
        assert config.business_entity_for("nobody") is None
        assert config.accounts[0].account_numbers == ["12345"]

    def test_table_overrides_merge(self, config_file):
        """Test table names and labels merge over the defaults."""
        tables = load_config(config_file).tables

        assert tables.transactions.name == "Bank Transactions"
        assert tables.transactions.hash == "Hash"
        assert tables.labels.status["pending"] == "Awaiting"
        assert tables.labels.status["ignored"] == "Ignored"

    def test_env_overrides(self, config_file, monkeypatch):
        """Test environment variables win over the file."""
        monkeypatch.setenv("BANKBOOK_STORE_BACKEND", "airtable")
        monkeypatch.setenv("AIRTABLE_API_KEY", "patXYZ")
        monkeypatch.setenv("AIRTABLE_BASE_ID", "appMain")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        monkeypatch.setenv("TELEGRAM_ADMIN_CHAT_ID", "999")

        config = load_config(config_file)

        assert config.record_store.backend == "airtable"
        assert config.record_store.base_id == "appMain"
        assert config.notifications.is_configured()
        assert config.notifications.admin_chat_id == "999"
        assert config.validate() == []

    def test_ledger_shares_store_key(self, config_file, monkeypatch):
        """Test the ledger falls back to the record store API key."""
        monkeypatch.setenv("AIRTABLE_API_KEY", "patXYZ")

        config = load_config(config_file)

        assert config.ledger.api_key == "patXYZ"
        assert config.ledger.is_configured()

    def test_missing_file_gives_defaults(self, tmp_path):
        """Test a missing file loads built-in defaults."""
        config = load_config(tmp_path / "absent.yaml")

        assert config.schedule.ingestion_cron == "0 4 * * *"
        assert config.schedule.classification_timezone == "Asia/Jerusalem"
        assert config.resolution.page_size == 10


class TestDefaultConfig:
    """Test the generated starter config."""

    def test_round_trip(self, tmp_path):
        """Test the written file loads back."""
        path = Path(tmp_path) / "nested" / "config.yaml"
        create_default_config(path)

        config = load_config(path)

        assert len(config.users) == 2
        assert config.accounts[0].credentials_env == "BANK_MAIN_CREDENTIALS"
        assert config.accounts[0].user_id == "user_1"
        assert config.record_store.base_id == "appXXXXXXXXXXXXXX"
