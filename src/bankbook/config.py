"""
Configuration management (SSOT).

This module defines ALL configuration for bankbook.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Secrets (API keys, encryption key, bot token) come from the environment
  in deployments; the YAML file holds layout and tuning
- Optional layers (invoice matching, client ledger, chat notifications) are
  never validation errors: missing settings disable the layer
- Strictly required settings (record store, credential key with accounts
  configured) fail validation loudly
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .schemas.models import Entity
from .schemas.tables import TableSchema

STORE_BACKENDS = ("airtable", "sqlite")
FLOW_STATE_BACKENDS = ("memory", "store")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class RecordStoreConfig:
    """Primary record store.

    backend "airtable" talks to a hosted base; "sqlite" keeps records in a
    local file (development and tests).
    """

    backend: str = "airtable"
    api_key: str = ""
    base_id: str = ""
    api_url: str = "https://api.airtable.com/v0"
    sqlite_path: Path = field(default_factory=lambda: Path("data/records.db"))
    timeout_seconds: int = 30
    max_retries: int = 3


@dataclass
class ScraperConfig:
    """Scraping sidecar service and retry policy."""

    base_url: str = "http://localhost:3000"
    timeout_seconds: int = 300
    max_attempts: int = 3
    # Start date when an account has never been scraped
    default_lookback_days: int = 30


@dataclass
class AccountConfig:
    """One bank/credit-card login.

    credentials_env names the environment variable that holds the
    encrypted credential payload ("<iv hex>:<ciphertext hex>").
    """

    name: str
    company_type: str
    user_id: str
    credentials_env: str
    # Empty means every sub-account the login returns
    account_numbers: list[str] = field(default_factory=list)


@dataclass
class UserConfig:
    """A household member who owns accounts and one business."""

    id: str
    business_entity: Entity
    chat_id: str | None = None
    name: str | None = None


@dataclass
class InvoiceConfig:
    """Invoicing API (first classification layer)."""

    api_key: str = ""
    base_url: str = "https://api.sumit.co.il"
    business_1_company_id: str = ""
    business_2_company_id: str = ""
    date_window_days: int = 7
    amount_tolerance: float = 0.01
    timeout_seconds: int = 30

    def is_configured(self) -> bool:
        return bool(self.api_key and self.business_1_company_id and self.business_2_company_id)


@dataclass
class LedgerConfig:
    """Per-business client ledgers (second classification layer)."""

    api_key: str = ""
    business_1_base_id: str = ""
    business_2_base_id: str = ""
    date_window_days: int = 7
    amount_tolerance: float = 0.10

    def is_configured(self) -> bool:
        return bool(self.api_key and self.business_1_base_id and self.business_2_base_id)


@dataclass
class RulesConfig:
    """Learned-rule engine."""

    cache_ttl_seconds: int = 300


@dataclass
class ResolutionConfig:
    """Manual resolution chat flow."""

    # "memory" loses in-flight flows on restart; "store" persists them
    state_backend: str = "memory"
    page_size: int = 10
    payment_app_keywords: list[str] = field(
        default_factory=lambda: ["bit", "paybox", "pepper pay", "ביט", "פייבוקס"]
    )


@dataclass
class NotificationConfig:
    """Telegram bot used for summaries and manual resolution."""

    telegram_bot_token: str = ""
    admin_chat_id: str | None = None
    api_url: str = "https://api.telegram.org"
    timeout_seconds: int = 15

    def is_configured(self) -> bool:
        return bool(self.telegram_bot_token)


@dataclass
class ScheduleConfig:
    """Daily triggers (cron expressions)."""

    ingestion_cron: str = "0 4 * * *"
    ingestion_timezone: str = "UTC"
    classification_cron: str = "0 7 * * *"
    classification_timezone: str = "Asia/Jerusalem"


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    record_store: RecordStoreConfig = field(default_factory=RecordStoreConfig)
    scraper: ScraperConfig = field(default_factory=ScraperConfig)
    accounts: list[AccountConfig] = field(default_factory=list)
    users: list[UserConfig] = field(default_factory=list)
    invoice: InvoiceConfig = field(default_factory=InvoiceConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    tables: TableSchema = field(default_factory=TableSchema)
    credentials_key: str = ""
    # Timezone used to turn scraped timestamps into calendar days
    timezone: str = "Asia/Jerusalem"

    def get_user(self, user_id: str) -> UserConfig | None:
        for user in self.users:
            if user.id == user_id:
                return user
        return None

    def get_user_by_chat(self, chat_id: str | int) -> UserConfig | None:
        for user in self.users:
            if user.chat_id is not None and str(user.chat_id) == str(chat_id):
                return user
        return None

    def business_entity_for(self, user_id: str) -> Entity | None:
        """The business entity a user's income belongs to."""
        user = self.get_user(user_id)
        return user.business_entity if user else None

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        store = self.record_store
        if store.backend not in STORE_BACKENDS:
            errors.append(f"record_store.backend must be one of {', '.join(STORE_BACKENDS)}")
        elif store.backend == "airtable":
            if not store.api_key:
                errors.append("record_store.api_key is required for the airtable backend")
            if not store.base_id:
                errors.append("record_store.base_id is required for the airtable backend")

        if not self.users:
            errors.append("at least one user must be configured")
        for user in self.users:
            if not user.business_entity.is_business:
                errors.append(f"user {user.id}: business_entity must be a business")

        user_ids = {user.id for user in self.users}
        for account in self.accounts:
            if account.user_id not in user_ids:
                errors.append(f"account {account.name}: unknown user_id {account.user_id}")
            if not account.credentials_env:
                errors.append(f"account {account.name}: credentials_env is required")

        if self.accounts and not self.credentials_key:
            errors.append("credentials encryption key is required when accounts are configured")

        if self.scraper.max_attempts < 1:
            errors.append("scraper.max_attempts must be >= 1")

        for name, tolerance in (
            ("invoice.amount_tolerance", self.invoice.amount_tolerance),
            ("ledger.amount_tolerance", self.ledger.amount_tolerance),
        ):
            if not 0 <= tolerance < 1:
                errors.append(f"{name} must be between 0 and 1")

        if self.resolution.state_backend not in FLOW_STATE_BACKENDS:
            errors.append(
                f"resolution.state_backend must be one of {', '.join(FLOW_STATE_BACKENDS)}"
            )
        if self.resolution.page_size < 1:
            errors.append("resolution.page_size must be >= 1")

        return errors


def _parse_accounts(items: list[dict]) -> list[AccountConfig]:
    accounts = []
    for item in items or []:
        accounts.append(
            AccountConfig(
                name=item["name"],
                company_type=item["company_type"],
                user_id=str(item["user_id"]),
                credentials_env=item.get("credentials_env", ""),
                account_numbers=[str(n) for n in item.get("account_numbers") or []],
            )
        )
    return accounts


def _parse_users(items: list[dict]) -> list[UserConfig]:
    users = []
    for item in items or []:
        chat_id = item.get("chat_id")
        users.append(
            UserConfig(
                id=str(item["id"]),
                business_entity=Entity(item["business_entity"]),
                chat_id=str(chat_id) if chat_id is not None else None,
                name=item.get("name"),
            )
        )
    return users


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - AIRTABLE_API_KEY
    - AIRTABLE_BASE_ID
    - AIRTABLE_BUSINESS_1_BASE_ID / AIRTABLE_BUSINESS_2_BASE_ID
    - BANKBOOK_STORE_BACKEND (airtable/sqlite)
    - BANKBOOK_STATE_DB (sqlite record store path)
    - BANKBOOK_TIMEZONE
    - CREDENTIALS_ENCRYPTION_KEY (64 hex chars)
    - SCRAPER_URL
    - SUMIT_API_KEY
    - SUMIT_BUSINESS_1_ID / SUMIT_BUSINESS_2_ID
    - TELEGRAM_BOT_TOKEN
    - TELEGRAM_ADMIN_CHAT_ID
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Record store
    store_data = data.get("record_store", {})
    record_store = RecordStoreConfig(
        backend=os.environ.get("BANKBOOK_STORE_BACKEND", store_data.get("backend", "airtable")),
        api_key=os.environ.get("AIRTABLE_API_KEY", store_data.get("api_key", "")),
        base_id=os.environ.get("AIRTABLE_BASE_ID", store_data.get("base_id", "")),
        api_url=store_data.get("api_url", "https://api.airtable.com/v0"),
        sqlite_path=Path(
            os.environ.get("BANKBOOK_STATE_DB", store_data.get("sqlite_path", "data/records.db"))
        ),
        timeout_seconds=store_data.get("timeout_seconds", 30),
        max_retries=store_data.get("max_retries", 3),
    )

    # Scraper
    scraper_data = data.get("scraper", {})
    scraper = ScraperConfig(
        base_url=os.environ.get(
            "SCRAPER_URL", scraper_data.get("base_url", "http://localhost:3000")
        ),
        timeout_seconds=scraper_data.get("timeout_seconds", 300),
        max_attempts=scraper_data.get("max_attempts", 3),
        default_lookback_days=scraper_data.get("default_lookback_days", 30),
    )

    # Invoicing API
    invoice_data = data.get("invoice", {})
    invoice = InvoiceConfig(
        api_key=os.environ.get("SUMIT_API_KEY", invoice_data.get("api_key", "")),
        base_url=invoice_data.get("base_url", "https://api.sumit.co.il"),
        business_1_company_id=str(
            os.environ.get("SUMIT_BUSINESS_1_ID", invoice_data.get("business_1_company_id", ""))
        ),
        business_2_company_id=str(
            os.environ.get("SUMIT_BUSINESS_2_ID", invoice_data.get("business_2_company_id", ""))
        ),
        date_window_days=invoice_data.get("date_window_days", 7),
        amount_tolerance=invoice_data.get("amount_tolerance", 0.01),
        timeout_seconds=invoice_data.get("timeout_seconds", 30),
    )

    # Client ledgers share the record store API key unless given their own
    ledger_data = data.get("ledger", {})
    ledger = LedgerConfig(
        api_key=ledger_data.get("api_key") or record_store.api_key,
        business_1_base_id=os.environ.get(
            "AIRTABLE_BUSINESS_1_BASE_ID", ledger_data.get("business_1_base_id", "")
        ),
        business_2_base_id=os.environ.get(
            "AIRTABLE_BUSINESS_2_BASE_ID", ledger_data.get("business_2_base_id", "")
        ),
        date_window_days=ledger_data.get("date_window_days", 7),
        amount_tolerance=ledger_data.get("amount_tolerance", 0.10),
    )

    rules_data = data.get("rules", {})
    rules = RulesConfig(cache_ttl_seconds=rules_data.get("cache_ttl_seconds", 300))

    resolution_data = data.get("resolution", {})
    resolution = ResolutionConfig(
        state_backend=resolution_data.get("state_backend", "memory"),
        page_size=resolution_data.get("page_size", 10),
    )
    if "payment_app_keywords" in resolution_data:
        resolution.payment_app_keywords = list(resolution_data["payment_app_keywords"])

    notify_data = data.get("notifications", {})
    admin_chat = os.environ.get("TELEGRAM_ADMIN_CHAT_ID", notify_data.get("admin_chat_id"))
    notifications = NotificationConfig(
        telegram_bot_token=os.environ.get(
            "TELEGRAM_BOT_TOKEN", notify_data.get("telegram_bot_token", "")
        ),
        admin_chat_id=str(admin_chat) if admin_chat is not None else None,
        api_url=notify_data.get("api_url", "https://api.telegram.org"),
        timeout_seconds=notify_data.get("timeout_seconds", 15),
    )

    schedule_data = data.get("schedule", {})
    schedule = ScheduleConfig(
        ingestion_cron=schedule_data.get("ingestion_cron", "0 4 * * *"),
        ingestion_timezone=schedule_data.get("ingestion_timezone", "UTC"),
        classification_cron=schedule_data.get("classification_cron", "0 7 * * *"),
        classification_timezone=schedule_data.get("classification_timezone", "Asia/Jerusalem"),
    )

    return Config(
        record_store=record_store,
        scraper=scraper,
        accounts=_parse_accounts(data.get("accounts", [])),
        users=_parse_users(data.get("users", [])),
        invoice=invoice,
        ledger=ledger,
        rules=rules,
        resolution=resolution,
        notifications=notifications,
        schedule=schedule,
        tables=TableSchema.from_dict(data.get("tables")),
        credentials_key=os.environ.get(
            "CREDENTIALS_ENCRYPTION_KEY", data.get("credentials_key", "")
        ),
        timezone=os.environ.get("BANKBOOK_TIMEZONE", data.get("timezone", "Asia/Jerusalem")),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# bankbook configuration
#
# Secrets are best supplied through the environment:
#   AIRTABLE_API_KEY, CREDENTIALS_ENCRYPTION_KEY, SUMIT_API_KEY,
#   TELEGRAM_BOT_TOKEN

timezone: "Asia/Jerusalem"

record_store:
  backend: "airtable"                # airtable | sqlite
  base_id: "appXXXXXXXXXXXXXX"
  sqlite_path: "data/records.db"     # used by the sqlite backend

scraper:
  base_url: "http://localhost:3000"  # scraping sidecar service
  max_attempts: 3
  default_lookback_days: 30

users:
  - id: "user_1"
    name: "First user"
    business_entity: "business_1"
    chat_id: null
  - id: "user_2"
    name: "Second user"
    business_entity: "business_2"
    chat_id: null

accounts:
  - name: "Main Bank Account"
    company_type: "discount"
    user_id: "user_1"
    credentials_env: "BANK_MAIN_CREDENTIALS"   # encrypted "<iv>:<ciphertext>"
    account_numbers: []                         # empty = all sub-accounts

# Invoicing API (optional; disabled unless all three values are set)
invoice:
  business_1_company_id: ""
  business_2_company_id: ""
  date_window_days: 7
  amount_tolerance: 0.01

# Client ledgers (optional; disabled unless both base ids are set)
ledger:
  business_1_base_id: ""
  business_2_base_id: ""
  date_window_days: 7
  amount_tolerance: 0.10

rules:
  cache_ttl_seconds: 300

resolution:
  state_backend: "memory"            # memory | store
  page_size: 10

notifications:
  admin_chat_id: null

schedule:
  ingestion_cron: "0 4 * * *"
  ingestion_timezone: "UTC"
  classification_cron: "0 7 * * *"
  classification_timezone: "Asia/Jerusalem"

# Override table, field or label names to match an existing base, e.g.
# tables:
#   transactions:
#     name: "Bank Transactions"
#   labels:
#     status:
#       pending: "Awaiting classification"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
