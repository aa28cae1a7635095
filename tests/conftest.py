"""Test fixtures and utilities."""

from datetime import date
from decimal import Decimal

import pytest

from bankbook.record_store import SqliteRecordStore
from bankbook.record_store.mappers import new_rule_fields, new_transaction_fields
from bankbook.repository import Repository
from bankbook.schemas.dedupe import generate_transaction_hash
from bankbook.schemas.models import Entity, RuleConfidence, TransactionType
from bankbook.schemas.tables import TableSchema


ENV_VARS = [
    "AIRTABLE_API_KEY",
    "AIRTABLE_BASE_ID",
    "AIRTABLE_BUSINESS_1_BASE_ID",
    "AIRTABLE_BUSINESS_2_BASE_ID",
    "BANKBOOK_STORE_BACKEND",
    "BANKBOOK_STATE_DB",
    "BANKBOOK_TIMEZONE",
    "CREDENTIALS_ENCRYPTION_KEY",
    "SCRAPER_URL",
    "SUMIT_API_KEY",
    "SUMIT_BUSINESS_1_ID",
    "SUMIT_BUSINESS_2_ID",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_ADMIN_CHAT_ID",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep deployment secrets in the environment out of every test."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def record_store(tmp_path):
    """Empty local record store."""
    return SqliteRecordStore(tmp_path / "records.db")


@pytest.fixture
def schema():
    return TableSchema()


@pytest.fixture
def repository(record_store, schema):
    return Repository(record_store, schema)


def add_transaction(
    repository,
    description="סופר יוחננוף רמת גן",
    amount="-120.50",
    tx_date=date(2024, 3, 15),
    user_id="u1",
    account_record_id=None,
):
    """Insert a pending transaction and return its id."""
    amount = Decimal(amount)
    fields = new_transaction_fields(
        repository.schema,
        tx_hash=generate_transaction_hash(tx_date, amount, description, "Main", user_id),
        tx_date=tx_date,
        amount=amount,
        description=description,
        account_record_id=account_record_id,
        user_id=user_id,
    )
    return repository.insert_transactions([fields])[0]


def add_category(repository, name, tx_type=TransactionType.EXPENSE, entity=Entity.HOME, active=True):
    """Insert a category and return its id."""
    schema = repository.schema
    labels = schema.labels
    status = labels.category_active if active else "Inactive"
    if tx_type is TransactionType.INCOME:
        c = schema.income_categories
        fields = {
            c.category_name: name,
            c.owner: labels.to_stored("income_owner", entity),
            c.status: status,
        }
    else:
        c = schema.expense_categories
        scope = labels.expense_scope_home if entity is Entity.HOME else labels.expense_scope_business
        fields = {c.category_name: name, c.scope: scope, c.status: status}
    return repository.store.create(c.name, fields)


def add_rule(
    repository,
    pattern,
    category_id,
    entity=Entity.HOME,
    tx_type=TransactionType.EXPENSE,
    times_used=0,
    confidence=RuleConfidence.AUTOMATIC,
    override_amount=None,
):
    """Insert a rule and return its id."""
    fields = new_rule_fields(
        repository.schema,
        pattern=pattern,
        category_id=category_id,
        entity=entity,
        rule_type=tx_type,
        created_by="u1",
    )
    r = repository.schema.rules
    fields[r.times_used] = times_used
    fields[r.confidence] = repository.schema.labels.to_stored("confidence", confidence)
    if override_amount is not None:
        fields[r.override_amount] = override_amount
    return repository.create_rule(fields)
