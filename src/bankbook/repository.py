"""
Typed record-store operations.

Every table access of the pipeline goes through ``Repository`` so field
names, stored labels and filter shapes stay in one place.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Any

from .record_store.base import (
    RecordNotFoundError,
    RecordStore,
    RecordStoreAPIError,
    chunked,
)
from .record_store.filters import And, Eq, In
from .record_store.mappers import (
    account_from_record,
    expense_category_from_record,
    income_category_from_record,
    rule_from_record,
    transaction_from_record,
)
from .schemas.models import (
    Account,
    Category,
    ClassificationRule,
    Entity,
    RecordSource,
    RuleConfidence,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from .schemas.tables import TableSchema

logger = logging.getLogger(__name__)

# Provider ids of credit-card companies; every other provider is a bank
CARD_COMPANIES = frozenset({"isracard", "amex", "max", "visaCal", "leumiCard", "behatsdaa"})

# Keeps hash lookup formulas well under URL length limits
HASH_QUERY_CHUNK = 50


class Repository:
    """Typed access to the primary record store."""

    def __init__(self, store: RecordStore, schema: TableSchema | None = None):
        self.store = store
        self.schema = schema or TableSchema()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def get_pending_transactions(self) -> list[Transaction]:
        """Pending transactions, newest first."""
        t = self.schema.transactions
        records = self.store.query(
            t.name,
            filter=Eq(t.status, self.schema.labels.to_stored("status", TransactionStatus.PENDING)),
            sort=[(t.date, "desc")],
        )
        return [transaction_from_record(r, self.schema) for r in records]

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        try:
            record = self.store.find(self.schema.transactions.name, transaction_id)
        except RecordNotFoundError:
            return None
        return transaction_from_record(record, self.schema)

    def count_transactions(self, status: TransactionStatus) -> int:
        t = self.schema.transactions
        records = self.store.query(
            t.name, filter=Eq(t.status, self.schema.labels.to_stored("status", status))
        )
        return len(records)

    def find_existing_hashes(self, hashes: Iterable[str]) -> set[str]:
        """Subset of hashes already stored."""
        t = self.schema.transactions
        wanted = list(dict.fromkeys(hashes))
        existing: set[str] = set()
        for chunk in chunked(wanted, HASH_QUERY_CHUNK):
            for record in self.store.query(t.name, filter=In(t.hash, tuple(chunk))):
                existing.add(record.get(t.hash))
        return existing

    def insert_transactions(self, rows: list[dict[str, Any]]) -> list[str]:
        """Batch insert prepared transaction field maps."""
        if not rows:
            return []
        return self.store.create_many(self.schema.transactions.name, rows)

    def update_transaction_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        record_id: str | None = None,
        record_type: TransactionType | None = None,
        rule_id: str | None = None,
    ) -> None:
        """
        Set a transaction's status and its links.

        If the store rejects the link fields (422), the status alone is
        written so the transaction still leaves the pending queue.
        """
        t = self.schema.transactions
        status_fields: dict[str, Any] = {t.status: self.schema.labels.to_stored("status", status)}
        link_fields: dict[str, Any] = {}
        if record_id:
            link_field = t.linked_income if record_type is TransactionType.INCOME else t.linked_expense
            link_fields[link_field] = [record_id]
        if rule_id:
            link_fields[t.rule] = [rule_id]

        try:
            self.store.update(t.name, transaction_id, {**status_fields, **link_fields})
        except RecordStoreAPIError as e:
            if e.status_code != 422 or not link_fields:
                raise
            logger.warning(
                f"Store rejected links for transaction {transaction_id} ({e.message}); "
                "updating status only"
            )
            self.store.update(t.name, transaction_id, status_fields)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def get_categories(self, tx_type: TransactionType, entity: Entity) -> list[Category]:
        """Active categories of a type usable by an entity, by name."""
        labels = self.schema.labels
        if tx_type is TransactionType.INCOME:
            c = self.schema.income_categories
            flt = And(
                Eq(c.owner, labels.to_stored("income_owner", entity)),
                Eq(c.status, labels.category_active),
            )
            records = self.store.query(c.name, filter=flt, sort=[(c.category_name, "asc")])
            return [income_category_from_record(r, self.schema) for r in records]

        e = self.schema.expense_categories
        scope = (
            labels.expense_scope_home if entity is Entity.HOME else labels.expense_scope_business
        )
        flt = And(Eq(e.scope, scope), Eq(e.status, labels.category_active))
        records = self.store.query(e.name, filter=flt, sort=[(e.category_name, "asc")])
        categories = [expense_category_from_record(r, self.schema) for r in records]
        for category in categories:
            category.entity = category.entity or entity
        return categories

    def get_category(self, category_id: str, tx_type: TransactionType) -> Category | None:
        if tx_type is TransactionType.INCOME:
            table, mapper = self.schema.income_categories.name, income_category_from_record
        else:
            table, mapper = self.schema.expense_categories.name, expense_category_from_record
        try:
            return mapper(self.store.find(table, category_id), self.schema)
        except RecordNotFoundError:
            return None

    # ------------------------------------------------------------------
    # Income / expense records
    # ------------------------------------------------------------------

    def create_income_record(
        self,
        transaction: Transaction,
        category_id: str,
        entity: Entity,
        source: RecordSource,
        tax_included: bool = False,
        invoice_id: str | None = None,
    ) -> str:
        i = self.schema.income
        labels = self.schema.labels
        fields: dict[str, Any] = {
            i.date: transaction.date.isoformat(),
            i.amount: float(abs(transaction.amount)),
            i.description: transaction.description,
            i.category: [category_id],
            i.entity: labels.to_stored("entity", entity),
            i.source: source.value,
            i.tax_type: labels.tax_included if tax_included else labels.tax_excluded,
            i.transaction: [transaction.id],
            i.transaction_ref: transaction.id,
        }
        if invoice_id:
            fields[i.invoice_id] = invoice_id
        return self._write_classification_record(i.name, i.transaction_ref, transaction.id, fields)

    def create_expense_record(
        self,
        transaction: Transaction,
        category_id: str,
        entity: Entity,
        source: RecordSource,
        override_amount: Decimal | None = None,
    ) -> str:
        x = self.schema.expenses
        amount = override_amount if override_amount is not None else abs(transaction.amount)
        fields: dict[str, Any] = {
            x.date: transaction.date.isoformat(),
            x.amount: float(amount),
            x.description: transaction.description,
            x.category: [category_id],
            x.entity: self.schema.labels.to_stored("entity", entity),
            x.source: source.value,
            x.transaction: [transaction.id],
            x.transaction_ref: transaction.id,
        }
        return self._write_classification_record(x.name, x.transaction_ref, transaction.id, fields)

    def _write_classification_record(
        self, table: str, ref_field: str, transaction_id: str, fields: dict[str, Any]
    ) -> str:
        """
        Create the income/expense record of a transaction, or overwrite the one
        an earlier interrupted attempt left behind.

        A transaction owns at most one record per table.
        """
        existing = self.store.query(table, filter=Eq(ref_field, transaction_id), limit=1)
        if existing:
            record_id = existing[0].id
            self.store.update(table, record_id, fields)
            logger.info(f"Updated {table} record {record_id} for transaction {transaction_id}")
            return record_id
        record_id = self.store.create(table, fields)
        logger.info(f"Created {table} record {record_id} for transaction {transaction_id}")
        return record_id

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def get_rules(self) -> list[ClassificationRule]:
        return [rule_from_record(r, self.schema) for r in self.store.query(self.schema.rules.name)]

    def get_rule(self, rule_id: str) -> ClassificationRule | None:
        try:
            return rule_from_record(self.store.find(self.schema.rules.name, rule_id), self.schema)
        except RecordNotFoundError:
            return None

    def create_rule(self, fields: dict[str, Any]) -> str:
        return self.store.create(self.schema.rules.name, fields)

    def update_rule_usage(self, rule_id: str, times_used: int, confidence: RuleConfidence) -> None:
        r = self.schema.rules
        self.store.update(
            r.name,
            rule_id,
            {
                r.times_used: times_used,
                r.confidence: self.schema.labels.to_stored("confidence", confidence),
            },
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_accounts(self) -> list[Account]:
        a = self.schema.accounts
        records = self.store.query(a.name, sort=[(a.account_name, "asc")])
        return [account_from_record(r, self.schema) for r in records]

    def get_account_by_name(self, name: str) -> Account | None:
        a = self.schema.accounts
        records = self.store.query(a.name, filter=Eq(a.account_name, name), limit=1)
        return account_from_record(records[0], self.schema) if records else None

    def create_account(self, name: str, user_id: str, company_type: str) -> Account:
        a = self.schema.accounts
        labels = self.schema.labels
        kind = labels.account_kind_card if company_type in CARD_COMPANIES else labels.account_kind_bank
        record_id = self.store.create(
            a.name,
            {a.account_name: name, a.kind: kind, a.user_id: user_id, a.active: True},
        )
        logger.info(f"Created account record {record_id} for {name}")
        return Account(id=record_id, name=name, kind=kind, user_id=user_id, active=True)

    def update_account_status(
        self, account_id: str, scraped_on: date, balance: Decimal | None
    ) -> None:
        a = self.schema.accounts
        fields: dict[str, Any] = {a.last_scraped: scraped_on.isoformat()}
        if balance is not None:
            fields[a.last_balance] = float(balance)
        self.store.update(a.name, account_id, fields)
