"""
Record <-> model mappers.

The only place where field maps are read into typed models or written from
them. Field names and stored labels come from ``TableSchema``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from ..schemas.models import (
    Account,
    Category,
    ClassificationRule,
    Entity,
    RuleConfidence,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from ..schemas.tables import TableSchema
from .base import Record


def parse_date(value: Any) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_decimal(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    return Decimal(str(value))


def _enum_or_none(enum_cls: type, value: str | None) -> Any:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def transaction_from_record(record: Record, schema: TableSchema) -> Transaction:
    """Map a transactions-table record.

    ``source`` is the id of the linked account record.
    """
    t = schema.transactions
    labels = schema.labels
    status = _enum_or_none(
        TransactionStatus, labels.from_stored("status", record.get(t.status))
    )
    return Transaction(
        id=record.id,
        hash=record.get(t.hash, ""),
        date=parse_date(record.get(t.date)),
        amount=parse_decimal(record.get(t.amount)) or Decimal("0"),
        description=record.get(t.description, ""),
        source=record.first_link(t.source),
        user_id=record.get(t.user_id, ""),
        status=status or TransactionStatus.PENDING,
        linked_record_id=record.first_link(t.linked_income) or record.first_link(t.linked_expense),
        rule_id=record.first_link(t.rule),
    )


def new_transaction_fields(
    schema: TableSchema,
    *,
    tx_hash: str,
    tx_date: date,
    amount: Decimal,
    description: str,
    account_record_id: str | None,
    user_id: str,
) -> dict[str, Any]:
    """Fields of a freshly ingested (pending) transaction."""
    t = schema.transactions
    fields: dict[str, Any] = {
        t.hash: tx_hash,
        t.date: tx_date.isoformat(),
        t.amount: float(amount),
        t.description: description,
        t.user_id: user_id,
        t.status: schema.labels.to_stored("status", TransactionStatus.PENDING),
    }
    if account_record_id:
        fields[t.source] = [account_record_id]
    return fields


def income_category_from_record(record: Record, schema: TableSchema) -> Category:
    c = schema.income_categories
    owner = schema.labels.from_stored("income_owner", record.get(c.owner))
    return Category(
        id=record.id,
        name=record.get(c.category_name, ""),
        type=TransactionType.INCOME,
        entity=_enum_or_none(Entity, owner),
    )


def expense_category_from_record(record: Record, schema: TableSchema) -> Category:
    c = schema.expense_categories
    scope = record.get(c.scope)
    entity = Entity.HOME if scope == schema.labels.expense_scope_home else None
    return Category(
        id=record.id,
        name=record.get(c.category_name, ""),
        type=TransactionType.EXPENSE,
        entity=entity,
    )


def rule_from_record(record: Record, schema: TableSchema) -> ClassificationRule:
    r = schema.rules
    labels = schema.labels
    rule_type = _enum_or_none(TransactionType, labels.from_stored("type", record.get(r.type)))
    rule_type = rule_type or TransactionType.EXPENSE
    category_field = r.income_category if rule_type is TransactionType.INCOME else r.expense_category
    confidence = _enum_or_none(
        RuleConfidence, labels.from_stored("confidence", record.get(r.confidence))
    )
    entity = _enum_or_none(Entity, labels.from_stored("entity", record.get(r.entity)))
    return ClassificationRule(
        id=record.id,
        pattern=record.get(r.pattern, "") or "",
        category_id=record.first_link(category_field) or "",
        entity=entity or Entity.HOME,
        type=rule_type,
        confidence=confidence or RuleConfidence.AUTOMATIC,
        times_used=int(record.get(r.times_used) or 0),
        created_by=record.get(r.created_by),
        override_amount=parse_decimal(record.get(r.override_amount)),
    )


def new_rule_fields(
    schema: TableSchema,
    *,
    pattern: str,
    category_id: str,
    entity: Entity,
    rule_type: TransactionType,
    created_by: str,
) -> dict[str, Any]:
    """Fields of a freshly learned rule (automatic, unused)."""
    r = schema.rules
    labels = schema.labels
    category_field = r.income_category if rule_type is TransactionType.INCOME else r.expense_category
    return {
        r.pattern: pattern,
        category_field: [category_id],
        r.entity: labels.to_stored("entity", entity),
        r.type: labels.to_stored("type", rule_type),
        r.confidence: labels.to_stored("confidence", RuleConfidence.AUTOMATIC),
        r.times_used: 0,
        r.created_by: created_by,
    }


def account_from_record(record: Record, schema: TableSchema) -> Account:
    a = schema.accounts
    active = record.get(a.active)
    return Account(
        id=record.id,
        name=record.get(a.account_name, ""),
        kind=record.get(a.kind),
        user_id=record.get(a.user_id),
        active=True if active is None else bool(active),
        last_scraped=parse_date(record.get(a.last_scraped)),
        last_balance=parse_decimal(record.get(a.last_balance)),
    )
