"""
Record-store table layout (SSOT).

All table names, field names and stored value labels live here. No other
module should spell a field name; mappers and repositories read them from a
``TableSchema`` instance, which the ``tables:`` config section can override
so the same code runs against bases laid out in another language.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any

from .models import Entity, RuleConfidence, TransactionStatus, TransactionType


@dataclass
class TransactionsTable:
    name: str = "Transactions"
    hash: str = "Hash"
    date: str = "Date"
    amount: str = "Amount"
    description: str = "Description"
    source: str = "Account"
    user_id: str = "User"
    status: str = "Status"
    linked_income: str = "Income Record"
    linked_expense: str = "Expense Record"
    rule: str = "Rule"


@dataclass
class AccountsTable:
    name: str = "Accounts"
    account_name: str = "Name"
    kind: str = "Type"
    user_id: str = "User"
    active: str = "Active"
    last_scraped: str = "Last Scraped"
    last_balance: str = "Last Balance"


@dataclass
class IncomeCategoriesTable:
    name: str = "Income Categories"
    category_name: str = "Name"
    owner: str = "Owner"
    status: str = "Status"


@dataclass
class ExpenseCategoriesTable:
    name: str = "Expense Categories"
    category_name: str = "Name"
    scope: str = "Scope"
    status: str = "Status"


@dataclass
class IncomeTable:
    name: str = "Income"
    date: str = "Date"
    amount: str = "Amount"
    description: str = "Description"
    category: str = "Category"
    entity: str = "Entity"
    source: str = "Source"
    tax_type: str = "VAT Type"
    transaction: str = "Transaction"
    transaction_ref: str = "Transaction ID"
    invoice_id: str = "Invoice ID"


@dataclass
class ExpensesTable:
    name: str = "Expenses"
    date: str = "Date"
    amount: str = "Amount"
    description: str = "Description"
    category: str = "Category"
    entity: str = "Entity"
    source: str = "Source"
    transaction: str = "Transaction"
    transaction_ref: str = "Transaction ID"


@dataclass
class RulesTable:
    name: str = "Classification Rules"
    pattern: str = "Pattern"
    income_category: str = "Income Category"
    expense_category: str = "Expense Category"
    entity: str = "Entity"
    type: str = "Type"
    confidence: str = "Confidence"
    times_used: str = "Times Used"
    created_by: str = "Created By"
    override_amount: str = "Override Amount"


@dataclass
class ClientsTable:
    name: str = "Clients"
    client_name: str = "Name"
    payment_date: str = "Expected Payment Date"
    amount: str = "Expected Amount"


@dataclass
class FlowsTable:
    name: str = "Resolution Flows"
    transaction_id: str = "Transaction ID"
    stage: str = "Stage"
    type: str = "Type"
    entity: str = "Entity"
    updated_at: str = "Updated At"


def _default_status_labels() -> dict[str, str]:
    return {
        TransactionStatus.PENDING.value: "Pending",
        TransactionStatus.AUTO_CLASSIFIED.value: "Auto-classified",
        TransactionStatus.MANUALLY_CLASSIFIED.value: "Manually classified",
        TransactionStatus.IGNORED.value: "Ignored",
    }


def _default_entity_labels() -> dict[str, str]:
    return {
        Entity.HOME.value: "Home",
        Entity.BUSINESS_1.value: "Business 1",
        Entity.BUSINESS_2.value: "Business 2",
        Entity.SHARED.value: "Shared Business",
    }


def _default_owner_labels() -> dict[str, str]:
    return {
        Entity.BUSINESS_1.value: "Business 1",
        Entity.BUSINESS_2.value: "Business 2",
        Entity.SHARED.value: "Shared",
    }


def _default_confidence_labels() -> dict[str, str]:
    return {
        RuleConfidence.AUTOMATIC.value: "Automatic",
        RuleConfidence.CONFIRMED.value: "Confirmed",
    }


def _default_type_labels() -> dict[str, str]:
    return {
        TransactionType.INCOME.value: "Income",
        TransactionType.EXPENSE.value: "Expense",
    }


@dataclass
class ValueLabels:
    """Stored representations of enum values and fixed markers."""

    status: dict[str, str] = field(default_factory=_default_status_labels)
    entity: dict[str, str] = field(default_factory=_default_entity_labels)
    # Income categories are owned per business, not per entity label
    income_owner: dict[str, str] = field(default_factory=_default_owner_labels)
    confidence: dict[str, str] = field(default_factory=_default_confidence_labels)
    type: dict[str, str] = field(default_factory=_default_type_labels)
    expense_scope_home: str = "Home"
    expense_scope_business: str = "Business"
    category_active: str = "Active"
    tax_included: str = "Including VAT"
    tax_excluded: str = "Before VAT"
    account_kind_bank: str = "Bank Account"
    account_kind_card: str = "Credit Card"

    def to_stored(self, mapping: str, value: Any) -> str:
        """Stored label for an enum member (or its value)."""
        key = getattr(value, "value", value)
        return getattr(self, mapping).get(key, key)

    def from_stored(self, mapping: str, stored: str | None) -> str | None:
        """Enum value for a stored label; unknown labels pass through."""
        if stored is None:
            return None
        for key, label in getattr(self, mapping).items():
            if label == stored:
                return key
        return stored


@dataclass
class TableSchema:
    """Every table the system reads or writes."""

    transactions: TransactionsTable = field(default_factory=TransactionsTable)
    accounts: AccountsTable = field(default_factory=AccountsTable)
    income_categories: IncomeCategoriesTable = field(default_factory=IncomeCategoriesTable)
    expense_categories: ExpenseCategoriesTable = field(default_factory=ExpenseCategoriesTable)
    income: IncomeTable = field(default_factory=IncomeTable)
    expenses: ExpensesTable = field(default_factory=ExpensesTable)
    rules: RulesTable = field(default_factory=RulesTable)
    clients: ClientsTable = field(default_factory=ClientsTable)
    flows: FlowsTable = field(default_factory=FlowsTable)
    labels: ValueLabels = field(default_factory=ValueLabels)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TableSchema:
        """
        Build a schema from a (partial) config mapping.

        Unknown sections and keys are ignored; label mappings are merged over
        the defaults so a config only needs to list what differs.

        Args:
            data: Parsed ``tables:`` config section

        Returns:
            TableSchema with overrides applied
        """
        schema = cls()
        if not data:
            return schema

        for section in fields(cls):
            overrides = data.get(section.name)
            if not isinstance(overrides, dict):
                continue
            current = getattr(schema, section.name)
            known = {f.name for f in fields(current)}
            updates: dict[str, Any] = {}
            for key, value in overrides.items():
                if key not in known:
                    continue
                existing = getattr(current, key)
                if isinstance(existing, dict) and isinstance(value, dict):
                    updates[key] = {**existing, **value}
                else:
                    updates[key] = value
            setattr(schema, section.name, replace(current, **updates))
        return schema
