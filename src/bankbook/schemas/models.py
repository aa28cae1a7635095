"""
Typed domain models (SSOT).

Every component works with these dataclasses; record-store field maps are
converted at the boundary by ``record_store.mappers``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any


class TransactionStatus(str, Enum):
    """Lifecycle of a stored transaction."""

    PENDING = "pending"
    AUTO_CLASSIFIED = "auto_classified"
    MANUALLY_CLASSIFIED = "manually_classified"
    IGNORED = "ignored"


class Entity(str, Enum):
    """Who a transaction belongs to."""

    HOME = "home"
    BUSINESS_1 = "business_1"
    BUSINESS_2 = "business_2"
    SHARED = "shared"

    @property
    def is_business(self) -> bool:
        return self is not Entity.HOME


class TransactionType(str, Enum):
    """Direction of money."""

    INCOME = "income"
    EXPENSE = "expense"

    @classmethod
    def for_amount(cls, amount: Decimal) -> TransactionType:
        return cls.INCOME if amount > 0 else cls.EXPENSE


class RuleConfidence(str, Enum):
    """How much a learned rule is trusted."""

    AUTOMATIC = "automatic"
    CONFIRMED = "confirmed"


class ClassificationMethod(str, Enum):
    """Which layer produced a classification."""

    INVOICE = "invoice"
    LEDGER = "ledger"
    RULE = "rule"
    MANUAL = "manual"
    FAILED = "failed"


class RecordSource(str, Enum):
    """Origin written on created income/expense records."""

    INVOICE = "invoice"
    CLIENT = "client"
    RULE = "rule"
    MANUAL = "manual"


@dataclass
class Transaction:
    """A stored bank/credit-card transaction.

    amount is signed: negative for expenses, positive for income.
    """

    id: str
    hash: str
    date: date
    amount: Decimal
    description: str
    source: str | None
    user_id: str
    status: TransactionStatus = TransactionStatus.PENDING
    # Income or expense record created by classification
    linked_record_id: str | None = None
    rule_id: str | None = None

    @property
    def type(self) -> TransactionType:
        return TransactionType.for_amount(self.amount)


@dataclass(frozen=True)
class BankCredentials:
    """Decrypted login material for one configured account."""

    company_type: str
    credentials: dict[str, str]
    account_name: str
    user_id: str
    account_numbers: tuple[str, ...] = ()


@dataclass
class Category:
    """An accounting category."""

    id: str
    name: str
    type: TransactionType
    entity: Entity | None = None


@dataclass
class ClassificationRule:
    """A learned description pattern mapped to a category and entity."""

    id: str
    pattern: str
    category_id: str
    entity: Entity
    type: TransactionType
    confidence: RuleConfidence = RuleConfidence.AUTOMATIC
    times_used: int = 0
    created_by: str | None = None
    override_amount: Decimal | None = None


@dataclass
class ClassificationResult:
    """Outcome of one classification attempt."""

    success: bool
    method: ClassificationMethod
    category: Category | None = None
    entity: Entity | None = None
    confidence: RuleConfidence | None = None
    rule_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, **metadata: Any) -> ClassificationResult:
        return cls(success=False, method=ClassificationMethod.FAILED, metadata=dict(metadata))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and summaries."""
        return {
            "success": self.success,
            "method": self.method.value,
            "category": self.category.name if self.category else None,
            "entity": self.entity.value if self.entity else None,
            "confidence": self.confidence.value if self.confidence else None,
            "rule_id": self.rule_id,
            "metadata": self.metadata,
        }


@dataclass
class ScrapeResult:
    """Outcome of ingesting one account.

    transactions holds only the rows inserted by this run, with their record ids.
    """

    account_name: str
    success: bool
    transactions: list[Transaction] = field(default_factory=list)
    balance: Decimal | None = None
    error: str | None = None


@dataclass
class Account:
    """A bank/credit-card account tracked in the store."""

    id: str
    name: str
    kind: str | None = None
    user_id: str | None = None
    active: bool = True
    last_scraped: date | None = None
    last_balance: Decimal | None = None
