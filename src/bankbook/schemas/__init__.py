"""
Schemas (SSOT).

- models: typed domain dataclasses and enums
- dedupe: THE transaction content hash
- tables: record-store table, field and label names
"""

from .dedupe import generate_transaction_hash, normalize_amount
from .models import (
    Account,
    BankCredentials,
    Category,
    ClassificationMethod,
    ClassificationResult,
    ClassificationRule,
    Entity,
    RecordSource,
    RuleConfidence,
    ScrapeResult,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from .tables import TableSchema, ValueLabels

__all__ = [
    "Account",
    "BankCredentials",
    "Category",
    "ClassificationMethod",
    "ClassificationResult",
    "ClassificationRule",
    "Entity",
    "RecordSource",
    "RuleConfidence",
    "ScrapeResult",
    "TableSchema",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "ValueLabels",
    "generate_transaction_hash",
    "normalize_amount",
]
