"""
Classification.

Layered chain: invoice -> client ledger -> learned rule -> manual.
"""

from .invoice_matcher import Invoice, InvoiceLookupError, InvoiceMatcher, SumitClient
from .ledger_matcher import ClientRecord, LedgerMatcher
from .orchestrator import (
    CategoryNotFoundError,
    ClassificationError,
    ClassificationOrchestrator,
    TransactionNotFoundError,
)
from .rules import PROMOTION_THRESHOLD, RuleEngine, RuleValidationError, extract_pattern

__all__ = [
    "PROMOTION_THRESHOLD",
    "CategoryNotFoundError",
    "ClassificationError",
    "ClassificationOrchestrator",
    "ClientRecord",
    "Invoice",
    "InvoiceLookupError",
    "InvoiceMatcher",
    "LedgerMatcher",
    "RuleEngine",
    "RuleValidationError",
    "SumitClient",
    "TransactionNotFoundError",
    "extract_pattern",
]
