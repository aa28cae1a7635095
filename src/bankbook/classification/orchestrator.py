"""
Classification orchestrator.

Runs the layered chain for one transaction and stops at the first layer that
produces a classification:
1. Invoice match (incoming payments only)
2. Client ledger match (incoming payments only)
3. Learned rule match (any amount)
4. Failure: the transaction goes to manual resolution

A layer that errors is logged and treated as "no match" so the next layer
still gets its chance. Manual classification writes through the same
repository and can teach a new rule.
"""

from __future__ import annotations

import logging
import re

from ..repository import Repository
from ..schemas.models import (
    Category,
    ClassificationMethod,
    ClassificationResult,
    Entity,
    RecordSource,
    RuleConfidence,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from .invoice_matcher import InvoiceMatcher
from .ledger_matcher import LedgerMatcher
from .rules import RuleEngine

logger = logging.getLogger(__name__)


class ClassificationError(Exception):
    """Base exception for classification errors."""

    pass


class TransactionNotFoundError(ClassificationError):
    """The transaction id does not exist."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


class CategoryNotFoundError(ClassificationError):
    """The category id does not exist for the given type."""

    def __init__(self, category_id: str, tx_type: TransactionType):
        self.category_id = category_id
        self.tx_type = tx_type
        super().__init__(f"{tx_type.value.capitalize()} category {category_id} not found")


class ClassificationOrchestrator:
    """Layered automatic classification plus manual classification."""

    def __init__(
        self,
        repository: Repository,
        rule_engine: RuleEngine,
        invoice_matcher: InvoiceMatcher | None = None,
        ledger_matcher: LedgerMatcher | None = None,
        payment_app_keywords: list[str] | tuple[str, ...] = (),
    ):
        self.repository = repository
        self.rule_engine = rule_engine
        self.invoice_matcher = invoice_matcher
        self.ledger_matcher = ledger_matcher
        self._payment_app_res = [
            re.compile(rf"(?<!\w){re.escape(keyword)}(?!\w)", re.IGNORECASE)
            for keyword in payment_app_keywords
        ]

    # ------------------------------------------------------------------
    # Automatic chain
    # ------------------------------------------------------------------

    def classify(self, transaction: Transaction) -> ClassificationResult:
        """
        Classify one transaction through the layer chain.

        Args:
            transaction: A pending transaction

        Returns:
            ClassificationResult (success=False with method FAILED when no
            layer matched)
        """
        logger.debug(
            f"Classifying {transaction.id}: {transaction.description} ({transaction.amount})"
        )

        if transaction.amount > 0:
            result = self._try_invoice(transaction)
            if result is not None:
                return result
            result = self._try_ledger(transaction)
            if result is not None:
                return result

        result = self._try_rule(transaction)
        if result is not None:
            return result

        logger.info(f"No automatic classification for {transaction.id}")
        return ClassificationResult.failed(reason="no_match")

    def _first_income_category(self, entity: Entity) -> Category | None:
        categories = self.repository.get_categories(TransactionType.INCOME, entity)
        if not categories:
            logger.warning(f"No active income category for {entity.value}")
            return None
        return categories[0]

    def _try_invoice(self, transaction: Transaction) -> ClassificationResult | None:
        matcher = self.invoice_matcher
        if matcher is None or not matcher.is_enabled():
            return None
        try:
            invoice = matcher.find_invoice(transaction.date, transaction.amount, transaction.user_id)
            if invoice is None:
                return None
            entity = matcher.entity_for(transaction.user_id)
            category = self._first_income_category(entity)
            if category is None:
                return None

            record_id = self.repository.create_income_record(
                transaction,
                category.id,
                entity,
                RecordSource.INVOICE,
                tax_included=invoice.tax_included,
                invoice_id=invoice.id,
            )
            self.repository.update_transaction_status(
                transaction.id,
                TransactionStatus.AUTO_CLASSIFIED,
                record_id=record_id,
                record_type=TransactionType.INCOME,
            )
        except Exception as e:
            logger.error(f"Invoice layer failed for {transaction.id}: {e}")
            return None

        logger.info(f"{transaction.id} classified by invoice {invoice.id}")
        return ClassificationResult(
            success=True,
            method=ClassificationMethod.INVOICE,
            category=category,
            entity=entity,
            confidence=RuleConfidence.CONFIRMED,
            metadata={
                "invoice_id": invoice.id,
                "invoice_date": invoice.date.isoformat(),
                "customer_name": invoice.customer_name,
                "record_id": record_id,
            },
        )

    def _try_ledger(self, transaction: Transaction) -> ClassificationResult | None:
        matcher = self.ledger_matcher
        if matcher is None or not matcher.is_enabled():
            return None
        try:
            client = matcher.find_match(transaction.date, transaction.amount, transaction.user_id)
            if client is None:
                return None
            category = self._first_income_category(client.entity)
            if category is None:
                return None

            record_id = self.repository.create_income_record(
                transaction,
                category.id,
                client.entity,
                RecordSource.CLIENT,
                tax_included=True,
            )
            self.repository.update_transaction_status(
                transaction.id,
                TransactionStatus.AUTO_CLASSIFIED,
                record_id=record_id,
                record_type=TransactionType.INCOME,
            )
        except Exception as e:
            logger.error(f"Client ledger layer failed for {transaction.id}: {e}")
            return None

        logger.info(f"{transaction.id} classified by client '{client.name}'")
        return ClassificationResult(
            success=True,
            method=ClassificationMethod.LEDGER,
            category=category,
            entity=client.entity,
            confidence=RuleConfidence.CONFIRMED,
            metadata={"client_id": client.id, "client_name": client.name, "record_id": record_id},
        )

    def _try_rule(self, transaction: Transaction) -> ClassificationResult | None:
        try:
            rule = self.rule_engine.find_matching_rule(transaction.description, transaction.user_id)
            if rule is None:
                return None
            category = self.repository.get_category(rule.category_id, rule.type)
            if category is None:
                logger.error(f"Rule {rule.id} points at missing category {rule.category_id}")
                return None

            if rule.type is TransactionType.INCOME:
                record_id = self.repository.create_income_record(
                    transaction, category.id, rule.entity, RecordSource.RULE
                )
            else:
                record_id = self.repository.create_expense_record(
                    transaction,
                    category.id,
                    rule.entity,
                    RecordSource.RULE,
                    override_amount=rule.override_amount,
                )
            self.repository.update_transaction_status(
                transaction.id,
                TransactionStatus.AUTO_CLASSIFIED,
                record_id=record_id,
                record_type=rule.type,
                rule_id=rule.id,
            )
        except Exception as e:
            logger.error(f"Rule layer failed for {transaction.id}: {e}")
            return None

        # The classification is already stored; a failed count update only loses a use
        try:
            self.rule_engine.increment_usage(rule.id)
        except Exception as e:
            logger.warning(f"Could not increment usage of rule {rule.id}: {e}")

        logger.info(f"{transaction.id} classified by rule {rule.id} ('{rule.pattern}')")
        return ClassificationResult(
            success=True,
            method=ClassificationMethod.RULE,
            category=category,
            entity=rule.entity,
            confidence=rule.confidence,
            rule_id=rule.id,
            metadata={
                "pattern": rule.pattern,
                "times_used": rule.times_used + 1,
                "record_id": record_id,
            },
        )

    # ------------------------------------------------------------------
    # Manual decisions
    # ------------------------------------------------------------------

    def manual_classify(
        self,
        transaction_id: str,
        category_id: str,
        entity: Entity,
        tx_type: TransactionType,
        user_id: str,
        create_rule: bool = False,
    ) -> ClassificationResult:
        """
        Apply a human decision.

        Args:
            transaction_id: Transaction to classify
            category_id: Chosen category
            entity: Chosen entity
            tx_type: Income or expense
            user_id: Deciding user (recorded as rule author)
            create_rule: Learn a rule from this decision

        Returns:
            ClassificationResult with metadata["created_rule"]

        Raises:
            TransactionNotFoundError: Unknown transaction
            CategoryNotFoundError: Unknown category for tx_type
        """
        transaction = self.repository.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        category = self.repository.get_category(category_id, tx_type)
        if category is None:
            raise CategoryNotFoundError(category_id, tx_type)

        # Every step below is repeatable: identical rules are reused, records are upserts
        rule_id = None
        if create_rule:
            rule_id = self.rule_engine.create_rule_from_manual_classification(
                transaction.description, category.id, entity, tx_type, user_id
            )

        if tx_type is TransactionType.INCOME:
            record_id = self.repository.create_income_record(
                transaction, category.id, entity, RecordSource.MANUAL
            )
        else:
            record_id = self.repository.create_expense_record(
                transaction, category.id, entity, RecordSource.MANUAL
            )

        self.repository.update_transaction_status(
            transaction.id,
            TransactionStatus.MANUALLY_CLASSIFIED,
            record_id=record_id,
            record_type=tx_type,
            rule_id=rule_id,
        )
        logger.info(
            f"{transaction.id} manually classified as {category.name} ({entity.value}) "
            f"by {user_id}{' with rule ' + rule_id if rule_id else ''}"
        )
        return ClassificationResult(
            success=True,
            method=ClassificationMethod.MANUAL,
            category=category,
            entity=entity,
            confidence=RuleConfidence.CONFIRMED,
            rule_id=rule_id,
            metadata={"created_rule": rule_id is not None, "record_id": record_id},
        )

    def ignore(self, transaction_id: str) -> None:
        """Mark a transaction as ignored (excluded from accounting)."""
        if self.repository.get_transaction(transaction_id) is None:
            raise TransactionNotFoundError(transaction_id)
        self.repository.update_transaction_status(transaction_id, TransactionStatus.IGNORED)
        logger.info(f"{transaction_id} ignored")

    def get_pending_transactions(self) -> list[Transaction]:
        return self.repository.get_pending_transactions()

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self.repository.get_transaction(transaction_id)

    def get_categories(self, tx_type: TransactionType, entity: Entity) -> list[Category]:
        return self.repository.get_categories(tx_type, entity)

    def is_payment_app(self, description: str) -> bool:
        """True when the description looks like a payment-app transfer."""
        return any(pattern.search(description) for pattern in self._payment_app_res)
