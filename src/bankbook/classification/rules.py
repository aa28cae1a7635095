"""
Learned classification rules.

A rule maps a description pattern to (category, entity, type). Rules are
learned from manual classifications, matched by case-insensitive substring,
and promoted from automatic to confirmed once they have been used often
enough.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable

from ..record_store.mappers import new_rule_fields
from ..repository import Repository
from ..schemas.models import ClassificationRule, Entity, RuleConfidence, TransactionType

logger = logging.getLogger(__name__)

# Usage count at which an automatic rule becomes confirmed
PROMOTION_THRESHOLD = 5

DEFAULT_CACHE_TTL_SECONDS = 300

# Cleaned descriptions shorter than this are used whole
SHORT_PATTERN_LENGTH = 15


class RuleValidationError(ValueError):
    """A rule request is incomplete or inconsistent."""

    pass


_PREFIX_RE = re.compile(r"^(תשלום|העברה|משיכה|הפקדה)\s+")
_DATE_RE = re.compile(r"\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[/.]\d{1,2}(?:[/.]\d{2,4})?")
_CURRENCY_RE = re.compile(r"(?<!\S)(?:ש\"ח|ש''ח|שח|nis|ils)(?!\S)|₪", re.IGNORECASE)
_AMOUNT_RE = re.compile(r"₪?\s*-?\d+(?:[.,]\d+)*\s*₪?")
_SPACE_RE = re.compile(r"\s+")


def normalize(text: str) -> str:
    return text.lower().strip()


def _word_count(cleaned: str) -> int:
    """More words for longer descriptions, between 3 and 5."""
    if len(cleaned) < 25:
        return 3
    if len(cleaned) < 40:
        return 4
    return 5


def extract_pattern(description: str) -> str:
    """
    Derive a reusable matching pattern from a transaction description.

    Strips a leading transaction-kind word, dates, currency markers and
    amounts, then keeps the whole string when short or its first 3-5 words.

    Example:
        'תשלום 15/03/2024 150 ש"ח סופר יוחננוף רמת גן' -> 'סופר יוחננוף רמת'

    Args:
        description: Raw transaction description

    Returns:
        Pattern (falls back to the trimmed description if nothing is left)
    """
    cleaned = _PREFIX_RE.sub("", description.strip())
    cleaned = _DATE_RE.sub(" ", cleaned)
    cleaned = _CURRENCY_RE.sub(" ", cleaned)
    cleaned = _AMOUNT_RE.sub(" ", cleaned)
    cleaned = _SPACE_RE.sub(" ", cleaned).strip()

    if not cleaned:
        return description.strip()
    if len(cleaned) < SHORT_PATTERN_LENGTH:
        return cleaned

    words = cleaned.split(" ")
    return " ".join(words[: _word_count(cleaned)])


def rank_key(rule: ClassificationRule) -> tuple[int, int]:
    """Confirmed before automatic, then most used first."""
    return (0 if rule.confidence is RuleConfidence.CONFIRMED else 1, -rule.times_used)


class RuleEngine:
    """
    Rule matching and learning.

    The full rule list is cached for ``cache_ttl`` seconds; every mutation
    made through the engine invalidates the cache.
    """

    def __init__(
        self,
        repository: Repository,
        cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repository = repository
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: list[ClassificationRule] | None = None
        self._cache_loaded_at = 0.0

    def invalidate_cache(self) -> None:
        self._cache = None

    def _rules(self) -> list[ClassificationRule]:
        now = self._clock()
        if self._cache is None or now - self._cache_loaded_at >= self.cache_ttl:
            self._cache = self.repository.get_rules()
            self._cache_loaded_at = now
            logger.debug(f"Loaded {len(self._cache)} classification rules")
        return self._cache

    def get_all_rules(
        self,
        tx_type: TransactionType | None = None,
        entity: Entity | None = None,
        confidence: RuleConfidence | None = None,
    ) -> list[ClassificationRule]:
        """All rules, uncached, in match priority order, optionally filtered."""
        rules = [
            rule
            for rule in self.repository.get_rules()
            if (tx_type is None or rule.type is tx_type)
            and (entity is None or rule.entity is entity)
            and (confidence is None or rule.confidence is confidence)
        ]
        return sorted(rules, key=rank_key)

    def find_matching_rule(self, description: str, user_id: str) -> ClassificationRule | None:
        """
        Best rule whose pattern occurs in the description.

        Rules are shared by all users; user_id is only logged.

        Args:
            description: Transaction description
            user_id: Owner of the transaction

        Returns:
            Highest ranked matching rule, or None
        """
        text = normalize(description)
        matches = [
            rule
            for rule in self._rules()
            if normalize(rule.pattern) and normalize(rule.pattern) in text
        ]
        if not matches:
            return None

        best = min(matches, key=rank_key)
        logger.debug(
            f"Rule {best.id} ('{best.pattern}') matched for user {user_id} "
            f"({len(matches)} candidates)"
        )
        return best

    def increment_usage(self, rule_id: str) -> ClassificationRule:
        """
        Count one more use of a rule, promoting it at the threshold.

        Reads the current count from the store so a stale cache never loses
        increments. Confirmed rules stay confirmed.

        Returns:
            The rule with its new count and confidence

        Raises:
            KeyError: If the rule does not exist
        """
        rule = self.repository.get_rule(rule_id)
        if rule is None:
            raise KeyError(f"Rule {rule_id} not found")

        rule.times_used += 1
        if rule.times_used >= PROMOTION_THRESHOLD:
            if rule.confidence is not RuleConfidence.CONFIRMED:
                logger.info(f"Rule {rule_id} ('{rule.pattern}') promoted to confirmed")
            rule.confidence = RuleConfidence.CONFIRMED

        self.repository.update_rule_usage(rule_id, rule.times_used, rule.confidence)
        self.invalidate_cache()
        return rule

    def create_rule_from_manual_classification(
        self,
        description: str,
        category_id: str,
        entity: Entity,
        tx_type: TransactionType,
        user_id: str,
    ) -> str:
        """
        Learn a rule from a manual decision.

        An existing rule with the same pattern (case-insensitive), category
        and entity is reused and its usage incremented instead.

        Returns:
            Id of the new or reused rule
        """
        pattern = extract_pattern(description)
        key = normalize(pattern)

        for rule in self.repository.get_rules():
            if (
                normalize(rule.pattern) == key
                and rule.category_id == category_id
                and rule.entity is entity
            ):
                logger.info(f"Reusing rule {rule.id} for pattern '{pattern}'")
                self.increment_usage(rule.id)
                return rule.id

        return self._insert_rule(pattern, category_id, entity, tx_type, user_id)

    def create_rule(
        self,
        pattern: str,
        category_id: str,
        entity: Entity | str,
        tx_type: TransactionType | str,
        user_id: str,
    ) -> str:
        """
        Create a rule from an explicitly given pattern.

        The pattern is used as given (whitespace collapsed), not extracted.

        Returns:
            Id of the new rule

        Raises:
            RuleValidationError: Missing pattern or category, unknown entity or
                type, or a category that does not exist for the type
        """
        pattern = _SPACE_RE.sub(" ", pattern or "").strip()
        if not pattern:
            raise RuleValidationError("Rule pattern must not be empty")
        if not category_id:
            raise RuleValidationError("Rule category is required")
        try:
            entity = Entity(entity)
        except ValueError as e:
            valid = ", ".join(member.value for member in Entity)
            raise RuleValidationError(f"Invalid entity {entity!r} (valid: {valid})") from e
        try:
            tx_type = TransactionType(tx_type)
        except ValueError as e:
            raise RuleValidationError(f"Invalid type {tx_type!r} (valid: income, expense)") from e
        if self.repository.get_category(category_id, tx_type) is None:
            raise RuleValidationError(
                f"{tx_type.value.capitalize()} category {category_id} not found"
            )

        return self._insert_rule(pattern, category_id, entity, tx_type, user_id)

    def _insert_rule(
        self,
        pattern: str,
        category_id: str,
        entity: Entity,
        tx_type: TransactionType,
        user_id: str,
    ) -> str:
        rule_id = self.repository.create_rule(
            new_rule_fields(
                self.repository.schema,
                pattern=pattern,
                category_id=category_id,
                entity=entity,
                rule_type=tx_type,
                created_by=user_id,
            )
        )
        self.invalidate_cache()
        logger.info(f"Created rule {rule_id}: '{pattern}' -> {category_id} ({entity.value})")
        return rule_id
