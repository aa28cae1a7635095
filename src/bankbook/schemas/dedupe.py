"""
Content hash generation (CRITICAL).

This module defines THE deterministic transaction hash. It is the only way
to compute the dedupe key of a scraped transaction.

Hash format:
    MD5("{date}|{amount}|{description}|{source}|{user_id}") as 32 hex chars

- date: YYYY-MM-DD
- amount: signed, shortest decimal form ("-120.5", "50", "0")
- source: account name the transaction was scraped from

The hash must be:
- Stable: Same inputs always produce same output
- Reproducible: Can be regenerated from stored data
- Compatible: Hashes already stored in the record store stay valid, so the
  digest and the amount formatting must not change
"""

import hashlib
from datetime import date
from decimal import Decimal

HASH_SEPARATOR = "|"


def normalize_amount(amount: Decimal | int | float | str) -> str:
    """
    Normalize an amount to its shortest decimal form.

    Trailing zeros are dropped and integral values carry no fraction:
    Decimal("-120.50") -> "-120.5", Decimal("50.00") -> "50".

    Args:
        amount: Signed amount

    Returns:
        Normalized amount string
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if value == 0:
        return "0"
    text = format(value.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def normalize_date(value: date | str) -> str:
    """Normalize a date to YYYY-MM-DD."""
    if isinstance(value, date):
        return value.isoformat()
    return value[:10]


def generate_transaction_hash(
    tx_date: date | str,
    amount: Decimal | int | float | str,
    description: str,
    source: str,
    user_id: str,
) -> str:
    """
    Generate the content hash of a transaction.

    Args:
        tx_date: Transaction date
        amount: Signed amount
        description: Description as scraped
        source: Account name
        user_id: Owning user

    Returns:
        32-char hex digest
    """
    content = HASH_SEPARATOR.join(
        [
            normalize_date(tx_date),
            normalize_amount(amount),
            description,
            source,
            user_id,
        ]
    )
    return hashlib.md5(content.encode("utf-8")).hexdigest()
