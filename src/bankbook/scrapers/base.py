"""
Scraper adapter contract and result types.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

# Provider transaction types that represent a charge (money out)
CHARGE_TYPES = frozenset({"normal", "installments"})


class ScraperError(Exception):
    """The scraping backend could not be reached or answered garbage."""

    pass


@dataclass
class ScrapedTransaction:
    """One transaction as reported by the provider."""

    date: str  # ISO timestamp as reported
    charged_amount: Decimal
    description: str
    type: str = "normal"
    identifier: str | None = None

    @property
    def is_charge(self) -> bool:
        return self.type in CHARGE_TYPES

    @property
    def signed_amount(self) -> Decimal:
        """Charges become negative expenses, everything else positive income."""
        magnitude = abs(self.charged_amount)
        return -magnitude if self.is_charge else magnitude

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScrapedTransaction:
        identifier = data.get("identifier")
        return cls(
            date=str(data["date"]),
            charged_amount=Decimal(str(data.get("chargedAmount", 0))),
            description=(data.get("description") or "").strip(),
            type=data.get("type") or "normal",
            identifier=str(identifier) if identifier is not None else None,
        )


@dataclass
class ScrapedAccount:
    """A sub-account returned by one login."""

    account_number: str
    balance: Decimal | None = None
    transactions: list[ScrapedTransaction] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScrapedAccount:
        balance = data.get("balance")
        return cls(
            account_number=str(data.get("accountNumber", "")),
            balance=Decimal(str(balance)) if balance is not None else None,
            transactions=[ScrapedTransaction.from_dict(t) for t in data.get("txns") or []],
        )


@dataclass
class ScrapeResponse:
    """Outcome of one scrape call."""

    success: bool
    accounts: list[ScrapedAccount] = field(default_factory=list)
    error_type: str | None = None
    error_message: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScrapeResponse:
        return cls(
            success=bool(data.get("success")),
            accounts=[ScrapedAccount.from_dict(a) for a in data.get("accounts") or []],
            error_type=data.get("errorType"),
            error_message=data.get("errorMessage"),
        )


class ScraperAdapter(ABC):
    """Fetches transactions for one provider login."""

    @abstractmethod
    def scrape(
        self,
        company_type: str,
        credentials: dict[str, str],
        start_date: date,
    ) -> ScrapeResponse:
        """Scrape everything since start_date.

        Raises:
            ScraperError: If the backend cannot be reached
        """
