"""
Scraper adapters.

Turn (provider, credentials, start date) into raw per-account transactions.
"""

from .base import (
    CHARGE_TYPES,
    ScrapedAccount,
    ScrapedTransaction,
    ScrapeResponse,
    ScraperAdapter,
    ScraperError,
)
from .http_adapter import HttpScraperAdapter

__all__ = [
    "CHARGE_TYPES",
    "HttpScraperAdapter",
    "ScrapeResponse",
    "ScrapedAccount",
    "ScrapedTransaction",
    "ScraperAdapter",
    "ScraperError",
]
