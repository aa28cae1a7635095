"""
Scraper adapter for an HTTP scraping service.

The provider scrapers (headless browser automation per bank) run in a
sidecar service; this adapter posts one login to it and parses the result.
"""

import logging
from datetime import date

import requests

from .base import ScrapeResponse, ScraperAdapter, ScraperError

logger = logging.getLogger(__name__)


class HttpScraperAdapter(ScraperAdapter):
    """
    Client for the scraping service.

    POST {base_url}/scrape
        {"companyId": ..., "credentials": {...}, "startDate": "YYYY-MM-DD"}
    -> {"success": bool, "accounts": [...], "errorType": ..., "errorMessage": ...}

    No transport-level retry: a scrape drives a real login, so the ingestion
    engine owns the retry policy.
    """

    DEFAULT_TIMEOUT = 300

    def __init__(self, base_url: str, timeout: int = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )

    def scrape(
        self,
        company_type: str,
        credentials: dict[str, str],
        start_date: date,
    ) -> ScrapeResponse:
        url = f"{self.base_url}/scrape"
        payload = {
            "companyId": company_type,
            "credentials": credentials,
            "startDate": start_date.isoformat(),
        }
        logger.debug(f"Scrape request: {company_type} since {start_date}")

        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ScraperError(f"Scraping service unreachable at {self.base_url}: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ScraperError(
                f"Scraping service returned non-JSON response ({response.status_code})"
            ) from e

        if not isinstance(data, dict):
            raise ScraperError(
                f"Scraping service returned unexpected payload ({response.status_code}): {data!r}"
            )

        if not response.ok and "success" not in data:
            raise ScraperError(f"Scraping service error {response.status_code}: {data}")

        result = ScrapeResponse.from_dict(data)
        logger.debug(
            f"Scrape response: success={result.success} accounts={len(result.accounts)}"
        )
        return result
