"""
Ingestion engine.

For every configured account, in configuration order:
1. Pick the start date (account watermark, else today - lookback)
2. Scrape with bounded retries and exponential backoff
3. Keep allow-listed sub-accounts and flatten their transactions
4. Normalize sign and calendar day, compute content hashes
5. Drop hashes already stored, batch insert the rest as pending
6. Advance the account watermark and balance

One account failing never stops the run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from ..credentials import CredentialProvider
from ..record_store.base import RecordStoreError
from ..record_store.mappers import new_transaction_fields
from ..repository import Repository
from ..schemas.dedupe import generate_transaction_hash
from ..schemas.models import Account, BankCredentials, ScrapeResult, Transaction
from ..scrapers.base import ScrapedTransaction, ScrapeResponse, ScraperAdapter, ScraperError

logger = logging.getLogger(__name__)


@dataclass
class IngestionRunSummary:
    """Aggregate of one ingestion run."""

    results: list[ScrapeResult] = field(default_factory=list)
    duration_seconds: float = 0.0
    skipped: bool = False

    @property
    def total_accounts(self) -> int:
        return len(self.results)

    @property
    def successful_accounts(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> list[ScrapeResult]:
        return [r for r in self.results if not r.success]

    @property
    def total_new_transactions(self) -> int:
        return sum(len(r.transactions) for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "skipped": self.skipped,
            "duration_seconds": round(self.duration_seconds, 1),
            "results": [
                {
                    "account_name": r.account_name,
                    "success": r.success,
                    "transactions": len(r.transactions),
                    "balance": str(r.balance) if r.balance is not None else None,
                    "error": r.error,
                }
                for r in self.results
            ],
            "summary": {
                "total_accounts": self.total_accounts,
                "successful_accounts": self.successful_accounts,
                "failed_accounts": len(self.failed),
                "total_new_transactions": self.total_new_transactions,
            },
        }


class IngestionEngine:
    """Scrape, deduplicate and store transactions for all accounts."""

    def __init__(
        self,
        credentials: CredentialProvider,
        scraper: ScraperAdapter,
        repository: Repository,
        max_attempts: int = 3,
        default_lookback_days: int = 30,
        timezone: str = "Asia/Jerusalem",
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] | None = None,
    ):
        """
        Initialize engine.

        Args:
            credentials: Decrypted account credentials
            scraper: Scraping backend
            repository: Record store access
            max_attempts: Scrape attempts per account
            default_lookback_days: Start date offset for never-scraped accounts
            timezone: Zone used to turn scraped timestamps into days
            sleep: Backoff sleep (injectable for tests)
            today: Current-date provider (injectable for tests)
        """
        self.credentials = credentials
        self.scraper = scraper
        self.repository = repository
        self.max_attempts = max_attempts
        self.default_lookback_days = default_lookback_days
        self.tz = ZoneInfo(timezone)
        self._sleep = sleep
        self._today = today or (lambda: datetime.now(self.tz).date())

    def run(self) -> IngestionRunSummary:
        """Scrape every account and time the run."""
        started = time.monotonic()
        results = self.scrape_all()
        return IngestionRunSummary(results=results, duration_seconds=time.monotonic() - started)

    def scrape_all(self) -> list[ScrapeResult]:
        """Ingest every account in configuration order."""
        accounts = self.credentials.get_all()
        logger.info(f"Starting ingestion for {len(accounts)} accounts")

        results = []
        for creds in accounts:
            try:
                results.append(self.scrape_account(creds))
            except Exception as e:
                logger.error(f"Ingestion failed for {creds.account_name}: {e}")
                results.append(
                    ScrapeResult(account_name=creds.account_name, success=False, error=str(e))
                )

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Ingestion finished: {succeeded}/{len(results)} accounts succeeded")
        return results

    def scrape_account(self, creds: BankCredentials) -> ScrapeResult:
        """Ingest one account; raises on final scrape failure."""
        account, lookup_failed = self._lookup_account(creds)
        start_date = self._start_date(account)
        logger.info(f"Scraping {creds.account_name} since {start_date}")

        response = self._scrape_with_retry(creds, start_date)
        scraped = self._flatten(creds, response)
        balance = response.accounts[0].balance if response.accounts else None

        if lookup_failed:
            # Only the start date may fall back; the record itself must be resolved
            account = self.repository.get_account_by_name(creds.account_name)
        if account is None:
            account = self.repository.create_account(
                creds.account_name, creds.user_id, creds.company_type
            )

        inserted = self._store_new(creds, account, scraped)
        self.repository.update_account_status(account.id, self._today(), balance)

        logger.info(
            f"{creds.account_name}: {len(scraped)} scraped, {len(inserted)} new, balance {balance}"
        )
        return ScrapeResult(
            account_name=creds.account_name,
            success=True,
            transactions=inserted,
            balance=balance,
        )

    def _lookup_account(self, creds: BankCredentials) -> tuple[Account | None, bool]:
        """Stored account and whether the lookup failed."""
        try:
            return self.repository.get_account_by_name(creds.account_name), False
        except RecordStoreError as e:
            logger.warning(f"Could not read account {creds.account_name}, using defaults: {e}")
            return None, True

    def _start_date(self, account: Account | None) -> date:
        if account is not None and account.last_scraped is not None:
            return account.last_scraped
        return self._today() - timedelta(days=self.default_lookback_days)

    def _scrape_with_retry(self, creds: BankCredentials, start_date: date) -> ScrapeResponse:
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.scraper.scrape(creds.company_type, dict(creds.credentials), start_date)
                if not response.success:
                    raise ScraperError(
                        f"{response.error_type or 'Scrape failed'}: "
                        f"{response.error_message or 'no details'}"
                    )
                return response
            except ScraperError as e:
                if attempt == 1:
                    logger.exception(f"Scrape attempt 1 failed for {creds.account_name}")
                else:
                    logger.warning(
                        f"Scrape attempt {attempt}/{self.max_attempts} failed for "
                        f"{creds.account_name}: {e}"
                    )
                if attempt == self.max_attempts:
                    raise
                self._sleep(2**attempt)
        raise ScraperError(f"No scrape attempts made for {creds.account_name}")

    def _flatten(self, creds: BankCredentials, response: ScrapeResponse) -> list[ScrapedTransaction]:
        allowed = set(creds.account_numbers)
        transactions = []
        for scraped_account in response.accounts:
            if allowed and scraped_account.account_number not in allowed:
                logger.debug(
                    f"{creds.account_name}: skipping sub-account {scraped_account.account_number}"
                )
                continue
            transactions.extend(scraped_account.transactions)
        return transactions

    def to_calendar_day(self, raw: str) -> date:
        """Calendar day of a scraped timestamp in the configured zone."""
        text = raw.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        moment = datetime.fromisoformat(text)
        if moment.tzinfo is None:
            return moment.date()
        return moment.astimezone(self.tz).date()

    def _store_new(
        self,
        creds: BankCredentials,
        account: Account,
        scraped: list[ScrapedTransaction],
    ) -> list[Transaction]:
        candidates: dict[str, tuple[dict[str, Any], Transaction]] = {}
        for txn in scraped:
            tx_date = self.to_calendar_day(txn.date)
            amount: Decimal = txn.signed_amount
            tx_hash = generate_transaction_hash(
                tx_date, amount, txn.description, creds.account_name, creds.user_id
            )
            # Identical events within one scrape collapse to one
            if tx_hash in candidates:
                continue
            fields = new_transaction_fields(
                self.repository.schema,
                tx_hash=tx_hash,
                tx_date=tx_date,
                amount=amount,
                description=txn.description,
                account_record_id=account.id,
                user_id=creds.user_id,
            )
            candidates[tx_hash] = (
                fields,
                Transaction(
                    id="",
                    hash=tx_hash,
                    date=tx_date,
                    amount=amount,
                    description=txn.description,
                    source=account.id,
                    user_id=creds.user_id,
                ),
            )

        if not candidates:
            return []

        existing = self.repository.find_existing_hashes(candidates.keys())
        new = [candidates[h] for h in candidates if h not in existing]
        if existing:
            logger.debug(f"{creds.account_name}: {len(existing)} duplicates skipped")
        record_ids = self.repository.insert_transactions([fields for fields, _ in new])
        inserted = []
        for record_id, (_, tx) in zip(record_ids, new):
            tx.id = record_id
            inserted.append(tx)
        return inserted
