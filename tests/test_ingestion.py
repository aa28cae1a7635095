"""
Tests for the ingestion engine and the scraping adapter.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
import responses

from bankbook.ingestion.engine import IngestionEngine
from bankbook.record_store import RecordStoreConnectionError
from bankbook.schemas.models import BankCredentials, TransactionStatus
from bankbook.scrapers.base import ScrapeResponse, ScraperError
from bankbook.scrapers.http_adapter import HttpScraperAdapter

TODAY = date(2024, 3, 20)


def creds(name="Main", user_id="u1", company_type="hapoalim", numbers=()):
    return BankCredentials(
        company_type=company_type,
        credentials={"userCode": "x", "password": "y"},
        account_name=name,
        user_id=user_id,
        account_numbers=tuple(numbers),
    )


def txn(day, amount, description, tx_type="normal"):
    return {
        "date": f"2024-03-{day:02d}T10:00:00.000Z",
        "chargedAmount": amount,
        "description": description,
        "type": tx_type,
    }


def ok(txns, account_number="111", balance=5000, extra_accounts=()):
    accounts = [{"accountNumber": account_number, "balance": balance, "txns": txns}]
    accounts.extend(extra_accounts)
    return ScrapeResponse.from_dict({"success": True, "accounts": accounts})


class FakeCredentials:
    def __init__(self, *accounts):
        self.accounts = list(accounts)

    def get_all(self):
        return list(self.accounts)


class FakeScraper:
    """Returns queued responses (or raises queued errors) per company."""

    def __init__(self, outcomes):
        self.outcomes = {k: list(v) for k, v in outcomes.items()}
        self.calls = []

    def scrape(self, company_type, credentials, start_date):
        self.calls.append((company_type, start_date))
        outcome = self.outcomes[company_type].pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def sleeps():
    return []


def make_engine(repository, scraper, sleeps, *accounts):
    return IngestionEngine(
        FakeCredentials(*accounts),
        scraper,
        repository,
        max_attempts=3,
        sleep=sleeps.append,
        today=lambda: TODAY,
    )


class TestNormalization:
    """Test sign and day normalization."""

    def test_charge_becomes_negative_and_other_positive(self, repository, sleeps):
        """Test normal charges are expenses and other types income."""
        scraper = FakeScraper(
            {"hapoalim": [ok([txn(15, 120.50, "Shufersal"), txn(16, -50, "Refund", "credit")])]}
        )
        make_engine(repository, scraper, sleeps, creds()).run()

        by_description = {t.description: t for t in repository.get_pending_transactions()}
        assert by_description["Shufersal"].amount == Decimal("-120.5")
        assert by_description["Refund"].amount == Decimal("50")
        assert by_description["Refund"].status is TransactionStatus.PENDING
        assert by_description["Shufersal"].user_id == "u1"

    def test_calendar_day_in_local_zone(self, repository, sleeps):
        """Test UTC late-evening timestamps land on the next local day."""
        engine = make_engine(repository, FakeScraper({}), sleeps)

        assert engine.to_calendar_day("2024-03-15T22:00:00.000Z") == date(2024, 3, 16)
        assert engine.to_calendar_day("2024-03-15T10:00:00.000Z") == date(2024, 3, 15)
        assert engine.to_calendar_day("2024-03-15") == date(2024, 3, 15)


class TestDeduplication:
    """Test idempotent re-scrapes."""

    def test_overlapping_rescrape_adds_only_new(self, repository, sleeps):
        """Test 10 stored plus 15 overlapping scraped yields exactly 5 new."""
        first = [txn(day, 10 + day, f"Shop {day}") for day in range(1, 11)]
        second = [txn(day, 10 + day, f"Shop {day}") for day in range(1, 16)]
        scraper = FakeScraper({"hapoalim": [ok(first), ok(second)]})
        engine = make_engine(repository, scraper, sleeps, creds())

        assert engine.run().total_new_transactions == 10
        summary = engine.run()

        assert summary.total_new_transactions == 5
        assert repository.count_transactions(TransactionStatus.PENDING) == 15

    def test_result_carries_inserted_transactions(self, repository, sleeps):
        """Test the result lists exactly the rows inserted by this run."""
        first = [txn(day, 10 + day, f"Shop {day}") for day in range(1, 4)]
        second = [txn(day, 10 + day, f"Shop {day}") for day in range(1, 6)]
        scraper = FakeScraper({"hapoalim": [ok(first), ok(second)]})
        engine = make_engine(repository, scraper, sleeps, creds())

        engine.run()
        result = engine.scrape_all()[0]

        assert [t.description for t in result.transactions] == ["Shop 4", "Shop 5"]
        assert result.transactions[0].amount == Decimal("-14")
        assert result.transactions[0].date == date(2024, 3, 4)
        stored = {t.id: t for t in repository.get_pending_transactions()}
        for tx in result.transactions:
            assert stored[tx.id].hash == tx.hash
            assert tx.source == repository.get_account_by_name("Main").id

    def test_identical_rows_in_one_scrape_collapse(self, repository, sleeps):
        """Test identical events within one scrape are stored once."""
        rows = [txn(5, 30, "Coffee"), txn(5, 30, "Coffee"), txn(5, 31, "Coffee")]
        scraper = FakeScraper({"hapoalim": [ok(rows)]})

        result = make_engine(repository, scraper, sleeps, creds()).scrape_all()[0]

        assert len(result.transactions) == 2

    def test_allow_list_filters_sub_accounts(self, repository, sleeps):
        """Test only allow-listed sub-accounts are kept."""
        other = {"accountNumber": "222", "balance": 1, "txns": [txn(3, 99, "Other")]}
        scraper = FakeScraper(
            {"hapoalim": [ok([txn(3, 10, "Mine")], account_number="111", extra_accounts=[other])]}
        )

        make_engine(repository, scraper, sleeps, creds(numbers=["111"])).run()

        assert [t.description for t in repository.get_pending_transactions()] == ["Mine"]


class TestRetries:
    """Test bounded retries with backoff."""

    def test_backoff_then_success(self, repository, sleeps):
        """Test failures back off 2s then 4s before succeeding."""
        scraper = FakeScraper(
            {
                "hapoalim": [
                    ScraperError("timeout"),
                    ScrapeResponse(success=False, error_type="GENERIC", error_message="busy"),
                    ok([txn(1, 5, "Late")]),
                ]
            }
        )

        summary = make_engine(repository, scraper, sleeps, creds()).run()

        assert sleeps == [2, 4]
        assert summary.successful_accounts == 1
        assert summary.total_new_transactions == 1

    def test_exhausted_account_does_not_stop_others(self, repository, sleeps):
        """Test one failing account is reported while the next still runs."""
        scraper = FakeScraper(
            {
                "isracard": [ScraperError("down")] * 3,
                "hapoalim": [ok([txn(2, 40, "Pharmacy")])],
            }
        )
        engine = make_engine(
            repository,
            scraper,
            sleeps,
            creds(name="Card", company_type="isracard"),
            creds(name="Main"),
        )

        summary = engine.run()

        assert [r.success for r in summary.results] == [False, True]
        assert "down" in summary.results[0].error
        assert summary.total_new_transactions == 1
        assert len(scraper.calls) == 4
        assert summary.to_dict()["summary"]["failed_accounts"] == 1


class TestWatermark:
    """Test account bookkeeping."""

    def test_start_date_and_account_creation(self, repository, sleeps):
        """Test first scrape looks back 30 days, later scrapes start at the watermark."""
        scraper = FakeScraper({"visaCal": [ok([], balance=-1200.5), ok([])]})
        engine = make_engine(repository, scraper, sleeps, creds(name="Cal", company_type="visaCal"))

        engine.run()
        engine.run()

        assert scraper.calls == [("visaCal", date(2024, 2, 19)), ("visaCal", TODAY)]
        account = repository.get_account_by_name("Cal")
        assert account.last_scraped == TODAY
        assert account.last_balance == Decimal("-1200.5")
        assert account.kind == repository.schema.labels.account_kind_card
        assert len(repository.get_accounts()) == 1

    def test_transactions_link_to_account(self, repository, sleeps):
        """Test stored transactions reference the account record."""
        scraper = FakeScraper({"hapoalim": [ok([txn(1, 5, "Bakery")])]})
        make_engine(repository, scraper, sleeps, creds()).run()

        account = repository.get_account_by_name("Main")
        assert repository.get_pending_transactions()[0].source == account.id

    def test_failed_lookup_reuses_existing_account(self, repository, sleeps):
        """Test a transient account read failure does not create a second account."""
        scraper = FakeScraper({"hapoalim": [ok([txn(1, 5, "Bakery")]), ok([txn(2, 6, "Kiosk")])]})
        engine = make_engine(repository, scraper, sleeps, creds())
        engine.run()
        account = repository.get_account_by_name("Main")

        lookup = repository.get_account_by_name
        attempts = []

        def flaky(name):
            attempts.append(name)
            if len(attempts) == 1:
                raise RecordStoreConnectionError("timeout")
            return lookup(name)

        with patch.object(repository, "get_account_by_name", side_effect=flaky):
            summary = engine.run()

        assert summary.successful_accounts == 1
        assert scraper.calls[1] == ("hapoalim", date(2024, 2, 19))
        assert [a.id for a in repository.get_accounts()] == [account.id]
        kiosk = summary.results[0].transactions[0]
        assert kiosk.description == "Kiosk"
        assert kiosk.source == account.id

    def test_unresolvable_account_fails_without_creating(self, repository, sleeps):
        """Test an account that cannot be read fails instead of being recreated."""
        scraper = FakeScraper({"hapoalim": [ok([txn(1, 5, "Bakery")]), ok([txn(2, 6, "Kiosk")])]})
        engine = make_engine(repository, scraper, sleeps, creds())
        engine.run()

        with patch.object(
            repository, "get_account_by_name", side_effect=RecordStoreConnectionError("down")
        ):
            summary = engine.run()

        assert not summary.results[0].success
        assert "down" in summary.results[0].error
        assert len(repository.get_accounts()) == 1
        assert [t.description for t in repository.get_pending_transactions()] == ["Bakery"]


class TestHttpScraperAdapter:
    """Test the scraping service client."""

    @responses.activate
    def test_posts_login_and_parses(self):
        """Test the request body and parsed response."""
        responses.add(
            responses.POST,
            "http://scraper:3000/scrape",
            json={
                "success": True,
                "accounts": [
                    {"accountNumber": 111, "balance": 10.5, "txns": [txn(1, 5, " Bakery ")]}
                ],
            },
        )
        adapter = HttpScraperAdapter("http://scraper:3000/")

        result = adapter.scrape("hapoalim", {"userCode": "x"}, date(2024, 3, 1))

        assert result.success
        assert result.accounts[0].account_number == "111"
        assert result.accounts[0].transactions[0].description == "Bakery"
        body = responses.calls[0].request.body
        assert b'"companyId": "hapoalim"' in body
        assert b'"startDate": "2024-03-01"' in body

    @responses.activate
    def test_provider_failure_is_not_transport_error(self):
        """Test a structured failure is returned, not raised."""
        responses.add(
            responses.POST,
            "http://scraper:3000/scrape",
            status=500,
            json={"success": False, "errorType": "INVALID_PASSWORD"},
        )

        result = HttpScraperAdapter("http://scraper:3000").scrape("leumi", {}, date(2024, 3, 1))

        assert not result.success
        assert result.error_type == "INVALID_PASSWORD"

    @responses.activate
    def test_non_json_raises(self):
        """Test garbage responses raise ScraperError."""
        responses.add(responses.POST, "http://scraper:3000/scrape", status=502, body="Bad gateway")

        with pytest.raises(ScraperError):
            HttpScraperAdapter("http://scraper:3000").scrape("leumi", {}, date(2024, 3, 1))

    @responses.activate
    def test_non_object_json_raises(self):
        """Test a JSON body that is not an object raises ScraperError."""
        responses.add(responses.POST, "http://scraper:3000/scrape", json=[{"success": True}])

        with pytest.raises(ScraperError, match="unexpected payload"):
            HttpScraperAdapter("http://scraper:3000").scrape("leumi", {}, date(2024, 3, 1))
