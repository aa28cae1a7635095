"""
Tests for the invoice and client ledger matchers.
"""

import json
from datetime import date
from decimal import Decimal

import pytest
import responses

from bankbook.classification.invoice_matcher import InvoiceMatcher, SumitClient
from bankbook.classification.ledger_matcher import LedgerMatcher
from bankbook.record_store import SqliteRecordStore
from bankbook.schemas.models import Entity
from bankbook.schemas.tables import ClientsTable

API = "https://api.sumit.test"
LIST_URL = f"{API}/accounting/documents/list/"
DETAILS_URL = f"{API}/accounting/documents/getdetails/"
USERS = {"dana": Entity.BUSINESS_1, "avi": Entity.BUSINESS_2}


def document(doc_id, day, total):
    return {"DocumentID": doc_id, "Date": f"2024-03-{day:02d}T00:00:00", "DocumentValue": total}


def list_response(*documents):
    return {"Status": 0, "Data": {"Documents": list(documents)}}


@pytest.fixture
def invoice_matcher():
    client = SumitClient("sumit-key", base_url=API, max_retries=0)
    return InvoiceMatcher(
        client, {Entity.BUSINESS_1: "111", Entity.BUSINESS_2: "222"}, USERS
    )


class TestInvoiceMatcher:
    """Test the invoice layer lookup."""

    def test_disabled_without_both_businesses(self):
        """Test one company id is not enough."""
        matcher = InvoiceMatcher(SumitClient("k", base_url=API), {Entity.BUSINESS_1: "111"}, USERS)

        assert not matcher.is_enabled()
        assert matcher.find_invoice(date(2024, 3, 15), Decimal("100"), "dana") is None

    def test_disabled_without_client(self):
        """Test a missing client disables the layer."""
        matcher = InvoiceMatcher(None, {Entity.BUSINESS_1: "1", Entity.BUSINESS_2: "2"}, USERS)

        assert not matcher.is_enabled()

    @responses.activate
    def test_closest_date_wins(self, invoice_matcher):
        """Test the closest in-window invoice is chosen with its VAT mode."""
        responses.add(
            responses.POST,
            LIST_URL,
            json=list_response(
                document("far", 9, 1000),
                document("near", 14, 1005),
                document("wrong-amount", 15, 1100),
            ),
        )
        responses.add(
            responses.POST,
            DETAILS_URL,
            json={"Status": 0, "Data": {"Document": {"Items": [{"VATIncluded": False}]}}},
        )

        invoice = invoice_matcher.find_invoice(date(2024, 3, 15), Decimal("1000"), "dana")

        assert invoice.id == "near"
        assert invoice.tax_included is False
        body = json.loads(responses.calls[0].request.body)
        assert body["Credentials"] == {"CompanyID": "111", "APIKey": "sumit-key"}
        assert body["DateFrom"].startswith("2024-03-08")
        assert body["DateTo"].startswith("2024-03-22")
        assert json.loads(responses.calls[1].request.body)["DocumentID"] == "near"

    @responses.activate
    def test_user_selects_business(self, invoice_matcher):
        """Test the second user's invoices come from the second company."""
        responses.add(responses.POST, LIST_URL, json=list_response())

        assert invoice_matcher.find_invoice(date(2024, 3, 15), Decimal("50"), "avi") is None
        body = json.loads(responses.calls[0].request.body)
        assert body["Credentials"]["CompanyID"] == "222"

    @responses.activate
    def test_details_failure_assumes_tax_included(self, invoice_matcher):
        """Test VAT mode defaults to included when details fail."""
        responses.add(responses.POST, LIST_URL, json=list_response(document("inv1", 15, 500)))
        responses.add(responses.POST, DETAILS_URL, status=400, json={"Status": 1})

        invoice = invoice_matcher.find_invoice(date(2024, 3, 15), Decimal("500"), "dana")

        assert invoice.id == "inv1"
        assert invoice.tax_included is True

    @responses.activate
    def test_outside_tolerance(self, invoice_matcher):
        """Test amounts more than 1% away do not match."""
        responses.add(responses.POST, LIST_URL, json=list_response(document("inv1", 15, 1020)))

        assert invoice_matcher.find_invoice(date(2024, 3, 15), Decimal("1000"), "dana") is None
        assert len(responses.calls) == 1

    def test_unknown_user(self, invoice_matcher):
        """Test users without a business never match."""
        assert invoice_matcher.find_invoice(date(2024, 3, 15), Decimal("1"), "stranger") is None


@pytest.fixture
def ledgers(tmp_path):
    return {
        Entity.BUSINESS_1: SqliteRecordStore(tmp_path / "b1.db"),
        Entity.BUSINESS_2: SqliteRecordStore(tmp_path / "b2.db"),
    }


def add_client(store, name, payment_date, amount):
    table = ClientsTable()
    return store.create(
        table.name,
        {table.client_name: name, table.payment_date: payment_date, table.amount: amount},
    )


class TestLedgerMatcher:
    """Test the client ledger layer lookup."""

    def test_match_within_window_and_tolerance(self, ledgers):
        """Test a payment near an expected one matches that client."""
        client_id = add_client(ledgers[Entity.BUSINESS_1], "Acme Ltd", "2024-03-12", 2000)
        add_client(ledgers[Entity.BUSINESS_2], "Other Co", "2024-03-15", 2100)
        matcher = LedgerMatcher(ledgers, USERS)

        match = matcher.find_match(date(2024, 3, 15), Decimal("2100"), "dana")

        assert match.id == client_id
        assert match.name == "Acme Ltd"
        assert match.entity is Entity.BUSINESS_1
        assert match.amount == Decimal("2000")

    def test_amount_too_far(self, ledgers):
        """Test 15% off the expected amount does not match."""
        add_client(ledgers[Entity.BUSINESS_1], "Acme Ltd", "2024-03-15", 2000)

        match = LedgerMatcher(ledgers, USERS).find_match(date(2024, 3, 15), Decimal("2300"), "dana")

        assert match is None

    def test_date_too_far(self, ledgers):
        """Test payments more than a week away do not match."""
        add_client(ledgers[Entity.BUSINESS_2], "Beta", "2024-03-01", 700)

        assert LedgerMatcher(ledgers, USERS).find_match(date(2024, 3, 15), Decimal("700"), "avi") is None

    def test_disabled_with_one_ledger(self, ledgers):
        """Test both business ledgers are required."""
        add_client(ledgers[Entity.BUSINESS_1], "Acme Ltd", "2024-03-15", 2000)
        matcher = LedgerMatcher({Entity.BUSINESS_1: ledgers[Entity.BUSINESS_1]}, USERS)

        assert not matcher.is_enabled()
        assert matcher.find_match(date(2024, 3, 15), Decimal("2000"), "dana") is None
