"""
Invoice matching against the invoicing API.

An incoming payment is explained by an issued invoice of the receiving
business when the invoice date lies within +/- window days and its total is
within +/- tolerance of the payment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.models import Entity

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

# API response keys
KEY_STATUS = "Status"
KEY_ERROR = "UserErrorMessage"
KEY_DATA = "Data"
KEY_DOCUMENTS = "Documents"
KEY_DOCUMENT = "Document"
KEY_ITEMS = "Items"
KEY_DOCUMENT_ID = "DocumentID"
KEY_DATE = "Date"
KEY_TOTAL = "DocumentValue"
KEY_CUSTOMER = "CustomerName"
KEY_DESCRIPTION = "Description"
KEY_VAT_INCLUDED = "VATIncluded"

STATUS_SUCCESS = 0


class InvoiceLookupError(Exception):
    """The invoicing API failed or answered with an error status."""

    pass


@dataclass
class Invoice:
    """An issued invoice candidate."""

    id: str
    date: date
    amount: Decimal
    customer_name: str | None = None
    description: str | None = None
    tax_included: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Invoice:
        return cls(
            id=str(data[KEY_DOCUMENT_ID]),
            date=date.fromisoformat(str(data[KEY_DATE])[:10]),
            amount=Decimal(str(data[KEY_TOTAL])),
            customer_name=data.get(KEY_CUSTOMER),
            description=data.get(KEY_DESCRIPTION),
        )


class SumitClient:
    """
    Client for the invoicing API.

    Every call is a POST carrying {"Credentials": {"CompanyID", "APIKey"}}.
    Features:
    - List documents issued within a date range
    - Fetch one document's details (line items, VAT mode)
    - Automatic retry with backoff
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.sumit.co.il",
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _post(self, endpoint: str, company_id: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        payload = {"Credentials": {"CompanyID": company_id, "APIKey": self.api_key}, **body}
        logger.debug(f"API Request: POST {url}")

        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise InvoiceLookupError(f"Invoicing API request failed: {e}") from e
        except ValueError as e:
            raise InvoiceLookupError("Invoicing API returned non-JSON response") from e

        if data.get(KEY_STATUS) != STATUS_SUCCESS:
            raise InvoiceLookupError(
                f"Invoicing API error status {data.get(KEY_STATUS)}: {data.get(KEY_ERROR)}"
            )
        return data.get(KEY_DATA) or {}

    def list_documents(self, company_id: str, date_from: date, date_to: date) -> list[Invoice]:
        data = self._post(
            "/accounting/documents/list/",
            company_id,
            {
                "DateFrom": f"{date_from.isoformat()}T00:00:00",
                "DateTo": f"{date_to.isoformat()}T23:59:59",
                "IncludeDrafts": False,
            },
        )
        return [Invoice.from_dict(d) for d in data.get(KEY_DOCUMENTS) or []]

    def get_document_details(self, company_id: str, document_id: str) -> dict[str, Any]:
        data = self._post(
            "/accounting/documents/getdetails/",
            company_id,
            {"DocumentID": document_id},
        )
        return data.get(KEY_DOCUMENT) or {}


class InvoiceMatcher:
    """First classification layer: issued invoices explain incoming payments."""

    def __init__(
        self,
        client: SumitClient | None,
        company_ids: dict[Entity, str],
        user_entities: dict[str, Entity],
        date_window_days: int = 7,
        amount_tolerance: float = 0.01,
    ):
        """
        Initialize matcher.

        Args:
            client: Invoicing API client (None disables the layer)
            company_ids: Invoicing company id per business entity
            user_entities: Business entity of each user
            date_window_days: Accepted distance between payment and invoice
            amount_tolerance: Accepted relative amount difference
        """
        self.client = client
        self.company_ids = {k: v for k, v in company_ids.items() if v}
        self.user_entities = user_entities
        self.date_window = timedelta(days=date_window_days)
        self.amount_tolerance = Decimal(str(amount_tolerance))
        self._enabled = client is not None and len(self.company_ids) >= 2

        if self._enabled:
            logger.info("Invoice matching enabled")
        else:
            logger.info("Invoice matching disabled (missing API key or business ids)")

    @classmethod
    def from_config(cls, config: Config) -> InvoiceMatcher:
        inv = config.invoice
        client = (
            SumitClient(inv.api_key, base_url=inv.base_url, timeout=inv.timeout_seconds)
            if inv.is_configured()
            else None
        )
        return cls(
            client,
            {
                Entity.BUSINESS_1: inv.business_1_company_id,
                Entity.BUSINESS_2: inv.business_2_company_id,
            },
            {user.id: user.business_entity for user in config.users},
            date_window_days=inv.date_window_days,
            amount_tolerance=inv.amount_tolerance,
        )

    def is_enabled(self) -> bool:
        return self._enabled

    def entity_for(self, user_id: str) -> Entity | None:
        return self.user_entities.get(user_id)

    def find_invoice(self, tx_date: date, amount: Decimal, user_id: str) -> Invoice | None:
        """
        Invoice of the user's business matching a payment.

        The candidate with the closest date wins; on equal distance the first
        one the API returned is kept.

        Args:
            tx_date: Payment date
            amount: Payment amount (positive)
            user_id: Receiving user; selects the business

        Returns:
            Matching invoice with tax_included resolved, or None

        Raises:
            InvoiceLookupError: If the document list cannot be fetched
        """
        if not self._enabled:
            return None
        entity = self.entity_for(user_id)
        company_id = self.company_ids.get(entity) if entity else None
        if not company_id:
            logger.debug(f"No invoicing company configured for user {user_id}")
            return None

        target = abs(amount)
        tolerance = target * self.amount_tolerance
        documents = self.client.list_documents(
            company_id, tx_date - self.date_window, tx_date + self.date_window
        )
        candidates = [
            doc
            for doc in documents
            if abs(doc.date - tx_date) <= self.date_window
            and abs(abs(doc.amount) - target) <= tolerance
        ]
        if not candidates:
            return None

        best = min(candidates, key=lambda doc: abs(doc.date - tx_date))
        best.tax_included = self._is_tax_included(company_id, best.id)
        logger.info(f"Matched invoice {best.id} ({best.date}, {best.amount}) for {target}")
        return best

    def _is_tax_included(self, company_id: str, document_id: str) -> bool:
        """VAT mode of an invoice; assumed included when unknown."""
        try:
            details = self.client.get_document_details(company_id, document_id)
        except InvoiceLookupError as e:
            logger.warning(f"Could not read details of invoice {document_id}: {e}")
            return True

        if KEY_VAT_INCLUDED in details:
            return bool(details[KEY_VAT_INCLUDED])
        for item in details.get(KEY_ITEMS) or []:
            if KEY_VAT_INCLUDED in item:
                return bool(item[KEY_VAT_INCLUDED])
        return True
