"""
Airtable REST record store.
"""

import json
import logging
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import (
    Record,
    RecordNotFoundError,
    RecordStore,
    RecordStoreAPIError,
    RecordStoreConnectionError,
    RecordStoreError,
    SortSpec,
)
from .filters import Filter

logger = logging.getLogger(__name__)


class AirtableRecordStore(RecordStore):
    """
    Record store backed by one Airtable base.

    Features:
    - filterByFormula queries rendered from filter expressions
    - Pagination through the "offset" cursor
    - Batched create/destroy (Airtable caps batches at 10 records)
    - Automatic retry with backoff on 429 and 5xx
    """

    DEFAULT_TIMEOUT = 30
    DEFAULT_API_URL = "https://api.airtable.com/v0"
    PAGE_SIZE = 100
    max_batch_size = 10

    def __init__(
        self,
        api_key: str,
        base_id: str,
        api_url: str = DEFAULT_API_URL,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        typecast: bool = True,
    ):
        """
        Initialize Airtable store.

        Args:
            api_key: Personal access token
            base_id: Base id ("app...")
            api_url: API root
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            backoff_factor: Backoff factor for retries
            typecast: Let Airtable convert strings to select/link values
        """
        self.base_id = base_id
        self.base_url = f"{api_url.rstrip('/')}/{base_id}"
        self.timeout = timeout
        self.typecast = typecast

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST", "PATCH", "DELETE"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _table_url(self, table: str, record_id: str | None = None) -> str:
        url = f"{self.base_url}/{quote(table, safe='')}"
        if record_id:
            url = f"{url}/{record_id}"
        return url

    def _request(
        self,
        method: str,
        url: str,
        params: dict | list | None = None,
        json_data: dict | None = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        logger.debug(f"API Request: {method} {url}")
        if json_data:
            logger.debug(f"Request body: {json.dumps(json_data, ensure_ascii=False)}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error to {url}: {e}")
            raise RecordStoreConnectionError(f"Failed to connect to Airtable: {e}") from e
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout for {url}: {e}")
            raise RecordStoreConnectionError(f"Request to Airtable timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error for {url}: {e}")
            raise RecordStoreError(f"Request failed: {e}") from e

        logger.debug(f"Response status: {response.status_code}")

        if not response.ok:
            error_body = response.text
            errors: dict = {}
            try:
                error = response.json().get("error", {})
                if isinstance(error, dict):
                    errors = error
                    message = error.get("message") or error.get("type") or response.reason
                else:
                    message = str(error)
            except ValueError:
                message = response.reason

            logger.error(f"API Error {response.status_code}: {message}")
            raise RecordStoreAPIError(
                status_code=response.status_code,
                message=message,
                response_body=error_body,
                errors=errors,
            )

        return response

    def test_connection(self) -> bool:
        """Test that the base is reachable through the schema endpoint."""
        try:
            self._request("GET", f"{self.api_root}/meta/bases/{self.base_id}/tables")
            return True
        except RecordStoreError:
            return False

    @property
    def api_root(self) -> str:
        return self.base_url.rsplit("/", 1)[0]

    def create(self, table: str, fields: dict[str, Any]) -> str:
        return self._create_batch(table, [fields])[0]

    def _create_batch(self, table: str, rows: list[dict[str, Any]]) -> list[str]:
        payload = {
            "records": [{"fields": row} for row in rows],
            "typecast": self.typecast,
        }
        response = self._request("POST", self._table_url(table), json_data=payload)
        records = response.json().get("records", [])
        logger.debug(f"Created {len(records)} record(s) in {table}")
        return [r["id"] for r in records]

    def update(self, table: str, record_id: str, fields: dict[str, Any]) -> None:
        try:
            self._request(
                "PATCH",
                self._table_url(table, record_id),
                json_data={"fields": fields, "typecast": self.typecast},
            )
        except RecordStoreAPIError as e:
            if e.status_code == 404:
                raise RecordNotFoundError(table, record_id) from e
            raise

    def find(self, table: str, record_id: str) -> Record:
        try:
            response = self._request("GET", self._table_url(table, record_id))
        except RecordStoreAPIError as e:
            if e.status_code == 404:
                raise RecordNotFoundError(table, record_id) from e
            raise
        data = response.json()
        return Record(id=data["id"], fields=data.get("fields", {}))

    def query(
        self,
        table: str,
        filter: Filter | None = None,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        params: dict[str, Any] = {"pageSize": self.PAGE_SIZE}
        if filter is not None:
            params["filterByFormula"] = filter.to_formula()
        if limit is not None:
            params["maxRecords"] = limit
        for index, (field_name, direction) in enumerate(sort or []):
            params[f"sort[{index}][field]"] = field_name
            params[f"sort[{index}][direction]"] = direction

        records: list[Record] = []
        while True:
            response = self._request("GET", self._table_url(table), params=params)
            data = response.json()
            for item in data.get("records", []):
                records.append(Record(id=item["id"], fields=item.get("fields", {})))
            offset = data.get("offset")
            if not offset or (limit is not None and len(records) >= limit):
                break
            params["offset"] = offset

        return records[:limit] if limit is not None else records

    def _destroy_batch(self, table: str, record_ids: list[str]) -> None:
        params = [("records[]", record_id) for record_id in record_ids]
        self._request("DELETE", self._table_url(table), params=params)
