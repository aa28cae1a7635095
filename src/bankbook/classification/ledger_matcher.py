"""
Client ledger matching.

Each business keeps a ledger of expected client payments (name, expected
payment date, expected amount) in its own base. An incoming payment matches
a ledger entry when the date is within +/- window days and the amount within
+/- tolerance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from ..record_store.airtable import AirtableRecordStore
from ..record_store.base import Record, RecordStore
from ..record_store.filters import And, Range
from ..record_store.mappers import parse_date, parse_decimal
from ..schemas.models import Entity
from ..schemas.tables import ClientsTable

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)


@dataclass
class ClientRecord:
    """An expected client payment."""

    id: str
    name: str
    entity: Entity
    payment_date: date | None = None
    amount: Decimal | None = None

    @classmethod
    def from_record(cls, record: Record, table: ClientsTable, entity: Entity) -> ClientRecord:
        return cls(
            id=record.id,
            name=record.get(table.client_name, ""),
            entity=entity,
            payment_date=parse_date(record.get(table.payment_date)),
            amount=parse_decimal(record.get(table.amount)),
        )


class LedgerMatcher:
    """Second classification layer: client ledgers explain incoming payments."""

    def __init__(
        self,
        stores: dict[Entity, RecordStore],
        user_entities: dict[str, Entity],
        table: ClientsTable | None = None,
        date_window_days: int = 7,
        amount_tolerance: float = 0.10,
    ):
        """
        Initialize matcher.

        Args:
            stores: Ledger store per business entity (both required)
            user_entities: Business entity of each user
            table: Ledger table layout
            date_window_days: Accepted distance from the expected payment date
            amount_tolerance: Accepted relative amount difference
        """
        self.stores = stores
        self.user_entities = user_entities
        self.table = table or ClientsTable()
        self.date_window = timedelta(days=date_window_days)
        self.amount_tolerance = Decimal(str(amount_tolerance))
        self._enabled = len(stores) >= 2

        if self._enabled:
            logger.info("Client ledger matching enabled")
        else:
            logger.info("Client ledger matching disabled (missing API key or base ids)")

    @classmethod
    def from_config(cls, config: Config) -> LedgerMatcher:
        ledger = config.ledger
        stores: dict[Entity, RecordStore] = {}
        if ledger.is_configured():
            for entity, base_id in (
                (Entity.BUSINESS_1, ledger.business_1_base_id),
                (Entity.BUSINESS_2, ledger.business_2_base_id),
            ):
                stores[entity] = AirtableRecordStore(
                    api_key=ledger.api_key,
                    base_id=base_id,
                    api_url=config.record_store.api_url,
                    timeout=config.record_store.timeout_seconds,
                )
        return cls(
            stores,
            {user.id: user.business_entity for user in config.users},
            table=config.tables.clients,
            date_window_days=ledger.date_window_days,
            amount_tolerance=ledger.amount_tolerance,
        )

    def is_enabled(self) -> bool:
        return self._enabled

    def find_match(self, tx_date: date, amount: Decimal, user_id: str) -> ClientRecord | None:
        """
        First ledger entry of the user's business matching a payment.

        Args:
            tx_date: Payment date
            amount: Payment amount (positive)
            user_id: Receiving user; selects the business ledger

        Returns:
            First entry returned by the range query, or None
        """
        if not self._enabled:
            return None
        entity = self.user_entities.get(user_id)
        store = self.stores.get(entity) if entity else None
        if store is None:
            logger.debug(f"No client ledger configured for user {user_id}")
            return None

        target = abs(amount)
        tolerance = target * self.amount_tolerance
        records = store.query(
            self.table.name,
            filter=And(
                Range(self.table.payment_date, tx_date - self.date_window, tx_date + self.date_window),
                Range(self.table.amount, target - tolerance, target + tolerance),
            ),
            limit=1,
        )
        if not records:
            return None

        match = ClientRecord.from_record(records[0], self.table, entity)
        logger.info(f"Matched client '{match.name}' ({match.id}) for {target}")
        return match
