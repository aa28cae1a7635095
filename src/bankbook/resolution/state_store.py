"""
Flow state storage.

- InMemoryFlowStateStore: process-local; in-flight flows are lost on restart
  (the user restarts them from the initial prompt)
- RecordFlowStateStore: persisted in a record-store table keyed by
  transaction id, so flows survive restarts
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from ..record_store.base import Record, RecordStore
from ..record_store.filters import Eq
from ..schemas.models import Entity, TransactionType
from ..schemas.tables import FlowsTable
from .flow import FlowStage, FlowState

logger = logging.getLogger(__name__)


class FlowStateStore(ABC):
    """Keyed by transaction id."""

    @abstractmethod
    def get(self, transaction_id: str) -> FlowState | None: ...

    @abstractmethod
    def save(self, state: FlowState) -> None: ...

    @abstractmethod
    def delete(self, transaction_id: str) -> None: ...


class InMemoryFlowStateStore(FlowStateStore):
    def __init__(self) -> None:
        self._states: dict[str, FlowState] = {}

    def get(self, transaction_id: str) -> FlowState | None:
        return self._states.get(transaction_id)

    def save(self, state: FlowState) -> None:
        self._states[state.transaction_id] = state

    def delete(self, transaction_id: str) -> None:
        self._states.pop(transaction_id, None)

    def __len__(self) -> int:
        return len(self._states)


class RecordFlowStateStore(FlowStateStore):
    """Flow states as records of the flows table."""

    def __init__(self, store: RecordStore, table: FlowsTable | None = None):
        self.store = store
        self.table = table or FlowsTable()

    def _find(self, transaction_id: str) -> list[Record]:
        return self.store.query(self.table.name, filter=Eq(self.table.transaction_id, transaction_id))

    def _from_record(self, record: Record) -> FlowState:
        t = self.table
        tx_type = record.get(t.type)
        entity = record.get(t.entity)
        return FlowState(
            transaction_id=record.get(t.transaction_id),
            stage=FlowStage(record.get(t.stage)),
            type=TransactionType(tx_type) if tx_type else None,
            entity=Entity(entity) if entity else None,
        )

    def get(self, transaction_id: str) -> FlowState | None:
        records = self._find(transaction_id)
        if not records:
            return None
        try:
            return self._from_record(records[0])
        except ValueError as e:
            logger.warning(f"Discarding unreadable flow state for {transaction_id}: {e}")
            return None

    def save(self, state: FlowState) -> None:
        t = self.table
        fields = {
            t.transaction_id: state.transaction_id,
            t.stage: state.stage.value,
            t.type: state.type.value if state.type else None,
            t.entity: state.entity.value if state.entity else None,
            t.updated_at: datetime.now(timezone.utc).isoformat(),
        }
        records = self._find(state.transaction_id)
        if records:
            self.store.update(t.name, records[0].id, fields)
        else:
            self.store.create(t.name, fields)

    def delete(self, transaction_id: str) -> None:
        records = self._find(transaction_id)
        if records:
            self.store.destroy(self.table.name, [r.id for r in records])
