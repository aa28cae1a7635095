"""
Manual resolution channel.

Drives the per-transaction flow: decodes chat callbacks into events, runs
the pure transition function, performs the resulting effect through the
classification orchestrator and returns the view to render.
"""

from __future__ import annotations

import logging
import math

from ..classification.orchestrator import ClassificationOrchestrator
from ..schemas.models import Entity, Transaction, TransactionType
from . import callbacks
from .flow import (
    ApplyClassification,
    ApplyIgnore,
    Back,
    CancelIgnore,
    Choose,
    ChooseCategory,
    ConfirmIgnore,
    Event,
    FlowStage,
    FlowState,
    Ignore,
    InvalidTransitionError,
    Page,
    ShowCategories,
    ShowChoices,
    ShowIgnoreConfirmation,
    Transition,
    allowed_entities,
    transition,
)
from .state_store import FlowStateStore, InMemoryFlowStateStore
from .views import (
    ENTITY_LABELS,
    TYPE_LABELS,
    Button,
    CategoryOption,
    CategoryPageView,
    ClassifiedView,
    ErrorView,
    IgnoreConfirmationView,
    IgnoredView,
    InitialChoicesView,
    View,
)

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Something went wrong, please try again."


class ManualResolutionChannel:
    """
    Human-in-the-loop classification.

    Each inbound event loads the transaction's flow state (a missing state
    means the initial stage), transitions, executes the effect and persists
    the new state. Terminal stages remove the state. A failed effect keeps
    the previous state so the user can retry the same step.
    """

    def __init__(
        self,
        orchestrator: ClassificationOrchestrator,
        state_store: FlowStateStore | None = None,
        page_size: int = 10,
    ):
        self.orchestrator = orchestrator
        self.state_store = state_store or InMemoryFlowStateStore()
        self.page_size = page_size

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def present(self, transaction: Transaction) -> InitialChoicesView:
        """Initial prompt for a transaction that needs a human decision."""
        self.state_store.delete(transaction.id)
        return self._initial_view(transaction)

    def handle_callback(self, data: str, user_id: str) -> View | None:
        """
        Handle raw callback data from a chat button.

        Returns:
            View to render, or None for no-op buttons
        """
        try:
            decoded = callbacks.parse(data)
        except callbacks.CallbackDataError as e:
            logger.warning(f"Rejected callback: {e}")
            return ErrorView(None, GENERIC_FAILURE, detail=str(e))
        if decoded is None:
            return None
        transaction_id, event = decoded
        return self.dispatch(transaction_id, event, user_id)

    def choose(self, transaction_id: str, tx_type: TransactionType, entity: Entity, user_id: str) -> View:
        return self.dispatch(transaction_id, Choose(tx_type, entity), user_id)

    def choose_category(
        self, transaction_id: str, category_id: str, create_rule: bool, user_id: str
    ) -> View:
        return self.dispatch(transaction_id, ChooseCategory(category_id, create_rule), user_id)

    def ignore(self, transaction_id: str, user_id: str) -> View:
        return self.dispatch(transaction_id, Ignore(), user_id)

    def confirm_ignore(self, transaction_id: str, user_id: str) -> View:
        return self.dispatch(transaction_id, ConfirmIgnore(), user_id)

    def cancel_ignore(self, transaction_id: str, user_id: str) -> View:
        return self.dispatch(transaction_id, CancelIgnore(), user_id)

    def back(self, transaction_id: str, user_id: str) -> View:
        return self.dispatch(transaction_id, Back(), user_id)

    def page(self, transaction_id: str, page_index: int, user_id: str) -> View:
        return self.dispatch(transaction_id, Page(page_index), user_id)

    def dispatch(self, transaction_id: str, event: Event, user_id: str) -> View:
        """Run one event through the flow."""
        state = self.state_store.get(transaction_id) or FlowState(transaction_id)
        try:
            step = transition(state, event)
        except InvalidTransitionError as e:
            logger.warning(f"Flow {transaction_id}: {e}")
            return self._error(
                transaction_id,
                "This step is no longer available. Please start again.",
                detail=str(e),
            )

        try:
            return self._perform(state, step, user_id)
        except Exception as e:
            logger.exception(f"Flow {transaction_id}: {type(step.effect).__name__} failed")
            return self._error(transaction_id, GENERIC_FAILURE, detail=str(e), state=state)

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def _perform(self, previous: FlowState, step: Transition, user_id: str) -> View:
        state, effect = step.state, step.effect
        tx_id = state.transaction_id

        if isinstance(effect, ShowChoices):
            # The initial stage is implied by a missing state
            self.state_store.delete(tx_id)
            transaction = self.orchestrator.get_transaction(tx_id)
            if transaction is None:
                return ErrorView(tx_id, "Transaction not found.")
            return self._initial_view(transaction)

        if isinstance(effect, ShowCategories):
            categories = self.orchestrator.get_categories(state.type, state.entity)
            if not categories:
                self.state_store.delete(tx_id)
                return self._error(
                    tx_id,
                    f"No {state.type.value} categories for {ENTITY_LABELS[state.entity]}.",
                )
            self.state_store.save(state)
            return self._category_view(state, categories, effect.page_index)

        if isinstance(effect, ShowIgnoreConfirmation):
            self.state_store.save(state)
            return IgnoreConfirmationView(
                transaction_id=tx_id,
                confirm=Button("Yes, ignore", callbacks.encode(tx_id, ConfirmIgnore())),
                cancel=Button("Cancel", callbacks.encode(tx_id, CancelIgnore())),
            )

        if isinstance(effect, ApplyClassification):
            result = self.orchestrator.manual_classify(
                tx_id,
                effect.category_id,
                state.entity,
                state.type,
                user_id,
                create_rule=effect.create_rule,
            )
            self.state_store.delete(tx_id)
            return ClassifiedView(
                transaction_id=tx_id,
                category_name=result.category.name if result.category else effect.category_id,
                entity=state.entity,
                type=state.type,
                rule_created=bool(result.metadata.get("created_rule")),
            )

        if isinstance(effect, ApplyIgnore):
            self.orchestrator.ignore(tx_id)
            self.state_store.delete(tx_id)
            return IgnoredView(transaction_id=tx_id)

        raise InvalidTransitionError(previous.stage, effect)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _initial_view(self, transaction: Transaction) -> InitialChoicesView:
        tx_type = transaction.type
        options = [
            Button(
                f"{TYPE_LABELS[tx_type]}: {ENTITY_LABELS[entity]}",
                callbacks.encode(transaction.id, Choose(tx_type, entity)),
            )
            for entity in allowed_entities(tx_type)
        ]
        return InitialChoicesView(
            transaction=transaction,
            options=options,
            ignore=Button("Ignore", callbacks.encode(transaction.id, Ignore())),
            payment_app=self.orchestrator.is_payment_app(transaction.description),
        )

    def _category_view(self, state: FlowState, categories: list, page_index: int) -> CategoryPageView:
        tx_id = state.transaction_id
        total_pages = max(1, math.ceil(len(categories) / self.page_size))
        page_index = min(page_index, total_pages - 1)
        start = page_index * self.page_size

        options = [
            CategoryOption(
                category=category,
                select=Button(category.name, callbacks.encode(tx_id, ChooseCategory(category.id))),
                select_with_rule=Button(
                    f"{category.name} + rule",
                    callbacks.encode(tx_id, ChooseCategory(category.id, create_rule=True)),
                ),
            )
            for category in categories[start : start + self.page_size]
        ]
        previous = (
            Button("Previous", callbacks.encode(tx_id, Page(page_index - 1)))
            if page_index > 0
            else None
        )
        following = (
            Button("Next", callbacks.encode(tx_id, Page(page_index + 1)))
            if page_index < total_pages - 1
            else None
        )
        return CategoryPageView(
            transaction_id=tx_id,
            type=state.type,
            entity=state.entity,
            options=options,
            page_index=page_index,
            total_pages=total_pages,
            back=Button("Back", callbacks.encode(tx_id, Back())),
            previous=previous,
            next=following,
        )

    def _error(
        self,
        transaction_id: str,
        message: str,
        detail: str | None = None,
        state: FlowState | None = None,
    ) -> ErrorView:
        retry = [Button("Start over", callbacks.encode(transaction_id, Back()))]
        if state is not None and state.stage is FlowStage.AWAITING_CATEGORY:
            retry.insert(0, Button("Categories", callbacks.encode(transaction_id, Page(0))))
        return ErrorView(transaction_id, message, detail=detail, retry=retry)
