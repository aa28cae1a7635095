"""
Manual resolution flow state machine.

One flow per transaction:

    AWAITING_CHOICE --choose--> AWAITING_CATEGORY --choose_category--> CONFIRMED
          |   ^                     |   ^   |
          |   +-------back----------+   +---+ page
          |
          +--ignore--> AWAITING_IGNORE_CONFIRMATION --confirm_ignore--> IGNORED
                              |
                              +--cancel_ignore / back--> AWAITING_CHOICE

``transition`` is pure: it returns the next state and the effect the
channel must perform, and never touches storage or the store.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from ..schemas.models import Entity, TransactionType

# Entities offered per transaction type
INCOME_ENTITIES = (Entity.BUSINESS_1, Entity.BUSINESS_2)
EXPENSE_ENTITIES = (Entity.HOME, Entity.BUSINESS_1, Entity.BUSINESS_2, Entity.SHARED)


def allowed_entities(tx_type: TransactionType) -> tuple[Entity, ...]:
    return INCOME_ENTITIES if tx_type is TransactionType.INCOME else EXPENSE_ENTITIES


class FlowError(Exception):
    """Base exception for manual resolution errors."""

    pass


class InvalidTransitionError(FlowError):
    """An event that the current stage does not accept."""

    def __init__(self, stage: FlowStage, event: object):
        self.stage = stage
        self.event = event
        super().__init__(f"{type(event).__name__} is not valid in stage {stage.value}")


class FlowStage(str, Enum):
    AWAITING_CHOICE = "awaiting_choice"
    AWAITING_CATEGORY = "awaiting_category"
    AWAITING_IGNORE_CONFIRMATION = "awaiting_ignore_confirmation"
    CONFIRMED = "confirmed"
    IGNORED = "ignored"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowStage.CONFIRMED, FlowStage.IGNORED)


@dataclass(frozen=True)
class FlowState:
    """Where one transaction's flow stands."""

    transaction_id: str
    stage: FlowStage = FlowStage.AWAITING_CHOICE
    type: TransactionType | None = None
    entity: Entity | None = None


# Events


@dataclass(frozen=True)
class Choose:
    type: TransactionType
    entity: Entity


@dataclass(frozen=True)
class ChooseCategory:
    category_id: str
    create_rule: bool = False


@dataclass(frozen=True)
class Ignore:
    pass


@dataclass(frozen=True)
class ConfirmIgnore:
    pass


@dataclass(frozen=True)
class CancelIgnore:
    pass


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class Page:
    page_index: int


Event = Choose | ChooseCategory | Ignore | ConfirmIgnore | CancelIgnore | Back | Page


# Effects


@dataclass(frozen=True)
class ShowChoices:
    pass


@dataclass(frozen=True)
class ShowCategories:
    page_index: int = 0


@dataclass(frozen=True)
class ShowIgnoreConfirmation:
    pass


@dataclass(frozen=True)
class ApplyClassification:
    category_id: str
    create_rule: bool


@dataclass(frozen=True)
class ApplyIgnore:
    pass


Effect = ShowChoices | ShowCategories | ShowIgnoreConfirmation | ApplyClassification | ApplyIgnore


@dataclass(frozen=True)
class Transition:
    state: FlowState
    effect: Effect


def _choose(state: FlowState, event: Choose) -> Transition:
    if event.entity not in allowed_entities(event.type):
        raise InvalidTransitionError(state.stage, event)
    next_state = replace(
        state, stage=FlowStage.AWAITING_CATEGORY, type=event.type, entity=event.entity
    )
    return Transition(next_state, ShowCategories(0))


def _reset(state: FlowState) -> Transition:
    return Transition(FlowState(state.transaction_id), ShowChoices())


def transition(state: FlowState, event: Event) -> Transition:
    """
    Next state and effect for an event.

    Raises:
        InvalidTransitionError: If the stage does not accept the event
    """
    stage = state.stage

    if stage is FlowStage.AWAITING_CHOICE:
        if isinstance(event, Choose):
            return _choose(state, event)
        if isinstance(event, Ignore):
            return Transition(
                replace(state, stage=FlowStage.AWAITING_IGNORE_CONFIRMATION),
                ShowIgnoreConfirmation(),
            )
        if isinstance(event, Back):
            return _reset(state)

    elif stage is FlowStage.AWAITING_CATEGORY:
        if isinstance(event, ChooseCategory):
            return Transition(
                replace(state, stage=FlowStage.CONFIRMED),
                ApplyClassification(event.category_id, event.create_rule),
            )
        if isinstance(event, Page):
            return Transition(state, ShowCategories(max(event.page_index, 0)))
        if isinstance(event, Back):
            return _reset(state)
        if isinstance(event, Choose):
            return _choose(state, event)

    elif stage is FlowStage.AWAITING_IGNORE_CONFIRMATION:
        if isinstance(event, ConfirmIgnore):
            return Transition(replace(state, stage=FlowStage.IGNORED), ApplyIgnore())
        if isinstance(event, (CancelIgnore, Back)):
            return _reset(state)

    raise InvalidTransitionError(stage, event)
