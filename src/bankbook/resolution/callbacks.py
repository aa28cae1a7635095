"""
Callback data codec.

Chat buttons carry short strings (Telegram allows 64 bytes):

    classify:{tx}:{type}:{entity}
    category:{tx}:{category_id}:{0|1}     (1 = also create a rule)
    ignore:{tx}
    confirm_ignore:{tx}
    cancel_ignore:{tx}
    back:{tx}
    page:{tx}:{index}
    noop
"""

from __future__ import annotations

from ..schemas.models import Entity, TransactionType
from .flow import (
    Back,
    CancelIgnore,
    Choose,
    ChooseCategory,
    ConfirmIgnore,
    Event,
    FlowError,
    Ignore,
    Page,
)

SEPARATOR = ":"
NOOP = "noop"


class CallbackDataError(FlowError):
    """Callback data that cannot be decoded."""

    pass


def encode(transaction_id: str, event: Event) -> str:
    """Callback string for an event on a transaction."""
    if isinstance(event, Choose):
        parts = ["classify", transaction_id, event.type.value, event.entity.value]
    elif isinstance(event, ChooseCategory):
        parts = ["category", transaction_id, event.category_id, "1" if event.create_rule else "0"]
    elif isinstance(event, Ignore):
        parts = ["ignore", transaction_id]
    elif isinstance(event, ConfirmIgnore):
        parts = ["confirm_ignore", transaction_id]
    elif isinstance(event, CancelIgnore):
        parts = ["cancel_ignore", transaction_id]
    elif isinstance(event, Back):
        parts = ["back", transaction_id]
    elif isinstance(event, Page):
        parts = ["page", transaction_id, str(event.page_index)]
    else:
        raise CallbackDataError(f"Cannot encode {event!r}")
    return SEPARATOR.join(parts)


def parse(data: str) -> tuple[str, Event] | None:
    """
    Decode callback data.

    Returns:
        (transaction_id, event), or None for "noop"

    Raises:
        CallbackDataError: If the data is malformed
    """
    if data == NOOP:
        return None

    action, _, rest = data.partition(SEPARATOR)
    args = rest.split(SEPARATOR) if rest else []
    if not args or not args[0]:
        raise CallbackDataError(f"Missing transaction id in callback '{data}'")
    transaction_id = args[0]

    try:
        if action == "classify" and len(args) == 3:
            return transaction_id, Choose(TransactionType(args[1]), Entity(args[2]))
        if action == "category" and len(args) == 3:
            return transaction_id, ChooseCategory(args[1], args[2] in ("1", "true"))
        if action == "page" and len(args) == 2:
            return transaction_id, Page(int(args[1]))
    except ValueError as e:
        raise CallbackDataError(f"Invalid callback '{data}': {e}") from e

    simple = {
        "ignore": Ignore,
        "confirm_ignore": ConfirmIgnore,
        "cancel_ignore": CancelIgnore,
        "back": Back,
    }
    if action in simple and len(args) == 1:
        return transaction_id, simple[action]()

    raise CallbackDataError(f"Unknown callback '{data}'")
