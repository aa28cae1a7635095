"""
Render payloads for the manual resolution channel.

A view carries everything a chat transport needs to show one step: the data
to describe and the buttons (label + callback data) laid out in rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..schemas.models import Category, Entity, Transaction, TransactionType

ENTITY_LABELS = {
    Entity.HOME: "Home",
    Entity.BUSINESS_1: "Business 1",
    Entity.BUSINESS_2: "Business 2",
    Entity.SHARED: "Shared business",
}

TYPE_LABELS = {
    TransactionType.INCOME: "Income",
    TransactionType.EXPENSE: "Expense",
}


@dataclass
class Button:
    label: str
    callback: str


class View:
    """Base render payload."""

    transaction_id: str

    def keyboard(self) -> list[list[Button]]:
        return []


@dataclass
class InitialChoicesView(View):
    transaction: Transaction
    options: list[Button]
    ignore: Button
    payment_app: bool = False

    @property
    def transaction_id(self) -> str:
        return self.transaction.id

    def keyboard(self) -> list[list[Button]]:
        return [[option] for option in self.options] + [[self.ignore]]


@dataclass
class CategoryOption:
    category: Category
    select: Button
    select_with_rule: Button


@dataclass
class CategoryPageView(View):
    transaction_id: str
    type: TransactionType
    entity: Entity
    options: list[CategoryOption]
    page_index: int
    total_pages: int
    back: Button
    previous: Button | None = None
    next: Button | None = None

    def keyboard(self) -> list[list[Button]]:
        rows = [[option.select, option.select_with_rule] for option in self.options]
        navigation = [b for b in (self.previous, self.next) if b is not None]
        if navigation:
            rows.append(navigation)
        rows.append([self.back])
        return rows


@dataclass
class IgnoreConfirmationView(View):
    transaction_id: str
    confirm: Button
    cancel: Button

    def keyboard(self) -> list[list[Button]]:
        return [[self.confirm, self.cancel]]


@dataclass
class ClassifiedView(View):
    transaction_id: str
    category_name: str
    entity: Entity
    type: TransactionType
    rule_created: bool = False


@dataclass
class IgnoredView(View):
    transaction_id: str


@dataclass
class ErrorView(View):
    transaction_id: str | None
    message: str
    detail: str | None = None
    # Buttons that let the user pick the flow up again
    retry: list[Button] = field(default_factory=list)

    def keyboard(self) -> list[list[Button]]:
        return [[button] for button in self.retry]
