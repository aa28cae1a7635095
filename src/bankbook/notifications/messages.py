"""
Message formatting for chat notifications.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..resolution.views import (
    ENTITY_LABELS,
    TYPE_LABELS,
    CategoryPageView,
    ClassifiedView,
    ErrorView,
    IgnoreConfirmationView,
    IgnoredView,
    InitialChoicesView,
    View,
)

if TYPE_CHECKING:
    from ..ingestion.engine import IngestionRunSummary
    from ..runner.scheduler import ClassificationRunSummary


def format_amount(amount) -> str:
    return f"₪{abs(amount):,.2f}"


def format_ingestion_summary(summary: IngestionRunSummary) -> str:
    lines = [
        "Daily scrape finished",
        f"Accounts: {summary.successful_accounts}/{summary.total_accounts} succeeded",
        f"New transactions: {summary.total_new_transactions}",
        f"Duration: {summary.duration_seconds:.0f}s",
    ]
    if summary.failed:
        lines.append("")
        lines.append("Failed accounts:")
        lines.extend(f"- {r.account_name}: {r.error}" for r in summary.failed)
    return "\n".join(lines)


def format_classification_summary(summary: ClassificationRunSummary) -> str:
    lines = [
        "Classification finished",
        f"Processed: {summary.processed}",
        f"Auto-classified: {summary.auto_classified}",
        f"Sent for manual classification: {summary.sent_to_manual}",
    ]
    if summary.errors:
        lines.append(f"Errors: {len(summary.errors)}")
    lines.append(f"Duration: {summary.duration_seconds:.0f}s")
    return "\n".join(lines)


def format_classification_errors(summary: ClassificationRunSummary) -> str:
    lines = [f"Classification errors ({len(summary.errors)}):"]
    lines.extend(f"- {e.transaction_id}: {e.description} ({e.error})" for e in summary.errors)
    return "\n".join(lines)


def format_view(view: View) -> str:
    """Message text for a resolution view."""
    if isinstance(view, InitialChoicesView):
        tx = view.transaction
        direction = "Incoming" if tx.amount > 0 else "Outgoing"
        lines = [
            "New transaction to classify",
            f"{tx.description}",
            f"{direction} {format_amount(tx.amount)} on {tx.date.isoformat()}",
        ]
        if view.payment_app:
            lines.append("Looks like a payment-app transfer")
        return "\n".join(lines)
    if isinstance(view, CategoryPageView):
        text = f"Choose a category ({TYPE_LABELS[view.type]}, {ENTITY_LABELS[view.entity]})"
        if view.total_pages > 1:
            text += f" page {view.page_index + 1}/{view.total_pages}"
        return text
    if isinstance(view, IgnoreConfirmationView):
        return "Ignore this transaction? It will not be recorded."
    if isinstance(view, ClassifiedView):
        text = f"Classified as {view.category_name} ({ENTITY_LABELS[view.entity]})"
        if view.rule_created:
            text += "\nA rule was saved for similar transactions"
        return text
    if isinstance(view, IgnoredView):
        return "Transaction ignored"
    if isinstance(view, ErrorView):
        return f"{view.message}\n{view.detail}" if view.detail else view.message
    return ""
