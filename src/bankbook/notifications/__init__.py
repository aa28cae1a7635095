"""
Notifications: run summaries, error reports and resolution prompts.
"""

from .messages import format_classification_summary, format_ingestion_summary, format_view
from .telegram import LoggingNotifier, NotificationError, Notifier, TelegramNotifier

__all__ = [
    "LoggingNotifier",
    "NotificationError",
    "Notifier",
    "TelegramNotifier",
    "format_classification_summary",
    "format_ingestion_summary",
    "format_view",
]
