"""
Scheduled runner.

Two daily jobs:
- ingestion: scrape all accounts and store new transactions
- classification: classify every pending transaction, send the rest to
  manual resolution

Each job has its own in-process guard; a trigger that fires while the same
job is still running is skipped, not queued.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from ..ingestion.engine import IngestionRunSummary
from ..notifications.messages import (
    format_classification_errors,
    format_classification_summary,
    format_ingestion_summary,
)

if TYPE_CHECKING:
    from ..classification.orchestrator import ClassificationOrchestrator
    from ..config import Config
    from ..ingestion.engine import IngestionEngine
    from ..notifications.telegram import Notifier
    from ..resolution.channel import ManualResolutionChannel

logger = logging.getLogger(__name__)


@dataclass
class ItemError:
    """One transaction that failed during a classification run."""

    transaction_id: str
    description: str
    error: str


@dataclass
class ClassificationRunSummary:
    """Aggregate of one classification run."""

    processed: int = 0
    auto_classified: int = 0
    sent_to_manual: int = 0
    errors: list[ItemError] = field(default_factory=list)
    duration_seconds: float = 0.0
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "skipped": self.skipped,
            "processed": self.processed,
            "auto_classified": self.auto_classified,
            "sent_to_manual": self.sent_to_manual,
            "errors": [e.__dict__ for e in self.errors],
            "duration_seconds": round(self.duration_seconds, 1),
        }


class JobGuard:
    """Non-blocking "already running" flag for one job."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """Yields False (without waiting) when the job is already running."""
        acquired = self._lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()


class ScheduledRunner:
    """Runs ingestion and classification on demand or on a daily schedule."""

    def __init__(
        self,
        config: Config,
        ingestion: IngestionEngine,
        orchestrator: ClassificationOrchestrator,
        channel: ManualResolutionChannel,
        notifier: Notifier,
    ):
        self.config = config
        self.ingestion = ingestion
        self.orchestrator = orchestrator
        self.channel = channel
        self.notifier = notifier
        self.ingestion_guard = JobGuard("ingestion")
        self.classification_guard = JobGuard("classification")
        self._scheduler: BackgroundScheduler | BlockingScheduler | None = None

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def _user_chats(self) -> list[str]:
        return [u.chat_id for u in self.config.users if u.chat_id]

    def _admin_chats(self) -> list[str]:
        admin = self.config.notifications.admin_chat_id
        return [admin] if admin else self._user_chats()

    def _notify_admin(self, message: str) -> None:
        try:
            self.notifier.notify(message, self._admin_chats())
        except Exception as e:
            logger.error(f"Failed to notify admin: {e}")

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def run_ingestion(self, raise_errors: bool = False) -> IngestionRunSummary:
        """
        Run one ingestion pass.

        Args:
            raise_errors: Re-raise a crashed run (manual triggers)

        Returns:
            Run summary (skipped=True if a run was already in progress)
        """
        with self.ingestion_guard.hold() as acquired:
            if not acquired:
                logger.warning("Ingestion already running, skipping trigger")
                return IngestionRunSummary(skipped=True)

            logger.info("Ingestion run started")
            try:
                summary = self.ingestion.run()
            except Exception as e:
                logger.exception("Ingestion run crashed")
                self._notify_admin(f"Daily scrape crashed: {e}")
                if raise_errors:
                    raise
                return IngestionRunSummary()

            logger.info(
                f"Ingestion run finished: {summary.successful_accounts}/"
                f"{summary.total_accounts} accounts, "
                f"{summary.total_new_transactions} new transactions"
            )
            self._notify_admin(format_ingestion_summary(summary))
            return summary

    def run_classification(self, raise_errors: bool = False) -> ClassificationRunSummary:
        """
        Classify every pending transaction.

        Failures go to manual resolution; a transaction that errors is
        recorded and the run continues.

        Args:
            raise_errors: Re-raise a crashed run (manual triggers)

        Returns:
            Run summary (skipped=True if a run was already in progress)
        """
        with self.classification_guard.hold() as acquired:
            if not acquired:
                logger.warning("Classification already running, skipping trigger")
                return ClassificationRunSummary(skipped=True)

            started = time.monotonic()
            summary = ClassificationRunSummary()
            try:
                pending = self.orchestrator.get_pending_transactions()
            except Exception as e:
                logger.exception("Could not load pending transactions")
                self._notify_admin(f"Classification crashed: {e}")
                if raise_errors:
                    raise
                return summary

            logger.info(f"Classification run started: {len(pending)} pending")
            for transaction in pending:
                summary.processed += 1
                try:
                    result = self.orchestrator.classify(transaction)
                    logger.debug(f"Classified {transaction.id}: {result.to_dict()}")
                    if result.success:
                        summary.auto_classified += 1
                        continue
                    self._send_to_manual(transaction)
                    summary.sent_to_manual += 1
                except Exception as e:
                    logger.error(f"Classification failed for {transaction.id}: {e}")
                    summary.errors.append(
                        ItemError(transaction.id, transaction.description, str(e))
                    )

            summary.duration_seconds = time.monotonic() - started
            logger.info(
                f"Classification run finished: {summary.auto_classified} auto, "
                f"{summary.sent_to_manual} manual, {len(summary.errors)} errors"
            )

            if summary.processed:
                try:
                    self.notifier.notify(format_classification_summary(summary), self._user_chats())
                except Exception as e:
                    logger.error(f"Failed to send classification summary: {e}")
            if summary.errors:
                self._notify_admin(format_classification_errors(summary))
            return summary

    def _send_to_manual(self, transaction) -> None:
        view = self.channel.present(transaction)
        user = self.config.get_user(transaction.user_id)
        chat_id = user.chat_id if user else None
        if not chat_id:
            logger.warning(
                f"No chat for user {transaction.user_id}; {transaction.id} left pending"
            )
            return
        self.notifier.publish(chat_id, view)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start(self, blocking: bool = False) -> None:
        """Register both daily jobs and start the scheduler."""
        schedule = self.config.schedule
        self._scheduler = BlockingScheduler() if blocking else BackgroundScheduler()
        self._scheduler.add_job(
            self.run_ingestion,
            CronTrigger.from_crontab(schedule.ingestion_cron, timezone=schedule.ingestion_timezone),
            id="ingestion",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self.run_classification,
            CronTrigger.from_crontab(
                schedule.classification_cron, timezone=schedule.classification_timezone
            ),
            id="classification",
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            f"Scheduler started: ingestion '{schedule.ingestion_cron}' "
            f"({schedule.ingestion_timezone}), classification "
            f"'{schedule.classification_cron}' ({schedule.classification_timezone})"
        )
        self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped")
