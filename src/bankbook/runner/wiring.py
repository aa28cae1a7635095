"""
Service construction.

Builds every component from a Config with explicit constructor injection;
nothing is created at import time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..classification.invoice_matcher import InvoiceMatcher
from ..classification.ledger_matcher import LedgerMatcher
from ..classification.orchestrator import ClassificationOrchestrator
from ..classification.rules import RuleEngine
from ..config import Config
from ..credentials import CredentialProvider
from ..ingestion.engine import IngestionEngine
from ..notifications.telegram import LoggingNotifier, Notifier, TelegramNotifier
from ..record_store import build_record_store
from ..record_store.base import RecordStore
from ..repository import Repository
from ..resolution.channel import ManualResolutionChannel
from ..resolution.state_store import (
    FlowStateStore,
    InMemoryFlowStateStore,
    RecordFlowStateStore,
)
from ..scrapers.base import ScraperAdapter
from ..scrapers.http_adapter import HttpScraperAdapter
from .scheduler import ScheduledRunner

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: Config
    store: RecordStore
    repository: Repository
    rule_engine: RuleEngine
    orchestrator: ClassificationOrchestrator
    channel: ManualResolutionChannel
    ingestion: IngestionEngine
    notifier: Notifier
    runner: ScheduledRunner


def build_notifier(config: Config) -> Notifier:
    notifications = config.notifications
    if not notifications.is_configured():
        logger.info("Telegram not configured, notifications go to the log")
        return LoggingNotifier()
    return TelegramNotifier(
        notifications.telegram_bot_token,
        api_url=notifications.api_url,
        timeout=notifications.timeout_seconds,
    )


def build_flow_state_store(config: Config, store: RecordStore) -> FlowStateStore:
    if config.resolution.state_backend == "store":
        return RecordFlowStateStore(store, config.tables.flows)
    return InMemoryFlowStateStore()


def build_services(
    config: Config,
    store: RecordStore | None = None,
    scraper: ScraperAdapter | None = None,
    notifier: Notifier | None = None,
) -> Services:
    """
    Wire all components.

    Args:
        config: Loaded configuration
        store: Primary record store (built from config when omitted)
        scraper: Scraping backend (HTTP sidecar when omitted)
        notifier: Chat notifier (built from config when omitted)

    Returns:
        Services bundle
    """
    store = store or build_record_store(config.record_store)
    repository = Repository(store, config.tables)
    rule_engine = RuleEngine(repository, cache_ttl=config.rules.cache_ttl_seconds)

    orchestrator = ClassificationOrchestrator(
        repository,
        rule_engine,
        invoice_matcher=InvoiceMatcher.from_config(config),
        ledger_matcher=LedgerMatcher.from_config(config),
        payment_app_keywords=config.resolution.payment_app_keywords,
    )
    channel = ManualResolutionChannel(
        orchestrator,
        state_store=build_flow_state_store(config, store),
        page_size=config.resolution.page_size,
    )

    ingestion = IngestionEngine(
        CredentialProvider(config.accounts, config.credentials_key),
        scraper or HttpScraperAdapter(config.scraper.base_url, config.scraper.timeout_seconds),
        repository,
        max_attempts=config.scraper.max_attempts,
        default_lookback_days=config.scraper.default_lookback_days,
        timezone=config.timezone,
    )

    notifier = notifier or build_notifier(config)
    runner = ScheduledRunner(config, ingestion, orchestrator, channel, notifier)

    return Services(
        config=config,
        store=store,
        repository=repository,
        rule_engine=rule_engine,
        orchestrator=orchestrator,
        channel=channel,
        ingestion=ingestion,
        notifier=notifier,
        runner=runner,
    )
