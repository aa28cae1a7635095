"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..credentials import CredentialsError, encrypt, generate_key
from ..classification.rules import RuleValidationError
from ..schemas.models import Entity, RuleConfidence, TransactionStatus, TransactionType
from .wiring import build_services

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bankbook",
        description="Scrape bank transactions and classify them into accounting categories",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("scrape", help="Scrape all accounts now")
    subparsers.add_parser("classify", help="Classify pending transactions now")
    subparsers.add_parser("serve", help="Run the daily schedules (blocks)")
    subparsers.add_parser("status", help="Show accounts and pending transactions")
    rules_parser = subparsers.add_parser("rules", help="List or add classification rules")
    rules_subparsers = rules_parser.add_subparsers(dest="rules_command")

    list_parser = rules_subparsers.add_parser(
        "list", help="List rules in match priority order (default)"
    )
    list_parser.add_argument("--type", choices=[t.value for t in TransactionType])
    list_parser.add_argument("--entity", choices=[e.value for e in Entity])
    list_parser.add_argument("--confidence", choices=[c.value for c in RuleConfidence])

    add_parser = rules_subparsers.add_parser("add", help="Create a rule from an explicit pattern")
    add_parser.add_argument("pattern", help="Text matched case-insensitively in descriptions")
    add_parser.add_argument("--category", required=True, help="Category record id")
    add_parser.add_argument("--entity", required=True, choices=[e.value for e in Entity])
    add_parser.add_argument("--type", required=True, choices=[t.value for t in TransactionType])
    add_parser.add_argument("--user", default="cli", help="Recorded as the rule author")

    encrypt_parser = subparsers.add_parser(
        "encrypt-credentials", help="Encrypt a JSON credential object for an account"
    )
    encrypt_parser.add_argument(
        "credentials",
        nargs="?",
        help='JSON object, e.g. \'{"username": "...", "password": "..."}\' (default: stdin)',
    )
    encrypt_parser.add_argument(
        "--key",
        help="64-char hex key (default: CREDENTIALS_ENCRYPTION_KEY / config)",
    )

    subparsers.add_parser("generate-key", help="Print a new credential encryption key")
    subparsers.add_parser("init-config", help="Write a default config file")

    return parser


def _validated(config: Config) -> Config:
    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))
    return config


def cmd_scrape(config: Config) -> int:
    """Run one ingestion pass now."""
    services = build_services(config)
    summary = services.runner.run_ingestion(raise_errors=True)
    if summary.skipped:
        print("⏸️ Ingestion already running")
        return 1

    print("\n🏦 Scrape results")
    print("=" * 40)
    for result in summary.results:
        if result.success:
            new = len(result.transactions)
            print(f"  ✅ {result.account_name}: {new} new (balance {result.balance})")
        else:
            print(f"  ❌ {result.account_name}: {result.error}")
    print(f"\n  Accounts: {summary.successful_accounts}/{summary.total_accounts}")
    print(f"  New transactions: {summary.total_new_transactions}")
    print(f"  Duration: {summary.duration_seconds:.1f}s")
    return 0 if not summary.failed else 1


def cmd_classify(config: Config) -> int:
    """Run one classification pass now."""
    services = build_services(config)
    summary = services.runner.run_classification(raise_errors=True)
    if summary.skipped:
        print("⏸️ Classification already running")
        return 1

    print("\n🏷️ Classification results")
    print("=" * 40)
    print(f"  Processed:        {summary.processed}")
    print(f"  Auto-classified:  {summary.auto_classified}")
    print(f"  Sent to manual:   {summary.sent_to_manual}")
    print(f"  Errors:           {len(summary.errors)}")
    for error in summary.errors:
        print(f"    - {error.transaction_id}: {error.error}")
    return 0 if not summary.errors else 1


def cmd_serve(config: Config) -> int:
    """Run the daily schedules until interrupted."""
    services = build_services(config)
    try:
        services.runner.start(blocking=True)
    except (KeyboardInterrupt, SystemExit):
        services.runner.shutdown()
    return 0


def cmd_status(config: Config) -> int:
    """Show account watermarks and the pending queue."""
    services = build_services(config)
    if not services.repository.store.test_connection():
        print("❌ Failed to connect to the record store")
        print("   Check record_store settings and AIRTABLE_API_KEY")
        return 1

    accounts = services.repository.get_accounts()
    pending = services.repository.count_transactions(TransactionStatus.PENDING)

    print("\n📊 Status")
    print("=" * 40)
    print("  ✓ Record store connection OK")
    for account in accounts:
        last = account.last_scraped.isoformat() if account.last_scraped else "never"
        balance = account.last_balance if account.last_balance is not None else "-"
        print(f"  {account.name:<30} last scraped {last:<10}  balance {balance}")
    if not accounts:
        print("  No accounts scraped yet")
    print(f"\n  Pending transactions: {pending}")
    print()
    return 0


def cmd_rules(
    config: Config,
    tx_type: str | None = None,
    entity: str | None = None,
    confidence: str | None = None,
) -> int:
    """List rules in match priority order."""
    services = build_services(config)
    rules = services.rule_engine.get_all_rules(
        tx_type=TransactionType(tx_type) if tx_type else None,
        entity=Entity(entity) if entity else None,
        confidence=RuleConfidence(confidence) if confidence else None,
    )

    print(f"\n📚 Classification rules ({len(rules)})")
    print("=" * 40)
    for rule in rules:
        print(
            f"  [{rule.confidence.value:<9}] {rule.pattern!r:<35} -> {rule.category_id} "
            f"({rule.type.value}, {rule.entity.value}) used {rule.times_used}x"
        )
    return 0


def cmd_rules_add(
    config: Config, pattern: str, category_id: str, entity: str, tx_type: str, user_id: str
) -> int:
    """Create a rule from an explicit pattern."""
    services = build_services(config)
    try:
        rule_id = services.rule_engine.create_rule(pattern, category_id, entity, tx_type, user_id)
    except RuleValidationError as e:
        print(f"❌ {e}")
        return 1

    print(f"✅ Created rule {rule_id}: {pattern.strip()!r} -> {category_id} ({tx_type}, {entity})")
    return 0


def cmd_encrypt_credentials(config: Config, credentials: str | None, key: str | None) -> int:
    """Encrypt a credential object into the environment payload format."""
    key = key or config.credentials_key
    if not key:
        print("❌ No key: pass --key or set CREDENTIALS_ENCRYPTION_KEY")
        return 1

    text = credentials if credentials is not None else sys.stdin.read()
    try:
        values = json.loads(text)
    except json.JSONDecodeError as e:
        print(f"❌ Credentials must be a JSON object: {e}")
        return 1
    if not isinstance(values, dict):
        print("❌ Credentials must be a JSON object")
        return 1

    try:
        print(encrypt(json.dumps(values, ensure_ascii=False), key))
    except CredentialsError as e:
        print(f"❌ {e}")
        return 1
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "generate-key":
        print(generate_key())
        return 0
    if parsed.command == "init-config":
        if parsed.config.exists():
            print(f"❌ {parsed.config} already exists")
            return 1
        create_default_config(parsed.config)
        print(f"✅ Wrote {parsed.config}")
        return 0

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    if parsed.command == "encrypt-credentials":
        return cmd_encrypt_credentials(config, parsed.credentials, parsed.key)

    try:
        _validated(config)
    except ConfigValidationError as e:
        print(f"❌ Invalid config: {e}")
        return 1

    # Route to command
    try:
        if parsed.command == "scrape":
            return cmd_scrape(config)
        elif parsed.command == "classify":
            return cmd_classify(config)
        elif parsed.command == "serve":
            return cmd_serve(config)
        elif parsed.command == "status":
            return cmd_status(config)
        elif parsed.command == "rules":
            if parsed.rules_command == "add":
                return cmd_rules_add(
                    config, parsed.pattern, parsed.category, parsed.entity, parsed.type, parsed.user
                )
            return cmd_rules(
                config,
                getattr(parsed, "type", None),
                getattr(parsed, "entity", None),
                getattr(parsed, "confidence", None),
            )
    except CredentialsError as e:
        print(f"❌ Credentials error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"{parsed.command} failed")
        print(f"❌ {parsed.command} failed: {e}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
