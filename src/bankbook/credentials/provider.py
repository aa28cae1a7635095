"""
Credential provider.

Loads every configured account once, decrypting its credential payload from
the environment. Accounts whose payload is missing or unreadable are skipped
with a warning so one bad secret never blocks the other accounts.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import TYPE_CHECKING

from ..schemas.models import BankCredentials
from .crypto import CredentialsError, DecryptionError, decrypt, parse_key

if TYPE_CHECKING:
    from ..config import AccountConfig

logger = logging.getLogger(__name__)


class CredentialProvider:
    """Decrypted credentials for the configured accounts."""

    def __init__(
        self,
        accounts: list[AccountConfig],
        key_hex: str,
        environ: Mapping[str, str] | None = None,
    ):
        """
        Load credentials.

        Args:
            accounts: Configured accounts, in run order
            key_hex: 64-char hex encryption key
            environ: Environment to read payloads from (default os.environ)

        Raises:
            CredentialsError: If accounts are configured but the key is
                missing or malformed
        """
        self._environ = os.environ if environ is None else environ
        self._credentials: list[BankCredentials] = []

        if not accounts:
            return
        if not key_hex:
            raise CredentialsError("CREDENTIALS_ENCRYPTION_KEY is not set")
        parse_key(key_hex)

        for account in accounts:
            loaded = self._load_account(account, key_hex)
            if loaded is not None:
                self._credentials.append(loaded)

        logger.info(f"Loaded credentials for {len(self._credentials)}/{len(accounts)} accounts")

    def _load_account(self, account: AccountConfig, key_hex: str) -> BankCredentials | None:
        payload = self._environ.get(account.credentials_env)
        if not payload:
            logger.warning(
                f"Skipping account {account.name}: {account.credentials_env} is not set"
            )
            return None

        try:
            values = json.loads(decrypt(payload, key_hex))
        except DecryptionError as e:
            logger.error(f"Skipping account {account.name}: {e}")
            return None
        except json.JSONDecodeError as e:
            logger.error(f"Skipping account {account.name}: decrypted payload is not JSON ({e})")
            return None

        if not isinstance(values, dict):
            logger.error(f"Skipping account {account.name}: credential payload must be an object")
            return None

        return BankCredentials(
            company_type=account.company_type,
            credentials={k: str(v) for k, v in values.items()},
            account_name=account.name,
            user_id=account.user_id,
            account_numbers=tuple(account.account_numbers),
        )

    def get_all(self) -> list[BankCredentials]:
        return list(self._credentials)

    def get_by_account_name(self, account_name: str) -> BankCredentials | None:
        for creds in self._credentials:
            if creds.account_name == account_name:
                return creds
        return None

    def get_by_user_id(self, user_id: str) -> list[BankCredentials]:
        return [c for c in self._credentials if c.user_id == user_id]
