"""
Credential resolution for gateway calls

The settings store and account store are owned by the application; this
module only consumes them through small protocols and turns their answer
into a GatewayConfig at the edge, before any gateway helper runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from studio.exceptions import MissingCredential
from studio.util.logging import get_logger
from .types import GatewayConfig

logger = get_logger(__name__)

API_KEY_SETTING = "kie_api_key"


@dataclass
class Account:
    """An API-key account with a daily generation quota"""
    id: str
    name: str
    api_key: str
    is_primary: bool = False
    daily_quota: int = 50
    used_today: int = 0

    @property
    def has_quota(self) -> bool:
        return self.used_today < self.daily_quota


class SettingsProvider(Protocol):
    def get_setting(self, key: str) -> Optional[str]: ...


class AccountStore(Protocol):
    def get_account(self, account_id: str) -> Optional[Account]: ...


def resolve_gateway_config(
    base: GatewayConfig,
    settings: Optional[SettingsProvider] = None,
    accounts: Optional[AccountStore] = None,
    account_id: Optional[str] = None,
) -> GatewayConfig:
    """
    Pick the credential for one request context.

    Precedence: the selected account's key, then the kie_api_key setting,
    then whatever the base config (built from the environment) carries.

    Raises:
        MissingCredential: If none of the sources yields a key
    """
    if account_id and accounts is not None:
        account = accounts.get_account(account_id)
        if account is not None and account.api_key:
            if not account.has_quota:
                logger.warning(
                    f"Account {account.name} is over its daily quota "
                    f"({account.used_today}/{account.daily_quota})",
                    extra={"event": "kie.account.over_quota", "detail": {"account_id": account.id}},
                )
            return base.with_credential(account.api_key)
        logger.debug(
            f"Account {account_id} has no usable key, falling back",
            extra={"event": "kie.account.fallback", "detail": {"account_id": account_id}},
        )

    if settings is not None:
        setting_key = settings.get_setting(API_KEY_SETTING)
        if setting_key:
            return base.with_credential(setting_key)

    if base.credential:
        return base

    raise MissingCredential(
        "KIE API key not configured. Set KIE_API_KEY, the kie_api_key setting, or an account key."
    )
