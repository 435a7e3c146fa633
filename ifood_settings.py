"""Process settings read from environment variables."""

import os
from dataclasses import dataclass
from typing import Optional

from ifood_http import DEFAULT_BASE_URL, DEFAULT_TIMEOUT
from ifood_models import DEFAULT_POLLING_INTERVAL, clamp_polling_interval
from order_actions import DEFAULT_ASYNC_CONFIRM_TIMEOUT


def _env_flag(name: str, default: str = '0') -> bool:
    return str(os.environ.get(name, default)).strip().lower() in ('1', 'true', 'yes', 'on')


def _env_float(name: str, default: float) -> float:
    raw = str(os.environ.get(name, '')).strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = str(os.environ.get(name, '')).strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


@dataclass(frozen=True)
class SyncSettings:
    base_url: str = DEFAULT_BASE_URL
    http_timeout: float = DEFAULT_TIMEOUT
    max_retries: int = 3
    retry_delay: float = 1.0
    async_confirm_timeout: float = DEFAULT_ASYNC_CONFIRM_TIMEOUT
    events_polling: bool = True
    polling_interval: int = DEFAULT_POLLING_INTERVAL
    encryption_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    webhook_token: Optional[str] = None
    webhook_allow_unsigned: bool = False
    trust_env: bool = False
    database_url: Optional[str] = None
    products_table: str = 'products'
    secret_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'SyncSettings':
        return cls(
            base_url=str(os.environ.get('IFOOD_BASE_URL') or DEFAULT_BASE_URL).strip().rstrip('/'),
            http_timeout=_env_float('IFOOD_HTTP_TIMEOUT', DEFAULT_TIMEOUT),
            max_retries=max(0, _env_int('IFOOD_MAX_RETRIES', 3)),
            retry_delay=max(0.0, _env_float('IFOOD_RETRY_DELAY', 1.0)),
            async_confirm_timeout=_env_float('IFOOD_ASYNC_CONFIRM_TIMEOUT', DEFAULT_ASYNC_CONFIRM_TIMEOUT),
            events_polling=_env_flag('IFOOD_EVENTS_POLLING', '1'),
            polling_interval=clamp_polling_interval(_env_int('IFOOD_POLLING_INTERVAL', DEFAULT_POLLING_INTERVAL)),
            encryption_key=os.environ.get('IFOOD_ENCRYPTION_KEY') or None,
            webhook_secret=os.environ.get('IFOOD_WEBHOOK_SECRET') or None,
            webhook_token=os.environ.get('IFOOD_WEBHOOK_TOKEN') or None,
            webhook_allow_unsigned=_env_flag('IFOOD_WEBHOOK_ALLOW_UNSIGNED'),
            trust_env=_env_flag('IFOOD_TRUST_ENV'),
            database_url=os.environ.get('DATABASE_URL') or None,
            products_table=str(os.environ.get('IFOOD_PRODUCTS_TABLE') or 'products').strip(),
            secret_key=os.environ.get('SECRET_KEY') or None,
        )
