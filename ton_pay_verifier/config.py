from dataclasses import dataclass
import os
import re
from typing import Optional

from common.logger import Level


def _get_int(name: str, default: int) -> int:
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    return int(value)


def _get_float(name: str, default: float) -> float:
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    return float(value)


def _get_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").strip().lower()
    if not value:
        return default
    return value in {"1", "true", "yes", "y", "on"}


def _parse_chat_id(raw_value: str) -> Optional[int | str]:
    value = raw_value.strip()
    if not value:
        return None
    if re.match(r"^-?\d+$", value):
        return int(value)
    # @channel_username
    return value


@dataclass(frozen=True)
class VerifierConfig:
    database_url: str
    rpc_endpoint: str
    toncenter_api_key: str
    contract_address: str
    poll_interval_seconds: int
    poll_retries: int
    poll_delay_seconds: float
    max_poll_attempts: int
    ledger_page_size: int
    ledger_max_pages: int
    concurrency: int
    tg_bot_token: str
    tg_admin_chat_id: Optional[int | str]
    health_enabled: bool
    health_host: str
    health_port: int
    log_level: Level


def load_config() -> VerifierConfig:
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if not database_url:
        raise RuntimeError("DATABASE_URL is required")

    contract_address = os.environ.get("CONTRACT_ADDRESS", "").strip()
    if not contract_address:
        raise RuntimeError("CONTRACT_ADDRESS is required")

    max_poll_attempts = _get_int("MAX_POLL_ATTEMPTS", 10)
    if max_poll_attempts < 1:
        raise RuntimeError("MAX_POLL_ATTEMPTS must be positive")

    return VerifierConfig(
        database_url=database_url,
        rpc_endpoint=os.environ.get("TON_RPC_ENDPOINT", "").strip() or "https://toncenter.com/api/v2",
        toncenter_api_key=os.environ.get("TONCENTER_API_KEY", "").strip(),
        contract_address=contract_address,
        poll_interval_seconds=_get_int("POLL_INTERVAL_SECONDS", 60),
        poll_retries=max(1, _get_int("POLL_RETRIES", 20)),
        poll_delay_seconds=_get_float("POLL_DELAY_SECONDS", 2.0),
        max_poll_attempts=max_poll_attempts,
        ledger_page_size=_get_int("LEDGER_PAGE_SIZE", 20),
        ledger_max_pages=_get_int("LEDGER_MAX_PAGES", 50),
        concurrency=max(1, _get_int("RECONCILE_CONCURRENCY", 4)),
        tg_bot_token=os.environ.get("TG_BOT_TOKEN", "").strip(),
        tg_admin_chat_id=_parse_chat_id(os.environ.get("TG_ADMIN_CHAT_ID", "")),
        health_enabled=_get_bool("HEALTH_ENABLED", True),
        health_host=os.environ.get("HEALTH_HOST", "").strip() or "0.0.0.0",
        health_port=_get_int("PORT", 3000),
        log_level=Level.parse(os.environ.get("LOG_LEVEL", ""), default=Level.INFO),
    )
