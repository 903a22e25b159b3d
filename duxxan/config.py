import os
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import pytz
from dotenv import load_dotenv
from pydantic import BaseModel

# DUXXAN platform contract on BSC mainnet
DEFAULT_CONTRACT_ADDRESS = "0x7e1B19CE44AcCF69360A23cAdCBeA551B215Cade"
DEFAULT_RPC_URL = "https://bsc-dataseed.binance.org/"


class Settings(BaseModel):
    environment: str = "development"
    log_level: str = "INFO"
    database_url: Optional[str] = None
    database_echo: bool = False

    rpc_url: str = DEFAULT_RPC_URL
    rpc_timeout_seconds: float = 10.0
    contract_address: str = DEFAULT_CONTRACT_ADDRESS
    token_decimals: int = 18
    raffle_creation_fee: Decimal = Decimal("25")
    raffle_payment_max_age_seconds: Optional[int] = 24 * 60 * 60
    ticket_payment_max_age_seconds: Optional[int] = 60 * 60
    verification_cache_seconds: int = 60 * 60
    breaker_failure_threshold: int = 5
    breaker_reset_seconds: float = 60.0

    cache_backend: str = "memory"  # memory | disabled
    cache_ttl_seconds: int = 300
    audit_backend: str = "database"  # database | disabled

    queue_poll_interval: float = 1.0
    queue_concurrency: int = 5
    settlement_max_retries: int = 3
    sweep_interval_seconds: float = 60.0
    approval_window_days: int = 6

    admin_wallets: List[str] = []
    cors_origins: List[str] = ["*"]

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from process environment (and a .env file if present)"""
        load_dotenv()

        def _list(name: str) -> List[str]:
            raw = os.getenv(name, "")
            return [item.strip() for item in raw.split(",") if item.strip()]

        def _optional_int(name: str, default: Optional[int]) -> Optional[int]:
            raw = os.getenv(name)
            if raw is None:
                return default
            raw = raw.strip().lower()
            if raw in ("", "none", "0"):
                return None
            return int(raw)

        return cls(
            environment=os.getenv("ENVIRONMENT", os.getenv("NODE_ENV", "development")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            database_url=os.getenv("DATABASE_URL"),
            database_echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
            rpc_url=os.getenv("BSC_RPC_URL", DEFAULT_RPC_URL),
            rpc_timeout_seconds=float(os.getenv("RPC_TIMEOUT_SECONDS", "10")),
            contract_address=os.getenv("DUXXAN_CONTRACT_ADDRESS", DEFAULT_CONTRACT_ADDRESS),
            token_decimals=int(os.getenv("TOKEN_DECIMALS", "18")),
            raffle_creation_fee=Decimal(os.getenv("RAFFLE_CREATION_FEE", "25")),
            raffle_payment_max_age_seconds=_optional_int(
                "RAFFLE_PAYMENT_MAX_AGE_SECONDS", 24 * 60 * 60
            ),
            ticket_payment_max_age_seconds=_optional_int(
                "TICKET_PAYMENT_MAX_AGE_SECONDS", 60 * 60
            ),
            verification_cache_seconds=int(os.getenv("VERIFICATION_CACHE_SECONDS", "3600")),
            breaker_failure_threshold=int(os.getenv("RPC_BREAKER_THRESHOLD", "5")),
            breaker_reset_seconds=float(os.getenv("RPC_BREAKER_RESET_SECONDS", "60")),
            cache_backend=os.getenv("CACHE_BACKEND", "memory"),
            cache_ttl_seconds=int(os.getenv("CACHE_TTL_SECONDS", "300")),
            audit_backend=os.getenv("AUDIT_BACKEND", "database"),
            queue_poll_interval=float(os.getenv("QUEUE_POLL_INTERVAL", "1")),
            queue_concurrency=int(os.getenv("QUEUE_CONCURRENCY", "5")),
            settlement_max_retries=int(os.getenv("SETTLEMENT_MAX_RETRIES", "3")),
            sweep_interval_seconds=float(os.getenv("SWEEP_INTERVAL_SECONDS", "60")),
            approval_window_days=int(os.getenv("APPROVAL_WINDOW_DAYS", "6")),
            admin_wallets=[w.lower() for w in _list("ADMIN_WALLETS")],
            cors_origins=_list("CORS_ORIGINS") or ["*"],
        )


def utcnow() -> datetime:
    """Текущее время в UTC (aware)"""
    return datetime.now(pytz.UTC)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Привести datetime к UTC; naive значения считаем уже записанными в UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)
