import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request

from .config import Settings, utcnow
from .database import Database
from .services.audit import AuditLog, build_audit_log
from .services.blockchain import ChainClient, PaymentVerifier
from .services.cache import CacheBackend, build_cache
from .services.donation import DonationService
from .services.job_queue import JobQueue
from .services.raffle import RaffleService
from .services.settlement import SettlementService
from .utils.circuit_breaker import CircuitBreaker
from .websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Every long-lived service of one application instance"""

    settings: Settings
    database: Database
    cache: CacheBackend
    audit: AuditLog
    ws_manager: ConnectionManager
    breaker: CircuitBreaker
    verifier: PaymentVerifier
    queue: JobQueue
    settlement: SettlementService
    raffles: RaffleService
    donations: DonationService

    async def start(self, create_tables: bool = True):
        if create_tables:
            await self.database.create_all()
        self.queue.start()
        # раффлы, чьи задачи потерялись при рестарте
        await self.settlement.sweep_due()
        logger.info("Services started")

    async def run_maintenance(self):
        """One pass of the periodic sweeps"""
        await self.settlement.sweep_due()
        await self.settlement.expire_approvals()
        self.verifier.purge_cache()

    async def close(self):
        await self.queue.stop()
        await self.ws_manager.close()
        await self.cache.close()
        await self.database.dispose()
        logger.info("Services stopped")


def build_container(settings: Settings, chain: Optional[ChainClient] = None,
                    clock: Callable[[], datetime] = utcnow) -> ServiceContainer:
    database = Database(settings.database_url, echo=settings.database_echo)
    cache = build_cache(settings.cache_backend, settings.cache_ttl_seconds)
    audit = build_audit_log(settings.audit_backend, database)
    ws_manager = ConnectionManager()

    breaker = CircuitBreaker(
        "bsc-rpc",
        failure_threshold=settings.breaker_failure_threshold,
        reset_timeout=settings.breaker_reset_seconds,
    )
    verifier = PaymentVerifier(
        chain or ChainClient(settings.rpc_url, timeout=settings.rpc_timeout_seconds),
        settings.contract_address,
        breaker,
        token_decimals=settings.token_decimals,
        cache_seconds=settings.verification_cache_seconds,
    )

    queue = JobQueue(
        poll_interval=settings.queue_poll_interval,
        concurrency=settings.queue_concurrency,
        clock=clock,
    )
    settlement = SettlementService(database, queue, cache, audit, ws_manager, settings, clock=clock)
    settlement.register()

    return ServiceContainer(
        settings=settings,
        database=database,
        cache=cache,
        audit=audit,
        ws_manager=ws_manager,
        breaker=breaker,
        verifier=verifier,
        queue=queue,
        settlement=settlement,
        raffles=RaffleService(verifier, settlement, cache, audit, ws_manager, settings, clock=clock),
        donations=DonationService(audit, ws_manager),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
