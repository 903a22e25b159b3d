import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, update

from ..config import Settings, as_utc, utcnow
from ..database import Database
from ..exceptions import NoTicketsError, NotFound, RaffleCancelled
from ..models import Raffle, Ticket, User
from ..websocket_manager import ConnectionManager
from .audit import AuditLog
from .cache import CacheBackend
from .draw import DrawService, WinnerSelection
from .job_queue import JobNotReady, JobQueue, PermanentJobError
from .mail import MailService

logger = logging.getLogger(__name__)

SETTLEMENT_JOB = "RAFFLE_END_CALCULATION"
SETTLEMENT_PRIORITY = 5


def settlement_key(raffle_id: int) -> str:
    return f"settle:{raffle_id}"


class SettlementService:
    """Ends raffles whose end date has passed and picks their winner.

    Scheduled through the job queue at raffle creation; a periodic sweep
    re-schedules anything the queue lost. The winner is written with a
    compare-and-swap on `settlement_version`, so concurrent triggers settle
    a raffle at most once.
    """

    def __init__(self, database: Database, queue: JobQueue, cache: CacheBackend,
                 audit: AuditLog, ws_manager: ConnectionManager, settings: Settings,
                 clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.queue = queue
        self.cache = cache
        self.audit = audit
        self.ws_manager = ws_manager
        self.settings = settings
        self._clock = clock

    def register(self):
        self.queue.register_worker(SETTLEMENT_JOB, self.handle_job)

    def schedule(self, raffle_id: int, end_date: datetime) -> str:
        delay = max((as_utc(end_date) - self._clock()).total_seconds(), 0)
        job_id = self.queue.add_job(
            SETTLEMENT_JOB,
            {"raffle_id": raffle_id},
            priority=SETTLEMENT_PRIORITY,
            delay=delay,
            max_retries=self.settings.settlement_max_retries,
            key=settlement_key(raffle_id),
        )
        logger.info(f"Settlement for raffle {raffle_id} scheduled in {int(delay)}s ({job_id})")
        return job_id

    def unschedule(self, raffle_id: int) -> bool:
        removed = self.queue.remove_by_key(settlement_key(raffle_id))
        if removed:
            logger.info(f"Settlement for raffle {raffle_id} unscheduled")
        return removed

    async def handle_job(self, data: dict):
        raffle_id = data["raffle_id"]
        try:
            await self.settle(raffle_id)
        except (NotFound, NoTicketsError, RaffleCancelled) as e:
            raise PermanentJobError(str(e))

    async def settle(self, raffle_id: int, forced_draw: Optional[int] = None) -> bool:
        """Settle one raffle.

        Returns True when this call set the winner, False when the raffle was
        already settled. Raises RaffleCancelled for a cancelled raffle,
        JobNotReady before the end date and NoTicketsError when nothing was
        sold (the failure is recorded on the raffle and `winner_id` stays NULL).
        """
        async with self.database.session() as db:
            result = await db.execute(select(Raffle).where(Raffle.id == raffle_id))
            raffle = result.scalar_one_or_none()
            if raffle is None:
                raise NotFound(f"Raffle {raffle_id} not found")

            if raffle.winner_id is not None:
                logger.info(f"Raffle {raffle_id} already settled, skipping")
                return False
            if not raffle.is_active:
                raise RaffleCancelled(f"Raffle {raffle_id} was cancelled")

            now = self._clock()
            end_date = as_utc(raffle.end_date)
            if now < end_date:
                raise JobNotReady(f"Raffle {raffle_id} ends at {end_date.isoformat()}", retry_at=end_date)

            tickets_result = await db.execute(
                select(Ticket).where(Ticket.raffle_id == raffle_id).order_by(Ticket.id)
            )
            tickets = tickets_result.scalars().all()

            try:
                selection = DrawService.select_winner(raffle_id, tickets, forced_draw=forced_draw)
            except NoTicketsError as e:
                await db.execute(
                    update(Raffle)
                    .where(Raffle.id == raffle_id)
                    .values(settlement_failed_at=now, settlement_error=str(e))
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
                logger.warning(f"Raffle {raffle_id} cannot be settled: {e}")
                await self.audit.record("raffle", raffle_id, "SETTLEMENT_FAILED", {"error": str(e)})
                raise

            version = raffle.settlement_version
            deadline = now + timedelta(days=self.settings.approval_window_days)
            cas = await db.execute(
                update(Raffle)
                .where(
                    Raffle.id == raffle_id,
                    Raffle.settlement_version == version,
                    Raffle.winner_id.is_(None),
                    Raffle.is_active == True,  # noqa: E712
                )
                .values(
                    winner_id=selection.user_id,
                    is_active=False,
                    settlement_version=version + 1,
                    winning_ticket_id=selection.ticket_id,
                    winning_draw=selection.draw,
                    total_units_at_draw=selection.total_units,
                    draw_seed=selection.seed,
                    draw_commitment=selection.commitment,
                    winner_selected_at=now,
                    approval_deadline=deadline,
                    settlement_failed_at=None,
                    settlement_error=None,
                )
                .execution_options(synchronize_session=False)
            )
            if cas.rowcount == 0:
                await db.rollback()
                cancelled = await db.execute(
                    select(Raffle.id).where(Raffle.id == raffle_id, Raffle.winner_id.is_(None))
                )
                if cancelled.first():
                    raise RaffleCancelled(f"Raffle {raffle_id} was cancelled")
                logger.info(f"Raffle {raffle_id} was settled concurrently, nothing to do")
                return False

            winner = await db.get(User, selection.user_id)
            creator = await db.get(User, raffle.creator_id)
            self._notify_by_mail(db, raffle, winner, creator)
            await db.commit()

        logger.info(
            f"Raffle {raffle_id} settled: winner {selection.user_id} "
            f"(ticket {selection.ticket_id}, draw {selection.draw}/{selection.total_units})"
        )
        await self.cache.invalidate_prefix("raffles:")
        await self.audit.record("raffle", raffle_id, "RAFFLE_SETTLED", self._payload(selection))
        await self.ws_manager.broadcast("RAFFLE_SETTLED", {
            "raffle_id": raffle_id,
            "winner_id": selection.user_id,
            "winning_ticket_id": selection.ticket_id,
            "approval_deadline": deadline,
        })
        return True

    @staticmethod
    def _payload(selection: WinnerSelection) -> dict:
        return {
            "winner_id": selection.user_id,
            "ticket_id": selection.ticket_id,
            "draw": selection.draw,
            "total_units": selection.total_units,
            "commitment": selection.commitment,
        }

    @staticmethod
    def _notify_by_mail(db, raffle: Raffle, winner: Optional[User], creator: Optional[User]):
        if winner is not None:
            MailService.add_system_message(
                db,
                winner.wallet_address,
                f"You won: {raffle.title}",
                f"Congratulations! Your ticket won the raffle \"{raffle.title}\". "
                f"Please confirm the prize handover with the creator.",
                raffle_id=raffle.id,
            )
        if creator is not None:
            MailService.add_system_message(
                db,
                creator.wallet_address,
                f"Raffle finished: {raffle.title}",
                f"Your raffle \"{raffle.title}\" has ended and a winner was selected. "
                f"Please confirm the prize handover with the winner.",
                raffle_id=raffle.id,
            )

    async def sweep_due(self) -> int:
        """Re-schedule ended, unsettled raffles that have no pending job"""
        now = self._clock()
        async with self.database.session() as db:
            result = await db.execute(
                select(Raffle.id, Raffle.end_date).where(
                    Raffle.is_active == True,  # noqa: E712
                    Raffle.winner_id.is_(None),
                    Raffle.settlement_failed_at.is_(None),
                )
            )
            rows = result.all()

        scheduled = 0
        for raffle_id, end_date in rows:
            if as_utc(end_date) > now:
                continue
            if self.queue.find_by_key(settlement_key(raffle_id)) is not None:
                continue
            self.schedule(raffle_id, end_date)
            scheduled += 1

        if scheduled:
            logger.info(f"Sweep re-scheduled settlement for {scheduled} raffles")
        return scheduled

    async def expire_approvals(self) -> int:
        """Forfeit settled raffles still lacking mutual approval after the deadline"""
        now = self._clock()
        async with self.database.session() as db:
            result = await db.execute(
                select(Raffle).where(
                    Raffle.winner_id.isnot(None),
                    Raffle.is_forfeited == False,  # noqa: E712
                    Raffle.approval_deadline.isnot(None),
                )
            )
            candidates = [
                r for r in result.scalars().all()
                if not (r.is_approved_by_creator and r.is_approved_by_winner)
                and as_utc(r.approval_deadline) < now
            ]

            forfeited = [r.id for r in candidates if await self.forfeit(db, r.id, now)]
            await db.commit()

        for raffle_id in forfeited:
            logger.info(f"Raffle {raffle_id} forfeited: approval deadline passed")
            await self.audit.record("raffle", raffle_id, "RAFFLE_FORFEITED", {})
        if forfeited:
            await self.cache.invalidate_prefix("raffles:")
        return len(forfeited)

    @staticmethod
    async def forfeit(db, raffle_id: int, now: datetime) -> bool:
        """Mark one raffle forfeited; the row is re-checked so a late approval wins"""
        result = await db.execute(
            update(Raffle)
            .where(
                Raffle.id == raffle_id,
                Raffle.winner_id.isnot(None),
                Raffle.is_forfeited == False,  # noqa: E712
                ~(Raffle.is_approved_by_creator & Raffle.is_approved_by_winner),
                Raffle.approval_deadline < now,
            )
            .values(is_forfeited=True)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)
