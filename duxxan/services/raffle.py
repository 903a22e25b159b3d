import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, as_utc, utcnow
from ..exceptions import Conflict, Forbidden, NotFound, PaymentVerificationFailed, ValidationFailed
from ..models import Donation, Raffle, Ticket, User
from ..schemas import AdminRaffleCreate, RaffleCreate, TicketPurchase
from ..schemas import Raffle as RaffleSchema
from ..websocket_manager import ConnectionManager
from .audit import AuditLog
from .blockchain import PaymentVerifier
from .cache import CacheBackend
from .lifecycle import RaffleState, approval_expired, raffle_state
from .settlement import SettlementService

logger = logging.getLogger(__name__)

CACHE_PREFIX = "raffles:"


def country_block_reason(raffle: Raffle, country: Optional[str]) -> Optional[str]:
    """Why a buyer from `country` may not enter the raffle, or None if they may"""
    restriction = raffle.country_restriction or "all"
    if restriction == "all":
        return None
    if not country:
        return "Set your country in your profile to enter this raffle"

    country = country.upper()
    if restriction == "selected" and country not in (raffle.allowed_countries or []):
        return f"This raffle is restricted to participants from: {', '.join(raffle.allowed_countries or [])}"
    if restriction == "excluded" and country in (raffle.excluded_countries or []):
        return "This raffle is not available in your country"
    return None


class RaffleService:
    """Raffle creation, ticket sales and the mutual-approval handshake"""

    def __init__(self, verifier: PaymentVerifier, settlement: SettlementService,
                 cache: CacheBackend, audit: AuditLog, ws_manager: ConnectionManager,
                 settings: Settings, clock: Callable[[], datetime] = utcnow):
        self.verifier = verifier
        self.settlement = settlement
        self.cache = cache
        self.audit = audit
        self.ws_manager = ws_manager
        self.settings = settings
        self._clock = clock

    # --- reads ---

    async def list_raffles(self, db: AsyncSession, active_only: bool = False,
                           limit: int = 50, offset: int = 0) -> List[dict]:
        cache_key = f"{CACHE_PREFIX}{'active' if active_only else 'all'}:{limit}:{offset}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return cached

        query = select(Raffle)
        if active_only:
            query = query.where(Raffle.is_active == True, Raffle.winner_id.is_(None))  # noqa: E712
        result = await db.execute(
            query.order_by(Raffle.created_at.desc(), Raffle.id.desc()).limit(limit).offset(offset)
        )
        raffles = result.scalars().all()

        now = self._clock()
        if active_only:
            # end_date сравниваем в питоне: SQLite хранит naive значения
            raffles = [r for r in raffles if as_utc(r.end_date) > now]

        data = [RaffleSchema.model_validate(r).model_dump(mode="json") for r in raffles]
        await self.cache.set(cache_key, data)
        return data

    @staticmethod
    async def get_raffle(db: AsyncSession, raffle_id: int) -> Raffle:
        result = await db.execute(select(Raffle).where(Raffle.id == raffle_id))
        raffle = result.scalar_one_or_none()
        if not raffle:
            raise NotFound("Raffle not found")
        return raffle

    @staticmethod
    async def raffle_tickets(db: AsyncSession, raffle_id: int) -> List[Ticket]:
        await RaffleService.get_raffle(db, raffle_id)
        result = await db.execute(
            select(Ticket).where(Ticket.raffle_id == raffle_id).order_by(Ticket.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def user_tickets(db: AsyncSession, user_id: int) -> List[Ticket]:
        result = await db.execute(
            select(Ticket).where(Ticket.user_id == user_id).order_by(Ticket.created_at.desc(), Ticket.id.desc())
        )
        return list(result.scalars().all())

    def state_of(self, raffle: Raffle) -> RaffleState:
        return raffle_state(raffle, self._clock())

    # --- creation ---

    @staticmethod
    async def _ensure_unused_hash(db: AsyncSession, tx_hash: str):
        """A payment can back exactly one raffle or one ticket purchase"""
        raffle_hit = await db.execute(select(Raffle.id).where(Raffle.transaction_hash == tx_hash))
        ticket_hit = await db.execute(select(Ticket.id).where(Ticket.transaction_hash == tx_hash))
        if raffle_hit.first() or ticket_hit.first():
            logger.warning(f"Transaction hash reuse attempt: {tx_hash}")
            raise ValidationFailed("Transaction hash already used")

    def _check_end_date(self, end_date: datetime) -> datetime:
        end_date = as_utc(end_date)
        if end_date <= self._clock():
            raise ValidationFailed("End date must be in the future")
        return end_date

    async def create_raffle(self, db: AsyncSession, user: User, data: RaffleCreate) -> Raffle:
        tx_hash = data.transaction_hash.lower()

        donations = await db.execute(
            select(func.count(Donation.id)).where(Donation.creator_id == user.id)
        )
        if donations.scalar():
            raise Forbidden("Accounts that receive donations cannot create raffles")

        end_date = self._check_end_date(data.end_date)
        await self._ensure_unused_hash(db, tx_hash)

        verified = await self.verifier.verify_payment(
            tx_hash,
            user.wallet_address,
            self.settings.raffle_creation_fee,
            max_age_seconds=self.settings.raffle_payment_max_age_seconds,
        )
        if not verified:
            logger.warning(f"Raffle creation payment not verified for {user.wallet_address}: {tx_hash}")
            raise PaymentVerificationFailed(
                f"Payment verification failed. Send {self.settings.raffle_creation_fee} USDT "
                f"to the platform contract and retry with the transaction hash."
            )

        raffle = Raffle(
            creator_id=user.id,
            title=data.title,
            description=data.description,
            prize_value=data.prize_value,
            ticket_price=data.ticket_price,
            max_tickets=data.max_tickets,
            end_date=end_date,
            transaction_hash=tx_hash,
            country_restriction=data.country_restriction,
            allowed_countries=data.allowed_countries,
            excluded_countries=data.excluded_countries,
            created_by_admin=False,
        )
        db.add(raffle)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ValidationFailed("Transaction hash already used")
        await db.refresh(raffle)

        await self._after_create(raffle, user)
        return raffle

    async def create_manual(self, db: AsyncSession, admin: User, data: AdminRaffleCreate) -> Raffle:
        """Admin bypass: no payment proof required"""
        creator_id = data.creator_id or admin.id
        if creator_id != admin.id:
            creator = await db.get(User, creator_id)
            if creator is None:
                raise NotFound("Creator not found")

        end_date = self._check_end_date(data.end_date)
        raffle = Raffle(
            creator_id=creator_id,
            title=data.title,
            description=data.description,
            prize_value=data.prize_value,
            ticket_price=data.ticket_price,
            max_tickets=data.max_tickets,
            end_date=end_date,
            country_restriction=data.country_restriction,
            allowed_countries=data.allowed_countries,
            excluded_countries=data.excluded_countries,
            created_by_admin=True,
        )
        db.add(raffle)
        await db.commit()
        await db.refresh(raffle)

        await self._after_create(raffle, admin)
        return raffle

    async def _after_create(self, raffle: Raffle, actor: User):
        logger.info(f"Raffle {raffle.id} created by {actor.wallet_address} (admin={raffle.created_by_admin})")
        self.settlement.schedule(raffle.id, raffle.end_date)
        await self.cache.invalidate_prefix(CACHE_PREFIX)
        await self.audit.record("raffle", raffle.id, "RAFFLE_CREATED", {
            "creator_id": raffle.creator_id,
            "transaction_hash": raffle.transaction_hash,
            "created_by_admin": raffle.created_by_admin,
        })
        await self.ws_manager.broadcast("RAFFLE_CREATED", RaffleSchema.model_validate(raffle).model_dump(mode="json"))

    # --- tickets ---

    async def purchase_tickets(self, db: AsyncSession, user: User, data: TicketPurchase) -> Ticket:
        raffle = await self.get_raffle(db, data.raffle_id)
        quantity = data.quantity
        tx_hash = data.transaction_hash.lower()

        if self.state_of(raffle) != RaffleState.OPEN:
            raise ValidationFailed("Raffle is not active")
        if raffle.tickets_sold + quantity > raffle.max_tickets:
            raise Conflict("Not enough tickets left", data={"remaining": raffle.max_tickets - raffle.tickets_sold})

        blocked = country_block_reason(raffle, user.country)
        if blocked:
            logger.info(f"Country restriction blocked user {user.id} ({user.country}) for raffle {raffle.id}")
            raise Forbidden(blocked, data={"country_restriction": raffle.country_restriction, "user_country": user.country})

        await self._ensure_unused_hash(db, tx_hash)

        total_amount = raffle.ticket_price * quantity
        verified = await self.verifier.verify_payment(
            tx_hash,
            user.wallet_address,
            total_amount,
            max_age_seconds=self.settings.ticket_payment_max_age_seconds,
        )
        if not verified:
            logger.warning(f"Ticket payment not verified for {user.wallet_address}: {tx_hash}")
            raise PaymentVerificationFailed("Payment verification failed")

        # условный инкремент в той же транзакции, что и вставка билета
        reserved = await db.execute(
            update(Raffle)
            .where(
                Raffle.id == raffle.id,
                Raffle.is_active == True,  # noqa: E712
                Raffle.winner_id.is_(None),
                Raffle.tickets_sold + quantity <= Raffle.max_tickets,
            )
            .values(tickets_sold=Raffle.tickets_sold + quantity)
            .execution_options(synchronize_session=False)
        )
        if reserved.rowcount == 0:
            await db.rollback()
            raise Conflict("Not enough tickets left")

        ticket = Ticket(
            raffle_id=raffle.id,
            user_id=user.id,
            quantity=quantity,
            total_amount=total_amount,
            transaction_hash=tx_hash,
        )
        db.add(ticket)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ValidationFailed("Transaction hash already used")
        await db.refresh(ticket)
        await db.refresh(raffle)

        logger.info(f"User {user.id} bought {quantity} tickets for raffle {raffle.id}")
        await self.cache.invalidate_prefix(CACHE_PREFIX)
        await self.audit.record("ticket", ticket.id, "TICKET_PURCHASED", {
            "raffle_id": raffle.id,
            "user_id": user.id,
            "quantity": quantity,
            "total_amount": total_amount,
            "transaction_hash": tx_hash,
        })
        await self.ws_manager.broadcast("TICKET_PURCHASED", {
            "raffle_id": raffle.id,
            "user_id": user.id,
            "quantity": quantity,
            "tickets_sold": raffle.tickets_sold,
        })
        return ticket

    # --- approval ---

    async def approve(self, db: AsyncSession, user: User, raffle_id: int) -> Raffle:
        raffle = await self.get_raffle(db, raffle_id)

        if user.id not in (raffle.creator_id, raffle.winner_id):
            raise Forbidden("Not authorized to approve this raffle")
        if raffle.winner_id is None:
            raise Conflict("Raffle has no winner yet")
        if raffle.is_forfeited or approval_expired(raffle, self._clock()):
            raise Conflict("Approval deadline has passed, the raffle is forfeited")

        values = {}
        if user.id == raffle.creator_id:
            values["is_approved_by_creator"] = True
        if user.id == raffle.winner_id:
            values["is_approved_by_winner"] = True

        result = await db.execute(
            update(Raffle)
            .where(Raffle.id == raffle_id, Raffle.is_forfeited == False)  # noqa: E712
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            raise Conflict("Approval deadline has passed, the raffle is forfeited")
        await db.commit()
        await db.refresh(raffle)

        state = self.state_of(raffle)
        logger.info(f"Raffle {raffle_id} approved by user {user.id}, state {state.value}")
        await self.cache.invalidate_prefix(CACHE_PREFIX)
        await self.audit.record("raffle", raffle_id, "RAFFLE_APPROVED", {
            "user_id": user.id,
            "state": state.value,
        })
        await self.ws_manager.broadcast("RAFFLE_APPROVED", RaffleSchema.model_validate(raffle).model_dump(mode="json"))
        return raffle

    async def end_raffle(self, db: AsyncSession, raffle_id: int, cancel: bool = False) -> Raffle:
        """Admin override: end the raffle now and settle it, or cancel it without a draw"""
        raffle = await self.get_raffle(db, raffle_id)
        if raffle.winner_id is not None:
            raise Conflict("Raffle already settled")
        if not raffle.is_active:
            raise Conflict("Raffle already closed")

        now = self._clock()
        values = {"is_active": False} if cancel else {"end_date": min(now, as_utc(raffle.end_date))}
        await db.execute(
            update(Raffle)
            .where(Raffle.id == raffle_id, Raffle.winner_id.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(raffle)

        if cancel:
            self.settlement.unschedule(raffle.id)
        else:
            self.settlement.schedule(raffle.id, raffle.end_date)
        await self.cache.invalidate_prefix(CACHE_PREFIX)
        await self.audit.record("raffle", raffle_id, "RAFFLE_CANCELLED" if cancel else "RAFFLE_ENDED_EARLY", {})
        return raffle
