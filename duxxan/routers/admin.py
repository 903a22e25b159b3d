import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..container import ServiceContainer, get_container
from ..database import get_db
from ..exceptions import Conflict, NoTicketsError, ValidationFailed
from ..models import Donation, Raffle, Ticket, User
from ..schemas import AdminRaffleCreate, QueueStats
from ..schemas import Raffle as RaffleSchema
from ..services.job_queue import JobNotReady
from ..services.raffle import RaffleService
from ..utils.auth import get_current_admin
from ..utils.responses import dump, ok

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/raffles", status_code=201)
async def create_raffle(
    raffle_data: AdminRaffleCreate,
    current_admin: User = Depends(get_current_admin),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Create raffle without a payment proof"""
    raffle = await container.raffles.create_manual(db, current_admin, raffle_data)
    return ok(dump(RaffleSchema, raffle), "Raffle created")


@router.post("/raffles/{raffle_id}/settle")
async def settle_raffle(
    raffle_id: int,
    draw: Optional[int] = Query(None, ge=1),
    current_admin: User = Depends(get_current_admin),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Run settlement right now; `draw` replays a specific draw value"""
    logger.info(f"Admin {current_admin.id} triggered settlement of raffle {raffle_id}")
    try:
        settled = await container.settlement.settle(raffle_id, forced_draw=draw)
    except JobNotReady:
        raise Conflict("Raffle has not ended yet")
    except NoTicketsError as e:
        raise Conflict(str(e))
    except ValueError as e:
        raise ValidationFailed(str(e))

    if not settled:
        raise Conflict("Raffle already settled")

    raffle = await RaffleService.get_raffle(db, raffle_id)
    return ok(dump(RaffleSchema, raffle), "Raffle settled")


@router.patch("/raffles/{raffle_id}/end")
async def end_raffle_manually(
    raffle_id: int,
    cancel: bool = Query(False),
    current_admin: User = Depends(get_current_admin),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Manually end a raffle (settles it), or cancel it with cancel=true"""
    raffle = await container.raffles.end_raffle(db, raffle_id, cancel=cancel)
    message = "Raffle cancelled" if cancel else "Raffle will be settled shortly"
    return ok(dump(RaffleSchema, raffle), message)


@router.get("/statistics")
async def get_statistics(
    current_admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    """Get platform statistics"""
    total_users = (await db.execute(select(func.count(User.id)))).scalar()
    total_raffles = (await db.execute(select(func.count(Raffle.id)))).scalar()

    active_raffles = (await db.execute(
        select(func.count(Raffle.id)).where(
            Raffle.is_active == True,  # noqa: E712
            Raffle.winner_id.is_(None)
        )
    )).scalar()

    settled_raffles = (await db.execute(
        select(func.count(Raffle.id)).where(Raffle.winner_id.isnot(None))
    )).scalar()

    tickets_sold = (await db.execute(select(func.coalesce(func.sum(Ticket.quantity), 0)))).scalar()
    ticket_volume = (await db.execute(select(func.coalesce(func.sum(Ticket.total_amount), 0)))).scalar()
    prize_pool = (await db.execute(
        select(func.coalesce(func.sum(Raffle.prize_value), 0)).where(Raffle.is_active == True)  # noqa: E712
    )).scalar()
    donations_total = (await db.execute(select(func.coalesce(func.sum(Donation.current_amount), 0)))).scalar()

    return ok({
        "total_users": total_users,
        "total_raffles": total_raffles,
        "active_raffles": active_raffles,
        "settled_raffles": settled_raffles,
        "tickets_sold": int(tickets_sold or 0),
        "ticket_volume": str(ticket_volume),
        "active_prize_pool": str(prize_pool),
        "donations_total": str(donations_total),
    })


@router.get("/queue")
async def get_queue_stats(
    current_admin: User = Depends(get_current_admin),
    container: ServiceContainer = Depends(get_container)
):
    stats = QueueStats(**container.queue.stats())
    return ok({
        "queue": stats.model_dump(mode="json"),
        "circuit_breaker": container.breaker.snapshot(),
    })
