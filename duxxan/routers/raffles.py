from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..container import ServiceContainer, get_container
from ..database import get_db
from ..models import User
from ..schemas import DrawAudit, RaffleCreate, RaffleStateInfo
from ..schemas import Raffle as RaffleSchema
from ..schemas import Ticket as TicketSchema
from ..services.raffle import RaffleService
from ..utils.auth import get_current_user
from ..utils.responses import dump, dump_list, ok

router = APIRouter()


@router.get("")
async def list_raffles(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Get all raffles - PUBLIC ENDPOINT"""
    raffles = await container.raffles.list_raffles(db, limit=limit, offset=offset)
    return ok(raffles)


@router.get("/active")
async def get_active_raffles(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Raffles that still accept tickets"""
    raffles = await container.raffles.list_raffles(db, active_only=True, limit=limit, offset=offset)
    return ok(raffles)


@router.get("/{raffle_id}")
async def get_raffle(raffle_id: int, db: AsyncSession = Depends(get_db)):
    """Get raffle details - PUBLIC ENDPOINT"""
    raffle = await RaffleService.get_raffle(db, raffle_id)
    return ok(dump(RaffleSchema, raffle))


@router.post("", status_code=201)
async def create_raffle(
    raffle_data: RaffleCreate,
    current_user: User = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Create a raffle backed by a verified creation-fee payment"""
    raffle = await container.raffles.create_raffle(db, current_user, raffle_data)
    return ok(dump(RaffleSchema, raffle), "Raffle created")


@router.put("/{raffle_id}/approve")
async def approve_raffle(
    raffle_id: int,
    current_user: User = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    raffle = await container.raffles.approve(db, current_user, raffle_id)
    return ok(dump(RaffleSchema, raffle), "Approval recorded")


@router.get("/{raffle_id}/tickets")
async def get_raffle_tickets(raffle_id: int, db: AsyncSession = Depends(get_db)):
    tickets = await RaffleService.raffle_tickets(db, raffle_id)
    return ok(dump_list(TicketSchema, tickets))


@router.get("/{raffle_id}/state")
async def get_raffle_state(
    raffle_id: int,
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    raffle = await RaffleService.get_raffle(db, raffle_id)
    state = RaffleStateInfo(
        raffle_id=raffle.id,
        state=container.raffles.state_of(raffle).value,
        is_active=raffle.is_active,
        winner_id=raffle.winner_id,
        approval_deadline=raffle.approval_deadline,
    )
    return ok(state.model_dump(mode="json"))


@router.get("/{raffle_id}/draw")
async def get_raffle_draw(raffle_id: int, db: AsyncSession = Depends(get_db)):
    """Stored draw data; lets anyone re-check the winner from the seed"""
    raffle = await RaffleService.get_raffle(db, raffle_id)
    return ok(dump(DrawAudit, raffle))
