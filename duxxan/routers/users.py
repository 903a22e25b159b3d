from fastapi import APIRouter, Depends
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..exceptions import Conflict
from ..models import User
from ..schemas import Ticket as TicketSchema
from ..schemas import User as UserSchema
from ..schemas import UserCreate
from ..services.raffle import RaffleService
from ..utils.auth import get_current_user
from ..utils.responses import dump, dump_list, ok

router = APIRouter()


@router.post("", status_code=201)
async def register_user(
    user_data: UserCreate,
    db: AsyncSession = Depends(get_db)
):
    """Register a wallet"""
    wallet = user_data.wallet_address.lower()
    existing = await db.execute(
        select(User).where(or_(User.wallet_address == wallet, User.username == user_data.username))
    )
    if existing.scalars().first():
        raise Conflict("Wallet address or username already registered")

    user = User(
        wallet_address=wallet,
        username=user_data.username,
        name=user_data.name,
        organization_type=user_data.organization_type,
        country=user_data.country.upper() if user_data.country else None,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    return ok(dump(UserSchema, user), "User created")


@router.get("/me")
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Get current user information"""
    return ok(dump(UserSchema, current_user))


@router.get("/me/tickets")
async def get_my_tickets(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    tickets = await RaffleService.user_tickets(db, current_user.id)
    return ok(dump_list(TicketSchema, tickets))
