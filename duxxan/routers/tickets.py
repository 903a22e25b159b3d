from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..container import ServiceContainer, get_container
from ..database import get_db
from ..models import User
from ..schemas import Ticket as TicketSchema
from ..schemas import TicketPurchase
from ..utils.auth import get_current_user
from ..utils.responses import dump, ok

router = APIRouter()


@router.post("", status_code=201)
async def purchase_tickets(
    purchase: TicketPurchase,
    current_user: User = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Buy tickets with a verified on-chain payment"""
    ticket = await container.raffles.purchase_tickets(db, current_user, purchase)
    return ok(dump(TicketSchema, ticket), "Tickets purchased")
