from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import User
from ..schemas import MailMessage as MailMessageSchema
from ..services.mail import MailService
from ..utils.auth import get_current_user
from ..utils.responses import dump_list, ok

router = APIRouter()


@router.get("/inbox")
async def get_inbox(
    category: Optional[str] = Query(None, pattern=r"^(system|user|community)$"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    messages = await MailService.inbox(db, current_user.wallet_address, category, limit, offset)
    return ok(dump_list(MailMessageSchema, messages))


@router.get("/unread-count")
async def get_unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    count = await MailService.unread_count(db, current_user.wallet_address)
    return ok({"count": count})


@router.put("/{message_id}/read")
async def mark_read(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await MailService.mark_read(db, message_id, current_user.wallet_address)
    return ok(message="Message marked as read")


@router.put("/{message_id}/star")
async def toggle_star(
    message_id: int,
    starred: bool = Query(True),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await MailService.mark_starred(db, message_id, current_user.wallet_address, starred)
    return ok({"starred": starred})
