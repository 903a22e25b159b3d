import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import NotFound
from ..models import MailMessage

logger = logging.getLogger(__name__)

SYSTEM_SENDER = "system@duxxan"


class MailService:
    @staticmethod
    def add_system_message(db: AsyncSession, to_wallet_address: str, subject: str,
                           content: str, raffle_id: Optional[int] = None) -> MailMessage:
        """Queue a system message in the caller's transaction (caller commits)"""
        message = MailMessage(
            from_wallet_address=SYSTEM_SENDER,
            to_wallet_address=to_wallet_address.lower(),
            subject=subject,
            content=content,
            category="system",
            raffle_id=raffle_id,
        )
        db.add(message)
        return message

    @staticmethod
    async def inbox(db: AsyncSession, wallet_address: str, category: Optional[str] = None,
                    limit: int = 50, offset: int = 0) -> List[MailMessage]:
        query = select(MailMessage).where(MailMessage.to_wallet_address == wallet_address)
        if category:
            query = query.where(MailMessage.category == category)
        result = await db.execute(
            query.order_by(MailMessage.created_at.desc(), MailMessage.id.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def unread_count(db: AsyncSession, wallet_address: str) -> int:
        result = await db.execute(
            select(func.count(MailMessage.id)).where(
                MailMessage.to_wallet_address == wallet_address,
                MailMessage.is_read == False,  # noqa: E712
            )
        )
        return result.scalar() or 0

    @staticmethod
    async def _set_flag(db: AsyncSession, message_id: int, wallet_address: str, **values):
        result = await db.execute(
            update(MailMessage)
            .where(MailMessage.id == message_id, MailMessage.to_wallet_address == wallet_address)
            .values(**values)
        )
        if result.rowcount == 0:
            raise NotFound("Message not found")
        await db.commit()

    @staticmethod
    async def mark_read(db: AsyncSession, message_id: int, wallet_address: str):
        await MailService._set_flag(db, message_id, wallet_address, is_read=True)

    @staticmethod
    async def mark_starred(db: AsyncSession, message_id: int, wallet_address: str, starred: bool):
        await MailService._set_flag(db, message_id, wallet_address, is_starred=starred)
