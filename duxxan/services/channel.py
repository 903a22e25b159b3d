import logging
from typing import List

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import NotFound
from ..models import Channel, ChannelSubscription, User
from ..schemas import ChannelCreate

logger = logging.getLogger(__name__)


class ChannelService:
    @staticmethod
    async def list_channels(db: AsyncSession, limit: int = 50, offset: int = 0) -> List[Channel]:
        result = await db.execute(
            select(Channel)
            .where(Channel.is_active == True)  # noqa: E712
            .order_by(Channel.subscriber_count.desc(), Channel.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_channel(db: AsyncSession, channel_id: int) -> Channel:
        result = await db.execute(select(Channel).where(Channel.id == channel_id))
        channel = result.scalar_one_or_none()
        if not channel:
            raise NotFound("Channel not found")
        return channel

    @staticmethod
    async def create_channel(db: AsyncSession, user: User, data: ChannelCreate) -> Channel:
        channel = Channel(
            name=data.name,
            description=data.description,
            creator_id=user.id,
            subscriber_count=0,
        )
        db.add(channel)
        await db.commit()
        await db.refresh(channel)
        logger.info(f"Channel {channel.id} created by user {user.id}")
        return channel

    @staticmethod
    async def _recount(db: AsyncSession, channel_id: int):
        """subscriber_count всегда пересчитываем из подписок"""
        count = select(func.count(ChannelSubscription.id)).where(
            ChannelSubscription.channel_id == channel_id
        ).scalar_subquery()
        await db.execute(
            update(Channel)
            .where(Channel.id == channel_id)
            .values(subscriber_count=count)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def is_subscribed(db: AsyncSession, user_id: int, channel_id: int) -> bool:
        result = await db.execute(
            select(ChannelSubscription.id).where(
                ChannelSubscription.user_id == user_id,
                ChannelSubscription.channel_id == channel_id,
            )
        )
        return result.first() is not None

    @staticmethod
    async def subscribe(db: AsyncSession, user: User, channel_id: int) -> Channel:
        """Idempotent: subscribing twice keeps one subscription"""
        channel = await ChannelService.get_channel(db, channel_id)

        if not await ChannelService.is_subscribed(db, user.id, channel_id):
            db.add(ChannelSubscription(user_id=user.id, channel_id=channel_id))
            try:
                await db.flush()
            except IntegrityError:
                # параллельная подписка уже записана
                await db.rollback()
            await ChannelService._recount(db, channel_id)
            await db.commit()
            logger.info(f"User {user.id} subscribed to channel {channel_id}")

        await db.refresh(channel)
        return channel

    @staticmethod
    async def unsubscribe(db: AsyncSession, user: User, channel_id: int) -> Channel:
        """Idempotent: unsubscribing when not subscribed is a no-op"""
        channel = await ChannelService.get_channel(db, channel_id)

        result = await db.execute(
            delete(ChannelSubscription).where(
                ChannelSubscription.user_id == user.id,
                ChannelSubscription.channel_id == channel_id,
            )
        )
        if result.rowcount:
            await ChannelService._recount(db, channel_id)
            logger.info(f"User {user.id} unsubscribed from channel {channel_id}")
        await db.commit()

        await db.refresh(channel)
        return channel
