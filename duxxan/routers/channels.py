from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import User
from ..schemas import Channel as ChannelSchema
from ..schemas import ChannelCreate
from ..services.channel import ChannelService
from ..utils.auth import get_current_user
from ..utils.responses import dump, dump_list, ok

router = APIRouter()


@router.get("")
async def list_channels(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    channels = await ChannelService.list_channels(db, limit=limit, offset=offset)
    return ok(dump_list(ChannelSchema, channels))


@router.get("/{channel_id}")
async def get_channel(channel_id: int, db: AsyncSession = Depends(get_db)):
    channel = await ChannelService.get_channel(db, channel_id)
    return ok(dump(ChannelSchema, channel))


@router.post("", status_code=201)
async def create_channel(
    channel_data: ChannelCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    channel = await ChannelService.create_channel(db, current_user, channel_data)
    return ok(dump(ChannelSchema, channel), "Channel created")


@router.post("/{channel_id}/subscribe")
async def subscribe(
    channel_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    channel = await ChannelService.subscribe(db, current_user, channel_id)
    return ok(dump(ChannelSchema, channel), "Subscribed")


@router.delete("/{channel_id}/subscribe")
async def unsubscribe(
    channel_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    channel = await ChannelService.unsubscribe(db, current_user, channel_id)
    return ok(dump(ChannelSchema, channel), "Unsubscribed")
