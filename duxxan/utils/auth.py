from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..exceptions import Forbidden, Unauthorized
from ..models import User


async def get_current_user(
    x_wallet_address: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Resolve the caller from the x-wallet-address header"""
    if not x_wallet_address:
        raise Unauthorized("Wallet address required")

    result = await db.execute(
        select(User).where(User.wallet_address == x_wallet_address.strip().lower())
    )
    user = result.scalar_one_or_none()

    if not user:
        raise Unauthorized("User not found")

    return user


async def get_current_admin(
    request: Request,
    current_user: User = Depends(get_current_user)
) -> User:
    """Check if current user is admin"""
    settings = request.app.state.container.settings
    if not (current_user.is_admin or current_user.wallet_address in settings.admin_wallets):
        raise Forbidden("Admin access required")

    return current_user
