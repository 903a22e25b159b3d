from datetime import datetime
from enum import Enum
from typing import Optional

from ..config import as_utc, utcnow


class RaffleState(str, Enum):
    OPEN = "OPEN"
    ENDED_UNSETTLED = "ENDED_UNSETTLED"
    SETTLED = "SETTLED"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    MUTUALLY_APPROVED = "MUTUALLY_APPROVED"
    FORFEITED = "FORFEITED"
    CANCELLED = "CANCELLED"


TERMINAL_STATES = {RaffleState.MUTUALLY_APPROVED, RaffleState.FORFEITED, RaffleState.CANCELLED}


def raffle_state(raffle, now: Optional[datetime] = None) -> RaffleState:
    """Derive the lifecycle state from the stored columns"""
    now = now or utcnow()

    if raffle.winner_id is None:
        if not raffle.is_active:
            # закрыт админом без розыгрыша
            return RaffleState.CANCELLED
        if now < as_utc(raffle.end_date):
            return RaffleState.OPEN
        return RaffleState.ENDED_UNSETTLED

    if raffle.is_approved_by_creator and raffle.is_approved_by_winner:
        return RaffleState.MUTUALLY_APPROVED
    if raffle.is_forfeited:
        return RaffleState.FORFEITED
    if raffle.is_approved_by_creator or raffle.is_approved_by_winner:
        return RaffleState.AWAITING_APPROVAL
    return RaffleState.SETTLED


def accepts_tickets(raffle, now: Optional[datetime] = None) -> bool:
    return raffle_state(raffle, now) == RaffleState.OPEN


def approval_expired(raffle, now: Optional[datetime] = None) -> bool:
    if raffle.approval_deadline is None:
        return False
    return (now or utcnow()) > as_utc(raffle.approval_deadline)
