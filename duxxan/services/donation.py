import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import as_utc, utcnow
from ..exceptions import NotFound, ValidationFailed
from ..models import Donation, DonationContribution, User
from ..schemas import ContributionCreate, DonationCreate
from ..schemas import Donation as DonationSchema
from ..websocket_manager import ConnectionManager
from .audit import AuditLog

logger = logging.getLogger(__name__)

INDIVIDUAL_COMMISSION_RATE = Decimal("10.00")
ORGANIZATION_COMMISSION_RATE = Decimal("2.00")
UNLIMITED_STARTUP_FEE = Decimal("100.000000")
AMOUNT_QUANTUM = Decimal("0.000001")


def commission_terms(organization_type: str, is_unlimited: bool):
    """(commission rate in percent, startup fee) for a campaign creator"""
    if organization_type and organization_type != "individual":
        fee = UNLIMITED_STARTUP_FEE if is_unlimited else Decimal("0")
        return ORGANIZATION_COMMISSION_RATE, fee
    return INDIVIDUAL_COMMISSION_RATE, Decimal("0")


def split_contribution(amount: Decimal, commission_rate: Decimal):
    commission = (amount * commission_rate / Decimal(100)).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    return commission, amount - commission


class DonationService:
    def __init__(self, audit: AuditLog, ws_manager: ConnectionManager):
        self.audit = audit
        self.ws_manager = ws_manager

    @staticmethod
    async def list_donations(db: AsyncSession, active_only: bool = False,
                             limit: int = 50, offset: int = 0) -> List[Donation]:
        query = select(Donation)
        if active_only:
            query = query.where(Donation.is_active == True)  # noqa: E712
        result = await db.execute(
            query.order_by(Donation.created_at.desc(), Donation.id.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_donation(db: AsyncSession, donation_id: int) -> Donation:
        result = await db.execute(select(Donation).where(Donation.id == donation_id))
        donation = result.scalar_one_or_none()
        if not donation:
            raise NotFound("Donation not found")
        return donation

    @staticmethod
    async def contributions(db: AsyncSession, donation_id: int) -> List[DonationContribution]:
        await DonationService.get_donation(db, donation_id)
        result = await db.execute(
            select(DonationContribution)
            .where(DonationContribution.donation_id == donation_id)
            .order_by(DonationContribution.created_at.desc(), DonationContribution.id.desc())
        )
        return list(result.scalars().all())

    async def create_donation(self, db: AsyncSession, user: User, data: DonationCreate) -> Donation:
        if data.end_date is not None and as_utc(data.end_date) <= utcnow():
            raise ValidationFailed("End date must be in the future")

        commission_rate, startup_fee = commission_terms(user.organization_type, data.is_unlimited)
        donation = Donation(
            creator_id=user.id,
            title=data.title,
            description=data.description,
            goal_amount=data.goal_amount,
            end_date=as_utc(data.end_date),
            is_unlimited=data.is_unlimited,
            category=data.category or "general",
            country=data.country.upper() if data.country else None,
            commission_rate=commission_rate,
            startup_fee=startup_fee,
            current_amount=Decimal("0"),
            total_commission_collected=Decimal("0"),
        )
        db.add(donation)
        await db.commit()
        await db.refresh(donation)

        logger.info(f"Donation {donation.id} created by user {user.id} (commission {commission_rate}%)")
        await self.audit.record("donation", donation.id, "DONATION_CREATED", {
            "creator_id": user.id,
            "commission_rate": commission_rate,
            "startup_fee": startup_fee,
        })
        await self.ws_manager.broadcast("DONATION_CREATED", DonationSchema.model_validate(donation).model_dump(mode="json"))
        return donation

    async def contribute(self, db: AsyncSession, user: User, donation_id: int,
                         data: ContributionCreate) -> DonationContribution:
        donation = await self.get_donation(db, donation_id)
        if not donation.is_active:
            raise ValidationFailed("Donation is not active")
        if donation.end_date is not None and as_utc(donation.end_date) <= utcnow():
            raise ValidationFailed("Donation has ended")

        commission, net = split_contribution(data.amount, donation.commission_rate)
        contribution = DonationContribution(
            donation_id=donation.id,
            user_id=user.id,
            amount=data.amount,
            commission_amount=commission,
            net_amount=net,
            donor_country=data.donor_country.upper() if data.donor_country else None,
        )
        db.add(contribution)
        await db.execute(
            update(Donation)
            .where(Donation.id == donation.id)
            .values(
                current_amount=Donation.current_amount + data.amount,
                donor_count=Donation.donor_count + 1,
                total_commission_collected=Donation.total_commission_collected + commission,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(contribution)

        logger.info(f"User {user.id} contributed {data.amount} to donation {donation.id}")
        await self.audit.record("donation", donation.id, "DONATION_CONTRIBUTION", {
            "user_id": user.id,
            "amount": data.amount,
            "commission": commission,
        })
        await self.ws_manager.broadcast("DONATION_CONTRIBUTION", {
            "donation_id": donation.id,
            "amount": data.amount,
        })
        return contribution
