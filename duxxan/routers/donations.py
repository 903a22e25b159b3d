from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..container import ServiceContainer, get_container
from ..database import get_db
from ..models import User
from ..schemas import Contribution as ContributionSchema
from ..schemas import ContributionCreate, DonationCreate
from ..schemas import Donation as DonationSchema
from ..services.donation import DonationService
from ..utils.auth import get_current_user
from ..utils.responses import dump, dump_list, ok

router = APIRouter()


@router.get("")
async def list_donations(
    active: bool = Query(False),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    donations = await DonationService.list_donations(db, active_only=active, limit=limit, offset=offset)
    return ok(dump_list(DonationSchema, donations))


@router.get("/{donation_id}")
async def get_donation(donation_id: int, db: AsyncSession = Depends(get_db)):
    donation = await DonationService.get_donation(db, donation_id)
    return ok(dump(DonationSchema, donation))


@router.post("", status_code=201)
async def create_donation(
    donation_data: DonationCreate,
    current_user: User = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Open a donation campaign; commission depends on the creator type"""
    donation = await container.donations.create_donation(db, current_user, donation_data)
    return ok(dump(DonationSchema, donation), "Donation created")


@router.post("/{donation_id}/contribute", status_code=201)
async def contribute(
    donation_id: int,
    contribution_data: ContributionCreate,
    current_user: User = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    contribution = await container.donations.contribute(db, current_user, donation_id, contribution_data)
    return ok(dump(ContributionSchema, contribution), "Contribution recorded")


@router.get("/{donation_id}/contributions")
async def get_contributions(donation_id: int, db: AsyncSession = Depends(get_db)):
    contributions = await DonationService.contributions(db, donation_id)
    return ok(dump_list(ContributionSchema, contributions))
