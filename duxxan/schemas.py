from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator, model_validator

TX_HASH_PATTERN = r"^0x[a-fA-F0-9]{64}$"
WALLET_PATTERN = r"^0x[a-fA-F0-9]{40}$"
COUNTRY_PATTERN = r"^[A-Za-z]{2}$"

# суммы отдаём строкой, чтобы не терять точность
Money = Annotated[Decimal, PlainSerializer(lambda v: format(v, "f"), return_type=str)]


class ApiResponse(BaseModel):
    success: bool = True
    message: str = ""
    data: Any = None


# --- users ---

class UserCreate(BaseModel):
    wallet_address: str = Field(pattern=WALLET_PATTERN)
    username: str = Field(min_length=3, max_length=50)
    name: Optional[str] = Field(default=None, max_length=100)
    organization_type: str = Field(default="individual", pattern=r"^(individual|foundation|association|official)$")
    country: Optional[str] = Field(default=None, pattern=COUNTRY_PATTERN)


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wallet_address: str
    username: str
    name: Optional[str] = None
    organization_type: Optional[str] = "individual"
    country: Optional[str] = None
    created_at: Optional[datetime] = None


# --- raffles ---

class RaffleBase(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    prize_value: Decimal = Field(gt=0)
    ticket_price: Decimal = Field(gt=0)
    max_tickets: int = Field(gt=0, le=1_000_000)
    end_date: datetime
    country_restriction: str = Field(default="all", pattern=r"^(all|selected|excluded)$")
    allowed_countries: Optional[List[str]] = None
    excluded_countries: Optional[List[str]] = None

    @field_validator("allowed_countries", "excluded_countries")
    @classmethod
    def normalize_countries(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        codes = []
        for code in value:
            code = code.strip().upper()
            if len(code) != 2 or not code.isalpha():
                raise ValueError(f"Invalid country code: {code!r}")
            if code not in codes:
                codes.append(code)
        return codes

    @model_validator(mode="after")
    def check_country_lists(self):
        if self.country_restriction == "selected" and not self.allowed_countries:
            raise ValueError("allowed_countries is required when country_restriction is 'selected'")
        if self.country_restriction == "excluded" and not self.excluded_countries:
            raise ValueError("excluded_countries is required when country_restriction is 'excluded'")
        return self


class RaffleCreate(RaffleBase):
    transaction_hash: str = Field(pattern=TX_HASH_PATTERN)


class AdminRaffleCreate(RaffleBase):
    creator_id: Optional[int] = None


class Raffle(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    creator_id: int
    title: str
    description: str
    prize_value: Money
    ticket_price: Money
    max_tickets: int
    tickets_sold: int
    end_date: datetime
    is_active: bool
    created_by_admin: Optional[bool] = False
    transaction_hash: Optional[str] = None
    country_restriction: str = "all"
    allowed_countries: Optional[List[str]] = None
    excluded_countries: Optional[List[str]] = None
    winner_id: Optional[int] = None
    is_approved_by_creator: bool
    is_approved_by_winner: bool
    winner_selected_at: Optional[datetime] = None
    approval_deadline: Optional[datetime] = None
    is_forfeited: bool = False
    created_at: Optional[datetime] = None


class RaffleStateInfo(BaseModel):
    raffle_id: int
    state: str
    is_active: bool
    winner_id: Optional[int] = None
    approval_deadline: Optional[datetime] = None


class DrawAudit(BaseModel):
    """Everything needed to re-check a settled raffle's draw"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    winner_id: Optional[int] = None
    winning_ticket_id: Optional[int] = None
    winning_draw: Optional[int] = None
    total_units_at_draw: Optional[int] = None
    draw_seed: Optional[str] = None
    draw_commitment: Optional[str] = None
    winner_selected_at: Optional[datetime] = None
    settlement_failed_at: Optional[datetime] = None
    settlement_error: Optional[str] = None


# --- tickets ---

class TicketPurchase(BaseModel):
    raffle_id: int = Field(gt=0)
    quantity: int = Field(gt=0, le=10_000)
    transaction_hash: str = Field(pattern=TX_HASH_PATTERN)


class Ticket(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    raffle_id: int
    user_id: int
    quantity: int
    total_amount: Money
    transaction_hash: Optional[str] = None
    created_at: Optional[datetime] = None


# --- donations ---

class DonationCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    goal_amount: Decimal = Field(gt=0)
    end_date: Optional[datetime] = None
    is_unlimited: bool = False
    category: str = "general"
    country: Optional[str] = Field(default=None, min_length=2, max_length=3)


class Donation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    creator_id: int
    title: str
    description: str
    goal_amount: Money
    current_amount: Money
    donor_count: int
    end_date: Optional[datetime] = None
    is_active: bool
    is_unlimited: Optional[bool] = False
    commission_rate: Money
    startup_fee: Money
    startup_fee_paid: Optional[bool] = False
    total_commission_collected: Money
    category: Optional[str] = None
    country: Optional[str] = None
    created_at: Optional[datetime] = None


class ContributionCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    donor_country: Optional[str] = Field(default=None, min_length=2, max_length=3)


class Contribution(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    donation_id: int
    user_id: Optional[int] = None
    amount: Money
    commission_amount: Money
    net_amount: Money
    donor_country: Optional[str] = None
    created_at: Optional[datetime] = None


# --- channels ---

class ChannelCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    description: str = Field(min_length=1)


class Channel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    creator_id: int
    subscriber_count: int
    is_active: Optional[bool] = True
    created_at: Optional[datetime] = None


# --- mail ---

class MailMessage(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    from_wallet_address: str
    to_wallet_address: str
    subject: str
    content: str
    category: str
    is_read: bool
    is_starred: bool
    raffle_id: Optional[int] = None
    created_at: Optional[datetime] = None


class QueueStats(BaseModel):
    total: int
    processing: int
    waiting: int
    scheduled: int
    failed: int
    by_type: dict
    recent_failures: List[dict] = []
