from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    wallet_address = Column(String(42), unique=True, index=True, nullable=False)  # всегда lower-case
    username = Column(String(50), unique=True, nullable=False)
    name = Column(String(100))
    organization_type = Column(String(20), default="individual")  # individual, foundation, association, official
    country = Column(String(2))  # ISO 3166-1 alpha-2, upper-case
    is_admin = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    tickets = relationship("Ticket", back_populates="user")


class Raffle(Base):
    __tablename__ = "raffles"
    __table_args__ = (
        CheckConstraint("tickets_sold <= max_tickets", name="ck_raffles_tickets_sold"),
    )

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    prize_value = Column(Numeric(15, 6), nullable=False)
    ticket_price = Column(Numeric(15, 6), nullable=False)
    max_tickets = Column(Integer, nullable=False)
    tickets_sold = Column(Integer, default=0, nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by_admin = Column(Boolean, default=False)
    # payment proof, NULL for admin-created raffles
    transaction_hash = Column(String(66), unique=True, nullable=True)

    # допуск по стране покупателя: all, selected (allowed_countries), excluded (excluded_countries)
    country_restriction = Column(String(20), default="all", nullable=False)
    allowed_countries = Column(JSON)
    excluded_countries = Column(JSON)

    winner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_approved_by_creator = Column(Boolean, default=False, nullable=False)
    is_approved_by_winner = Column(Boolean, default=False, nullable=False)
    winner_selected_at = Column(DateTime(timezone=True))
    approval_deadline = Column(DateTime(timezone=True))
    is_forfeited = Column(Boolean, default=False, nullable=False)

    # settlement guard and draw audit trail
    settlement_version = Column(Integer, default=0, nullable=False)
    winning_ticket_id = Column(Integer, nullable=True)
    winning_draw = Column(Integer)
    total_units_at_draw = Column(Integer)
    draw_seed = Column(String(64))
    draw_commitment = Column(String(64))
    settlement_failed_at = Column(DateTime(timezone=True))
    settlement_error = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    creator = relationship("User", foreign_keys=[creator_id])
    winner = relationship("User", foreign_keys=[winner_id])
    tickets = relationship(
        "Ticket",
        back_populates="raffle",
        foreign_keys="Ticket.raffle_id",
        order_by="Ticket.id",
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    raffle_id = Column(Integer, ForeignKey("raffles.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    total_amount = Column(Numeric(15, 6), nullable=False)
    transaction_hash = Column(String(66), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    raffle = relationship("Raffle", back_populates="tickets", foreign_keys=[raffle_id])
    user = relationship("User", back_populates="tickets")


class Donation(Base):
    __tablename__ = "donations"

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    goal_amount = Column(Numeric(15, 6), nullable=False)
    current_amount = Column(Numeric(15, 6), default=0, nullable=False)
    donor_count = Column(Integer, default=0, nullable=False)
    end_date = Column(DateTime(timezone=True))  # NULL = бессрочно
    is_active = Column(Boolean, default=True, nullable=False)
    is_unlimited = Column(Boolean, default=False)
    commission_rate = Column(Numeric(5, 2), default=10, nullable=False)
    startup_fee = Column(Numeric(15, 6), default=0, nullable=False)
    startup_fee_paid = Column(Boolean, default=False)
    total_commission_collected = Column(Numeric(15, 6), default=0, nullable=False)
    category = Column(String(50), default="general")
    country = Column(String(3))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    creator = relationship("User")
    contributions = relationship("DonationContribution", back_populates="donation")


class DonationContribution(Base):
    __tablename__ = "donation_contributions"

    id = Column(Integer, primary_key=True, index=True)
    donation_id = Column(Integer, ForeignKey("donations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"))
    amount = Column(Numeric(15, 6), nullable=False)
    commission_amount = Column(Numeric(15, 6), default=0, nullable=False)
    net_amount = Column(Numeric(15, 6), default=0, nullable=False)
    donor_country = Column(String(3))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    donation = relationship("Donation", back_populates="contributions")


class Channel(Base):
    __tablename__ = "channels"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    subscriber_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ChannelSubscription(Base):
    __tablename__ = "channel_subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "channel_id", name="_user_channel_uc"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    channel_id = Column(Integer, ForeignKey("channels.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MailMessage(Base):
    __tablename__ = "mail_messages"

    id = Column(Integer, primary_key=True, index=True)
    from_wallet_address = Column(String(42), nullable=False)
    to_wallet_address = Column(String(42), nullable=False, index=True)
    subject = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    category = Column(String(20), nullable=False)  # system, user, community
    is_read = Column(Boolean, default=False, nullable=False)
    is_starred = Column(Boolean, default=False, nullable=False)
    raffle_id = Column(Integer, ForeignKey("raffles.id"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(Integer, index=True)
    event = Column(String(50), nullable=False)
    payload = Column(JSON)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
