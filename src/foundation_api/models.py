"""
SQLAlchemy ORM models for the Foundation API.
Defines User, Role, Event, Donation, GalleryImage, Membership and MembershipPayment.

Conventions:
- Association tables for many-to-many (user<->roles, event<->registered users)
- Nested profile data (addresses, references, contact info) lives in JSON columns
- Membership payments are child rows ordered by payment date; the membership keeps
  a running payment summary next to them and a version counter for stale-write detection.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Float,
    Boolean,
    ForeignKey,
    Enum,
    Table,
    Index,
    JSON,
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.sql import func
import enum

Base = declarative_base()

# --- Association Tables for Many-to-Many ---

user_roles = Table(
    'user_roles',
    Base.metadata,
    Column('user_id', Integer, ForeignKey('users.id', ondelete="CASCADE"), primary_key=True),
    Column('role_id', Integer, ForeignKey('roles.id', ondelete="CASCADE"), primary_key=True),
    Index("ix_user_roles_user_id_role_id", "user_id", "role_id", unique=True)
)

event_registrations = Table(
    'event_registrations',
    Base.metadata,
    Column('user_id', Integer, ForeignKey('users.id', ondelete="CASCADE"), primary_key=True),
    Column('event_id', Integer, ForeignKey('events.id', ondelete="CASCADE"), primary_key=True),
    Index("ix_event_registrations_event_id_user_id", "event_id", "user_id", unique=True)
)

# --- ENUMs ---

class RoleEnum(str, enum.Enum):
    admin = "admin"
    member = "member"
    guest = "guest"

class EventTypeEnum(str, enum.Enum):
    workshop = "workshop"
    seminar = "seminar"
    meeting = "meeting"
    outreach = "outreach"
    fundraiser = "fundraiser"
    social = "social"
    other = "other"

class EventCategoryEnum(str, enum.Enum):
    mentorship = "mentorship"
    community = "community"
    education = "education"
    health = "health"
    environment = "environment"
    technology = "technology"
    other = "other"

class EventStatusEnum(str, enum.Enum):
    draft = "draft"
    published = "published"
    cancelled = "cancelled"
    completed = "completed"

class DonationStatusEnum(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"
    cancelled = "cancelled"

class DonationMethodEnum(str, enum.Enum):
    credit_card = "credit_card"
    debit_card = "debit_card"
    paypal = "paypal"
    mpesa = "mpesa"
    bank_transfer = "bank_transfer"
    cash = "cash"
    check = "check"
    other = "other"

class DonationTypeEnum(str, enum.Enum):
    one_time = "one_time"
    monthly = "monthly"
    yearly = "yearly"
    campaign = "campaign"
    memorial = "memorial"
    honor = "honor"

class MembershipTypeEnum(str, enum.Enum):
    gold = "gold"
    silver = "silver"
    bronze = "bronze"

class PaymentPlanEnum(str, enum.Enum):
    monthly = "monthly"
    annual = "annual"

class MembershipStatusEnum(str, enum.Enum):
    pending = "pending"
    active = "active"
    suspended = "suspended"
    expired = "expired"
    cancelled = "cancelled"

class PaymentMethodEnum(str, enum.Enum):
    mpesa = "mpesa"
    card = "card"
    bank_transfer = "bank_transfer"

class PaymentStatusEnum(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"

class ProgressStatusEnum(str, enum.Enum):
    up_to_date = "up_to_date"
    overdue = "overdue"
    pending = "pending"

# --- MODELS ---

class Role(Base):
    __tablename__ = "roles"
    id = Column(Integer, primary_key=True)
    name = Column(String(32), unique=True, nullable=False)
    description = Column(String(256))

    users = relationship("User", secondary=user_roles, back_populates="roles")

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String(128), unique=True, index=True, nullable=False)
    hashed_password = Column(String(256), nullable=False)
    first_name = Column(String(64), nullable=False)
    last_name = Column(String(64), nullable=False)
    phone = Column(String(32))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    roles = relationship("Role", secondary=user_roles, back_populates="users")
    events_registered = relationship("Event", secondary=event_registrations, back_populates="attendees")
    membership = relationship(
        "Membership", back_populates="applicant", uselist=False, cascade="all, delete-orphan",
        foreign_keys="Membership.applicant_id",
    )

    @property
    def role_names(self):
        return [r.name for r in self.roles] if self.roles else []

    @property
    def is_admin(self):
        return RoleEnum.admin.value in self.role_names

class Event(Base):
    __tablename__ = "events"
    id = Column(Integer, primary_key=True)
    title = Column(String(100), nullable=False)
    description = Column(String(2000), nullable=False)
    short_description = Column(String(300))
    date = Column(DateTime, nullable=False)
    end_date = Column(DateTime)
    start_time = Column(String(8))
    end_time = Column(String(8))
    location = Column(String(256), nullable=False)
    address = Column(JSON)
    event_type = Column(Enum(EventTypeEnum), nullable=False, default=EventTypeEnum.other)
    category = Column(Enum(EventCategoryEnum), nullable=False, default=EventCategoryEnum.other)
    image_url = Column(String(512), default="")
    capacity = Column(Integer)
    is_free = Column(Boolean, default=True)
    price = Column(Float)
    currency = Column(String(8), default="USD")
    registration_required = Column(Boolean, default=False)
    registration_deadline = Column(DateTime)
    status = Column(Enum(EventStatusEnum), nullable=False, default=EventStatusEnum.draft, index=True)
    tags = Column(JSON, default=list)
    is_featured = Column(Boolean, default=False)
    views = Column(Integer, default=0, nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    created_at = Column(DateTime, default=func.now())

    created_by = relationship("User", foreign_keys=[created_by_id])
    attendees = relationship("User", secondary=event_registrations, back_populates="events_registered")

    @property
    def registration_count(self):
        return len(self.attendees)

    def has_attendee(self, user_id):
        return any(u.id == user_id for u in self.attendees)

    __table_args__ = (
        Index("ix_events_date_status", "date", "status"),
        Index("ix_events_type_category", "event_type", "category"),
    )

class Donation(Base):
    __tablename__ = "donations"
    id = Column(Integer, primary_key=True)
    donor_first_name = Column(String(50), nullable=False)
    donor_last_name = Column(String(50), nullable=False)
    donor_email = Column(String(128), nullable=False, index=True)
    donor_phone = Column(String(32))
    donor_address = Column(JSON)
    is_anonymous = Column(Boolean, default=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(8), nullable=False, default="USD")
    payment_method = Column(Enum(DonationMethodEnum), nullable=False)
    payment_status = Column(Enum(DonationStatusEnum), nullable=False, default=DonationStatusEnum.pending, index=True)
    transaction_id = Column(String(128), unique=True)
    receipt_number = Column(String(64), unique=True)
    donation_type = Column(Enum(DonationTypeEnum), nullable=False, default=DonationTypeEnum.one_time)
    purpose = Column(String(64), nullable=False, default="general")
    message = Column(String(500))
    notes = Column(String(1000))
    tax_receipt_sent = Column(Boolean, default=False)
    tax_receipt_date = Column(DateTime)
    processed_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    is_verified = Column(Boolean, default=False)
    verification_date = Column(DateTime)
    created_at = Column(DateTime, default=func.now(), index=True)

    processed_by = relationship("User", foreign_keys=[processed_by_id])

    @property
    def donor_full_name(self):
        if self.is_anonymous:
            return "Anonymous Donor"
        return f"{self.donor_first_name} {self.donor_last_name}"

class GalleryImage(Base):
    __tablename__ = "gallery_images"
    id = Column(Integer, primary_key=True)
    url = Column(String(512), nullable=False)
    title = Column(String(128), nullable=False)
    description = Column(String(1000))
    uploaded_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, default=func.now())

    uploaded_by = relationship("User", foreign_keys=[uploaded_by_id])

class Membership(Base):
    __tablename__ = "memberships"
    id = Column(Integer, primary_key=True)
    applicant_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    membership_type = Column(Enum(MembershipTypeEnum), nullable=False)
    payment_plan = Column(Enum(PaymentPlanEnum), nullable=False)
    status = Column(Enum(MembershipStatusEnum), nullable=False, default=MembershipStatusEnum.pending)
    application_date = Column(DateTime, nullable=False)
    approval_date = Column(DateTime)
    start_date = Column(DateTime)
    expiry_date = Column(DateTime)
    membership_number = Column(String(32), unique=True)

    # Profile captured with the application
    personal_info = Column(JSON)
    contact_info = Column(JSON)
    references = Column("reference_list", JSON, default=list)
    motivation = Column(String(1000), nullable=False)
    goals = Column(String(500))
    experience = Column(String(1000))
    contributions = Column(String(500))
    documents = Column(JSON, default=list)
    committee = Column(String(32))
    volunteer_interests = Column(JSON, default=list)
    availability = Column(String(32))

    # Fee snapshot taken at application time
    fee_monthly_amount = Column(Float, nullable=False)
    fee_annual_amount = Column(Float, nullable=False)
    fee_currency = Column(String(8), nullable=False, default="KSH")
    fee_selected_plan = Column(Enum(PaymentPlanEnum), nullable=False)
    fee_selected_amount = Column(Float, nullable=False)

    # Payment progress summary, kept in step with `payments`
    total_paid = Column(Float, nullable=False, default=0)
    last_payment_date = Column(DateTime)
    next_payment_date = Column(DateTime)
    payment_status = Column(Enum(ProgressStatusEnum), nullable=False, default=ProgressStatusEnum.pending)
    overdue_amount = Column(Float, nullable=False, default=0)
    consecutive_payments = Column(Integer, nullable=False, default=0)

    notes = Column(String(1000))
    reviewed_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    review_notes = Column(String(1000))
    is_active = Column(Boolean, default=True)
    last_renewal_date = Column(DateTime)
    renewal_reminder_sent = Column(Boolean, nullable=False, default=False)
    auto_renewal_enabled = Column(Boolean, nullable=False, default=False)
    auto_renewal_method = Column(Enum(PaymentMethodEnum))
    last_renewal_attempt = Column(DateTime)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    version_id = Column(Integer, nullable=False)

    applicant = relationship("User", back_populates="membership", foreign_keys=[applicant_id])
    reviewed_by = relationship("User", foreign_keys=[reviewed_by_id])
    payments = relationship(
        "MembershipPayment",
        back_populates="membership",
        cascade="all, delete-orphan",
        order_by="MembershipPayment.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index("ix_memberships_type_status", "membership_type", "status"),
        Index("ix_memberships_expiry_status", "expiry_date", "status"),
        Index("ix_memberships_next_payment_date", "next_payment_date"),
    )

class MembershipPayment(Base):
    __tablename__ = "membership_payments"
    id = Column(Integer, primary_key=True)
    membership_id = Column(Integer, ForeignKey("memberships.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_id = Column(String(64), unique=True, nullable=False)
    amount = Column(Float, nullable=False)
    payment_date = Column(DateTime, nullable=False)
    payment_method = Column(Enum(PaymentMethodEnum), nullable=False)
    transaction_id = Column(String(128), unique=True)
    status = Column(Enum(PaymentStatusEnum), nullable=False, default=PaymentStatusEnum.pending)
    mpesa_phone_number = Column(String(16))
    mpesa_transaction_code = Column(String(64))
    period_start = Column(DateTime)
    period_end = Column(DateTime)
    notes = Column(String(1000))

    membership = relationship("Membership", back_populates="payments")

# Index suggestions for rapid search & reporting
Index("ix_membership_payments_status", MembershipPayment.status)
Index("ix_donations_status_created", Donation.payment_status, Donation.created_at)
