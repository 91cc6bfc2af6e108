"""
Pydantic schemas for the core entities (User admin, Event, Donation, GalleryImage,
Membership, MembershipPayment) for FastAPI endpoints, validation, and OpenAPI contract.

Each entity: Create, Update, and Output as needed. Output schemas read straight
from ORM objects (from_attributes).
"""

from typing import Annotated, Any, Dict, List, Literal, Optional
from datetime import date, datetime, timezone
from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, constr, model_validator

from foundation_api.models import (
    DonationMethodEnum,
    DonationStatusEnum,
    DonationTypeEnum,
    EventCategoryEnum,
    EventStatusEnum,
    EventTypeEnum,
    MembershipStatusEnum,
    MembershipTypeEnum,
    PaymentMethodEnum,
    PaymentPlanEnum,
    PaymentStatusEnum,
    ProgressStatusEnum,
    RoleEnum,
)
from foundation_api.openapi_schemas import UserBrief, UserOut
from foundation_api.pagination import Pagination

MPESA_PHONE_PATTERN = r"^254\d{9}$"


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

# Stored DateTime columns are naive UTC
UTCDateTime = Annotated[datetime, AfterValidator(_naive_utc)]

# --- USERS ---

class UserUpdate(BaseModel):
    first_name: Optional[constr(strip_whitespace=True, min_length=2, max_length=50)] = None
    last_name: Optional[constr(strip_whitespace=True, min_length=2, max_length=50)] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None

class BulkRoleUpdate(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)
    role: RoleEnum

class BulkRoleUpdateOut(BaseModel):
    message: str
    modified_count: int

# PUBLIC_INTERFACE
class UserListOut(BaseModel):
    users: List[UserOut]
    pagination: Pagination

class UserStatusOut(BaseModel):
    message: str
    user: UserOut

class UserStatsOut(BaseModel):
    total_users: int
    active_users: int
    inactive_users: int
    users_by_role: Dict[str, int]
    users_by_month: Dict[int, int]
    recent_users: List[UserOut]

# --- EVENTS ---

class EventBase(BaseModel):
    short_description: Optional[constr(max_length=300)] = None
    end_date: Optional[UTCDateTime] = None
    start_time: Optional[str] = Field(None, description="Start time in HH:MM format")
    end_time: Optional[str] = Field(None, description="End time in HH:MM format")
    address: Optional[Dict[str, Any]] = None
    image_url: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1, description="Max participants")
    is_free: bool = True
    price: Optional[float] = Field(None, ge=0)
    currency: str = "USD"
    registration_required: bool = False
    registration_deadline: Optional[UTCDateTime] = None
    status: EventStatusEnum = EventStatusEnum.draft
    tags: List[str] = Field(default_factory=list)
    is_featured: bool = False

# PUBLIC_INTERFACE
class EventCreate(EventBase):
    title: constr(strip_whitespace=True, min_length=5, max_length=100)
    description: constr(strip_whitespace=True, min_length=20, max_length=2000)
    date: UTCDateTime
    location: constr(strip_whitespace=True, min_length=1)
    event_type: EventTypeEnum
    category: EventCategoryEnum

class EventUpdate(BaseModel):
    title: Optional[constr(strip_whitespace=True, min_length=5, max_length=100)] = None
    description: Optional[constr(strip_whitespace=True, min_length=20, max_length=2000)] = None
    short_description: Optional[constr(max_length=300)] = None
    date: Optional[UTCDateTime] = None
    end_date: Optional[UTCDateTime] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    location: Optional[constr(strip_whitespace=True, min_length=1)] = None
    address: Optional[Dict[str, Any]] = None
    event_type: Optional[EventTypeEnum] = None
    category: Optional[EventCategoryEnum] = None
    image_url: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1)
    is_free: Optional[bool] = None
    price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    registration_required: Optional[bool] = None
    registration_deadline: Optional[UTCDateTime] = None
    status: Optional[EventStatusEnum] = None
    tags: Optional[List[str]] = None
    is_featured: Optional[bool] = None

# PUBLIC_INTERFACE
class EventOut(EventBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    date: datetime
    location: str
    event_type: EventTypeEnum
    category: EventCategoryEnum
    views: int = 0
    registration_count: int = 0
    created_by: Optional[UserBrief] = None
    created_at: Optional[datetime] = None

class EventDetailOut(EventOut):
    attendees: List[UserBrief] = Field(default_factory=list)
    is_user_registered: bool = False

class EventListOut(BaseModel):
    events: List[EventOut]
    pagination: Pagination

class EventStatsOut(BaseModel):
    total_events: int
    published_events: int
    upcoming_events: int
    past_events: int
    events_by_type: Dict[str, int]
    events_by_category: Dict[str, int]

# --- DONATIONS ---

DonationCurrency = Literal["USD", "EUR", "GBP", "KES", "NGN", "GHS", "ZAR"]
DonationPurpose = Literal["general", "education", "health", "community", "environment", "technology", "emergency", "other"]

class DonorIn(BaseModel):
    first_name: constr(strip_whitespace=True, min_length=2, max_length=50)
    last_name: constr(strip_whitespace=True, min_length=2, max_length=50)
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    is_anonymous: bool = False

# PUBLIC_INTERFACE
class DonationCreate(BaseModel):
    donor: DonorIn
    amount: float = Field(..., ge=1)
    currency: DonationCurrency = "USD"
    payment_method: DonationMethodEnum
    donation_type: DonationTypeEnum = DonationTypeEnum.one_time
    purpose: DonationPurpose = "general"
    message: Optional[constr(max_length=500)] = None

class MpesaInitiateIn(BaseModel):
    amount: float = Field(..., ge=1)
    phone: str = Field(..., pattern=MPESA_PHONE_PATTERN, description="Phone number in the form 254XXXXXXXXX")
    email: EmailStr
    account_reference: str = "Donation"
    transaction_desc: str = "Kamune Elites Donation"

class DonationStatusUpdate(BaseModel):
    payment_status: DonationStatusEnum
    notes: Optional[constr(max_length=1000)] = None
    transaction_id: Optional[str] = None

# PUBLIC_INTERFACE
class DonationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    donor_first_name: str
    donor_last_name: str
    donor_email: str
    donor_phone: Optional[str] = None
    donor_address: Optional[Dict[str, Any]] = None
    donor_full_name: str
    is_anonymous: bool = False
    amount: float
    currency: str
    payment_method: DonationMethodEnum
    payment_status: DonationStatusEnum
    transaction_id: Optional[str] = None
    receipt_number: Optional[str] = None
    donation_type: DonationTypeEnum
    purpose: str
    message: Optional[str] = None
    notes: Optional[str] = None
    tax_receipt_sent: bool = False
    tax_receipt_date: Optional[datetime] = None
    processed_by: Optional[UserBrief] = None
    is_verified: bool = False
    verification_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

class DonationResult(BaseModel):
    donation: DonationOut
    message: str
    next_steps: Optional[str] = None

class DonationPagination(Pagination):
    total_amount: float = 0

class DonationListOut(BaseModel):
    donations: List[DonationOut]
    pagination: DonationPagination

class MonthlyDonationStat(BaseModel):
    month: int
    count: int
    amount: float

class PurposeDonationStat(BaseModel):
    purpose: str
    count: int
    amount: float

class DonationStatsOut(BaseModel):
    total_donations: int
    total_amount: float
    monthly_stats: List[MonthlyDonationStat]
    purpose_stats: List[PurposeDonationStat]

class ReceiptOut(BaseModel):
    receipt_number: Optional[str] = None
    date: Optional[datetime] = None
    donor: Dict[str, Any]
    amount: str
    purpose: str
    payment_method: DonationMethodEnum
    transaction_id: Optional[str] = None
    foundation: Dict[str, str]

# --- GALLERY ---

class GalleryImageCreate(BaseModel):
    url: constr(strip_whitespace=True, min_length=1, max_length=512)
    title: constr(strip_whitespace=True, min_length=1, max_length=128)
    description: Optional[constr(max_length=1000)] = None

class GalleryImageUpdate(BaseModel):
    title: Optional[constr(strip_whitespace=True, min_length=1, max_length=128)] = None
    description: Optional[constr(max_length=1000)] = None

# PUBLIC_INTERFACE
class GalleryImageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    title: str
    description: Optional[str] = None
    uploaded_by_id: Optional[int] = None
    created_at: Optional[datetime] = None

# --- MEMBERSHIP ---

class Education(BaseModel):
    highest_degree: constr(strip_whitespace=True, min_length=1)
    institution: constr(strip_whitespace=True, min_length=1)
    graduation_year: Optional[int] = Field(None, ge=1950)

    @model_validator(mode="after")
    def graduation_not_in_future(self):
        if self.graduation_year and self.graduation_year > date.today().year:
            raise ValueError("Please provide a valid graduation year")
        return self

class PersonalInfo(BaseModel):
    date_of_birth: Optional[date] = None
    nationality: constr(strip_whitespace=True, min_length=1)
    occupation: constr(strip_whitespace=True, min_length=1)
    employer: constr(strip_whitespace=True, min_length=1)
    education: Education
    skills: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)

class EmergencyContact(BaseModel):
    name: Optional[str] = None
    relationship: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None

class ContactInfo(BaseModel):
    phone: Optional[str] = None
    address: Optional[Dict[str, str]] = None
    emergency_contact: Optional[EmergencyContact] = None

class Reference(BaseModel):
    name: constr(strip_whitespace=True, min_length=1)
    title: constr(strip_whitespace=True, min_length=1)
    organization: constr(strip_whitespace=True, min_length=1)
    email: EmailStr
    phone: constr(strip_whitespace=True, min_length=1)
    relationship: Optional[str] = None

Availability = Literal["weekdays", "weekends", "evenings", "flexible", "limited"]

# PUBLIC_INTERFACE
class MembershipApply(BaseModel):
    membership_type: MembershipTypeEnum
    payment_plan: PaymentPlanEnum
    personal_info: PersonalInfo
    contact_info: Optional[ContactInfo] = None
    references: List[Reference] = Field(..., min_length=2, max_length=3)
    motivation: constr(strip_whitespace=True, min_length=100, max_length=1000)
    goals: Optional[constr(strip_whitespace=True, max_length=500)] = None
    experience: Optional[constr(strip_whitespace=True, max_length=1000)] = None
    contributions: Optional[constr(strip_whitespace=True, max_length=500)] = None
    committee: Optional[str] = None
    volunteer_interests: List[str] = Field(default_factory=list)
    availability: Optional[Availability] = None
    documents: List[Dict[str, Any]] = Field(default_factory=list)

class MembershipUpdate(BaseModel):
    personal_info: Optional[PersonalInfo] = None
    contact_info: Optional[ContactInfo] = None
    references: Optional[List[Reference]] = Field(None, min_length=2, max_length=3)
    motivation: Optional[constr(strip_whitespace=True, min_length=100, max_length=1000)] = None
    goals: Optional[constr(max_length=500)] = None
    experience: Optional[constr(max_length=1000)] = None
    contributions: Optional[constr(max_length=500)] = None
    volunteer_interests: Optional[List[str]] = None
    availability: Optional[Availability] = None
    committee: Optional[str] = None
    notes: Optional[constr(max_length=1000)] = None

class NotesIn(BaseModel):
    notes: Optional[constr(max_length=1000)] = None

class MembershipPaymentIn(BaseModel):
    payment_method: PaymentMethodEnum
    amount: float = Field(..., ge=1)
    phone_number: Optional[str] = Field(None, pattern=MPESA_PHONE_PATTERN)
    transaction_id: Optional[str] = None
    notes: Optional[constr(max_length=1000)] = None

    @model_validator(mode="after")
    def phone_required_for_mpesa(self):
        if self.payment_method == PaymentMethodEnum.mpesa and not self.phone_number:
            raise ValueError("Phone number is required for M-PESA payments")
        return self

# PUBLIC_INTERFACE
class MembershipPaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payment_id: str
    amount: float
    payment_date: datetime
    payment_method: PaymentMethodEnum
    transaction_id: Optional[str] = None
    status: PaymentStatusEnum
    mpesa_phone_number: Optional[str] = None
    mpesa_transaction_code: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    notes: Optional[str] = None

# PUBLIC_INTERFACE
class MembershipOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    applicant_id: int
    applicant: Optional[UserBrief] = None
    membership_type: MembershipTypeEnum
    payment_plan: PaymentPlanEnum
    status: MembershipStatusEnum
    membership_number: Optional[str] = None
    application_date: datetime
    approval_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    personal_info: Optional[Dict[str, Any]] = None
    contact_info: Optional[Dict[str, Any]] = None
    references: List[Dict[str, Any]] = Field(default_factory=list)
    motivation: str
    goals: Optional[str] = None
    experience: Optional[str] = None
    contributions: Optional[str] = None
    documents: Optional[List[Dict[str, Any]]] = None
    committee: Optional[str] = None
    volunteer_interests: Optional[List[str]] = None
    availability: Optional[str] = None
    fee_monthly_amount: float
    fee_annual_amount: float
    fee_currency: str
    fee_selected_plan: PaymentPlanEnum
    fee_selected_amount: float
    total_paid: float
    last_payment_date: Optional[datetime] = None
    next_payment_date: Optional[datetime] = None
    payment_status: ProgressStatusEnum
    overdue_amount: float
    consecutive_payments: int
    notes: Optional[str] = None
    reviewed_by: Optional[UserBrief] = None
    review_notes: Optional[str] = None
    last_renewal_date: Optional[datetime] = None
    renewal_reminder_sent: bool = False
    auto_renewal_enabled: bool = False
    payments: List[MembershipPaymentOut] = Field(default_factory=list)
    version_id: int

class MembershipResult(BaseModel):
    membership: MembershipOut
    message: str

class MembershipListOut(BaseModel):
    memberships: List[MembershipOut]
    pagination: Pagination

class MembershipStatsOut(BaseModel):
    total_members: int
    pending_applications: int
    suspended_members: int
    expired_members: int
    overdue_payments: int
    total_revenue: float

class PlanFeesOut(BaseModel):
    annual: float
    monthly: float

class FeeSnapshotOut(BaseModel):
    monthly_amount: float
    annual_amount: float
    currency: str
    selected_plan: PaymentPlanEnum
    selected_amount: float

class PaymentProgressOut(BaseModel):
    total_paid: float
    last_payment_date: Optional[datetime] = None
    next_payment_date: Optional[datetime] = None
    payment_status: ProgressStatusEnum
    overdue_amount: float
    consecutive_payments: int

class PaymentHistoryOut(BaseModel):
    payments: List[MembershipPaymentOut]
    payment_progress: PaymentProgressOut
    fees: FeeSnapshotOut

class MembershipPaymentResult(BaseModel):
    message: str
    payment: MembershipPaymentOut
    membership: MembershipOut
    mpesa_response: Optional[Dict[str, Any]] = None
