from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, field_validator, model_validator
from typing import Annotated, Any, List, Literal, Optional, Union
from datetime import datetime
from enum import Enum
from urllib.parse import urlparse


def _unwrap_enum(value):
    if isinstance(value, Enum):
        return value.value
    return value


def _normalize_http_url(value: Optional[str], field_name: str, max_length: int = 500) -> Optional[str]:
    raw = str(value or "").strip()
    if not raw:
        return None
    if len(raw) > max_length:
        raise ValueError(f"{field_name} must be at most {max_length} characters")
    parsed = urlparse(raw)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"{field_name} must be a valid http/https URL")
    return raw


def _normalize_tags(value) -> List[str]:
    if value is None:
        return []
    seen = []
    for tag in value:
        cleaned = str(tag or "").strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


class UserRoleEnum(str, Enum):
    PARTICIPANT = "participant"
    ORGANIZER = "organizer"
    ADMIN = "admin"


class ParticipantTypeEnum(str, Enum):
    IIIT = "IIIT"
    NON_IIIT = "Non-IIIT"


class EventTypeEnum(str, Enum):
    NORMAL = "Normal"
    MERCHANDISE = "Merchandise"


class EventStatusEnum(str, Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    ONGOING = "Ongoing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class EligibilityEnum(str, Enum):
    IIIT_ONLY = "IIIT Only"
    NON_IIIT_ONLY = "Non-IIIT Only"
    ALL = "All"


class RegistrationStatusEnum(str, Enum):
    CONFIRMED = "Confirmed"
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class FormFieldKindEnum(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    DROPDOWN = "dropdown"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    FILE = "file"


class PaymentActionEnum(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class AttendanceActionEnum(str, Enum):
    MARK = "mark"
    UNMARK = "unmark"


class ExportFormatEnum(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"


class ExportScopeEnum(str, Enum):
    ALL = "all"
    ATTENDANCE = "attendance"


class OrganizerCategoryEnum(str, Enum):
    CLUB = "Club"
    COUNCIL = "Council"
    FEST_TEAM = "Fest Team"
    DEPARTMENT = "Department"
    OTHER = "Other"


# Auth Schemas
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ParticipantAccount(BaseModel):
    role: Literal["participant"]
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    participant_type: Optional[ParticipantTypeEnum] = None
    college: Optional[str] = None
    contact_number: Optional[str] = None
    areas_of_interest: List[str] = Field(default_factory=list)


class OrganizerAccount(BaseModel):
    role: Literal["organizer"]
    id: int
    email: str
    organizer_name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    contact_email: Optional[str] = None
    contact_number: Optional[str] = None
    discord_webhook: Optional[str] = None
    is_approved: bool = True


class AdminAccount(BaseModel):
    role: Literal["admin"]
    id: int
    email: str
    admin_name: Optional[str] = None


AccountResponse = Annotated[
    Union[ParticipantAccount, OrganizerAccount, AdminAccount],
    Field(discriminator="role"),
]
account_adapter = TypeAdapter(AccountResponse)


def build_account_response(user) -> Union[ParticipantAccount, OrganizerAccount, AdminAccount]:
    payload = {
        "role": _unwrap_enum(user.role),
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "participant_type": _unwrap_enum(user.participant_type),
        "college": user.college,
        "areas_of_interest": user.areas_of_interest or [],
        "organizer_name": user.organizer_name,
        "category": _unwrap_enum(user.category),
        "description": user.description,
        "contact_email": user.contact_email,
        "contact_number": user.contact_number,
        "discord_webhook": user.discord_webhook,
        "is_approved": user.is_approved is not False,
        "admin_name": user.admin_name,
    }
    return account_adapter.validate_python(payload)


class TokenResponse(BaseModel):
    success: bool = True
    access_token: str
    token_type: str = "bearer"
    user: AccountResponse


class AccountEnvelope(BaseModel):
    success: bool = True
    message: Optional[str] = None
    user: AccountResponse


# Event Schemas
class FormField(BaseModel):
    id: Optional[str] = None
    label: str = Field(..., min_length=1, max_length=255)
    type: FormFieldKindEnum
    options: List[str] = Field(default_factory=list)
    required: bool = False
    order: int = 0

    @field_validator("label", mode="before")
    @classmethod
    def strip_label(cls, value):
        return str(value or "").strip()

    @model_validator(mode="after")
    def options_for_choice_fields(self):
        self.options = [str(option).strip() for option in self.options if str(option).strip()]
        if self.type in {FormFieldKindEnum.DROPDOWN, FormFieldKindEnum.RADIO, FormFieldKindEnum.CHECKBOX} and not self.options:
            raise ValueError(f"Field '{self.label}' needs at least one option")
        return self


class VariantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    stock: int = Field(..., ge=0)
    price: float = Field(..., ge=0)


class VariantResponse(BaseModel):
    id: int
    name: str
    stock: int
    price: float

    model_config = ConfigDict(from_attributes=True)


class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    event_type: EventTypeEnum
    registration_deadline: datetime
    start_date: datetime
    end_date: datetime
    eligibility: EligibilityEnum = EligibilityEnum.ALL
    registration_limit: Optional[int] = Field(None, ge=1)
    registration_fee: float = Field(0, ge=0)
    tags: List[str] = Field(default_factory=list)
    form_fields: List[FormField] = Field(default_factory=list)
    variants: List[VariantCreate] = Field(default_factory=list)
    purchase_limit_per_participant: int = Field(1, ge=1)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, value):
        return _normalize_tags(value)


class EventUpdate(BaseModel):
    """Fields an organizer may send to PATCH /events/{id}; anything else is rejected."""

    model_config = ConfigDict(extra="forbid")

    status: Optional[EventStatusEnum] = None
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    registration_deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    eligibility: Optional[EligibilityEnum] = None
    registration_limit: Optional[int] = Field(None, ge=1)
    registration_fee: Optional[float] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    form_fields: Optional[List[FormField]] = None
    variants: Optional[List[VariantCreate]] = None
    purchase_limit_per_participant: Optional[int] = Field(None, ge=1)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, value):
        if value is None:
            return None
        return _normalize_tags(value)


class EventSummaryResponse(BaseModel):
    id: int
    organizer_id: int
    organizer_name: Optional[str] = None
    name: str
    description: str
    event_type: EventTypeEnum
    status: EventStatusEnum
    registration_deadline: datetime
    start_date: datetime
    end_date: datetime
    eligibility: EligibilityEnum
    registration_limit: Optional[int] = None
    registration_fee: float = 0
    tags: List[str] = Field(default_factory=list)
    registration_count: int = 0
    recent_registrations: int = 0
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def pull_organizer_name(cls, data):
        if isinstance(data, dict):
            return data
        organizer = getattr(data, "organizer", None)
        values = {name: getattr(data, name, None) for name in cls.model_fields if name != "organizer_name"}
        values["organizer_name"] = getattr(organizer, "organizer_name", None) if organizer else None
        return values

    @field_validator("event_type", "status", "eligibility", mode="before")
    @classmethod
    def unwrap_enum(cls, value):
        return _unwrap_enum(value)

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, value):
        return value or []


class EventResponse(EventSummaryResponse):
    form_fields: List[FormField] = Field(default_factory=list)
    form_locked: bool = False
    variants: List[VariantResponse] = Field(default_factory=list)
    purchase_limit_per_participant: int = 1
    revenue: float = 0
    updated_at: Optional[datetime] = None

    @field_validator("form_fields", mode="before")
    @classmethod
    def default_form_fields(cls, value):
        return value or []


class EventEnvelope(BaseModel):
    success: bool = True
    message: Optional[str] = None
    event: EventResponse


class EventListEnvelope(BaseModel):
    success: bool = True
    count: int
    events: List[EventSummaryResponse]


class OrganizerEventListEnvelope(BaseModel):
    success: bool = True
    count: int
    events: List[EventResponse]


class DashboardAnalytics(BaseModel):
    total_revenue: float = 0
    total_registrations: int = 0
    completed_events_count: int = 0


class DashboardEnvelope(BaseModel):
    success: bool = True
    events: List[EventResponse]
    analytics: DashboardAnalytics


# Registration Schemas
class FormResponseIn(BaseModel):
    field_id: str
    label: Optional[str] = None
    response: Any = None


class RegisterRequest(BaseModel):
    form_responses: List[FormResponseIn] = Field(default_factory=list)


class PurchaseRequest(BaseModel):
    variant_id: int
    quantity: int = Field(1, ge=1)


class PaymentProofUpdate(BaseModel):
    payment_proof_url: str

    @field_validator("payment_proof_url", mode="before")
    @classmethod
    def validate_proof_url(cls, value):
        normalized = _normalize_http_url(value, "payment_proof_url")
        if not normalized:
            raise ValueError("payment_proof_url is required")
        return normalized


class PaymentDecisionRequest(BaseModel):
    action: PaymentActionEnum
    note: Optional[str] = None


class AttendanceMarkRequest(BaseModel):
    note: Optional[str] = None


class ManualAttendanceRequest(BaseModel):
    action: AttendanceActionEnum
    note: Optional[str] = None


class PresignRequest(BaseModel):
    filename: str = Field(..., min_length=1)
    content_type: str = Field(..., min_length=1)


class PresignResponse(BaseModel):
    success: bool = True
    upload_url: str
    public_url: str
    key: str
    content_type: str


class AttendanceLogResponse(BaseModel):
    id: int
    action: AttendanceActionEnum
    note: str
    actor_id: Optional[int] = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("action", mode="before")
    @classmethod
    def unwrap_enum(cls, value):
        return _unwrap_enum(value)


class RegistrationResponse(BaseModel):
    id: int
    event_id: int
    participant_id: int
    status: RegistrationStatusEnum
    form_responses: List[FormResponseIn] = Field(default_factory=list)
    variant_id: Optional[int] = None
    quantity: int = 1
    payment_proof_url: Optional[str] = None
    payment_note: Optional[str] = None
    amount_paid: float = 0
    ticket_id: Optional[str] = None
    qr_code_url: Optional[str] = None
    attended: bool = False
    attended_at: Optional[datetime] = None
    attendance_note: Optional[str] = None
    attendance_log: List[AttendanceLogResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("status", mode="before")
    @classmethod
    def unwrap_enum(cls, value):
        return _unwrap_enum(value)

    @field_validator("form_responses", mode="before")
    @classmethod
    def default_form_responses(cls, value):
        return value or []


class ParticipantSummary(BaseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: str
    contact_number: Optional[str] = None
    participant_type: Optional[ParticipantTypeEnum] = None
    college: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("participant_type", mode="before")
    @classmethod
    def unwrap_enum(cls, value):
        return _unwrap_enum(value)


class RegistrantResponse(RegistrationResponse):
    participant: Optional[ParticipantSummary] = None


class MyRegistrationResponse(RegistrationResponse):
    event: Optional[EventSummaryResponse] = None


class RegistrationEnvelope(BaseModel):
    success: bool = True
    message: Optional[str] = None
    registration: RegistrationResponse


class RegistrantListEnvelope(BaseModel):
    success: bool = True
    count: int
    registrations: List[RegistrantResponse]


class MyRegistrationListEnvelope(BaseModel):
    success: bool = True
    count: int
    registrations: List[MyRegistrationResponse]


class FollowEnvelope(BaseModel):
    success: bool = True
    message: str
    followed_organizer_ids: List[int] = Field(default_factory=list)


# Profile Schemas
class OrganizerProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    organizer_name: Optional[str] = Field(None, min_length=1, max_length=255)
    category: Optional[OrganizerCategoryEnum] = None
    description: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_number: Optional[str] = Field(None, max_length=20)
    discord_webhook: Optional[str] = None

    @field_validator("discord_webhook", mode="before")
    @classmethod
    def normalize_webhook(cls, value):
        # blank clears the webhook
        return _normalize_http_url(value, "discord_webhook")


class ParticipantProfileUpdate(BaseModel):
    """Participant-editable fields; email and participant type are fixed at signup."""

    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    contact_number: Optional[str] = Field(None, max_length=20)
    college: Optional[str] = Field(None, max_length=255)
    areas_of_interest: Optional[List[str]] = None

    @field_validator("areas_of_interest", mode="before")
    @classmethod
    def normalize_interests(cls, value):
        if value is None:
            return None
        return _normalize_tags(value)


class OnboardingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    areas_of_interest: List[str] = Field(default_factory=list)
    followed_organizer_ids: List[int] = Field(default_factory=list)

    @field_validator("areas_of_interest", mode="before")
    @classmethod
    def normalize_interests(cls, value):
        return _normalize_tags(value)


class ParticipantProfileEnvelope(BaseModel):
    success: bool = True
    message: Optional[str] = None
    user: AccountResponse
    followed_organizer_ids: List[int] = Field(default_factory=list)


class OrganizerPublic(BaseModel):
    id: int
    organizer_name: Optional[str] = None
    category: Optional[OrganizerCategoryEnum] = None
    description: Optional[str] = None
    contact_email: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("category", mode="before")
    @classmethod
    def unwrap_category(cls, value):
        return _unwrap_enum(value)


class OrganizerListEnvelope(BaseModel):
    success: bool = True
    count: int
    organizers: List[OrganizerPublic]


class OrganizerDetailEnvelope(BaseModel):
    success: bool = True
    organizer: OrganizerPublic
    upcoming_events: List[EventSummaryResponse] = Field(default_factory=list)
    past_events: List[EventSummaryResponse] = Field(default_factory=list)
