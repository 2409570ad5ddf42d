from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Enum as SQLEnum, ForeignKey, Text, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base
import enum


class UserRole(enum.Enum):
    PARTICIPANT = "participant"
    ORGANIZER = "organizer"
    ADMIN = "admin"


class ParticipantType(enum.Enum):
    IIIT = "IIIT"
    NON_IIIT = "Non-IIIT"


class OrganizerCategory(enum.Enum):
    CLUB = "Club"
    COUNCIL = "Council"
    FEST_TEAM = "Fest Team"
    DEPARTMENT = "Department"
    OTHER = "Other"


class EventType(enum.Enum):
    NORMAL = "Normal"
    MERCHANDISE = "Merchandise"


class EventStatus(enum.Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    ONGOING = "Ongoing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Eligibility(enum.Enum):
    IIIT_ONLY = "IIIT Only"
    NON_IIIT_ONLY = "Non-IIIT Only"
    ALL = "All"


class RegistrationStatus(enum.Enum):
    CONFIRMED = "Confirmed"
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class AttendanceAction(enum.Enum):
    MARK = "mark"
    UNMARK = "unmark"


class User(Base):
    """Single account table; ``role`` selects which of the role columns apply."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, index=True)

    # participant
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    participant_type = Column(SQLEnum(ParticipantType), nullable=True)
    college = Column(String(255), nullable=True)
    areas_of_interest = Column(JSON, nullable=True)  # ["music", "coding"]

    # organizer
    organizer_name = Column(String(255), nullable=True)
    category = Column(SQLEnum(OrganizerCategory), nullable=True)
    description = Column(Text, nullable=True)
    contact_email = Column(String(255), nullable=True)
    discord_webhook = Column(String(500), nullable=True)
    is_approved = Column(Boolean, default=True)

    # admin
    admin_name = Column(String(255), nullable=True)

    contact_number = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class OrganizerFollow(Base):
    __tablename__ = "organizer_follows"
    __table_args__ = (UniqueConstraint("participant_id", "organizer_id", name="uq_organizer_follow"),)

    id = Column(Integer, primary_key=True, index=True)
    participant_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    event_type = Column(SQLEnum(EventType), nullable=False)
    status = Column(SQLEnum(EventStatus), default=EventStatus.DRAFT, nullable=False, index=True)

    registration_deadline = Column(DateTime(timezone=True), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)

    eligibility = Column(SQLEnum(Eligibility), default=Eligibility.ALL, nullable=False)
    registration_limit = Column(Integer, nullable=True)  # NULL = unlimited
    registration_fee = Column(Float, default=0, nullable=False)
    tags = Column(JSON, nullable=True)  # ["music", "workshop"]

    # Normal events: [{"id", "label", "type", "options", "required", "order"}, ...]
    form_fields = Column(JSON, nullable=True)
    form_locked = Column(Boolean, default=False, nullable=False)

    purchase_limit_per_participant = Column(Integer, default=1, nullable=False)

    registration_count = Column(Integer, default=0, nullable=False)
    revenue = Column(Float, default=0, nullable=False)
    recent_registrations = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    organizer = relationship("User")
    variants = relationship(
        "EventVariant",
        back_populates="event",
        order_by="EventVariant.id",
        cascade="all, delete-orphan",
    )


class EventVariant(Base):
    __tablename__ = "event_variants"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(120), nullable=False)  # "M / Black"
    stock = Column(Integer, default=0, nullable=False)
    price = Column(Float, default=0, nullable=False)

    event = relationship("Event", back_populates="variants")


class Registration(Base):
    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    participant_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(SQLEnum(RegistrationStatus), default=RegistrationStatus.CONFIRMED, nullable=False)

    form_responses = Column(JSON, nullable=True)  # [{"field_id", "label", "response"}, ...]
    variant_id = Column(Integer, ForeignKey("event_variants.id"), nullable=True)
    quantity = Column(Integer, default=1, nullable=False)

    payment_proof_url = Column(String(500), nullable=True)
    payment_note = Column(Text, nullable=True)
    amount_paid = Column(Float, default=0, nullable=False)

    ticket_id = Column(String(20), unique=True, nullable=True)
    qr_code_url = Column(Text, nullable=True)

    attended = Column(Boolean, default=False, nullable=False)
    attended_at = Column(DateTime(timezone=True), nullable=True)
    attendance_note = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    event = relationship("Event")
    participant = relationship("User")
    variant = relationship("EventVariant")
    attendance_log = relationship(
        "AttendanceLog",
        back_populates="registration",
        order_by="AttendanceLog.id",
        cascade="all, delete-orphan",
    )


class AttendanceLog(Base):
    """Append-only record of manual attendance overrides."""

    __tablename__ = "attendance_logs"

    id = Column(Integer, primary_key=True, index=True)
    registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=False, index=True)
    action = Column(SQLEnum(AttendanceAction), nullable=False)
    note = Column(Text, nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    registration = relationship("Registration", back_populates="attendance_log")
