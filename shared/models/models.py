"""
shared/models/models.py
All SQLAlchemy ORM models for the RideLink platform.
UUID primary keys throughout; column types stay portable between
PostgreSQL (production) and SQLite (tests).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from config.database import Base


# ── Column Types ──────────────────────────────────────────────

class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that is always stored and returned in UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(10, 2, asdecimal=False)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls):
    """Store enum values (lowercase strings) rather than member names."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    USER = "user"
    DRIVER = "driver"
    ADMIN = "admin"


class UserStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class DriverStatus(str, PyEnum):
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class DriverAvailability(str, PyEnum):
    AVAILABLE = "available"
    ON_TRIP = "on_trip"
    OFFLINE = "offline"
    UNAVAILABLE = "unavailable"
    ON_BREAK = "on_break"


class VehicleType(str, PyEnum):
    SEDAN = "sedan"
    SUV = "suv"
    VAN = "van"
    BUS = "bus"
    MINIBUS = "minibus"
    OTHER = "other"


class VehicleStatus(str, PyEnum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"
    DELETED = "deleted"


class HotpointCategory(str, PyEnum):
    PICKUP = "pickup"
    DROPOFF = "dropoff"
    BOTH = "both"
    LANDMARK = "landmark"
    STATION = "station"
    AIRPORT = "airport"


class RecordStatus(str, PyEnum):
    """Status for admin-managed records with soft delete (hotpoints, routes)."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    DELETED = "deleted"


class ScheduleType(str, PyEnum):
    ON_DEMAND = "on_demand"
    SCHEDULED = "scheduled"
    RECURRING = "recurring"


class TripStatus(str, PyEnum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    ASSIGNED = "assigned"
    EN_ROUTE = "en_route"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingStatus(str, PyEnum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class BookingPaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentMethod(str, PyEnum):
    CARD = "card"
    WALLET = "wallet"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    CANCELLED = "cancelled"


class RefundStatus(str, PyEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class NotificationType(str, PyEnum):
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    REFUND_PROCESSED = "refund_processed"
    TRIP_ASSIGNED = "trip_assigned"
    TRIP_UPDATE = "trip_update"
    TRIP_REMINDER = "trip_reminder"
    SUPPORT_UPDATE = "support_update"
    DRIVER_STATUS = "driver_status"
    SYSTEM = "system"


class TicketCategory(str, PyEnum):
    BOOKING = "booking"
    PAYMENT = "payment"
    TRIP = "trip"
    ACCOUNT = "account"
    TECHNICAL = "technical"
    OTHER = "other"


class TicketPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DiscountType(str, PyEnum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class PromoApplicability(str, PyEnum):
    ALL_ROUTES = "all_routes"
    SPECIFIC_ROUTES = "specific_routes"
    SPECIFIC_USERS = "specific_users"


class ContentType(str, PyEnum):
    PAGE = "page"
    FAQ = "faq"
    ANNOUNCEMENT = "announcement"
    POLICY = "policy"


class FeedbackType(str, PyEnum):
    BUG = "bug"
    FEATURE = "feature"
    GENERAL = "general"
    COMPLAINT = "complaint"
    PRAISE = "praise"


class FeedbackStatus(str, PyEnum):
    NEW = "new"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


# ── Mixins ────────────────────────────────────────────────────

class IdMixin:
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


# ── Identity ──────────────────────────────────────────────────

class User(IdMixin, TimestampMixin, Base):
    """Platform account. Drivers and admins are users with a different role."""
    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole), nullable=False, default=UserRole.USER)
    status: Mapped[UserStatus] = mapped_column(
        _enum(UserStatus), nullable=False, default=UserStatus.ACTIVE
    )
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Security
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lock_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    password_changed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    password_reset_token_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    password_reset_expires: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    refresh_token_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    refresh_token_expires: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_users_role", "role"),
        Index("ix_users_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_locked(self) -> bool:
        return self.lock_until is not None and self.lock_until > utcnow()

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


# ── Fleet ─────────────────────────────────────────────────────

class Driver(IdMixin, TimestampMixin, Base):
    """Driver profile. 1:1 with a User whose role is DRIVER."""
    __tablename__ = "drivers"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    driver_code: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    license_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    license_expiry: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    license_class: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    years_of_experience: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Mirrors Vehicle.current_driver_id; kept FK-free to avoid a table cycle
    vehicle_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    status: Mapped[DriverStatus] = mapped_column(
        _enum(DriverStatus), nullable=False, default=DriverStatus.PENDING_APPROVAL
    )
    availability: Mapped[DriverAvailability] = mapped_column(
        _enum(DriverAvailability), nullable=False, default=DriverAvailability.OFFLINE
    )
    status_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Denormalized performance (recalculated on review / trip completion)
    rating_avg: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_trips: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_trips: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_trips: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earnings: Mapped[float] = mapped_column(Money, default=0, nullable=False)

    __table_args__ = (
        Index("ix_drivers_status_availability", "status", "availability"),
    )


class Vehicle(IdMixin, TimestampMixin, Base):
    __tablename__ = "vehicles"

    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    current_driver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True
    )
    make: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    license_plate: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    vehicle_type: Mapped[VehicleType] = mapped_column(
        _enum(VehicleType), nullable=False, default=VehicleType.SEDAN
    )
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    amenities: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    status: Mapped[VehicleStatus] = mapped_column(
        _enum(VehicleStatus), nullable=False, default=VehicleStatus.ACTIVE
    )


# ── Network ───────────────────────────────────────────────────

class Hotpoint(IdMixin, TimestampMixin, Base):
    """Named, geocoded pickup/dropoff location."""
    __tablename__ = "hotpoints"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    category: Mapped[HotpointCategory] = mapped_column(
        _enum(HotpointCategory), nullable=False, default=HotpointCategory.BOTH
    )
    amenities: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    operating_hours: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    status: Mapped[RecordStatus] = mapped_column(
        _enum(RecordStatus), nullable=False, default=RecordStatus.ACTIVE
    )
    popularity_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_pickups: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_dropoffs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (Index("ix_hotpoints_lat_lng", "latitude", "longitude"),)


class Route(IdMixin, TimestampMixin, Base):
    """Priced origin → destination path with scheduling rules."""
    __tablename__ = "routes"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    origin_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("hotpoints.id", ondelete="RESTRICT"), nullable=False
    )
    destination_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("hotpoints.id", ondelete="RESTRICT"), nullable=False
    )
    waypoint_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    distance_m: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_s: Mapped[int] = mapped_column(Integer, nullable=False)

    # Pricing rules
    base_price: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    price_per_km: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    price_per_minute: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    dynamic_pricing_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    peak_hours: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    demand_multiplier: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)

    # Scheduling
    schedule_type: Mapped[ScheduleType] = mapped_column(
        _enum(ScheduleType), nullable=False, default=ScheduleType.ON_DEMAND
    )
    schedule: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    seat_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    status: Mapped[RecordStatus] = mapped_column(
        _enum(RecordStatus), nullable=False, default=RecordStatus.ACTIVE
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    __table_args__ = (Index("ix_routes_origin_destination", "origin_id", "destination_id"),)


# ── Rides ─────────────────────────────────────────────────────

class Trip(IdMixin, TimestampMixin, Base):
    """One scheduled/occurring instance of travel along a route."""
    __tablename__ = "trips"

    trip_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    route_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("routes.id", ondelete="RESTRICT"), nullable=False
    )
    # Set when the trip was created for a single booking
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    driver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True
    )
    vehicle_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True
    )
    scheduled_departure: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    actual_departure: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    actual_arrival: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    available_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    estimated_price: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    final_price: Mapped[Optional[float]] = mapped_column(Money, nullable=True)
    status: Mapped[TripStatus] = mapped_column(
        _enum(TripStatus), nullable=False, default=TripStatus.REQUESTED
    )
    status_history: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        Index("ix_trips_status_departure", "status", "scheduled_departure"),
        Index("ix_trips_driver_id", "driver_id"),
    )


class Booking(IdMixin, TimestampMixin, Base):
    """A user's reservation. Parent of at most one trip and one or more payments."""
    __tablename__ = "bookings"

    booking_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    route_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("routes.id", ondelete="RESTRICT"), nullable=False
    )
    trip_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("trips.id", ondelete="SET NULL"), nullable=True
    )
    pickup_hotpoint_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("hotpoints.id", ondelete="SET NULL"), nullable=True
    )
    dropoff_hotpoint_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("hotpoints.id", ondelete="SET NULL"), nullable=True
    )

    passengers: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    passenger_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Pricing
    base_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    discount_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    promo_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    total_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Payment sub-state
    payment_status: Mapped[BookingPaymentStatus] = mapped_column(
        _enum(BookingPaymentStatus), nullable=False, default=BookingPaymentStatus.PENDING
    )
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        _enum(PaymentMethod), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), nullable=False, default=BookingStatus.PENDING_PAYMENT
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Cancellation sub-state
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    refund_percentage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    refund_amount: Mapped[Optional[float]] = mapped_column(Money, nullable=True)
    cancellation_fee: Mapped[Optional[float]] = mapped_column(Money, nullable=True)

    checked_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_bookings_user_id", "user_id"),
        Index("ix_bookings_route_schedule", "route_id", "scheduled_at"),
        Index("ix_bookings_status", "status"),
    )


class BookingStatusLog(IdMixin, Base):
    """Immutable audit trail of every booking status change."""
    __tablename__ = "booking_status_logs"

    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_booking_status_logs_booking_id", "booking_id"),)


# ── Payments ──────────────────────────────────────────────────

class Payment(IdMixin, TimestampMixin, Base):
    __tablename__ = "payments"

    payment_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="RESTRICT"), nullable=False
    )
    trip_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    amount: Mapped[float] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    gateway: Mapped[str] = mapped_column(String(50), nullable=False, default="mock_gateway")
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    # Sum of succeeded refunds
    amount_refunded: Mapped[float] = mapped_column(Money, nullable=False, default=0)

    __table_args__ = (
        Index("ix_payments_booking_id", "booking_id"),
        Index("ix_payments_user_id", "user_id"),
    )

    @property
    def refundable_amount(self) -> float:
        return round(float(self.amount) - float(self.amount_refunded or 0), 2)


class PaymentRefund(IdMixin, Base):
    __tablename__ = "payment_refunds"

    refund_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[float] = mapped_column(Money, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[RefundStatus] = mapped_column(
        _enum(RefundStatus), nullable=False, default=RefundStatus.PENDING
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    processed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_payment_refunds_payment_id", "payment_id"),)


# ── Engagement ────────────────────────────────────────────────

class Review(IdMixin, TimestampMixin, Base):
    __tablename__ = "reviews"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    trip_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    driver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    punctuality_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cleanliness_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    driving_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "booking_id", name="uq_review_user_booking"),
        Index("ix_reviews_driver_id", "driver_id"),
    )


class Notification(IdMixin, Base):
    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_notifications_user_read", "user_id", "is_read"),)


class SupportTicket(IdMixin, TimestampMixin, Base):
    __tablename__ = "support_tickets"

    ticket_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[TicketCategory] = mapped_column(
        _enum(TicketCategory), nullable=False, default=TicketCategory.OTHER
    )
    priority: Mapped[TicketPriority] = mapped_column(
        _enum(TicketPriority), nullable=False, default=TicketPriority.MEDIUM
    )
    status: Mapped[TicketStatus] = mapped_column(
        _enum(TicketStatus), nullable=False, default=TicketStatus.OPEN
    )
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class SupportTicketMessage(IdMixin, Base):
    __tablename__ = "support_ticket_messages"

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("support_tickets.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class PromoCode(IdMixin, TimestampMixin, Base):
    __tablename__ = "promo_codes"

    code: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    discount_type: Mapped[DiscountType] = mapped_column(_enum(DiscountType), nullable=False)
    discount_value: Mapped[float] = mapped_column(Money, nullable=False)
    max_discount_amount: Mapped[Optional[float]] = mapped_column(Money, nullable=True)
    min_booking_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    times_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_uses_per_user: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    valid_from: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    valid_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    applicable_to: Mapped[PromoApplicability] = mapped_column(
        _enum(PromoApplicability), nullable=False, default=PromoApplicability.ALL_ROUTES
    )
    route_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    user_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)


# ── Administration ────────────────────────────────────────────

class AdminSetting(IdMixin, TimestampMixin, Base):
    __tablename__ = "admin_settings"

    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    group: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)


class AuditLog(IdMixin, Base):
    """Immutable log of every admin mutation."""
    __tablename__ = "audit_logs"

    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    changes: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        Index("ix_audit_logs_actor_id", "actor_id"),
    )


class Content(IdMixin, TimestampMixin, Base):
    __tablename__ = "contents"

    slug: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[ContentType] = mapped_column(
        _enum(ContentType), nullable=False, default=ContentType.PAGE
    )
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    author_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)


class Feedback(IdMixin, TimestampMixin, Base):
    __tablename__ = "feedback"

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    feedback_type: Mapped[FeedbackType] = mapped_column(
        _enum(FeedbackType), nullable=False, default=FeedbackType.GENERAL
    )
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[FeedbackStatus] = mapped_column(
        _enum(FeedbackStatus), nullable=False, default=FeedbackStatus.NEW
    )
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
