"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from shared.models.models import (
    BookingStatus,
    ContentType,
    DiscountType,
    DriverAvailability,
    FeedbackStatus,
    FeedbackType,
    HotpointCategory,
    NotificationType,
    PaymentMethod,
    PromoApplicability,
    RecordStatus,
    ScheduleType,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    TripStatus,
    UserRole,
    UserStatus,
    VehicleStatus,
    VehicleType,
)

T = TypeVar("T")

HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


def _in_utc(value: Optional[datetime]) -> Optional[datetime]:
    # naive values pass through for the endpoint to reject
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class DataResponse(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class ListResponse(BaseModel, Generic[T]):
    success: bool = True
    count: int
    total: int
    total_pages: int = Field(serialization_alias="totalPages")
    current_page: int = Field(serialization_alias="currentPage")
    data: List[T]


class MessageResponse(BaseSchema):
    success: bool = True
    message: str


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{7,14}$")


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str


class RefreshRequest(BaseSchema):
    refresh_token: str


class ForgotPasswordRequest(BaseSchema):
    email: EmailStr


class ResetPasswordRequest(BaseSchema):
    token: str
    password: str = Field(..., min_length=8, max_length=128)


class ChangePasswordRequest(BaseSchema):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    name: str
    email: str  # deactivated accounts carry an anonymized address
    phone: Optional[str]
    role: str
    status: str
    avatar_url: Optional[str]
    last_login_at: Optional[datetime]
    created_at: datetime


class UserUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{7,14}$")
    avatar_url: Optional[str] = None


class AdminUserUpdateRequest(UserUpdateRequest):
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None


class TokenResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserResponse


# ── Driver ────────────────────────────────────────────────────

class DriverCreateRequest(BaseSchema):
    user_id: Optional[uuid.UUID] = None  # admin only; defaults to the caller
    license_number: str = Field(..., min_length=4, max_length=50)
    license_expiry: Optional[datetime] = None
    license_class: Optional[str] = Field(None, max_length=20)
    years_of_experience: int = Field(0, ge=0, le=70)


class DriverUpdateRequest(BaseSchema):
    license_number: Optional[str] = Field(None, min_length=4, max_length=50)
    license_expiry: Optional[datetime] = None
    license_class: Optional[str] = Field(None, max_length=20)
    years_of_experience: Optional[int] = Field(None, ge=0, le=70)


class DriverStatusRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class DriverAvailabilityRequest(BaseSchema):
    availability: DriverAvailability


class LocationUpdateRequest(BaseSchema):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class DriverResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    driver_code: str
    license_number: str
    license_expiry: Optional[datetime]
    license_class: Optional[str]
    years_of_experience: int
    vehicle_id: Optional[uuid.UUID]
    status: str
    availability: str
    status_reason: Optional[str]
    approved_at: Optional[datetime]
    latitude: Optional[float]
    longitude: Optional[float]
    location_updated_at: Optional[datetime]
    rating_avg: float
    rating_count: int
    total_trips: int
    completed_trips: int
    cancelled_trips: int
    total_earnings: float
    created_at: datetime
    distance_m: Optional[float] = None  # From nearby query


# ── Vehicle ───────────────────────────────────────────────────

class VehicleCreateRequest(BaseSchema):
    make: str = Field(..., max_length=100)
    model: str = Field(..., max_length=100)
    year: int = Field(..., ge=1980, le=2100)
    color: Optional[str] = Field(None, max_length=50)
    license_plate: str = Field(..., min_length=2, max_length=20)
    vehicle_type: VehicleType = VehicleType.SEDAN
    capacity: int = Field(4, ge=1, le=100)
    amenities: List[str] = []

    @field_validator("license_plate")
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        return v.strip().upper()


class VehicleUpdateRequest(BaseSchema):
    make: Optional[str] = Field(None, max_length=100)
    model: Optional[str] = Field(None, max_length=100)
    year: Optional[int] = Field(None, ge=1980, le=2100)
    color: Optional[str] = Field(None, max_length=50)
    vehicle_type: Optional[VehicleType] = None
    capacity: Optional[int] = Field(None, ge=1, le=100)
    amenities: Optional[List[str]] = None
    status: Optional[VehicleStatus] = None


class VehicleAssignRequest(BaseSchema):
    driver_id: uuid.UUID


class VehicleResponse(BaseSchema):
    id: uuid.UUID
    owner_id: Optional[uuid.UUID]
    current_driver_id: Optional[uuid.UUID]
    make: str
    model: str
    year: int
    color: Optional[str]
    license_plate: str
    vehicle_type: str
    capacity: int
    amenities: List[str]
    status: str
    created_at: datetime


# ── Hotpoint ──────────────────────────────────────────────────

class OperatingHours(BaseSchema):
    start: str = Field(..., pattern=HHMM)
    end: str = Field(..., pattern=HHMM)


class HotpointCreateRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, max_length=100)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    category: HotpointCategory = HotpointCategory.BOTH
    amenities: List[str] = []
    operating_hours: Optional[OperatingHours] = None


class HotpointUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = None
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    category: Optional[HotpointCategory] = None
    amenities: Optional[List[str]] = None
    operating_hours: Optional[OperatingHours] = None
    status: Optional[RecordStatus] = None


class HotpointResponse(BaseSchema):
    id: uuid.UUID
    name: str
    description: Optional[str]
    address: Optional[str]
    city: Optional[str]
    latitude: float
    longitude: float
    category: str
    amenities: List[str]
    operating_hours: Optional[Dict[str, Any]]
    status: str
    popularity_score: int
    created_at: datetime
    distance_m: Optional[float] = None  # From nearby query


class HotpointOpenResponse(BaseSchema):
    hotpoint_id: uuid.UUID
    at: datetime
    is_open: bool


# ── Route ─────────────────────────────────────────────────────

class PeakWindow(BaseSchema):
    start: str = Field(..., pattern=HHMM)
    end: str = Field(..., pattern=HHMM)
    multiplier: float = Field(..., gt=0)
    days: Optional[List[int]] = None  # 0 = Monday

    @field_validator("days")
    @classmethod
    def validate_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("days must be weekday numbers 0-6")
        return v


class RouteSchedule(BaseSchema):
    days: Optional[List[int]] = None
    departure_times: List[str] = []
    operating_hours: Optional[OperatingHours] = None

    @field_validator("departure_times")
    @classmethod
    def validate_times(cls, v: List[str]) -> List[str]:
        for t in v:
            if not re.match(HHMM, t):
                raise ValueError(f"Invalid departure time '{t}', expected HH:MM")
        return sorted(v)


class RouteCreateRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    code: Optional[str] = Field(None, max_length=40)
    description: Optional[str] = None
    origin_id: uuid.UUID
    destination_id: uuid.UUID
    waypoint_ids: List[uuid.UUID] = []
    distance_m: int = Field(..., gt=0)
    duration_s: int = Field(..., gt=0)
    base_price: float = Field(..., ge=0)
    price_per_km: float = Field(0, ge=0)
    price_per_minute: float = Field(0, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    dynamic_pricing_enabled: bool = False
    peak_hours: List[PeakWindow] = []
    demand_multiplier: float = Field(1.0, gt=0)
    schedule_type: ScheduleType = ScheduleType.ON_DEMAND
    schedule: RouteSchedule = RouteSchedule()
    seat_capacity: int = Field(4, ge=1, le=500)


class RouteUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    code: Optional[str] = Field(None, max_length=40)
    description: Optional[str] = None
    waypoint_ids: Optional[List[uuid.UUID]] = None
    distance_m: Optional[int] = Field(None, gt=0)
    duration_s: Optional[int] = Field(None, gt=0)
    base_price: Optional[float] = Field(None, ge=0)
    price_per_km: Optional[float] = Field(None, ge=0)
    price_per_minute: Optional[float] = Field(None, ge=0)
    dynamic_pricing_enabled: Optional[bool] = None
    peak_hours: Optional[List[PeakWindow]] = None
    demand_multiplier: Optional[float] = Field(None, gt=0)
    schedule_type: Optional[ScheduleType] = None
    schedule: Optional[RouteSchedule] = None
    seat_capacity: Optional[int] = Field(None, ge=1, le=500)
    status: Optional[RecordStatus] = None


class RouteResponse(BaseSchema):
    id: uuid.UUID
    name: str
    code: Optional[str]
    description: Optional[str]
    origin_id: uuid.UUID
    destination_id: uuid.UUID
    waypoint_ids: List[uuid.UUID]
    distance_m: int
    duration_s: int
    base_price: float
    price_per_km: float
    price_per_minute: float
    currency: str
    dynamic_pricing_enabled: bool
    peak_hours: List[Dict[str, Any]]
    demand_multiplier: float
    schedule_type: str
    schedule: Dict[str, Any]
    seat_capacity: int
    status: str
    created_at: datetime


class RouteAvailabilityResponse(BaseSchema):
    route_id: uuid.UUID
    requested_at: datetime
    is_available: bool
    next_departure: Optional[datetime] = None
    reason: Optional[str] = None


class PriceQuoteResponse(BaseSchema):
    route_id: uuid.UUID
    passengers: int
    departure: datetime
    base_fare: float
    peak_multiplier: float
    demand_multiplier: float
    subtotal: float
    discount: float
    total: float
    currency: str
    promo_code: Optional[str] = None


# ── Trip ──────────────────────────────────────────────────────

class TripCreateRequest(BaseSchema):
    route_id: uuid.UUID
    scheduled_departure: datetime
    total_seats: Optional[int] = Field(None, ge=1, le=500)
    driver_id: Optional[uuid.UUID] = None   # admin only
    vehicle_id: Optional[uuid.UUID] = None  # admin only
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("scheduled_departure")
    @classmethod
    def departure_in_utc(cls, v: datetime) -> datetime:
        return _in_utc(v)


class TripStatusUpdateRequest(BaseSchema):
    status: TripStatus
    note: Optional[str] = Field(None, max_length=500)


class TripCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class TripAssignRequest(BaseSchema):
    driver_id: Optional[uuid.UUID] = None
    vehicle_id: Optional[uuid.UUID] = None


class TripResponse(BaseSchema):
    id: uuid.UUID
    trip_number: str
    user_id: uuid.UUID
    route_id: uuid.UUID
    booking_id: Optional[uuid.UUID]
    driver_id: Optional[uuid.UUID]
    vehicle_id: Optional[uuid.UUID]
    scheduled_departure: datetime
    actual_departure: Optional[datetime]
    actual_arrival: Optional[datetime]
    total_seats: int
    available_seats: int
    estimated_price: float
    final_price: Optional[float]
    status: str
    status_history: List[Dict[str, Any]]
    notes: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_at: Optional[datetime]
    created_at: datetime


# ── Booking ───────────────────────────────────────────────────

class PassengerSchema(BaseSchema):
    name: str = Field(..., min_length=1, max_length=255)
    age: Optional[int] = Field(None, ge=0, le=130)
    phone: Optional[str] = Field(None, max_length=20)
    seat: Optional[str] = Field(None, max_length=10)


class PaymentDetails(BaseSchema):
    method: PaymentMethod = PaymentMethod.CARD
    token: Optional[str] = None  # gateway card/wallet token


class BookingCreateRequest(BaseSchema):
    route_id: Optional[uuid.UUID] = None
    trip_id: Optional[uuid.UUID] = None
    scheduled_at: Optional[datetime] = None
    passengers: List[PassengerSchema] = Field(..., min_length=1, max_length=50)
    pickup_hotpoint_id: Optional[uuid.UUID] = None
    dropoff_hotpoint_id: Optional[uuid.UUID] = None
    promo_code: Optional[str] = Field(None, max_length=40)
    special_requests: Optional[str] = Field(None, max_length=1000)
    payment: Optional[PaymentDetails] = None

    @field_validator("scheduled_at")
    @classmethod
    def scheduled_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _in_utc(v)


class BookingUpdateRequest(BaseSchema):
    passengers: Optional[List[PassengerSchema]] = Field(None, min_length=1, max_length=50)
    special_requests: Optional[str] = Field(None, max_length=1000)
    pickup_hotpoint_id: Optional[uuid.UUID] = None
    dropoff_hotpoint_id: Optional[uuid.UUID] = None
    status: Optional[BookingStatus] = None  # admin only
    reason: Optional[str] = Field(None, max_length=500)


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    user_id: uuid.UUID
    route_id: uuid.UUID
    trip_id: Optional[uuid.UUID]
    pickup_hotpoint_id: Optional[uuid.UUID]
    dropoff_hotpoint_id: Optional[uuid.UUID]
    passengers: List[Dict[str, Any]]
    passenger_count: int
    scheduled_at: datetime
    special_requests: Optional[str]
    base_amount: float
    discount_amount: float
    promo_code: Optional[str]
    total_amount: float
    currency: str
    payment_status: str
    payment_method: Optional[str]
    paid_at: Optional[datetime]
    status: str
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    refund_percentage: Optional[int]
    refund_amount: Optional[float]
    cancellation_fee: Optional[float]
    checked_in: bool
    checked_in_at: Optional[datetime]
    created_at: datetime


class BookingStatusLogResponse(BaseSchema):
    id: uuid.UUID
    from_status: Optional[str]
    to_status: str
    changed_by_id: Optional[uuid.UUID]
    reason: Optional[str]
    created_at: datetime


# ── Payment ───────────────────────────────────────────────────

class PaymentCreateRequest(BaseSchema):
    booking_id: uuid.UUID
    method: PaymentMethod = PaymentMethod.CARD
    token: Optional[str] = None


class RefundRequest(BaseSchema):
    amount: Optional[float] = None  # defaults to the remaining balance
    reason: Optional[str] = Field(None, max_length=500)


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    payment_number: str
    user_id: uuid.UUID
    booking_id: uuid.UUID
    trip_id: Optional[uuid.UUID]
    amount: float
    currency: str
    method: str
    status: str
    gateway: str
    transaction_id: Optional[str]
    failure_reason: Optional[str]
    paid_at: Optional[datetime]
    amount_refunded: float
    created_at: datetime


class RefundResponse(BaseSchema):
    id: uuid.UUID
    refund_number: str
    payment_id: uuid.UUID
    amount: float
    reason: Optional[str]
    status: str
    transaction_id: Optional[str]
    processed_at: Optional[datetime]
    created_at: datetime


# ── Review ────────────────────────────────────────────────────

class ReviewCreateRequest(BaseSchema):
    booking_id: uuid.UUID
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)
    punctuality_rating: Optional[int] = Field(None, ge=1, le=5)
    cleanliness_rating: Optional[int] = Field(None, ge=1, le=5)
    driving_rating: Optional[int] = Field(None, ge=1, le=5)


class ReviewUpdateRequest(BaseSchema):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)
    punctuality_rating: Optional[int] = Field(None, ge=1, le=5)
    cleanliness_rating: Optional[int] = Field(None, ge=1, le=5)
    driving_rating: Optional[int] = Field(None, ge=1, le=5)


class ReviewVisibilityRequest(BaseSchema):
    is_visible: bool


class ReviewResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    booking_id: uuid.UUID
    trip_id: Optional[uuid.UUID]
    driver_id: Optional[uuid.UUID]
    rating: int
    comment: Optional[str]
    punctuality_rating: Optional[int]
    cleanliness_rating: Optional[int]
    driving_rating: Optional[int]
    is_visible: bool
    created_at: datetime


# ── Notification ──────────────────────────────────────────────

class NotificationCreateRequest(BaseSchema):
    user_id: Optional[uuid.UUID] = None
    role: Optional[UserRole] = None  # broadcast to every active user with this role
    type: NotificationType = NotificationType.SYSTEM
    title: str = Field(..., min_length=1, max_length=255)
    body: str = Field(..., min_length=1, max_length=5000)
    data: Dict[str, Any] = {}


class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    title: str
    body: str
    data: Dict[str, Any]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


class UnreadCountResponse(BaseSchema):
    unread_count: int


# ── Support Ticket ────────────────────────────────────────────

class TicketCreateRequest(BaseSchema):
    subject: str = Field(..., min_length=3, max_length=255)
    description: str = Field(..., min_length=5, max_length=5000)
    category: TicketCategory = TicketCategory.OTHER
    priority: TicketPriority = TicketPriority.MEDIUM
    booking_id: Optional[uuid.UUID] = None


class TicketMessageCreateRequest(BaseSchema):
    body: str = Field(..., min_length=1, max_length=5000)
    is_internal: bool = False


class TicketStatusRequest(BaseSchema):
    status: TicketStatus


class TicketAssignRequest(BaseSchema):
    assigned_to_id: uuid.UUID


class TicketMessageResponse(BaseSchema):
    id: uuid.UUID
    sender_id: uuid.UUID
    body: str
    is_internal: bool
    created_at: datetime


class TicketResponse(BaseSchema):
    id: uuid.UUID
    ticket_number: str
    user_id: uuid.UUID
    booking_id: Optional[uuid.UUID]
    subject: str
    description: str
    category: str
    priority: str
    status: str
    assigned_to_id: Optional[uuid.UUID]
    resolved_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class TicketDetailResponse(TicketResponse):
    messages: List[TicketMessageResponse] = []


# ── Promo Code ────────────────────────────────────────────────

class PromoCodeCreateRequest(BaseSchema):
    code: str = Field(..., min_length=3, max_length=40)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    min_booking_amount: float = Field(0, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    max_uses_per_user: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    applicable_to: PromoApplicability = PromoApplicability.ALL_ROUTES
    route_ids: List[uuid.UUID] = []
    user_ids: List[uuid.UUID] = []

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class PromoCodeUpdateRequest(BaseSchema):
    description: Optional[str] = None
    discount_value: Optional[float] = Field(None, gt=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    min_booking_amount: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    max_uses_per_user: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None
    applicable_to: Optional[PromoApplicability] = None
    route_ids: Optional[List[uuid.UUID]] = None
    user_ids: Optional[List[uuid.UUID]] = None


class PromoCodeResponse(BaseSchema):
    id: uuid.UUID
    code: str
    description: Optional[str]
    discount_type: str
    discount_value: float
    max_discount_amount: Optional[float]
    min_booking_amount: float
    max_uses: Optional[int]
    times_used: int
    max_uses_per_user: Optional[int]
    valid_from: Optional[datetime]
    valid_until: Optional[datetime]
    is_active: bool
    applicable_to: str
    route_ids: List[uuid.UUID]
    created_at: datetime


class PromoValidateRequest(BaseSchema):
    code: str
    amount: float = Field(..., ge=0)
    route_id: Optional[uuid.UUID] = None


class PromoValidateResponse(BaseSchema):
    code: str
    discount_type: str
    discount_value: float
    discount_amount: float
    final_amount: float


# ── Content ───────────────────────────────────────────────────

class ContentCreateRequest(BaseSchema):
    slug: str = Field(..., pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$", max_length=150)
    title: str = Field(..., min_length=1, max_length=255)
    body: str
    content_type: ContentType = ContentType.PAGE
    is_published: bool = False


class ContentUpdateRequest(BaseSchema):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    body: Optional[str] = None
    content_type: Optional[ContentType] = None
    is_published: Optional[bool] = None


class ContentResponse(BaseSchema):
    id: uuid.UUID
    slug: str
    title: str
    body: str
    content_type: str
    is_published: bool
    published_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


# ── Feedback ──────────────────────────────────────────────────

class FeedbackCreateRequest(BaseSchema):
    email: Optional[EmailStr] = None
    feedback_type: FeedbackType = FeedbackType.GENERAL
    subject: str = Field(..., min_length=3, max_length=255)
    message: str = Field(..., min_length=5, max_length=5000)
    rating: Optional[int] = Field(None, ge=1, le=5)


class FeedbackUpdateRequest(BaseSchema):
    status: Optional[FeedbackStatus] = None
    admin_notes: Optional[str] = Field(None, max_length=2000)


class FeedbackResponse(BaseSchema):
    id: uuid.UUID
    user_id: Optional[uuid.UUID]
    email: Optional[str]
    feedback_type: str
    subject: str
    message: str
    rating: Optional[int]
    status: str
    admin_notes: Optional[str]
    created_at: datetime


# ── Admin ─────────────────────────────────────────────────────

class SettingUpsertRequest(BaseSchema):
    value: Any
    group: str = Field("general", max_length=50)
    description: Optional[str] = None
    is_public: bool = False


class SettingResponse(BaseSchema):
    id: uuid.UUID
    key: str
    value: Any
    group: str
    description: Optional[str]
    is_public: bool
    updated_at: datetime


class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    actor_id: Optional[uuid.UUID]
    action: str
    entity_type: str
    entity_id: Optional[str]
    changes: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    created_at: datetime


class DashboardResponse(BaseSchema):
    total_users: int
    total_drivers: int
    active_drivers: int
    pending_driver_approvals: int
    active_trips: int
    total_bookings: int
    bookings_today: int
    total_revenue: float
    revenue_today: float
    total_refunded: float
    open_tickets: int
