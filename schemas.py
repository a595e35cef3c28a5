from datetime import date, datetime
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from models import (
    BookingStatus,
    FuelLevel,
    NotificationStatus,
    PaymentStatus,
    Transmission,
    VehicleCategory,
)


def _required_text(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("must not be empty")
    return value


RequiredText = Annotated[str, AfterValidator(_required_text)]


# -------------------
# VEHICLES
# -------------------
class VehicleCreate(BaseModel):
    name: RequiredText
    category: VehicleCategory
    capacity: int = Field(..., ge=1)
    transmission: Transmission
    daily_rate: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    is_available: bool = True
    rc_number: Optional[str] = None
    late_fee_per_hour: Optional[float] = Field(None, ge=0)
    extra_km_rate: Optional[float] = Field(None, ge=0)
    features: list[str] = Field(default_factory=list)
    image: Optional[str] = None


class VehicleUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[VehicleCategory] = None
    capacity: Optional[int] = Field(None, ge=1)
    transmission: Optional[Transmission] = None
    daily_rate: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=1)
    is_available: Optional[bool] = None
    rc_number: Optional[str] = None
    late_fee_per_hour: Optional[float] = Field(None, ge=0)
    extra_km_rate: Optional[float] = Field(None, ge=0)
    features: Optional[list[str]] = None
    image: Optional[str] = None


class VehicleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: VehicleCategory
    capacity: int
    transmission: Transmission
    daily_rate: float
    quantity: int
    is_available: bool
    rc_number: Optional[str] = None
    late_fee_per_hour: Optional[float] = None
    extra_km_rate: Optional[float] = None
    features: list[str] = Field(default_factory=list)
    image: Optional[str] = None

    @field_validator("features", mode="before")
    @classmethod
    def split_features(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [f.strip() for f in value.split(",") if f.strip()]
        return value


class FleetAvailabilityRequest(BaseModel):
    pickup_date: date
    dropoff_date: date
    category: Optional[VehicleCategory] = None
    min_capacity: Optional[int] = Field(None, ge=1)


# -------------------
# BOOKING (FRONTEND)
# -------------------
class BookingCreate(BaseModel):
    vehicle_id: int
    customer_name: RequiredText
    customer_email: str = Field(..., pattern=r"^[\w\.\-+]+@[\w\.-]+\.\w+$")
    customer_phone: RequiredText
    driving_license: Optional[str] = None
    pickup_date: date
    dropoff_date: date
    pickup_time: Optional[str] = None
    dropoff_time: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("customer_email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("pickup_time", "dropoff_time")
    @classmethod
    def check_time(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        datetime.strptime(value, "%H:%M")
        return value


class ManualBookingCreate(BookingCreate):
    customer_email: str = ""
    total_amount: Optional[float] = Field(None, ge=0)
    payment_method: str = "cash"
    payment_status: Literal["pending", "paid"] = "pending"
    amount_paid: Optional[float] = Field(None, ge=0)

    @field_validator("customer_email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return (value or "").strip().lower()


class StatusHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: BookingStatus
    timestamp: datetime
    actor: str
    note: Optional[str] = None
    additional_charges: Optional[float] = None


class ChargeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    description: Optional[str] = None
    amount: float


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: str
    vehicle_id: int
    vehicle_name: Optional[str] = None
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: str
    pickup_date: date
    dropoff_date: date
    pickup_time: Optional[str] = None
    dropoff_time: Optional[str] = None
    total_days: Optional[int] = None
    status: BookingStatus
    payment_status: PaymentStatus
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    rental_amount: float = 0.0
    booking_fee: float = 0.0
    tax_amount: float = 0.0
    total_amount: float = 0.0
    amount_paid: float = 0.0
    balance_due: float = 0.0
    handover_odometer: Optional[int] = None
    handover_fuel_level: Optional[FuelLevel] = None
    handed_over_at: Optional[datetime] = None
    return_odometer: Optional[int] = None
    return_fuel_level: Optional[FuelLevel] = None
    returned_at: Optional[datetime] = None
    surcharge_total: float = 0.0
    charges: list[ChargeOut] = Field(default_factory=list)
    cancellation_reason: Optional[str] = None
    refund_amount: float = 0.0
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    notifications_status: NotificationStatus
    manual_booking: bool = False
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    status_history: list[StatusHistoryOut] = Field(default_factory=list)


# -------------------
# PAYMENTS
# -------------------
class PaymentVerification(BaseModel):
    booking_id: str
    order_id: str
    payment_id: str
    signature: str


class AdminPayment(BaseModel):
    payment_method: str = "cash"
    amount: Optional[float] = Field(None, gt=0)
    payment_status: Literal["paid", "failed"] = "paid"
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


# -------------------
# ADMIN AUTH
# -------------------
class AdminCreate(BaseModel):
    username: str
    password: str = Field(..., min_length=6)


class AdminLogin(BaseModel):
    username: str
    password: str


# -------------------
# BOOKING STATUS
# -------------------
class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    notes: Optional[str] = None


class HandoverRequest(BaseModel):
    odometer_reading: int = Field(0, ge=0)
    fuel_level: FuelLevel = FuelLevel.FULL
    condition_notes: Optional[str] = None
    customer_signature: Optional[str] = None


class ManualCharge(BaseModel):
    type: str = "manual"
    description: str = "Additional charge"
    amount: float = Field(..., ge=0)


class ReturnRequest(BaseModel):
    odometer_reading: int = Field(0, ge=0)
    fuel_level: FuelLevel = FuelLevel.FULL
    condition_notes: Optional[str] = None
    notes: Optional[str] = None
    additional_charges: list[ManualCharge] = Field(default_factory=list)


class CompleteRequest(BaseModel):
    final_notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    refund_amount: float = Field(0.0, ge=0)


class StartUseRequest(BaseModel):
    notes: Optional[str] = None
