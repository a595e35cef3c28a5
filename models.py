import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from database import Base


def utc_now():
    """Get current UTC datetime with timezone awareness."""
    return datetime.now(timezone.utc)


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    HANDED_OVER = "handed_over"
    IN_USE = "in_use"
    OVERDUE = "overdue"
    RETURNED = "returned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    PARTIAL = "partial"
    FAILED = "failed"


class FuelLevel(str, enum.Enum):
    EMPTY = "empty"
    QUARTER = "quarter"
    HALF = "half"
    THREE_QUARTER = "three_quarter"
    FULL = "full"


class VehicleCategory(str, enum.Enum):
    HATCHBACK = "Hatchback"
    SEDAN = "Sedan"
    SUV = "SUV"
    MUV = "MUV"
    LUXURY = "Luxury"


class Transmission(str, enum.Enum):
    MANUAL = "Manual"
    AUTOMATIC = "Automatic"


def _enum_column(enum_cls, **kwargs):
    # Stored as plain strings; unknown values raise on load
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            validate_strings=True,
            values_callable=lambda members: [m.value for m in members],
            length=20,
        ),
        **kwargs,
    )


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    category = _enum_column(VehicleCategory, nullable=False)
    capacity = Column(Integer, nullable=False)
    transmission = _enum_column(Transmission, nullable=False)
    daily_rate = Column(Float, nullable=False)

    # Physical units of this type
    quantity = Column(Integer, nullable=False, default=1)

    # Manual kill-switch, not used for date availability
    is_available = Column(Boolean, default=True)

    rc_number = Column(String, nullable=True)
    late_fee_per_hour = Column(Float, nullable=True)
    extra_km_rate = Column(Float, nullable=True)
    features = Column(Text, nullable=True)
    image = Column(String, nullable=True)

    # Bumped at the start of every reservation write
    lock_version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    bookings = relationship("Booking", back_populates="vehicle")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="check_vehicle_quantity_positive"),
    )


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(String, unique=True, index=True)

    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    vehicle_name = Column(String)

    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=False)
    customer_phone = Column(String, nullable=False)
    driving_license = Column(String, nullable=True)

    pickup_date = Column(Date, nullable=False, index=True)
    dropoff_date = Column(Date, nullable=False, index=True)
    pickup_time = Column(String, default="09:00")
    dropoff_time = Column(String, default="18:00")
    total_days = Column(Integer)

    status = _enum_column(BookingStatus, nullable=False, default=BookingStatus.PENDING, index=True)

    # Pricing
    rental_amount = Column(Float, default=0.0)
    booking_fee = Column(Float, default=0.0)
    tax_amount = Column(Float, default=0.0)
    total_amount = Column(Float, default=0.0)
    amount_paid = Column(Float, default=0.0)
    balance_due = Column(Float, default=0.0)

    # Payment
    payment_status = _enum_column(PaymentStatus, nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(String, default="online")
    payment_order_id = Column(String, nullable=True)
    payment_reference = Column(String, nullable=True)
    payment_signature = Column(String, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Handover snapshot
    handover_odometer = Column(Integer, nullable=True)
    handover_fuel_level = _enum_column(FuelLevel, nullable=True)
    handover_condition_notes = Column(Text, nullable=True)
    handed_over_by = Column(String, nullable=True)
    customer_signature = Column(String, nullable=True)
    handed_over_at = Column(DateTime(timezone=True), nullable=True)

    # Return snapshot
    return_odometer = Column(Integer, nullable=True)
    return_fuel_level = _enum_column(FuelLevel, nullable=True)
    return_condition_notes = Column(Text, nullable=True)
    return_notes = Column(Text, nullable=True)
    returned_by = Column(String, nullable=True)
    returned_at = Column(DateTime(timezone=True), nullable=True)
    surcharge_total = Column(Float, default=0.0)

    # Cancellation
    cancellation_reason = Column(Text, nullable=True)
    refund_amount = Column(Float, default=0.0)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String, nullable=True)

    # Completion
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(String, nullable=True)
    final_notes = Column(Text, nullable=True)

    # Notification tracking
    notifications_status = _enum_column(
        NotificationStatus, nullable=False, default=NotificationStatus.PENDING
    )
    notifications_sent_at = Column(DateTime(timezone=True), nullable=True)

    manual_booking = Column(Boolean, default=False)
    created_by = Column(String, default="customer")
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    vehicle = relationship("Vehicle", back_populates="bookings")
    status_history = relationship(
        "StatusHistory",
        back_populates="booking",
        order_by="StatusHistory.id",
        cascade="all, delete-orphan",
    )
    charges = relationship(
        "ReturnCharge",
        back_populates="booking",
        order_by="ReturnCharge.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("pickup_date < dropoff_date", name="check_booking_date_order"),
    )


class StatusHistory(Base):
    __tablename__ = "booking_status_history"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    status = _enum_column(BookingStatus, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    actor = Column(String, nullable=False, default="system")
    note = Column(Text, nullable=True)
    additional_charges = Column(Float, nullable=True)

    booking = relationship("Booking", back_populates="status_history")


class ReturnCharge(Base):
    __tablename__ = "booking_return_charges"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    description = Column(String)
    amount = Column(Float, nullable=False)

    booking = relationship("Booking", back_populates="charges")


class Admin(Base):
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True)
    password = Column(String)
    is_active = Column(Boolean, default=True)
    last_login = Column(DateTime(timezone=True), nullable=True)


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True)
    invoice_no = Column(String, unique=True)
    base_amount = Column(Float)
    fee_amount = Column(Float)
    tax_amount = Column(Float)
    surcharge_amount = Column(Float)
    total_amount = Column(Float)
    amount_paid = Column(Float)
    balance_due = Column(Float)
    pdf_path = Column(String)

    status = Column(String, default="NOT_GENERATED")
    created_at = Column(DateTime(timezone=True), default=utc_now)
