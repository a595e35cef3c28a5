"""
Booking orchestration: validation, availability gating, reservation
writes, payment confirmation and the admin lifecycle operations.

Every write that can move a booking into the active status set (creating
a booking, confirming one) first takes the per-vehicle reservation lock
with `reserve_vehicle`, then recounts the active overlapping bookings
inside the same transaction. Two requests racing for the last unit of a
vehicle are therefore serialised, and the second one sees the first.
"""
import logging
import os
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from availability import (
    ACTIVE_STATUSES,
    AvailabilityResult,
    DateRange,
    compute_availability,
    unavailable_dates,
    validate_range,
)
import config
from config import PRICING, SURCHARGE_RATES, PricingConfig, SurchargeRates
from exceptions import CapacityExceededError, NotFoundError, ValidationError
from generate_invoice import generate_invoice
from models import Booking, BookingStatus, Invoice, NotificationStatus, PaymentStatus, Vehicle, utc_now
from payments import verify_signature
from surcharges import Charge, SurchargeResult, VehicleSnapshot
import lifecycle

logger = logging.getLogger(__name__)


# ===============================
# LOOKUPS
# ===============================
def get_vehicle(db: Session, vehicle_id: int) -> Vehicle:
    vehicle = db.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFoundError("Vehicle", vehicle_id)
    return vehicle


def find_booking(db: Session, identifier) -> Booking:
    """Find a booking by its booking code, falling back to the numeric id."""
    identifier = str(identifier).strip()
    booking = db.execute(
        select(Booking).where(func.upper(Booking.booking_id) == identifier.upper())
    ).scalar_one_or_none()
    if booking is None and identifier.isdigit():
        booking = db.get(Booking, int(identifier))
    if booking is None:
        raise NotFoundError("Booking", identifier)
    return booking


def find_active_bookings_overlapping(db: Session, vehicle_id: int, start: date, end: date,
                                     exclude_id: Optional[int] = None) -> list[Booking]:
    query = select(Booking).where(
        Booking.vehicle_id == vehicle_id,
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.pickup_date <= end,
        Booking.dropoff_date >= start,
    )
    if exclude_id is not None:
        query = query.where(Booking.id != exclude_id)
    return list(db.execute(query).scalars())


# ===============================
# AVAILABILITY
# ===============================
def check_availability(db: Session, vehicle_id: int, start, end,
                       exclude_id: Optional[int] = None) -> AvailabilityResult:
    query = validate_range(start, end)
    vehicle = db.get(Vehicle, vehicle_id)
    result = compute_availability(
        vehicle,
        find_active_bookings_overlapping(db, vehicle_id, query.start, query.end, exclude_id)
        if vehicle else [],
        query,
        exclude_booking_id=exclude_id,
    )
    if not result.found:
        raise NotFoundError("Vehicle", vehicle_id)
    return result


def fleet_availability(db: Session, start, end, category=None,
                       min_capacity: Optional[int] = None) -> list[tuple[Vehicle, AvailabilityResult]]:
    """Availability of every bookable vehicle for one range."""
    query = validate_range(start, end)

    vehicles_query = select(Vehicle).where(Vehicle.is_available.is_(True))
    if category:
        vehicles_query = vehicles_query.where(Vehicle.category == category)
    if min_capacity:
        vehicles_query = vehicles_query.where(Vehicle.capacity >= min_capacity)
    vehicles = list(db.execute(vehicles_query.order_by(Vehicle.daily_rate)).scalars())
    if not vehicles:
        return []

    bookings = db.execute(
        select(Booking).where(
            Booking.vehicle_id.in_([v.id for v in vehicles]),
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.pickup_date <= query.end,
            Booking.dropoff_date >= query.start,
        )
    ).scalars()
    by_vehicle = defaultdict(list)
    for booking in bookings:
        by_vehicle[booking.vehicle_id].append(booking)

    return [(v, compute_availability(v, by_vehicle[v.id], query)) for v in vehicles]


def vehicle_calendar(db: Session, vehicle_id: int) -> dict:
    vehicle = get_vehicle(db, vehicle_id)
    bookings = list(db.execute(
        select(Booking)
        .where(Booking.vehicle_id == vehicle_id, Booking.status.in_(ACTIVE_STATUSES))
        .order_by(Booking.pickup_date)
    ).scalars())
    full_days, next_free = unavailable_dates(vehicle, bookings)
    return {
        "vehicleId": vehicle.id,
        "vehicleName": vehicle.name,
        "vehicleQuantity": vehicle.quantity,
        "totalBookings": len(bookings),
        "unavailableDates": [d.isoformat() for d in full_days],
        "nextAvailableDate": next_free.isoformat() if next_free else None,
    }


# ===============================
# RESERVATION LOCK
# ===============================
def reserve_vehicle(db: Session, vehicle_id: int) -> Vehicle:
    """
    Take the per-vehicle reservation lock for the current transaction.

    Bumping lock_version is a write, so it holds a row lock (PostgreSQL)
    or the database write lock (SQLite) until commit or rollback. Any
    other reservation for the same vehicle blocks here until then.
    """
    result = db.execute(
        update(Vehicle)
        .where(Vehicle.id == vehicle_id)
        .values(lock_version=Vehicle.lock_version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Vehicle", vehicle_id)
    return db.get(Vehicle, vehicle_id, populate_existing=True)


def _ensure_capacity(db: Session, vehicle: Vehicle, booking_range: DateRange,
                     exclude_id: Optional[int] = None) -> AvailabilityResult:
    result = compute_availability(
        vehicle,
        find_active_bookings_overlapping(db, vehicle.id, booking_range.start, booking_range.end, exclude_id),
        booking_range,
        exclude_booking_id=exclude_id,
    )
    if not result.is_available:
        logger.info(
            f"Vehicle {vehicle.id} full for {booking_range.start} - {booking_range.end}: "
            f"{result.max_concurrent_booked_units}/{result.total_units} booked"
        )
        raise CapacityExceededError(result.available_units, 1, result.total_units)
    return result


# ===============================
# CREATION
# ===============================
def price_booking(vehicle: Vehicle, days: int, pricing: PricingConfig = PRICING,
                  rental_amount: Optional[float] = None) -> dict:
    rental = round(vehicle.daily_rate * days if rental_amount is None else rental_amount, 2)
    fee = round(pricing.booking_fee, 2)
    tax = round((rental + fee) * pricing.tax_rate, 2)
    total = round(rental + fee + tax, 2)
    return {
        "rental_amount": rental,
        "booking_fee": fee,
        "tax_amount": tax,
        "total_amount": total,
        "amount_paid": 0.0,
        "balance_due": total,
    }


def _booking_code(booking: Booking, manual: bool) -> str:
    created = booking.created_at or utc_now()
    prefix = "MB" if manual else "BK"
    return f"{prefix}{created:%y%m}{booking.id:05d}"


def create_booking(db: Session, draft, actor: str = "customer", manual: bool = False,
                   pricing: PricingConfig = PRICING, today: Optional[date] = None) -> Booking:
    """
    Create a pending booking after checking that a unit is free.

    `draft` is a BookingCreate (or ManualBookingCreate for admin desk
    bookings). Manual bookings that arrive already paid are confirmed in
    the same transaction.
    """
    booking_range = validate_range(draft.pickup_date, draft.dropoff_date)
    today = today or utc_now().date()
    if not manual and booking_range.start < today:
        raise ValidationError("Pickup date cannot be in the past", field="pickup_date")

    try:
        vehicle = reserve_vehicle(db, draft.vehicle_id)
        if not vehicle.is_available:
            raise ValidationError("Vehicle is not available for booking", field="vehicle_id")
        _ensure_capacity(db, vehicle, booking_range)

        days = (booking_range.end - booking_range.start).days
        amounts = price_booking(vehicle, days, pricing, getattr(draft, "total_amount", None))

        booking = Booking(
            vehicle_id=vehicle.id,
            vehicle_name=vehicle.name,
            customer_name=draft.customer_name,
            customer_email=draft.customer_email,
            customer_phone=draft.customer_phone,
            driving_license=draft.driving_license,
            pickup_date=booking_range.start,
            dropoff_date=booking_range.end,
            pickup_time=draft.pickup_time or pricing.default_pickup_time,
            dropoff_time=draft.dropoff_time or pricing.default_dropoff_time,
            total_days=days,
            payment_method=getattr(draft, "payment_method", "online"),
            manual_booking=manual,
            created_by=actor,
            notes=draft.notes,
            created_at=utc_now(),
            **amounts,
        )
        lifecycle.start(booking, actor, "Manual booking created" if manual else "Booking created")
        db.add(booking)
        db.flush()
        booking.booking_id = _booking_code(booking, manual)

        if manual and getattr(draft, "payment_status", "pending") == PaymentStatus.PAID.value:
            lifecycle.confirm(
                booking,
                actor,
                f"Payment received via {booking.payment_method}",
                paid=True,
                amount_paid=draft.amount_paid,
                payment_method=booking.payment_method,
            )

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(
        f"Booking {booking.booking_id} created for {booking.customer_name}: "
        f"{booking.vehicle_name} {booking.pickup_date} - {booking.dropoff_date}, "
        f"status {booking.status.value}"
    )
    return booking


# ===============================
# CONFIRMATION / PAYMENT
# ===============================
def _confirm_reserved(db: Session, booking: Booking, actor: str, note: str,
                      order_id: Optional[str] = None, signature: Optional[str] = None,
                      **payment) -> Booking:
    """
    Move a pending booking into the active set under the vehicle lock.

    The booking enters inventory here, so capacity is re-checked with the
    booking itself excluded. Gateway order id and signature are written in
    the same commit as the status change.
    """
    lifecycle.assert_transition(booking.status, BookingStatus.CONFIRMED)
    try:
        vehicle = reserve_vehicle(db, booking.vehicle_id)
        db.refresh(booking)
        lifecycle.assert_transition(booking.status, BookingStatus.CONFIRMED)
        _ensure_capacity(
            db, vehicle, DateRange.of(booking.pickup_date, booking.dropoff_date), exclude_id=booking.id
        )
        lifecycle.confirm(booking, actor, note, **payment)
        if order_id:
            booking.payment_order_id = order_id
        if signature:
            booking.payment_signature = signature
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(booking)
    logger.info(f"Booking {booking.booking_id} confirmed by {actor}")
    return booking


def confirm_payment(db: Session, booking_ref: str, order_id: str, payment_id: str,
                    signature: str) -> tuple[Booking, bool]:
    """
    Apply a signed payment confirmation from the gateway.

    Returns the booking and whether this call confirmed it. A repeated
    confirmation for the same payment is accepted without changes.
    """
    booking = find_booking(db, booking_ref)
    verify_signature(order_id, payment_id, signature)

    if booking.status != BookingStatus.PENDING and booking.payment_reference == payment_id:
        logger.info(f"Payment {payment_id} already applied to booking {booking.booking_id}")
        return booking, False

    try:
        booking = _confirm_reserved(
            db,
            booking,
            actor="system",
            note="Payment verified and booking confirmed",
            order_id=order_id,
            signature=signature,
            payment_reference=payment_id,
            paid=True,
        )
    except CapacityExceededError:
        _hold_unapplied_payment(db, booking, order_id, payment_id, signature)
        raise
    logger.info(f"Payment verified for booking {booking.booking_id}")
    return booking, True


def _hold_unapplied_payment(db: Session, booking: Booking, order_id: str, payment_id: str,
                            signature: str):
    """Keep the gateway references of a verified payment the booking could not absorb."""
    booking.payment_order_id = order_id
    booking.payment_reference = payment_id
    booking.payment_signature = signature
    db.commit()
    logger.warning(
        f"Payment {payment_id} verified for booking {booking.booking_id} but no unit is free; "
        f"booking left pending, payment needs a refund or reassignment"
    )


def record_admin_payment(db: Session, identifier, payment, actor: str = "admin") -> tuple[Booking, bool]:
    """
    Record a desk payment (cash, card, UPI).

    A paid pending booking is confirmed; payments on bookings that are
    already confirmed reduce the balance. Returns the booking and whether
    it was confirmed by this call.
    """
    booking = find_booking(db, identifier)
    amount = payment.amount if payment.amount is not None else booking.balance_due
    if amount is not None and amount > round((booking.balance_due or 0.0) + 0.005, 2):
        raise ValidationError(
            f"Invalid payment amount. Must be between 0 and {booking.balance_due}", field="amount"
        )

    if payment.payment_status == "failed":
        # A failed top-up never downgrades money already received
        if booking.payment_status != PaymentStatus.PAID:
            booking.payment_status = PaymentStatus.FAILED
            booking.payment_method = payment.payment_method
            db.commit()
        logger.warning(f"Payment failed for booking {booking.booking_id}")
        return booking, False

    if booking.status == BookingStatus.PENDING:
        booking = _confirm_reserved(
            db,
            booking,
            actor=actor,
            note=payment.notes or f"Payment processed via {payment.payment_method}",
            payment_reference=payment.transaction_id,
            paid=True,
            amount_paid=amount,
            payment_method=payment.payment_method,
        )
        return booking, True

    if booking.status in lifecycle.TERMINAL:
        raise ValidationError(
            f"Cannot record payment for a {booking.status.value} booking", field="payment_status"
        )

    booking.amount_paid = round((booking.amount_paid or 0.0) + amount, 2)
    booking.balance_due = round((booking.total_amount or 0.0) - booking.amount_paid, 2)
    booking.payment_status = PaymentStatus.PAID
    booking.payment_method = payment.payment_method
    booking.paid_at = utc_now()
    if payment.transaction_id:
        booking.payment_reference = payment.transaction_id
    db.commit()
    logger.info(f"Payment of {amount} recorded for booking {booking.booking_id}")
    return booking, False


# ===============================
# LIFECYCLE OPERATIONS
# ===============================
def _commit(db: Session, booking: Booking, action: str) -> Booking:
    db.commit()
    db.refresh(booking)
    logger.info(f"Booking {booking.booking_id} {action}: status {booking.status.value}")
    return booking


def update_status(db: Session, identifier, target, actor: str = "admin",
                  note: Optional[str] = None, now: Optional[datetime] = None) -> Booking:
    booking = find_booking(db, identifier)
    if target == BookingStatus.CONFIRMED:
        return _confirm_reserved(db, booking, actor, note or "Booking confirmed by admin")
    lifecycle.transition(booking, target, actor, note, now=now)
    return _commit(db, booking, "status updated")


def hand_over_vehicle(db: Session, identifier, snapshot: VehicleSnapshot, actor: str = "admin",
                      customer_signature: Optional[str] = None) -> Booking:
    booking = find_booking(db, identifier)
    lifecycle.hand_over(booking, snapshot, actor, customer_signature)
    return _commit(db, booking, "handed over")


def start_rental(db: Session, identifier, actor: str = "admin", note: Optional[str] = None) -> Booking:
    booking = find_booking(db, identifier)
    lifecycle.start_use(booking, actor, note)
    return _commit(db, booking, "in use")


def return_vehicle(db: Session, identifier, snapshot: VehicleSnapshot, actor: str = "admin",
                   notes: Optional[str] = None, manual_charges: Iterable[Charge] = (),
                   now: Optional[datetime] = None,
                   rates: SurchargeRates = SURCHARGE_RATES) -> tuple[Booking, SurchargeResult]:
    booking = find_booking(db, identifier)
    vehicle = booking.vehicle
    result = lifecycle.record_return(
        booking,
        snapshot,
        now=now,
        rates=rates,
        actor=actor,
        notes=notes,
        manual_charges=manual_charges,
        extra_km_rate=vehicle.extra_km_rate if vehicle else None,
        late_fee_per_hour=vehicle.late_fee_per_hour if vehicle else None,
    )
    _commit(db, booking, f"returned with {result.total} in surcharges")
    return booking, result


def complete_booking(db: Session, identifier, actor: str = "admin",
                     final_notes: Optional[str] = None) -> Booking:
    booking = find_booking(db, identifier)
    lifecycle.complete(booking, actor, final_notes)
    return _commit(db, booking, "completed")


# ===============================
# INVOICES
# ===============================
def get_invoice(db: Session, booking: Booking) -> Optional[Invoice]:
    return db.execute(
        select(Invoice).where(Invoice.booking_id == booking.id)
    ).scalar_one_or_none()


def invoice_url(invoice: Invoice) -> str:
    return f"{config.BASE_URL}/invoices/{os.path.basename(invoice.pdf_path)}"


def issue_invoice(db: Session, booking: Booking) -> Invoice:
    """
    Render and store the invoice of a completed booking.

    Issuing twice returns the stored invoice.
    """
    if booking.status != BookingStatus.COMPLETED:
        raise ValidationError("Invoices are issued for completed bookings only", field="status")
    invoice = get_invoice(db, booking)
    if invoice:
        return invoice

    invoice_no = f"INV-{booking.booking_id}"
    pdf_path = generate_invoice({
        "invoice_no": invoice_no,
        "booking_id": booking.booking_id,
        "customer_name": booking.customer_name,
        "customer_phone": booking.customer_phone,
        "vehicle_name": booking.vehicle_name,
        "pickup_date": booking.pickup_date.isoformat(),
        "dropoff_date": booking.dropoff_date.isoformat(),
        "total_days": booking.total_days,
        "base_amount": booking.rental_amount or 0.0,
        "fee_amount": booking.booking_fee or 0.0,
        "tax_amount": booking.tax_amount or 0.0,
        "charges": [{"description": c.description, "amount": c.amount} for c in booking.charges],
        "total_amount": booking.total_amount or 0.0,
        "amount_paid": booking.amount_paid or 0.0,
        "balance_due": booking.balance_due or 0.0,
    }, directory=config.INVOICE_DIR)

    invoice = Invoice(
        booking_id=booking.id,
        invoice_no=invoice_no,
        base_amount=booking.rental_amount,
        fee_amount=booking.booking_fee,
        tax_amount=booking.tax_amount,
        surcharge_amount=booking.surcharge_total,
        total_amount=booking.total_amount,
        amount_paid=booking.amount_paid,
        balance_due=booking.balance_due,
        pdf_path=pdf_path,
        status="GENERATED",
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    logger.info(f"Invoice {invoice_no} generated for booking {booking.booking_id}")
    return invoice


def cancel_booking(db: Session, identifier, reason: Optional[str] = None,
                   refund_amount: float = 0.0, actor: str = "admin") -> Booking:
    booking = find_booking(db, identifier)
    lifecycle.cancel(booking, reason, refund_amount, actor)
    return _commit(db, booking, "cancelled")


def mark_overdue_bookings(db: Session, now: Optional[datetime] = None,
                          actor: str = "system") -> list[str]:
    """Flag every in-use booking whose dropoff time has passed."""
    now = now or utc_now()
    candidates = db.execute(
        select(Booking).where(
            Booking.status == BookingStatus.IN_USE,
            Booking.dropoff_date <= now.date(),
        )
    ).scalars()
    marked = []
    for booking in candidates:
        if lifecycle.is_overdue(booking, now):
            lifecycle.mark_overdue(booking, now, actor)
            marked.append(booking.booking_id)
    db.commit()
    if marked:
        logger.warning(f"Marked {len(marked)} bookings overdue: {marked}")
    return marked


# ===============================
# NOTIFICATIONS
# ===============================
def notification_status(db: Session, identifier) -> dict:
    booking = find_booking(db, identifier)
    return {
        "bookingId": booking.booking_id,
        "status": booking.status.value,
        "notificationsStatus": booking.notifications_status.value,
        "notificationsSentAt": booking.notifications_sent_at,
    }


def queue_notification(db: Session, identifier, actor: str = "admin") -> Booking:
    """Reset the notification status of a confirmed booking so it can be sent again."""
    booking = find_booking(db, identifier)
    if booking.status != BookingStatus.CONFIRMED:
        raise ValidationError(
            f"Notifications are sent for confirmed bookings only, not {booking.status.value}",
            field="status",
        )
    booking.notifications_status = NotificationStatus.PENDING
    db.commit()
    db.refresh(booking)
    logger.info(f"Notifications for booking {booking.booking_id} re-queued by {actor}")
    return booking


# ===============================
# LISTINGS / DASHBOARD
# ===============================
def list_vehicles(db: Session, category=None, min_capacity: Optional[int] = None,
                  transmission=None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, search: Optional[str] = None) -> list[Vehicle]:
    query = select(Vehicle).where(Vehicle.is_available.is_(True))
    if category:
        query = query.where(Vehicle.category == category)
    if min_capacity:
        query = query.where(Vehicle.capacity >= min_capacity)
    if transmission:
        query = query.where(Vehicle.transmission == transmission)
    if min_price is not None:
        query = query.where(Vehicle.daily_rate >= min_price)
    if max_price is not None:
        query = query.where(Vehicle.daily_rate <= max_price)
    if search:
        query = query.where(Vehicle.name.ilike(f"%{search}%"))
    return list(db.execute(query.order_by(Vehicle.daily_rate)).scalars())


def list_bookings(db: Session, status: Optional[str] = None, search: Optional[str] = None,
                  page: int = 1, limit: int = 20,
                  vehicle_id: Optional[int] = None) -> tuple[list[Booking], int]:
    query = select(Booking)
    if vehicle_id is not None:
        get_vehicle(db, vehicle_id)
        query = query.where(Booking.vehicle_id == vehicle_id)
    if status and status != "all":
        try:
            query = query.where(Booking.status == BookingStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown booking status: {status}", field="status")
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(
            Booking.booking_id.ilike(pattern),
            Booking.customer_name.ilike(pattern),
            Booking.customer_phone.ilike(pattern),
            Booking.customer_email.ilike(pattern),
            Booking.vehicle_name.ilike(pattern),
        ))
    total = db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
    page = max(1, page)
    bookings = db.execute(
        query.order_by(Booking.created_at.desc(), Booking.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars()
    return list(bookings), total


def dashboard_stats(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utc_now()
    today = now.date()
    month_ago = now - timedelta(days=30)

    status_counts = {
        status.value: count
        for status, count in db.execute(
            select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
        )
    }
    todays_pickups = db.execute(
        select(func.count(Booking.id)).where(
            Booking.pickup_date == today,
            Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.HANDED_OVER]),
        )
    ).scalar_one()
    todays_dropoffs = db.execute(
        select(func.count(Booking.id)).where(
            Booking.dropoff_date == today,
            Booking.status.in_([BookingStatus.HANDED_OVER, BookingStatus.IN_USE, BookingStatus.OVERDUE]),
        )
    ).scalar_one()
    revenue_total, revenue_avg = db.execute(
        select(func.sum(Booking.total_amount), func.avg(Booking.total_amount)).where(
            Booking.payment_status == PaymentStatus.PAID,
            Booking.created_at >= month_ago,
        )
    ).one()
    recent = db.execute(
        select(Booking).order_by(Booking.created_at.desc(), Booking.id.desc()).limit(5)
    ).scalars()

    return {
        "totalBookings": sum(status_counts.values()),
        "statusCounts": status_counts,
        "todaysPickups": todays_pickups,
        "todaysDropoffs": todays_dropoffs,
        "pendingBookingsCount": status_counts.get(BookingStatus.PENDING.value, 0),
        "totalRevenue": round(revenue_total or 0.0, 2),
        "avgBookingValue": round(revenue_avg or 0.0, 2),
        "recentBookings": [
            {
                "bookingId": b.booking_id,
                "customerName": b.customer_name,
                "vehicleName": b.vehicle_name,
                "status": b.status.value,
                "totalAmount": b.total_amount,
                "createdAt": b.created_at,
            }
            for b in recent
        ],
    }


def booking_pipeline(db: Session, limit: int = 50) -> dict[str, list[Booking]]:
    bookings = db.execute(
        select(Booking).order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit)
    ).scalars()
    pipeline = {status.value: [] for status in BookingStatus}
    for booking in bookings:
        pipeline[booking.status.value].append(booking)
    return pipeline
