"""
Booking status state machine.

    pending -> confirmed -> handed_over -> in_use -> returned -> completed
                                             |          ^
                                             v          |
                                          overdue ------+--> completed

cancelled is reachable from pending, confirmed and handed_over.
cancelled and completed are terminal.

Every transition function checks its preconditions before it touches the
booking, so a rejected request leaves the booking exactly as it was. On
success it sets the status, appends one StatusHistory entry and applies
the transition's side effects. Committing is left to the caller.
"""
from __future__ import annotations

from datetime import datetime, time
from typing import Iterable, Optional

from config import SURCHARGE_RATES, SurchargeRates
from exceptions import InvalidTransitionError, ValidationError
from models import Booking, BookingStatus, PaymentStatus, ReturnCharge, StatusHistory, utc_now
from surcharges import Charge, SurchargeResult, VehicleSnapshot, as_utc, compute_return_surcharges

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.HANDED_OVER, BookingStatus.CANCELLED}),
    BookingStatus.HANDED_OVER: frozenset({
        BookingStatus.IN_USE, BookingStatus.RETURNED, BookingStatus.CANCELLED,
    }),
    BookingStatus.IN_USE: frozenset({BookingStatus.RETURNED, BookingStatus.OVERDUE}),
    BookingStatus.OVERDUE: frozenset({BookingStatus.RETURNED, BookingStatus.COMPLETED}),
    BookingStatus.RETURNED: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

CANCELLABLE = frozenset(
    s for s, targets in TRANSITIONS.items() if BookingStatus.CANCELLED in targets
)
TERMINAL = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Targets that need data only their dedicated operation collects
SNAPSHOT_TARGETS = frozenset({BookingStatus.HANDED_OVER, BookingStatus.RETURNED})


def allowed_targets(current) -> frozenset[BookingStatus]:
    return TRANSITIONS[BookingStatus(current)]


def can_transition(current, target) -> bool:
    return BookingStatus(target) in allowed_targets(current)


def assert_transition(current, target) -> None:
    try:
        target = BookingStatus(target)
    except ValueError:
        raise InvalidTransitionError(current, target)
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def parse_time(value: Optional[str], default: str = "18:00") -> time:
    try:
        return time.fromisoformat(value or default)
    except ValueError:
        return time.fromisoformat(default)


def scheduled_dropoff(booking: Booking) -> datetime:
    """The dropoff date at the booking's dropoff time, in UTC."""
    return as_utc(datetime.combine(booking.dropoff_date, parse_time(booking.dropoff_time)))


def rental_days(booking: Booking) -> int:
    if booking.total_days:
        return booking.total_days
    return max(1, (booking.dropoff_date - booking.pickup_date).days)


def is_overdue(booking: Booking, now: datetime) -> bool:
    return (
        BookingStatus(booking.status) == BookingStatus.IN_USE
        and as_utc(now) > scheduled_dropoff(booking)
    )


def _record(booking: Booking, status: BookingStatus, actor: str, note: str | None,
            now: datetime | None = None, additional_charges: float | None = None) -> datetime:
    timestamp = as_utc(now or utc_now())
    if booking.status_history:
        # History timestamps never go backwards
        last = as_utc(booking.status_history[-1].timestamp)
        if timestamp < last:
            timestamp = last
    booking.status = status
    booking.status_history.append(StatusHistory(
        status=status,
        timestamp=timestamp,
        actor=actor or "system",
        note=note,
        additional_charges=additional_charges,
    ))
    return timestamp


def start(booking: Booking, actor: str, note: str | None = None, now: datetime | None = None) -> Booking:
    """Record the initial pending entry of a new booking."""
    if booking.status_history:
        raise ValidationError("Booking already has a status history", field="status")
    _record(booking, BookingStatus.PENDING, actor, note or "Booking created", now)
    return booking


def confirm(booking: Booking, actor: str = "system", note: str | None = None,
            payment_reference: str | None = None, paid: bool = False,
            amount_paid: float | None = None, payment_method: str | None = None,
            now: datetime | None = None) -> Booking:
    assert_transition(booking.status, BookingStatus.CONFIRMED)
    timestamp = _record(booking, BookingStatus.CONFIRMED, actor, note or "Booking confirmed", now)
    if paid:
        booking.payment_status = PaymentStatus.PAID
        booking.paid_at = timestamp
        paid_amount = booking.total_amount if amount_paid is None else amount_paid
        booking.amount_paid = round(paid_amount or 0.0, 2)
        booking.balance_due = round((booking.total_amount or 0.0) - booking.amount_paid, 2)
    if payment_reference:
        booking.payment_reference = payment_reference
    if payment_method:
        booking.payment_method = payment_method
    return booking


def hand_over(booking: Booking, snapshot: VehicleSnapshot, actor: str = "admin",
              customer_signature: str | None = None, now: datetime | None = None) -> Booking:
    if BookingStatus(booking.status) != BookingStatus.CONFIRMED:
        raise InvalidTransitionError(booking.status, BookingStatus.HANDED_OVER)
    timestamp = _record(booking, BookingStatus.HANDED_OVER, actor, "Vehicle handed over to customer", now)
    booking.handover_odometer = snapshot.odometer
    booking.handover_fuel_level = snapshot.fuel_level
    booking.handover_condition_notes = snapshot.condition_notes or "Good condition"
    booking.handed_over_by = actor
    booking.customer_signature = customer_signature or "digital_acceptance"
    booking.handed_over_at = timestamp
    return booking


def start_use(booking: Booking, actor: str = "admin", note: str | None = None,
              now: datetime | None = None) -> Booking:
    assert_transition(booking.status, BookingStatus.IN_USE)
    _record(booking, BookingStatus.IN_USE, actor, note or "Vehicle in use", now)
    return booking


def mark_overdue(booking: Booking, now: datetime, actor: str = "system") -> Booking:
    assert_transition(booking.status, BookingStatus.OVERDUE)
    if not is_overdue(booking, now):
        raise ValidationError(
            f"Booking {booking.booking_id} is not past its dropoff time", field="status"
        )
    _record(booking, BookingStatus.OVERDUE, actor, "Scheduled dropoff passed without return", now)
    return booking


def handover_snapshot(booking: Booking) -> VehicleSnapshot:
    return VehicleSnapshot(
        odometer=booking.handover_odometer or 0,
        fuel_level=booking.handover_fuel_level or "full",
        condition_notes=booking.handover_condition_notes,
    )


def record_return(booking: Booking, snapshot: VehicleSnapshot, now: datetime | None = None,
                  rates: SurchargeRates | None = None, actor: str = "admin",
                  notes: str | None = None, manual_charges: Iterable[Charge] = (),
                  extra_km_rate: float | None = None,
                  late_fee_per_hour: float | None = None) -> SurchargeResult:
    """
    Take the vehicle back and bill the return surcharges.

    The surcharge total is added to total_amount and balance_due. Returns
    the SurchargeResult so callers can report the breakdown.
    """
    assert_transition(booking.status, BookingStatus.RETURNED)
    handover = handover_snapshot(booking)
    if snapshot.odometer and snapshot.odometer < handover.odometer:
        raise ValidationError("Return odometer reading is below the handover reading", field="odometer")

    now = as_utc(now or utc_now())
    result = compute_return_surcharges(
        handover,
        snapshot,
        scheduled_dropoff=scheduled_dropoff(booking),
        now=now,
        rental_days=rental_days(booking),
        rates=rates or SURCHARGE_RATES,
        extra_km_rate=extra_km_rate,
        late_fee_per_hour=late_fee_per_hour,
        manual_charges=manual_charges,
    )

    timestamp = _record(booking, BookingStatus.RETURNED, actor, notes or "Vehicle returned by customer",
                        now, additional_charges=result.total)
    booking.return_odometer = snapshot.odometer
    booking.return_fuel_level = snapshot.fuel_level
    booking.return_condition_notes = snapshot.condition_notes or "Good condition"
    booking.return_notes = notes
    booking.returned_by = actor
    booking.returned_at = timestamp
    booking.surcharge_total = result.total
    booking.charges.extend(
        ReturnCharge(type=c.type, description=c.description, amount=c.amount) for c in result.charges
    )
    booking.total_amount = round((booking.total_amount or 0.0) + result.total, 2)
    booking.balance_due = round((booking.balance_due or 0.0) + result.total, 2)
    return result


def complete(booking: Booking, actor: str = "admin", final_notes: str | None = None,
             now: datetime | None = None) -> Booking:
    """
    Close a returned (or overdue) booking.

    Leaving the active status set is what frees the unit; there is no
    counter to decrement.
    """
    assert_transition(booking.status, BookingStatus.COMPLETED)
    timestamp = _record(booking, BookingStatus.COMPLETED, actor, final_notes or "Booking completed", now)
    booking.completed_at = timestamp
    booking.completed_by = actor
    booking.final_notes = final_notes or ""
    return booking


def cancel(booking: Booking, reason: str | None = None, refund_amount: float = 0.0,
           actor: str = "admin", now: datetime | None = None) -> Booking:
    if BookingStatus(booking.status) not in CANCELLABLE:
        raise InvalidTransitionError(booking.status, BookingStatus.CANCELLED)
    refund_amount = refund_amount or 0.0
    if refund_amount < 0:
        raise ValidationError("Refund amount cannot be negative", field="refund_amount")

    timestamp = _record(booking, BookingStatus.CANCELLED, actor, reason or "Booking cancelled", now)
    booking.cancellation_reason = reason
    booking.refund_amount = refund_amount
    booking.cancelled_at = timestamp
    booking.cancelled_by = actor
    if refund_amount > 0 and booking.payment_status == PaymentStatus.PAID:
        booking.payment_status = PaymentStatus.REFUNDED
    return booking


def transition(booking: Booking, target, actor: str = "admin", note: str | None = None,
               now: datetime | None = None) -> Booking:
    """
    Generic status change used by the admin status endpoint.

    Handover and return need readings, so those targets must go through
    hand_over() and record_return().
    """
    try:
        target = BookingStatus(target)
    except ValueError:
        raise InvalidTransitionError(booking.status, target)
    assert_transition(booking.status, target)
    if target in SNAPSHOT_TARGETS:
        raise ValidationError(
            f"Use the {target.value.replace('_', ' ')} endpoint to record vehicle readings",
            field="status",
        )

    if target == BookingStatus.CONFIRMED:
        return confirm(booking, actor, note, now=now)
    if target == BookingStatus.IN_USE:
        return start_use(booking, actor, note, now=now)
    if target == BookingStatus.OVERDUE:
        return mark_overdue(booking, now or utc_now(), actor)
    if target == BookingStatus.COMPLETED:
        return complete(booking, actor, note, now=now)
    return cancel(booking, note, 0.0, actor, now=now)

