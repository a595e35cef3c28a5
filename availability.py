"""
Fleet availability for multi-unit vehicle types.

A vehicle type owns `quantity` physical units. Every active booking holds
one unit for each calendar day of its [pickup, dropoff] range, both ends
inclusive. The number of units free for a query range is decided by the
single most occupied day inside it: a renter needs the same unit for the
whole range.

Everything here is a pure function of already fetched data. The same
`compute_availability` answers read-only availability queries and gates
booking writes, so both paths always agree.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from exceptions import ValidationError
from models import BookingStatus

# Statuses in which a unit is physically committed to the booking
ACTIVE_STATUSES = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.HANDED_OVER,
    BookingStatus.IN_USE,
    BookingStatus.OVERDUE,
})


def to_day(value) -> date:
    """Normalise a date, datetime or ISO string to a calendar day (UTC for aware times)."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid date: {value}")
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    raise ValidationError(f"Invalid date: {value!r}")


class DateRange(BaseModel):
    """Inclusive range of calendar days."""
    start: date
    end: date

    model_config = {"frozen": True}

    @classmethod
    def of(cls, start, end) -> "DateRange":
        return cls(start=to_day(start), end=to_day(end))

    def overlaps(self, other: "DateRange") -> bool:
        return self.start <= other.end and self.end >= other.start

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def days(self) -> list[date]:
        if self.end < self.start:
            return []
        return [self.start + timedelta(days=i) for i in range((self.end - self.start).days + 1)]


def validate_range(start, end, field: str = "dropoff_date") -> DateRange:
    """
    Check that a requested rental range is well ordered.

    Raises ValidationError when start >= end.
    """
    if start is None or end is None:
        raise ValidationError("Pickup and dropoff dates are required", field=field)
    query = DateRange.of(start, end)
    if query.start >= query.end:
        raise ValidationError("Dropoff date must be after pickup date", field=field)
    return query


def booking_range(booking) -> DateRange:
    return DateRange.of(booking.pickup_date, booking.dropoff_date)


def is_active(booking) -> bool:
    return BookingStatus(booking.status) in ACTIVE_STATUSES


class AvailabilityResult(BaseModel):
    found: bool = True
    available_units: int
    total_units: int
    max_concurrent_booked_units: int = 0
    per_day_occupancy: dict[date, int] = Field(default_factory=dict)
    overlapping_bookings: int = 0

    @property
    def is_available(self) -> bool:
        return self.available_units > 0

    @property
    def over_capacity(self) -> bool:
        return self.max_concurrent_booked_units > self.total_units

    @classmethod
    def not_found(cls) -> "AvailabilityResult":
        return cls(found=False, available_units=0, total_units=0)

    def to_dict(self) -> dict:
        return {
            "available": self.is_available,
            "availableQuantity": self.available_units,
            "vehicleQuantity": self.total_units,
            "bookedQuantity": self.max_concurrent_booked_units,
            "dateBookings": {d.isoformat(): n for d, n in self.per_day_occupancy.items()},
        }


def compute_availability(
    vehicle,
    active_bookings: Iterable,
    query_range: DateRange,
    exclude_booking_id: Optional[int] = None,
) -> AvailabilityResult:
    """
    Count free units of `vehicle` for every day of `query_range`.

    Args:
        vehicle: object with a `quantity` attribute, or None when the
            lookup failed.
        active_bookings: bookings of this vehicle (objects with `id`,
            `status`, `pickup_date`, `dropoff_date`). Bookings outside the
            active set or outside the range are ignored.
        query_range: inclusive day range.
        exclude_booking_id: booking to leave out, used when re-checking a
            booking against its own vehicle.

    Returns:
        AvailabilityResult with the worst-day occupancy. An over-booked
        vehicle shows max_concurrent_booked_units > total_units and zero
        available units.
    """
    if vehicle is None:
        return AvailabilityResult.not_found()

    quantity = int(vehicle.quantity)
    days = query_range.days()

    overlapping = [
        booking_range(b)
        for b in active_bookings
        if is_active(b)
        and (exclude_booking_id is None or b.id != exclude_booking_id)
        and booking_range(b).overlaps(query_range)
    ]

    if not overlapping:
        return AvailabilityResult(
            available_units=quantity,
            total_units=quantity,
            max_concurrent_booked_units=0,
            per_day_occupancy={d: 0 for d in days},
        )

    occupancy = {d: sum(1 for r in overlapping if r.contains(d)) for d in days}
    max_concurrent = max(occupancy.values(), default=0)

    return AvailabilityResult(
        available_units=max(0, quantity - max_concurrent),
        total_units=quantity,
        max_concurrent_booked_units=max_concurrent,
        per_day_occupancy=occupancy,
        overlapping_bookings=len(overlapping),
    )


def unavailable_dates(vehicle, active_bookings: Iterable) -> tuple[list[date], Optional[date]]:
    """
    Days on which every unit of `vehicle` is booked.

    Returns the sorted fully booked days and the first day after the last
    of them (None when nothing is fully booked).
    """
    bookings = [b for b in active_bookings if is_active(b)]
    if not bookings:
        return [], None

    ranges = [booking_range(b) for b in bookings]
    span = DateRange(start=min(r.start for r in ranges), end=max(r.end for r in ranges))
    result = compute_availability(vehicle, bookings, span)
    full_days = [d for d, booked in result.per_day_occupancy.items() if booked >= result.total_units]

    next_free = full_days[-1] + timedelta(days=1) if full_days else None
    return full_days, next_free
