"""
Return-time surcharges: fuel shortfall, late return, extra kilometers and
damage. Pure computation; every input is passed in.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from config import SURCHARGE_RATES, SurchargeRates
from models import FuelLevel

FUEL_SCALE = {
    FuelLevel.EMPTY: 0,
    FuelLevel.QUARTER: 25,
    FuelLevel.HALF: 50,
    FuelLevel.THREE_QUARTER: 75,
    FuelLevel.FULL: 100,
}

SECONDS_PER_HOUR = 3600


class VehicleSnapshot(BaseModel):
    """Odometer, fuel and condition read at handover or at return."""
    odometer: int = Field(0, ge=0)
    fuel_level: FuelLevel = FuelLevel.FULL
    condition_notes: Optional[str] = None


class Charge(BaseModel):
    type: str
    description: str
    amount: float = Field(..., ge=0)


class SurchargeResult(BaseModel):
    charges: list[Charge] = Field(default_factory=list)
    total: float = 0.0


def as_utc(value: datetime) -> datetime:
    # Naive datetimes (e.g. read back from SQLite) are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def fuel_charge(handover: FuelLevel, returned: FuelLevel, rates: SurchargeRates) -> Optional[Charge]:
    start = FUEL_SCALE[FuelLevel(handover)]
    end = FUEL_SCALE[FuelLevel(returned)]
    if end >= start:
        return None
    difference = start - end
    amount = difference / 100 * 4 * rates.fuel_charge_per_quarter
    return Charge(
        type="fuel_replacement",
        description=f"Fuel replacement for {difference}% difference",
        amount=round(amount, 2),
    )


def late_charge(scheduled_dropoff: datetime, now: datetime, per_hour: float) -> Optional[Charge]:
    scheduled_dropoff = as_utc(scheduled_dropoff)
    now = as_utc(now)
    if now <= scheduled_dropoff:
        return None
    hours_late = math.ceil((now - scheduled_dropoff).total_seconds() / SECONDS_PER_HOUR)
    return Charge(
        type="late_return",
        description=f"Late return by {hours_late} hours",
        amount=round(hours_late * per_hour, 2),
    )


def distance_charge(
    handover_odometer: int,
    return_odometer: int,
    rental_days: int,
    per_day_allowance: float,
    rate: float,
) -> Optional[Charge]:
    allowed = rental_days * per_day_allowance
    extra = max(0, (return_odometer - handover_odometer) - allowed)
    if extra <= 0:
        return None
    extra_display = int(extra) if float(extra).is_integer() else extra
    return Charge(
        type="extra_kilometers",
        description=f"{extra_display} extra kilometers",
        amount=round(extra * rate, 2),
    )


def damage_charge(notes: Optional[str], keywords: Iterable[str], amount: float) -> Optional[Charge]:
    if not notes:
        return None
    lowered = notes.lower()
    if not any(k.lower() in lowered for k in keywords):
        return None
    return Charge(type="damage_charge", description="Vehicle damage noted", amount=amount)


def compute_return_surcharges(
    handover: VehicleSnapshot,
    returned: VehicleSnapshot,
    scheduled_dropoff: datetime,
    now: datetime,
    rental_days: int,
    per_day_allowance: Optional[float] = None,
    rates: Optional[SurchargeRates] = None,
    extra_km_rate: Optional[float] = None,
    late_fee_per_hour: Optional[float] = None,
    manual_charges: Iterable[Charge] = (),
) -> SurchargeResult:
    """
    Compute the charges owed when a vehicle comes back.

    Each rule applies independently and contributes at most one line:
    fuel below the handover level, return after the scheduled dropoff
    (billed per started hour), distance above rental_days times the
    per-day allowance, and damage keywords in the return condition
    notes. Manual charges are appended after the computed ones.

    Args:
        handover: readings taken when the vehicle left.
        returned: readings taken now.
        scheduled_dropoff: the booking's dropoff date and time.
        now: the return time.
        rental_days: billed rental days (at least 1 is used).
        per_day_allowance: km allowance per day, defaults to rates.
        rates: surcharge constants, defaults to the configured ones.
        extra_km_rate: vehicle-specific per-km rate override.
        late_fee_per_hour: vehicle-specific late fee override.
        manual_charges: extra lines supplied by the inspector.
    """
    rates = rates or SURCHARGE_RATES
    allowance = rates.km_allowance_per_day if per_day_allowance is None else per_day_allowance
    km_rate = rates.extra_km_rate if extra_km_rate is None else extra_km_rate
    per_hour = rates.late_charge_per_hour if late_fee_per_hour is None else late_fee_per_hour

    candidates = [
        fuel_charge(handover.fuel_level, returned.fuel_level, rates),
        late_charge(scheduled_dropoff, now, per_hour),
        distance_charge(handover.odometer, returned.odometer, max(1, rental_days), allowance, km_rate),
        damage_charge(returned.condition_notes, rates.damage_keywords, rates.damage_charge),
    ]
    charges = [c for c in candidates if c is not None]
    charges.extend(manual_charges)

    return SurchargeResult(charges=charges, total=round(sum(c.amount for c in charges), 2))
