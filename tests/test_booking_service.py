"""
Booking service tests against an in-memory SQLite database.
"""
import os
import threading
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

import booking_service
from conftest import future, seed_booking, seed_vehicle
from database import Base
from exceptions import (
    CapacityExceededError,
    InvalidTransitionError,
    NotFoundError,
    PaymentVerificationError,
    ValidationError,
)
from models import Booking, BookingStatus, FuelLevel, NotificationStatus, PaymentStatus, VehicleCategory
from payments import sign
from schemas import AdminPayment, BookingCreate, ManualBookingCreate
from surcharges import VehicleSnapshot


def draft(vehicle, start=3, end=6, **kwargs):
    values = dict(
        vehicle_id=vehicle.id,
        customer_name="Meera Iyer",
        customer_email="Meera@Example.com",
        customer_phone="9123456789",
        pickup_date=future(start),
        dropoff_date=future(end),
    )
    values.update(kwargs)
    return BookingCreate(**values)


def paid(db, booking, payment_id="pay_1", order_id="order_1"):
    return booking_service.confirm_payment(
        db, booking.booking_id, order_id, payment_id, sign(order_id, payment_id)
    )


def test_create_booking_prices_and_records_history(db):
    vehicle = seed_vehicle(db, daily_rate=1500)
    booking = booking_service.create_booking(db, draft(vehicle))

    assert booking.status == BookingStatus.PENDING
    assert booking.booking_id.startswith("BK")
    assert booking.customer_email == "meera@example.com"
    assert booking.total_days == 3
    assert booking.rental_amount == 4500
    assert booking.total_amount == 4510
    assert booking.balance_due == 4510
    assert booking.pickup_time == "09:00"
    assert [h.status for h in booking.status_history] == [BookingStatus.PENDING]


def test_booking_codes_are_unique(db):
    vehicle = seed_vehicle(db, quantity=3)
    codes = {booking_service.create_booking(db, draft(vehicle)).booking_id for _ in range(3)}
    assert len(codes) == 3


def test_create_rejected_when_all_units_confirmed(db):
    vehicle = seed_vehicle(db, quantity=1)
    seed_booking(db, vehicle, future(2), future(5))

    with pytest.raises(CapacityExceededError) as err:
        booking_service.create_booking(db, draft(vehicle, 4, 8))

    assert err.value.details() == {"availableQuantity": 0, "requestedQuantity": 1, "vehicleQuantity": 1}
    assert db.query(Booking).count() == 1


def test_second_unit_still_bookable(db):
    vehicle = seed_vehicle(db, quantity=2)
    seed_booking(db, vehicle, future(2), future(5))

    booking = booking_service.create_booking(db, draft(vehicle, 4, 8))
    assert booking.status == BookingStatus.PENDING


def test_pending_bookings_compete_at_confirmation(db):
    vehicle = seed_vehicle(db, quantity=1)
    first = booking_service.create_booking(db, draft(vehicle))
    second = booking_service.create_booking(db, draft(vehicle, 4, 7))

    paid(db, first)
    with pytest.raises(CapacityExceededError):
        paid(db, second, payment_id="pay_2", order_id="order_2")

    db.refresh(second)
    assert second.status == BookingStatus.PENDING
    assert second.payment_status == PaymentStatus.PENDING
    # The verified payment stays traceable for a refund
    assert second.payment_reference == "pay_2"
    assert second.payment_order_id == "order_2"
    assert second.payment_signature == sign("order_2", "pay_2")


def test_payment_confirmation_is_a_single_commit(db):
    vehicle = seed_vehicle(db)
    booking = booking_service.create_booking(db, draft(vehicle))
    commits = []
    event.listen(db, "after_commit", lambda session: commits.append(session))

    booking, confirmed = paid(db, booking, payment_id="pay_9", order_id="order_9")

    assert confirmed
    assert len(commits) == 1
    assert booking.payment_order_id == "order_9"
    assert booking.payment_signature == sign("order_9", "pay_9")
    assert booking.payment_reference == "pay_9"


def test_last_unit_race_between_two_sessions(tmp_path):
    """Two threads with their own sessions pay for the last unit at the same time."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30.0},
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        with Session() as setup:
            vehicle = seed_vehicle(setup, quantity=1)
            codes = [
                seed_booking(setup, vehicle, future(3), future(6), status=BookingStatus.PENDING,
                             total_amount=4510.0, balance_due=4510.0).booking_id
                for _ in range(2)
            ]

        barrier = threading.Barrier(2)
        outcomes = []

        def pay(code, n):
            with Session() as session:
                barrier.wait()
                try:
                    booking_service.confirm_payment(
                        session, code, f"order_{n}", f"pay_{n}", sign(f"order_{n}", f"pay_{n}")
                    )
                    outcomes.append("confirmed")
                except CapacityExceededError:
                    outcomes.append("full")

        threads = [threading.Thread(target=pay, args=(code, n)) for n, code in enumerate(codes)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert sorted(outcomes) == ["confirmed", "full"]
        with Session() as check:
            statuses = sorted(b.status.value for b in check.query(Booking))
        assert statuses == ["confirmed", "pending"]
    finally:
        engine.dispose()


def test_past_pickup_rejected_for_public_booking(db):
    vehicle = seed_vehicle(db)
    with pytest.raises(ValidationError):
        booking_service.create_booking(db, draft(vehicle, -2, 3))


def test_dates_must_be_ordered(db):
    vehicle = seed_vehicle(db)
    with pytest.raises(ValidationError):
        booking_service.create_booking(db, draft(vehicle, 5, 5))


def test_withdrawn_vehicle_not_bookable(db):
    vehicle = seed_vehicle(db, is_available=False)
    with pytest.raises(ValidationError):
        booking_service.create_booking(db, draft(vehicle))


def test_unknown_vehicle(db):
    with pytest.raises(NotFoundError):
        booking_service.create_booking(db, BookingCreate(
            vehicle_id=999, customer_name="X", customer_email="x@example.com", customer_phone="1",
            pickup_date=future(1), dropoff_date=future(2),
        ))


def test_manual_paid_booking_is_confirmed(db):
    vehicle = seed_vehicle(db)
    data = ManualBookingCreate(
        vehicle_id=vehicle.id,
        customer_name="Walk-in",
        customer_phone="9000011111",
        pickup_date=future(1),
        dropoff_date=future(3),
        total_amount=2800,
        payment_method="cash",
        payment_status="paid",
    )
    booking = booking_service.create_booking(db, data, actor="desk", manual=True)

    assert booking.booking_id.startswith("MB")
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.rental_amount == 2800
    assert booking.payment_status == PaymentStatus.PAID
    assert booking.balance_due == 0
    assert booking.created_by == "desk"
    assert [h.actor for h in booking.status_history] == ["desk", "desk"]


def test_confirm_payment(db):
    vehicle = seed_vehicle(db)
    booking = booking_service.create_booking(db, draft(vehicle))

    booking, confirmed = paid(db, booking)

    assert confirmed
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.PAID
    assert booking.payment_reference == "pay_1"
    assert booking.payment_order_id == "order_1"
    assert booking.amount_paid == booking.total_amount


def test_repeated_payment_confirmation_is_a_no_op(db):
    vehicle = seed_vehicle(db)
    booking = booking_service.create_booking(db, draft(vehicle))
    paid(db, booking)

    booking, confirmed = paid(db, booking)

    assert not confirmed
    assert len(booking.status_history) == 2


def test_bad_signature_changes_nothing(db):
    vehicle = seed_vehicle(db)
    booking = booking_service.create_booking(db, draft(vehicle))

    with pytest.raises(PaymentVerificationError):
        booking_service.confirm_payment(db, booking.booking_id, "order_1", "pay_1", "forged")

    db.refresh(booking)
    assert booking.status == BookingStatus.PENDING
    assert booking.payment_reference is None


def test_admin_cash_payment_confirms(db):
    vehicle = seed_vehicle(db)
    booking = booking_service.create_booking(db, draft(vehicle))

    booking, confirmed = booking_service.record_admin_payment(
        db, booking.booking_id, AdminPayment(payment_method="cash", transaction_id="RCPT-9"), "desk"
    )

    assert confirmed
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_method == "cash"
    assert booking.payment_reference == "RCPT-9"
    assert booking.balance_due == 0


def test_admin_partial_payment_on_confirmed_booking(db):
    vehicle = seed_vehicle(db)
    booking = seed_booking(db, vehicle, future(1), future(3), total_amount=3000.0,
                           amount_paid=1000.0, balance_due=2000.0)

    booking, confirmed = booking_service.record_admin_payment(
        db, booking.booking_id, AdminPayment(payment_method="upi", amount=500), "desk"
    )

    assert not confirmed
    assert booking.amount_paid == 1500
    assert booking.balance_due == 1500


def test_admin_overpayment_rejected(db):
    vehicle = seed_vehicle(db)
    booking = booking_service.create_booking(db, draft(vehicle))

    with pytest.raises(ValidationError):
        booking_service.record_admin_payment(db, booking.booking_id, AdminPayment(amount=99999))


def test_failed_admin_payment_keeps_booking_pending(db):
    vehicle = seed_vehicle(db)
    booking = booking_service.create_booking(db, draft(vehicle))

    booking, confirmed = booking_service.record_admin_payment(
        db, booking.booking_id, AdminPayment(payment_status="failed")
    )

    assert not confirmed
    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.FAILED


def test_failed_admin_payment_keeps_a_paid_booking_paid(db):
    vehicle = seed_vehicle(db)
    booking = seed_booking(db, vehicle, future(1), future(3), total_amount=3000.0,
                           amount_paid=3000.0, balance_due=0.0,
                           payment_status=PaymentStatus.PAID, payment_method="upi")

    booking, confirmed = booking_service.record_admin_payment(
        db, booking.booking_id, AdminPayment(payment_method="card", payment_status="failed")
    )

    assert not confirmed
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.PAID
    assert booking.payment_method == "upi"


def test_status_update_to_confirmed_checks_capacity(db):
    vehicle = seed_vehicle(db, quantity=1)
    seed_booking(db, vehicle, future(2), future(5))
    pending = seed_booking(db, vehicle, future(3), future(4), status=BookingStatus.PENDING)

    with pytest.raises(CapacityExceededError):
        booking_service.update_status(db, pending.booking_id, BookingStatus.CONFIRMED)


def test_find_booking_by_code_or_id(db):
    vehicle = seed_vehicle(db)
    booking = seed_booking(db, vehicle, future(1), future(2), booking_id="BK26100042")

    assert booking_service.find_booking(db, "bk26100042").id == booking.id
    assert booking_service.find_booking(db, str(booking.id)).id == booking.id
    with pytest.raises(NotFoundError):
        booking_service.find_booking(db, "BK0")


def test_rental_flow_through_the_service(db):
    vehicle = seed_vehicle(db, daily_rate=2000, extra_km_rate=15, late_fee_per_hour=100)
    booking = booking_service.create_booking(db, draft(vehicle, 1, 3))
    paid(db, booking)

    booking_service.hand_over_vehicle(db, booking.booking_id, VehicleSnapshot(odometer=20000), "desk", "signed")
    booking_service.start_rental(db, booking.booking_id, "desk")

    due = datetime.combine(booking.dropoff_date, datetime.min.time(), tzinfo=timezone.utc) + timedelta(hours=18)
    booking, result = booking_service.return_vehicle(
        db,
        booking.booking_id,
        VehicleSnapshot(odometer=20700, fuel_level=FuelLevel.THREE_QUARTER),
        "desk",
        now=due + timedelta(minutes=90),
    )

    by_type = {c.type: c.amount for c in result.charges}
    assert by_type == {"fuel_replacement": 500, "late_return": 200, "extra_kilometers": 1500}
    assert booking.status == BookingStatus.RETURNED
    assert booking.balance_due == 2200
    assert len(booking.charges) == 3

    booking = booking_service.complete_booking(db, booking.booking_id, "desk", "Paid at counter")
    assert booking.status == BookingStatus.COMPLETED
    assert booking.final_notes == "Paid at counter"


def test_completed_booking_frees_the_unit(db):
    vehicle = seed_vehicle(db, quantity=1)
    held = seed_booking(db, vehicle, future(2), future(5), status=BookingStatus.OVERDUE)

    assert booking_service.check_availability(db, vehicle.id, future(3), future(4)).available_units == 0
    booking_service.complete_booking(db, held.booking_id)
    assert booking_service.check_availability(db, vehicle.id, future(3), future(4)).available_units == 1


def test_cancel_releases_capacity(db):
    vehicle = seed_vehicle(db, quantity=1)
    held = seed_booking(db, vehicle, future(2), future(5))
    assert booking_service.check_availability(db, vehicle.id, future(3), future(4)).available_units == 0

    booking_service.cancel_booking(db, held.booking_id, "Plans changed", 0.0, "desk")

    assert booking_service.check_availability(db, vehicle.id, future(3), future(4)).available_units == 1


def test_cancel_in_use_rejected(db):
    vehicle = seed_vehicle(db)
    booking = seed_booking(db, vehicle, future(1), future(3), status=BookingStatus.IN_USE)

    with pytest.raises(InvalidTransitionError):
        booking_service.cancel_booking(db, booking.booking_id)
    db.refresh(booking)
    assert booking.status == BookingStatus.IN_USE


def test_mark_overdue_sweep(db):
    vehicle = seed_vehicle(db, quantity=2)
    late = seed_booking(db, vehicle, future(-5), future(-2), status=BookingStatus.IN_USE)
    on_time = seed_booking(db, vehicle, future(-1), future(3), status=BookingStatus.IN_USE)

    marked = booking_service.mark_overdue_bookings(db)

    assert marked == [late.booking_id]
    db.refresh(late)
    db.refresh(on_time)
    assert late.status == BookingStatus.OVERDUE
    assert on_time.status == BookingStatus.IN_USE


def test_fleet_availability(db):
    sedan = seed_vehicle(db, quantity=1, name="City")
    suv = seed_vehicle(db, quantity=2, name="XUV700", category=VehicleCategory.SUV, capacity=7, daily_rate=3500)
    seed_vehicle(db, name="Retired", is_available=False)
    seed_booking(db, sedan, future(2), future(5))

    results = {v.name: r for v, r in booking_service.fleet_availability(db, future(3), future(4))}

    assert set(results) == {"City", "XUV700"}
    assert results["City"].available_units == 0
    assert results["XUV700"].available_units == 2

    big = booking_service.fleet_availability(db, future(3), future(4), min_capacity=6)
    assert [v.id for v, _ in big] == [suv.id]


def test_vehicle_calendar(db):
    vehicle = seed_vehicle(db, quantity=1)
    seed_booking(db, vehicle, date(2031, 2, 1), date(2031, 2, 3))

    calendar = booking_service.vehicle_calendar(db, vehicle.id)

    assert calendar["unavailableDates"] == ["2031-02-01", "2031-02-02", "2031-02-03"]
    assert calendar["nextAvailableDate"] == "2031-02-04"


def test_list_bookings_filters(db):
    vehicle = seed_vehicle(db, quantity=5)
    seed_booking(db, vehicle, future(1), future(2), customer_name="Anil Kumar")
    seed_booking(db, vehicle, future(1), future(2), customer_name="Zoya Khan", status=BookingStatus.PENDING)

    bookings, total = booking_service.list_bookings(db, search="zoya")
    assert total == 1 and bookings[0].customer_name == "Zoya Khan"

    bookings, total = booking_service.list_bookings(db, status="confirmed")
    assert [b.customer_name for b in bookings] == ["Anil Kumar"]

    bookings, total = booking_service.list_bookings(db, page=2, limit=1)
    assert total == 2 and len(bookings) == 1


def test_list_bookings_by_vehicle(db):
    city = seed_vehicle(db, name="City", quantity=2)
    creta = seed_vehicle(db, name="Creta", quantity=2)
    seed_booking(db, city, future(1), future(2))
    seed_booking(db, creta, future(1), future(2))
    seed_booking(db, creta, future(4), future(6), status=BookingStatus.PENDING)

    bookings, total = booking_service.list_bookings(db, vehicle_id=creta.id)
    assert total == 2
    assert {b.vehicle_name for b in bookings} == {"Creta"}

    bookings, total = booking_service.list_bookings(db, status="pending", vehicle_id=creta.id)
    assert total == 1

    with pytest.raises(NotFoundError):
        booking_service.list_bookings(db, vehicle_id=999)


def test_notification_status_and_requeue(db):
    vehicle = seed_vehicle(db)
    booking = seed_booking(db, vehicle, future(1), future(3),
                           notifications_status=NotificationStatus.FAILED)

    assert booking_service.notification_status(db, booking.booking_id)["notificationsStatus"] == "failed"

    booking = booking_service.queue_notification(db, booking.booking_id, "desk")
    assert booking.notifications_status == NotificationStatus.PENDING


def test_requeue_requires_a_confirmed_booking(db):
    vehicle = seed_vehicle(db)
    booking = seed_booking(db, vehicle, future(1), future(3), status=BookingStatus.PENDING)

    with pytest.raises(ValidationError):
        booking_service.queue_notification(db, booking.booking_id)


def test_dashboard_and_pipeline(db):
    vehicle = seed_vehicle(db, quantity=5)
    seed_booking(db, vehicle, date.today(), future(2), total_amount=3000.0,
                 payment_status=PaymentStatus.PAID)
    seed_booking(db, vehicle, future(1), future(2), status=BookingStatus.PENDING)

    stats = booking_service.dashboard_stats(db)

    assert stats["totalBookings"] == 2
    assert stats["statusCounts"] == {"confirmed": 1, "pending": 1}
    assert stats["todaysPickups"] == 1
    assert stats["pendingBookingsCount"] == 1
    assert stats["totalRevenue"] == 3000
    assert len(stats["recentBookings"]) == 2

    pipeline = booking_service.booking_pipeline(db)
    assert len(pipeline["confirmed"]) == 1
    assert pipeline["completed"] == []


def test_invoice_issued_once(db):
    vehicle = seed_vehicle(db)
    booking = seed_booking(db, vehicle, future(-3), future(-1), status=BookingStatus.COMPLETED,
                           rental_amount=3000.0, booking_fee=10.0, total_amount=3010.0)

    invoice = booking_service.issue_invoice(db, booking)

    assert invoice.invoice_no == f"INV-{booking.booking_id}"
    assert os.path.exists(invoice.pdf_path)
    assert booking_service.invoice_url(invoice).endswith(f"/invoices/INV-{booking.booking_id}.pdf")
    assert booking_service.issue_invoice(db, booking).id == invoice.id


def test_invoice_requires_completed_booking(db):
    vehicle = seed_vehicle(db)
    booking = seed_booking(db, vehicle, future(1), future(2))
    with pytest.raises(ValidationError):
        booking_service.issue_invoice(db, booking)
