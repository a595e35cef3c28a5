"""
Shared fixtures. The environment is set before any project module is
imported so the engine binds to an in-memory database and invoices go to
a scratch directory.
"""
import os
import tempfile
from datetime import date, timedelta

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("INVOICE_DIR", tempfile.mkdtemp(prefix="invoices-"))
os.environ.setdefault("PAYMENT_KEY_SECRET", "test-payment-secret")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")

import pytest

from database import Base, SessionLocal, engine, init_db
from models import Booking, BookingStatus, Vehicle, VehicleCategory, Transmission


@pytest.fixture(autouse=True)
def clean_db():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers(client):
    client.post("/api/admin/create", json={"username": "desk", "password": "secret123"})
    res = client.post("/api/admin/login", json={"username": "desk", "password": "secret123"})
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


def future(days: int) -> date:
    return date.today() + timedelta(days=days)


def seed_vehicle(db, quantity=1, daily_rate=1500.0, **kwargs) -> Vehicle:
    vehicle = Vehicle(
        name=kwargs.pop("name", "Swift Dzire"),
        category=kwargs.pop("category", VehicleCategory.SEDAN),
        capacity=kwargs.pop("capacity", 5),
        transmission=kwargs.pop("transmission", Transmission.MANUAL),
        daily_rate=daily_rate,
        quantity=quantity,
        **kwargs,
    )
    db.add(vehicle)
    db.commit()
    db.refresh(vehicle)
    return vehicle


def seed_booking(db, vehicle, start, end, status=BookingStatus.CONFIRMED, **kwargs) -> Booking:
    booking = Booking(
        booking_id=kwargs.pop("booking_id", None),
        vehicle_id=vehicle.id,
        vehicle_name=vehicle.name,
        customer_name=kwargs.pop("customer_name", "Asha Rao"),
        customer_email=kwargs.pop("customer_email", "asha@example.com"),
        customer_phone=kwargs.pop("customer_phone", "9876543210"),
        pickup_date=start,
        dropoff_date=end,
        total_days=(end - start).days,
        status=status,
        **kwargs,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    if booking.booking_id is None:
        booking.booking_id = f"BKTEST{booking.id:04d}"
        db.commit()
    return booking
