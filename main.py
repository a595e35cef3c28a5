import logging
import os
from datetime import date
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

import booking_service
import config
from auth import admin_name, create_access_token, get_current_admin, hash_password, verify_password
from database import get_db, init_db
from exceptions import BookingError
from models import (
    Admin,
    Booking,
    BookingStatus,
    PaymentStatus,
    Transmission,
    Vehicle,
    VehicleCategory,
    utc_now,
)
from notifications import dispatch_confirmation
from schemas import (
    AdminCreate,
    AdminLogin,
    AdminPayment,
    BookingCreate,
    BookingOut,
    BookingStatusUpdate,
    CancelRequest,
    CompleteRequest,
    FleetAvailabilityRequest,
    HandoverRequest,
    ManualBookingCreate,
    PaymentVerification,
    ReturnRequest,
    StartUseRequest,
    VehicleCreate,
    VehicleOut,
    VehicleUpdate,
)
from surcharges import Charge, VehicleSnapshot
from utils.whatsapp import generate_confirmation_link, generate_invoice_link


# ===============================
# LOGGING
# ===============================
logging.basicConfig(
    level=config.LOG_LEVEL,
    format=config.LOG_FORMAT,
    datefmt=config.LOG_DATE_FORMAT,
)
logger = logging.getLogger(__name__)


# ===============================
# APP INIT
# ===============================
app = FastAPI(title="Car Rental Booking Backend")


# ===============================
# CORS
# ===============================
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ===============================
# STATIC INVOICES
# ===============================
os.makedirs(config.INVOICE_DIR, exist_ok=True)
app.mount("/invoices", StaticFiles(directory=config.INVOICE_DIR), name="invoices")


# ===============================
# DB INIT
# ===============================
init_db()


# ===============================
# ERROR HANDLERS
# ===============================
@app.exception_handler(BookingError)
def booking_error_handler(request: Request, exc: BookingError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Validation failed",
            "details": jsonable_encoder(exc.errors()),
        },
    )


def booking_out(booking: Booking) -> BookingOut:
    return BookingOut.model_validate(booking)


def confirmation_link(booking: Booking) -> Optional[str]:
    if booking.status != BookingStatus.CONFIRMED or not booking.customer_phone:
        return None
    return generate_confirmation_link(
        booking.customer_phone,
        booking.booking_id,
        booking.vehicle_name,
        booking.pickup_date.isoformat(),
        booking.dropoff_date.isoformat(),
    )


# ===============================
# HEALTH CHECK
# ===============================
@app.get("/")
def home():
    return {"status": "Backend running"}


@app.get("/api/health")
def health():
    return {"success": True, "status": "OK", "timestamp": utc_now()}


# =====================================================
# PUBLIC API - VEHICLES / AVAILABILITY (NO JWT)
# =====================================================
@app.get("/api/vehicles")
def list_vehicles(
    category: Optional[VehicleCategory] = None,
    min_capacity: Optional[int] = None,
    transmission: Optional[Transmission] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    vehicles = booking_service.list_vehicles(
        db, category, min_capacity, transmission, min_price, max_price, search
    )
    return {
        "success": True,
        "count": len(vehicles),
        "vehicles": [VehicleOut.model_validate(v) for v in vehicles],
    }


@app.post("/api/vehicles/availability")
def fleet_availability(data: FleetAvailabilityRequest, db: Session = Depends(get_db)):
    results = booking_service.fleet_availability(
        db, data.pickup_date, data.dropoff_date, data.category, data.min_capacity
    )
    vehicles = [
        {**VehicleOut.model_validate(v).model_dump(mode="json"), **result.to_dict()}
        for v, result in results
    ]
    return {
        "success": True,
        "pickupDate": data.pickup_date,
        "dropoffDate": data.dropoff_date,
        "vehicles": vehicles,
        "availableCount": sum(1 for v in vehicles if v["available"]),
    }


@app.get("/api/vehicles/{vehicle_id}")
def get_vehicle(vehicle_id: int, db: Session = Depends(get_db)):
    vehicle = booking_service.get_vehicle(db, vehicle_id)
    return {"success": True, "vehicle": VehicleOut.model_validate(vehicle)}


@app.get("/api/vehicles/{vehicle_id}/availability")
def vehicle_availability(
    vehicle_id: int,
    pickup_date: date,
    dropoff_date: date,
    db: Session = Depends(get_db),
):
    result = booking_service.check_availability(db, vehicle_id, pickup_date, dropoff_date)
    return {"success": True, "vehicleId": vehicle_id, **result.to_dict()}


@app.get("/api/vehicles/{vehicle_id}/unavailable-dates")
def vehicle_unavailable_dates(vehicle_id: int, db: Session = Depends(get_db)):
    return {"success": True, **booking_service.vehicle_calendar(db, vehicle_id)}


# =====================================================
# PUBLIC API - CUSTOMER BOOKING (NO JWT)
# =====================================================
@app.post("/api/bookings", status_code=201)
def create_booking(data: BookingCreate, db: Session = Depends(get_db)):
    booking = booking_service.create_booking(db, data)

    return {
        "success": True,
        "message": "Booking created successfully",
        "booking_id": booking.booking_id,
        "booking": booking_out(booking),
    }


@app.get("/api/bookings/{identifier}")
def get_booking(identifier: str, db: Session = Depends(get_db)):
    booking = booking_service.find_booking(db, identifier)
    return {"success": True, "booking": booking_out(booking)}


@app.get("/api/bookings/{identifier}/notification-status")
def booking_notification_status(identifier: str, db: Session = Depends(get_db)):
    return {"success": True, **booking_service.notification_status(db, identifier)}


@app.post("/api/payments/verify")
def verify_payment(
    data: PaymentVerification,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    booking, confirmed = booking_service.confirm_payment(
        db, data.booking_id, data.order_id, data.payment_id, data.signature
    )
    if confirmed:
        background_tasks.add_task(dispatch_confirmation, booking.id)

    return {
        "success": True,
        "message": "Payment verified and booking confirmed" if confirmed else "Payment already verified",
        "booking": booking_out(booking),
        "whatsapp_link": confirmation_link(booking),
    }


# =====================================================
# ADMIN AUTH
# =====================================================
@app.post("/api/admin/create")
def create_admin(data: AdminCreate, db: Session = Depends(get_db)):
    if db.query(Admin).filter(Admin.username == data.username).first():
        raise HTTPException(status_code=400, detail="Admin already exists")

    admin = Admin(
        username=data.username,
        password=hash_password(data.password),
    )
    db.add(admin)
    db.commit()
    logger.info(f"Admin {data.username} created")

    return {"message": "Admin created successfully"}


@app.post("/api/admin/login")
def admin_login(data: AdminLogin, db: Session = Depends(get_db)):
    admin = db.query(Admin).filter(Admin.username == data.username).first()
    if not admin or not admin.is_active or not verify_password(data.password, admin.password):
        logger.warning(f"Failed admin login for {data.username}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    admin.last_login = utc_now()
    db.commit()
    token = create_access_token({"sub": admin.username})

    return {
        "message": "Login successful",
        "access_token": token,
        "token_type": "bearer"
    }


# =====================================================
# ADMIN APIs - VEHICLES
# =====================================================
@app.post("/api/admin/vehicles", status_code=201)
def create_vehicle(
    data: VehicleCreate,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    values = data.model_dump()
    values["features"] = ",".join(values["features"])
    vehicle = Vehicle(**values)
    db.add(vehicle)
    db.commit()
    db.refresh(vehicle)
    logger.info(f"Vehicle {vehicle.id} ({vehicle.name}) added by {admin_name(admin)}")

    return {"success": True, "vehicle": VehicleOut.model_validate(vehicle)}


@app.put("/api/admin/vehicles/{vehicle_id}")
def update_vehicle(
    vehicle_id: int,
    data: VehicleUpdate,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    vehicle = booking_service.get_vehicle(db, vehicle_id)
    values = data.model_dump(exclude_unset=True)
    if values.get("features") is not None:
        values["features"] = ",".join(values["features"])
    for field, value in values.items():
        setattr(vehicle, field, value)
    db.commit()
    db.refresh(vehicle)
    logger.info(f"Vehicle {vehicle.id} updated by {admin_name(admin)}: {sorted(values)}")

    return {"success": True, "vehicle": VehicleOut.model_validate(vehicle)}


@app.delete("/api/admin/vehicles/{vehicle_id}")
def delete_vehicle(
    vehicle_id: int,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    vehicle = booking_service.get_vehicle(db, vehicle_id)
    vehicle.is_available = False
    db.commit()
    logger.info(f"Vehicle {vehicle.id} withdrawn by {admin_name(admin)}")

    return {"success": True, "message": "Vehicle removed from the fleet"}


# =====================================================
# ADMIN APIs - BOOKINGS
# =====================================================
@app.get("/api/admin/bookings")
def view_bookings(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    vehicle_id: Optional[int] = None,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    bookings, total = booking_service.list_bookings(
        db, status, search, page, limit, vehicle_id=vehicle_id
    )

    return {
        "success": True,
        "bookings": [booking_out(b) for b in bookings],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if limit else 0,
        },
    }


@app.get("/api/admin/bookings/pipeline")
def bookings_pipeline(
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    pipeline = booking_service.booking_pipeline(db)
    return {
        "success": True,
        "pipeline": {status: [booking_out(b) for b in items] for status, items in pipeline.items()},
    }


@app.post("/api/admin/bookings/manual", status_code=201)
def create_manual_booking(
    data: ManualBookingCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    booking = booking_service.create_booking(db, data, actor=admin_name(admin), manual=True)
    if booking.status == BookingStatus.CONFIRMED:
        background_tasks.add_task(dispatch_confirmation, booking.id)

    return {
        "success": True,
        "message": "Manual booking created successfully",
        "booking": booking_out(booking),
        "whatsapp_link": confirmation_link(booking),
    }


@app.post("/api/admin/bookings/mark-overdue")
def mark_overdue(
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    marked = booking_service.mark_overdue_bookings(db, actor=admin_name(admin))
    return {"success": True, "count": len(marked), "bookings": marked}


@app.post("/api/admin/bookings/{identifier}/payment")
def record_payment(
    identifier: str,
    data: AdminPayment,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    booking, confirmed = booking_service.record_admin_payment(db, identifier, data, admin_name(admin))
    if confirmed:
        background_tasks.add_task(dispatch_confirmation, booking.id)

    failed = data.payment_status == PaymentStatus.FAILED.value
    return {
        "success": not failed,
        "message": "Payment failed" if failed else "Payment recorded",
        "booking": booking_out(booking),
        "whatsapp_link": confirmation_link(booking) if confirmed else None,
    }


@app.put("/api/admin/bookings/{identifier}/status")
def update_booking_status(
    identifier: str,
    data: BookingStatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    booking = booking_service.update_status(db, identifier, data.status, admin_name(admin), data.notes)
    if data.status == BookingStatus.CONFIRMED:
        background_tasks.add_task(dispatch_confirmation, booking.id)

    return {
        "success": True,
        "message": f"Booking status updated to {booking.status.value}",
        "booking": booking_out(booking),
    }


@app.post("/api/admin/bookings/{identifier}/handover")
def handover_vehicle(
    identifier: str,
    data: HandoverRequest,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    snapshot = VehicleSnapshot(
        odometer=data.odometer_reading,
        fuel_level=data.fuel_level,
        condition_notes=data.condition_notes,
    )
    booking = booking_service.hand_over_vehicle(
        db, identifier, snapshot, admin_name(admin), data.customer_signature
    )
    return {"success": True, "message": "Vehicle handed over successfully", "booking": booking_out(booking)}


@app.post("/api/admin/bookings/{identifier}/start")
def start_rental(
    identifier: str,
    data: StartUseRequest = StartUseRequest(),
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    booking = booking_service.start_rental(db, identifier, admin_name(admin), data.notes)
    return {"success": True, "message": "Rental started", "booking": booking_out(booking)}


@app.post("/api/admin/bookings/{identifier}/return")
def return_vehicle(
    identifier: str,
    data: ReturnRequest,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    snapshot = VehicleSnapshot(
        odometer=data.odometer_reading,
        fuel_level=data.fuel_level,
        condition_notes=data.condition_notes,
    )
    manual = [Charge(**c.model_dump()) for c in data.additional_charges]
    booking, surcharges = booking_service.return_vehicle(
        db, identifier, snapshot, admin_name(admin), data.notes, manual
    )

    return {
        "success": True,
        "message": "Vehicle returned successfully",
        "booking": booking_out(booking),
        "additionalCharges": surcharges.charges,
        "totalAdditionalCharges": surcharges.total,
    }


@app.post("/api/admin/bookings/{identifier}/complete")
def complete_booking(
    identifier: str,
    data: CompleteRequest = CompleteRequest(),
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    booking = booking_service.complete_booking(db, identifier, admin_name(admin), data.final_notes)

    invoice_url = None
    whatsapp_link = None
    try:
        invoice = booking_service.issue_invoice(db, booking)
    except OSError:
        # The booking is already completed; the invoice can be resent later
        logger.exception(f"Invoice generation failed for booking {booking.booking_id}")
        db.rollback()
    else:
        invoice_url = booking_service.invoice_url(invoice)
        whatsapp_link = generate_invoice_link(booking.customer_phone, invoice_url)

    return {
        "success": True,
        "message": "Booking completed successfully",
        "booking": booking_out(booking),
        "invoice_url": invoice_url,
        "whatsapp_link": whatsapp_link,
    }


@app.post("/api/admin/bookings/{identifier}/cancel")
def cancel_booking(
    identifier: str,
    data: CancelRequest = CancelRequest(),
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    booking = booking_service.cancel_booking(
        db, identifier, data.reason, data.refund_amount, admin_name(admin)
    )
    return {"success": True, "message": "Booking cancelled successfully", "booking": booking_out(booking)}


@app.post("/api/admin/bookings/{identifier}/notify")
def resend_notifications(
    identifier: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    booking = booking_service.queue_notification(db, identifier, admin_name(admin))
    background_tasks.add_task(dispatch_confirmation, booking.id)

    return {
        "success": True,
        "message": "Notifications queued",
        "booking": booking_out(booking),
        "whatsapp_link": confirmation_link(booking),
    }


# =====================================================
# ADMIN APIs - DASHBOARD / INVOICES
# =====================================================
@app.get("/api/admin/stats")
def dashboard_stats(
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    return {"success": True, "stats": booking_service.dashboard_stats(db)}


@app.post("/api/admin/invoices/{identifier}/resend-whatsapp")
def resend_invoice_whatsapp(
    identifier: str,
    db: Session = Depends(get_db),
    admin=Depends(get_current_admin)
):
    booking = booking_service.find_booking(db, identifier)
    invoice = booking_service.get_invoice(db, booking)

    if not invoice:
        raise HTTPException(status_code=400, detail="Invoice not generated")

    invoice_url = booking_service.invoice_url(invoice)
    whatsapp_link = generate_invoice_link(
        booking.customer_phone,
        invoice_url
    )

    return {
        "message": "WhatsApp invoice link generated",
        "invoice_url": invoice_url,
        "whatsapp_link": whatsapp_link
    }
