"""
Booking confirmation notifications: email and SMS to the customer and to
the admin desk.

Channels report failures in their result instead of raising. Dispatch
runs after the confirming transaction has been committed, and only the
summary is stored on the booking.
"""
import logging
import smtplib
from datetime import date
from email.message import EmailMessage
from typing import Optional

import httpx
from pydantic import BaseModel, Field

import config
from database import SessionLocal
from models import Booking, NotificationStatus, utc_now

logger = logging.getLogger(__name__)


class BookingSnapshot(BaseModel):
    booking_id: str
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    vehicle_name: Optional[str] = None
    pickup_date: date
    dropoff_date: date
    total_days: Optional[int] = None
    rental_amount: float = 0.0
    booking_fee: float = 0.0
    total_amount: float = 0.0

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingSnapshot":
        return cls(
            booking_id=booking.booking_id,
            customer_name=booking.customer_name,
            customer_email=booking.customer_email,
            customer_phone=booking.customer_phone,
            vehicle_name=booking.vehicle_name,
            pickup_date=booking.pickup_date,
            dropoff_date=booking.dropoff_date,
            total_days=booking.total_days,
            rental_amount=booking.rental_amount or 0.0,
            booking_fee=booking.booking_fee or 0.0,
            total_amount=booking.total_amount or 0.0,
        )


class ChannelResult(BaseModel):
    success: bool = False
    service: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationSummary(BaseModel):
    attempted: int = 0
    successful: int = 0
    failed: int = 0


class NotificationResult(BaseModel):
    success: bool
    results: dict[str, ChannelResult] = Field(default_factory=dict)
    summary: NotificationSummary = Field(default_factory=NotificationSummary)

    @property
    def status(self) -> NotificationStatus:
        if self.summary.attempted and self.summary.successful == self.summary.attempted:
            return NotificationStatus.SENT
        if self.summary.successful:
            return NotificationStatus.PARTIAL
        return NotificationStatus.FAILED


def customer_message(b: BookingSnapshot) -> str:
    return (
        f"Dear {b.customer_name}, your booking {b.booking_id} with {config.COMPANY_NAME} is confirmed. "
        f"Vehicle: {b.vehicle_name}. Pickup: {b.pickup_date.isoformat()}, "
        f"Return: {b.dropoff_date.isoformat()}. Total: Rs.{b.total_amount:.2f}. "
        f"Call {config.COMPANY_PHONE} for help."
    )


def admin_message(b: BookingSnapshot) -> str:
    return (
        f"New booking {b.booking_id}: {b.customer_name} ({b.customer_phone}) - {b.vehicle_name}, "
        f"{b.pickup_date.isoformat()} to {b.dropoff_date.isoformat()}, Rs.{b.total_amount:.2f}"
    )


class NotificationService:
    def __init__(self, http_client: Optional[httpx.Client] = None):
        self._http = http_client

    # -------------------
    # SMS (Fast2SMS)
    # -------------------
    def send_sms(self, phone_number: str, message: str) -> ChannelResult:
        if not config.FAST2SMS_API_KEY:
            return ChannelResult(service="fast2sms", error="Fast2SMS API key not configured")

        phone = "".join(ch for ch in str(phone_number) if ch.isdigit())
        if phone.startswith("0"):
            phone = phone[1:]
        if len(phone) == 12 and phone.startswith("91"):
            phone = phone[2:]
        if len(phone) != 10:
            logger.warning(f"Invalid phone number length: {phone}")
            return ChannelResult(service="fast2sms", error="Invalid phone number length. Must be 10 digits.")

        payload = {
            "sender_id": config.FAST2SMS_SENDER_ID,
            "message": message,
            "language": "english",
            "route": "q",
            "numbers": f"91{phone}",
        }
        headers = {"authorization": config.FAST2SMS_API_KEY, "Content-Type": "application/json"}
        try:
            client = self._http or httpx.Client(timeout=15.0)
            try:
                response = client.post(config.FAST2SMS_URL, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
            finally:
                if self._http is None:
                    client.close()
        except httpx.HTTPError as e:
            logger.error(f"Fast2SMS error: {e}")
            return ChannelResult(service="fast2sms", error=str(e))

        if data.get("return") is True:
            request_id = data.get("request_id")
            return ChannelResult(success=True, service="fast2sms",
                                 message_id=str(data.get("message_id") or request_id))
        return ChannelResult(service="fast2sms", error=str(data.get("message") or "Unknown error"))

    # -------------------
    # EMAIL (SMTP)
    # -------------------
    def send_email(self, to_address: str, subject: str, body: str) -> ChannelResult:
        if not config.SMTP_HOST:
            return ChannelResult(service="smtp", error="SMTP not configured")
        if not to_address or "@" not in to_address:
            return ChannelResult(service="smtp", error="Invalid email address")

        msg = EmailMessage()
        msg["From"] = config.SMTP_USER or f"no-reply@{config.SMTP_HOST}"
        msg["To"] = to_address
        msg["Subject"] = subject
        msg.set_content(body)
        try:
            with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=15) as smtp:
                smtp.starttls()
                if config.SMTP_USER:
                    smtp.login(config.SMTP_USER, config.SMTP_PASSWORD)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email to {to_address} failed: {e}")
            return ChannelResult(service="smtp", error=str(e))
        return ChannelResult(success=True, service="smtp", message_id=msg.get("Message-ID"))

    # -------------------
    # ALL CHANNELS
    # -------------------
    def send_all(self, booking: BookingSnapshot) -> NotificationResult:
        subject = f"Booking Confirmed - {booking.booking_id}"
        results = {}

        if booking.customer_email:
            results["customer_email"] = self.send_email(booking.customer_email, subject, customer_message(booking))
        else:
            results["customer_email"] = ChannelResult(error="No customer email provided")

        if booking.customer_phone:
            results["customer_sms"] = self.send_sms(booking.customer_phone, customer_message(booking))
        else:
            results["customer_sms"] = ChannelResult(error="No customer phone provided")

        if config.ADMIN_EMAIL:
            results["admin_email"] = self.send_email(config.ADMIN_EMAIL, f"New {subject}", admin_message(booking))
        else:
            results["admin_email"] = ChannelResult(error="ADMIN_EMAIL not configured")

        if config.ADMIN_PHONE:
            results["admin_sms"] = self.send_sms(config.ADMIN_PHONE, admin_message(booking))
        else:
            results["admin_sms"] = ChannelResult(error="ADMIN_PHONE not configured")

        successful = sum(1 for r in results.values() if r.success)
        summary = NotificationSummary(
            attempted=len(results), successful=successful, failed=len(results) - successful
        )
        logger.info(f"Notification summary for {booking.booking_id}: {successful}/{len(results)} successful")
        return NotificationResult(success=successful > 0, results=results, summary=summary)


notification_service = NotificationService()


def dispatch_confirmation(booking_pk: int, service: Optional[NotificationService] = None):
    """
    Send confirmation notifications for a committed booking and store the
    outcome. Never raises.
    """
    service = service or notification_service
    db = SessionLocal()
    try:
        booking = db.get(Booking, booking_pk)
        if not booking:
            logger.error(f"Booking {booking_pk} not found for notification dispatch")
            return None

        try:
            result = service.send_all(BookingSnapshot.from_booking(booking))
            booking.notifications_status = result.status
        except Exception:
            logger.exception(f"Notifications failed for booking {booking.booking_id}")
            result = None
            booking.notifications_status = NotificationStatus.FAILED

        booking.notifications_sent_at = utc_now()
        db.commit()
        return result
    except Exception:
        logger.exception(f"Could not record notification status for booking {booking_pk}")
        db.rollback()
        return None
    finally:
        db.close()
