from urllib.parse import quote

from config import COMPANY_NAME


def normalize_phone(phone: str) -> str:
    phone = "".join(ch for ch in (phone or "") if ch.isdigit())
    if phone.startswith("0"):
        phone = "91" + phone[1:]
    elif len(phone) == 10:
        phone = "91" + phone
    return phone


def _link(phone: str, message: str) -> str:
    return f"https://wa.me/{normalize_phone(phone)}?text={quote(message)}"


def generate_confirmation_link(phone: str, booking_id: str, vehicle_name: str,
                               pickup: str, dropoff: str):
    message = (
        f"*{COMPANY_NAME} – Booking Confirmed*\n\n"
        f"Booking ID: {booking_id}\n"
        f"Vehicle: {vehicle_name}\n"
        f"Pickup: {pickup}\n"
        f"Return: {dropoff}\n\n"
        "Please carry your driving license at pickup."
    )
    return _link(phone, message)


def generate_invoice_link(phone: str, invoice_url: str):
    message = (
        f"*{COMPANY_NAME} – Rental Invoice*\n\n"
        "Your invoice is ready.\n\n"
        "Download Invoice:\n"
        f"{invoice_url}\n\n"
        "Please tap *Send* to receive this invoice.\n\n"
        f"Thank you for choosing {COMPANY_NAME}"
    )
    return _link(phone, message)
