from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
import os
from datetime import datetime

from config import COMPANY_NAME, COMPANY_PHONE, INVOICE_DIR


def _amount_row(c, width, y, label, amount, bold=False):
    c.setFont("Helvetica-Bold" if bold else "Helvetica", 11 if bold else 10)
    c.drawString(50, y, label)
    c.drawRightString(width - 50, y, f"Rs. {amount:.2f}")


def generate_invoice(data: dict, directory: str = None):
    """
    Generates the rental invoice PDF for a completed booking
    Returns file path
    """
    directory = directory or INVOICE_DIR
    os.makedirs(directory, exist_ok=True)

    invoice_no = data["invoice_no"]
    file_path = os.path.join(directory, f"{invoice_no}.pdf")

    c = canvas.Canvas(file_path, pagesize=A4)
    width, height = A4

    y = height - 50

    # -------------------
    # HEADER
    # -------------------
    c.setFont("Helvetica-Bold", 18)
    c.drawCentredString(width / 2, y, "RENTAL INVOICE")

    y -= 30
    c.setFont("Helvetica", 10)
    c.drawRightString(width - 50, y, f"Invoice No: {invoice_no}")
    y -= 15
    c.drawRightString(width - 50, y, f"Booking ID: {data['booking_id']}")
    y -= 15
    c.drawRightString(width - 50, y, f"Date: {datetime.now().strftime('%d-%m-%Y')}")

    y -= 30

    # -------------------
    # COMPANY DETAILS
    # -------------------
    c.setFont("Helvetica-Bold", 11)
    c.drawString(50, y, COMPANY_NAME)
    y -= 15
    c.setFont("Helvetica", 10)
    c.drawString(50, y, f"Phone: {COMPANY_PHONE}")

    y -= 30

    # -------------------
    # CUSTOMER / RENTAL
    # -------------------
    c.setFont("Helvetica-Bold", 11)
    c.drawString(50, y, "Billed To:")

    y -= 15
    c.setFont("Helvetica", 10)
    c.drawString(50, y, f"Customer Name: {data['customer_name']}")
    y -= 15
    c.drawString(50, y, f"Phone: {data.get('customer_phone') or '-'}")
    y -= 15
    c.drawString(50, y, f"Vehicle: {data['vehicle_name']}")
    y -= 15
    c.drawString(
        50, y,
        f"Rental Period: {data['pickup_date']} to {data['dropoff_date']} ({data['total_days']} days)"
    )

    y -= 30

    # -------------------
    # CHARGES
    # -------------------
    c.setFont("Helvetica-Bold", 11)
    c.drawString(50, y, "Charges")

    y -= 20
    _amount_row(c, width, y, "Rental:", data["base_amount"])
    y -= 15
    _amount_row(c, width, y, "Booking Fee:", data["fee_amount"])
    if data.get("tax_amount"):
        y -= 15
        _amount_row(c, width, y, "Tax:", data["tax_amount"])

    for charge in data.get("charges", []):
        y -= 15
        _amount_row(c, width, y, f"{charge['description']}:", charge["amount"])

    y -= 20
    _amount_row(c, width, y, "Total Amount:", data["total_amount"], bold=True)
    y -= 15
    _amount_row(c, width, y, "Amount Paid:", data["amount_paid"])
    y -= 15
    _amount_row(c, width, y, "Balance Due:", data["balance_due"], bold=True)

    y -= 40

    # -------------------
    # FOOTER
    # -------------------
    c.setFont("Helvetica", 9)
    c.drawString(
        50,
        y,
        "Note: This is a computer-generated invoice. No signature required."
    )

    c.showPage()
    c.save()

    return file_path
