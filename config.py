"""
Configuration settings for the application.
"""
import os
import logging
from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid value for {name}: '{value}', using {default}")
        return default


# ===============================
# DATABASE
# ===============================
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./car_rental.db").strip('"').strip("'")


# ===============================
# ADMIN AUTH
# ===============================
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "CHANGE_THIS_SECRET_IN_PRODUCTION")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(_env_float("ACCESS_TOKEN_EXPIRE_MINUTES", 60))


# ===============================
# PAYMENTS
# ===============================
# Shared secret the gateway signs "<order_id>|<payment_id>" with
PAYMENT_KEY_SECRET = os.getenv("PAYMENT_KEY_SECRET", "CHANGE_THIS_PAYMENT_SECRET")


# ===============================
# PUBLIC URLS / FILES
# ===============================
BASE_URL = os.getenv("BASE_URL", "http://127.0.0.1:8000")
INVOICE_DIR = os.getenv(
    "INVOICE_DIR",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "invoices"),
)


# ===============================
# COMPANY / NOTIFICATIONS
# ===============================
COMPANY_NAME = os.getenv("COMPANY_NAME", "MJ Car Rentals")
COMPANY_PHONE = os.getenv("COMPANY_PHONE", "1234567890")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "")
ADMIN_PHONE = os.getenv("ADMIN_PHONE", "")

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(_env_float("SMTP_PORT", 587))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")

FAST2SMS_URL = "https://www.fast2sms.com/dev/bulkV2"
FAST2SMS_API_KEY = os.getenv("FAST2SMS_API_KEY", "")
FAST2SMS_SENDER_ID = os.getenv("FAST2SMS_SENDER_ID", "FSTSMS")


# ===============================
# PRICING / SURCHARGES
# ===============================
class PricingConfig(BaseModel):
    """
    Amounts applied when a booking is priced.

    booking_fee is a flat amount in currency units, tax_rate a fraction
    of (rental + fee). Times are "HH:MM" local to the rental desk.
    """
    booking_fee: float = 10.0
    tax_rate: float = 0.0
    default_pickup_time: str = "09:00"
    default_dropoff_time: str = "18:00"

    model_config = {"frozen": True}


class SurchargeRates(BaseModel):
    """
    Rates used by the return surcharge calculator.

    - fuel_charge_per_quarter: currency units per quarter tank short
    - late_charge_per_hour: currency units per started hour late
    - km_allowance_per_day: free km per rental day
    - extra_km_rate: currency units per km above the allowance
    - damage_charge: flat currency amount when damage is noted
    - damage_keywords: case-insensitive substrings of the condition notes
    """
    fuel_charge_per_quarter: float = 500.0
    late_charge_per_hour: float = 200.0
    km_allowance_per_day: float = 300.0
    extra_km_rate: float = 10.0
    damage_charge: float = 2000.0
    damage_keywords: tuple[str, ...] = ("damage",)

    model_config = {"frozen": True}


def load_pricing_config() -> PricingConfig:
    return PricingConfig(
        booking_fee=_env_float("BOOKING_FEE", 10.0),
        tax_rate=_env_float("TAX_RATE", 0.0),
        default_pickup_time=os.getenv("DEFAULT_PICKUP_TIME", "09:00"),
        default_dropoff_time=os.getenv("DEFAULT_DROPOFF_TIME", "18:00"),
    )


def load_surcharge_rates() -> SurchargeRates:
    keywords = os.getenv("DAMAGE_KEYWORDS", "damage")
    return SurchargeRates(
        fuel_charge_per_quarter=_env_float("FUEL_CHARGE_PER_QUARTER", 500.0),
        late_charge_per_hour=_env_float("LATE_CHARGE_PER_HOUR", 200.0),
        km_allowance_per_day=_env_float("KM_ALLOWANCE_PER_DAY", 300.0),
        extra_km_rate=_env_float("EXTRA_KM_RATE", 10.0),
        damage_charge=_env_float("DAMAGE_CHARGE", 2000.0),
        damage_keywords=tuple(k.strip().lower() for k in keywords.split(",") if k.strip()),
    )


PRICING = load_pricing_config()
SURCHARGE_RATES = load_surcharge_rates()


# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
