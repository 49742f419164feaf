"""
Configuration

Runtime settings come from the environment (a local .env file is loaded
first). Business policy values are plain module constants: they are fixed
rules of the marketplace, not deployment knobs.
"""

import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "")
    database_name: str = os.getenv("DATABASE_NAME", "")

    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_alg: str = os.getenv("JWT_ALG", "HS256")

    # live feeds and the email verification watcher poll the store / provider
    live_poll_seconds: float = float(os.getenv("LIVE_POLL_SECONDS", "2"))
    verification_poll_seconds: float = float(os.getenv("VERIFICATION_POLL_SECONDS", "3"))
    verification_max_attempts: int = int(os.getenv("VERIFICATION_MAX_ATTEMPTS", "100"))

    cors_origins: List[str] = _split_csv(os.getenv("CORS_ORIGINS", "*"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    port: int = int(os.getenv("PORT", "8000"))


settings = Settings()


# -----------------------------
# Marketplace policy
# -----------------------------

NORMAL_DELIVERY_CHARGE = 50
EMERGENCY_DELIVERY_CHARGE = 100

INCOME_PER_DELIVERY = 40
PAYMENT_PER_DELIVERY = 10

DELIVERY_HOURS = (6, 23)   # 6:00 AM through 11:59 PM
PAYMENT_WINDOW = (0, 5)    # 12:00 AM through 5:59 AM

MIN_ADDRESS_LENGTH = 10

DELIVERY_ZONES = [
    "Dhanmondi",
    "Gulshan",
    "Banani",
    "Uttara",
    "Mirpur",
    "Mohammadpur",
    "Old Dhaka",
    "New Market",
    "Elephant Road",
    "Panthapath",
    "Farmgate",
    "Tejgaon",
    "Motijheel",
    "Ramna",
    "Azimpur",
    "Lalmatia",
    "Shyamoli",
    "Adabor",
    "Mohakhali",
    "Baridhara",
    "Bashundhara",
    "Wari",
    "Sutrapur",
    "Lalbagh",
    "Hazaribagh",
    "Kamrangirchar",
    "Keraniganj",
    "Savar",
    "Gazipur",
    "Narayanganj",
]
