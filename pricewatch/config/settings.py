# pricewatch/config/settings.py

"""Central configuration for the pricewatch refresh pipeline."""

import os
from decimal import Decimal
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the pricewatch refresh pipeline."""

    # --- Extraction (HTML adapter) ---
    REQUEST_DELAY: float = 1.0          # Seconds before each page fetch
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 300.0
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "verify you are human",
        "unusual traffic",
        "automated requests",
    ]

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Currency ---
    BASE_CURRENCY: str = "USD"
    # Applied when an extraction result carries no currency code
    DEFAULT_CURRENCY: str = os.getenv(
        "PRICEWATCH_DEFAULT_CURRENCY", "INR"
    ).upper()
    PRICE_DECIMALS: int = 3
    # Units of BASE_CURRENCY per one unit of the keyed currency
    EXCHANGE_RATES: dict[str, Decimal] = {
        "USD": Decimal("1"),
        "EUR": Decimal("1.08"),
        "GBP": Decimal("1.27"),
        "JPY": Decimal("0.0067"),
        "INR": Decimal("0.012"),
        "CAD": Decimal("0.74"),
        "AUD": Decimal("0.66"),
        "CNY": Decimal("0.14"),
    }

    # --- Refresh pipeline ---
    EXTRACTION_TIMEOUT: float = 120.0   # Per-URL bound (secs)
    RUN_TIMEOUT: float = 3 * 3600.0     # Whole-pass bound (secs)
    MAX_CONCURRENT_EXTRACTIONS: int = 4

    # --- Quota ---
    DEFAULT_URL_QUOTA: int = 50

    # --- Schedule ---
    SCHEDULE_HOUR: int = int(os.getenv("PRICEWATCH_SCHEDULE_HOUR", "0"))
    SCHEDULE_MINUTE: int = int(
        os.getenv("PRICEWATCH_SCHEDULE_MINUTE", "0")
    )
    SCHEDULE_TIMEZONE: str = os.getenv(
        "PRICEWATCH_TIMEZONE", "Asia/Kolkata"
    )

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DB_PATH: Path = Path(
        os.getenv(
            "PRICEWATCH_DB_PATH",
            str(BASE_DIR / "data" / "pricewatch.db"),
        )
    )
    LOGS_DIR: Path = BASE_DIR / "logs"
