# pricewatch/extractors/html_extractor.py

"""Extract a product's price from its HTML page."""

import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlsplit

import cloudscraper  # type: ignore[import-untyped]
from bs4 import BeautifulSoup
from curl_cffi import requests as curl_requests

from pricewatch.config.settings import Settings
from pricewatch.extractors.base_extractor import BaseExtractor, ExtractionError
from pricewatch.models.extraction import ExtractionResult

_MAX_PRICE = Decimal("10000000")

_CURRENCY_CODE_RE = re.compile(
    r"\b(USD|EUR|GBP|JPY|INR|CAD|AUD|CNY|SGD|HKD|CHF|NZD|AED)\b",
    re.IGNORECASE,
)

_META_PRICE_SELECTORS: list[str] = [
    'meta[property="product:price:amount"]',
    'meta[property="og:price:amount"]',
    'meta[itemprop="price"]',
]

_META_CURRENCY_SELECTORS: list[str] = [
    'meta[property="product:price:currency"]',
    'meta[property="og:price:currency"]',
    'meta[itemprop="priceCurrency"]',
]

# Tried in order once structured data comes up empty
_PRICE_SELECTORS: list[str] = [
    '[itemprop="price"]',
    "#priceblock_ourprice",
    "#priceblock_dealprice",
    "#priceblock_saleprice",
    ".a-price .a-offscreen",
    ".a-price-whole",
    ".product-price",
    ".current-price",
    ".price-current",
    "[data-price]",
    ".price",
]

_RATING_WORDS: tuple[str, ...] = (
    "rating", "review", "star", "rated", "vote",
)


def parse_price_text(text: str | None) -> Decimal | None:
    """Read a price such as ``'₹1,299.00'`` or ``'89,99 €'``.

    Returns ``None`` when no plausible price is present.
    """
    if not text:
        return None
    lowered = text.lower()
    if any(word in lowered for word in _RATING_WORDS):
        return None

    cleaned = re.sub(r"[^\d.,]", "", text)
    if not cleaned:
        return None

    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            # 1.299,00 style
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif re.search(r",\d{3}(?:,|$)", cleaned):
        cleaned = cleaned.replace(",", "")
    elif re.search(r",\d{1,2}$", cleaned):
        cleaned = cleaned.replace(",", ".")

    match = re.search(r"\d+(?:\.\d+)?", cleaned)
    if not match:
        return None
    try:
        price = Decimal(match.group(0))
    except InvalidOperation:
        return None
    if price <= 0 or price > _MAX_PRICE:
        return None
    return price


def detect_currency(text: str | None) -> str | None:
    """Guess an ISO currency code from a price string.

    Returns ``None`` when the text gives no hint, leaving the caller's
    configured default in charge.
    """
    if not text:
        return None
    code = _CURRENCY_CODE_RE.search(text)
    if code:
        return code.group(1).upper()
    if "₹" in text or re.search(r"\bRs\.?", text):
        return "INR"
    if "€" in text:
        return "EUR"
    if "£" in text:
        return "GBP"
    if "¥" in text or "￥" in text:
        return "CNY" if "元" in text else "JPY"
    if "$" in text:
        for marker, code_name in (
            ("C$", "CAD"), ("A$", "AUD"),
            ("HK$", "HKD"), ("S$", "SGD"),
        ):
            if marker in text:
                return code_name
        return "USD"
    return None


def _iter_json_ld(soup: BeautifulSoup) -> list[dict[str, Any]]:
    """Flatten every JSON-LD object on the page."""
    found: list[dict[str, Any]] = []
    for script in soup.select('script[type="application/ld+json"]'):
        raw = script.string or script.get_text()
        try:
            data: Any = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            continue
        stack: list[Any] = [data]
        while stack:
            node = stack.pop()
            if isinstance(node, list):
                stack.extend(node)
            elif isinstance(node, dict):
                found.append(node)
                if "@graph" in node:
                    stack.append(node["@graph"])
    return found


def parse_product_html(html: str) -> ExtractionResult | None:
    """Pull price, currency and name out of a product page."""
    soup = BeautifulSoup(html, "lxml")

    name = ""
    title_el = soup.select_one('meta[property="og:title"]')
    if title_el and title_el.get("content"):
        name = str(title_el["content"]).strip()
    elif soup.h1:
        name = soup.h1.get_text(strip=True)

    # 1. JSON-LD Product offers
    for node in _iter_json_ld(soup):
        node_type = node.get("@type")
        types = node_type if isinstance(node_type, list) else [node_type]
        if "Product" not in types:
            continue
        offers: Any = node.get("offers")
        offer_list = offers if isinstance(offers, list) else [offers]
        for offer in offer_list:
            if not isinstance(offer, dict):
                continue
            raw_price = offer.get("price", offer.get("lowPrice"))
            price = parse_price_text(
                str(raw_price) if raw_price is not None else None
            )
            if price is not None:
                currency = offer.get("priceCurrency")
                return ExtractionResult(
                    price=price,
                    currency_code=(
                        str(currency).upper() if currency else None
                    ),
                    name=str(node.get("name") or name),
                )

    # 2. Open Graph / microdata meta tags
    for selector in _META_PRICE_SELECTORS:
        el = soup.select_one(selector)
        if not el:
            continue
        price = parse_price_text(str(el.get("content", "")))
        if price is None:
            continue
        meta_currency: str | None = None
        for cur_selector in _META_CURRENCY_SELECTORS:
            cur_el = soup.select_one(cur_selector)
            if cur_el and cur_el.get("content"):
                meta_currency = str(cur_el["content"]).upper()
                break
        return ExtractionResult(price, meta_currency, name)

    # 3. Visible price elements
    for selector in _PRICE_SELECTORS:
        el = soup.select_one(selector)
        if not el:
            continue
        text = (
            el.get_text(strip=True)
            or str(el.get("content", ""))
            or str(el.get("data-price", ""))
        )
        price = parse_price_text(text)
        if price is not None:
            return ExtractionResult(price, detect_currency(text), name)

    return None


def _host_of(url: str) -> str:
    """Breaker key for *url*: its lower-cased host, or the URL itself."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    return (host or url).lower()


@dataclass
class _HostState:
    """Backoff and circuit breaker bookkeeping for one site."""

    current_delay: float
    consecutive_failures: int = 0
    circuit_open: bool = False
    circuit_opened_at: float = 0.0


class HtmlPriceExtractor(BaseExtractor):
    """Browser-impersonating fetcher plus structured-data price parser.

    Delay and circuit breaker state are kept per host, so one failing
    site never blocks requests to another. Instances are safe to share
    across the refresh pass's worker threads.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger("pricewatch.extractor")
        self.settings = Settings()
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT
        self._hosts: dict[str, _HostState] = {}
        self._lock = threading.Lock()

    # ── Resilience ───────────────────────────────────────

    def _state_for(self, host: str) -> _HostState:
        """Return the bookkeeping for *host*; caller holds the lock."""
        state = self._hosts.get(host)
        if state is None:
            state = _HostState(current_delay=self.settings.REQUEST_DELAY)
            self._hosts[host] = state
        return state

    def _current_delay(self, host: str) -> float:
        with self._lock:
            return self._state_for(host).current_delay

    def _validate_response(self, text: str) -> bool:
        """Reject CAPTCHA or bot-challenge pages."""
        lower = text.lower()
        if "<body" in lower and len(text) > 5000:
            return True
        for keyword in self.settings.CAPTCHA_KEYWORDS:
            if keyword in lower:
                self.logger.warning(
                    "CAPTCHA keyword '%s' detected", keyword,
                )
                return False
        return True

    def _check_circuit(self, host: str) -> bool:
        """Return True while *host*'s breaker blocks outgoing requests."""
        with self._lock:
            state = self._state_for(host)
            if not state.circuit_open:
                return False
            elapsed = time.time() - state.circuit_opened_at
            if elapsed >= self.settings.CIRCUIT_BREAKER_COOLDOWN:
                self.logger.info(
                    "Circuit breaker for %s half-open after %.0fs",
                    host, elapsed,
                )
                state.circuit_open = False
                return False
            return True

    def _record_success(self, host: str) -> None:
        with self._lock:
            state = self._state_for(host)
            state.consecutive_failures = 0
            state.circuit_open = False
            state.current_delay = self.settings.REQUEST_DELAY

    def _record_failure(self, host: str) -> None:
        with self._lock:
            state = self._state_for(host)
            state.consecutive_failures += 1
            if (
                state.consecutive_failures
                >= self.settings.CIRCUIT_BREAKER_THRESHOLD
            ):
                state.circuit_open = True
                state.circuit_opened_at = time.time()
                self.logger.error(
                    "Circuit breaker for %s opened after %d consecutive "
                    "failures",
                    host, state.consecutive_failures,
                )

    def _escalate_delay(self, host: str) -> float:
        """Double *host*'s delay, capped at the configured multiplier."""
        max_delay = (
            self.settings.REQUEST_DELAY
            * self.settings.MAX_DELAY_MULTIPLIER
        )
        with self._lock:
            state = self._state_for(host)
            state.current_delay = min(state.current_delay * 2, max_delay)
            delay = state.current_delay
        self.logger.warning(
            "Rate-limited by %s, delay escalated to %.1fs", host, delay,
        )
        return delay

    # ── Fetching ─────────────────────────────────────────

    def _headers_for(self, url: str) -> dict[str, str]:
        parts = urlsplit(url)
        return {
            **self.settings.DEFAULT_HEADERS,
            "Referer": f"{parts.scheme}://{parts.netloc}/",
        }

    def _new_session(self) -> curl_requests.Session:
        """One impersonating session per fetch; calls run in threads."""
        return curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )

    def _fetch_with_retries(
        self,
        session: curl_requests.Session,
        url: str,
        host: str,
        headers: dict[str, str],
    ) -> str | None:
        """GET with retries and adaptive delay."""
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = session.get(
                    url, headers=headers, timeout=self._request_timeout,
                )
                if resp.status_code == 200:
                    if self._validate_response(resp.text):
                        self._record_success(host)
                        return str(resp.text)
                    time.sleep(self._escalate_delay(host))
                    continue
                self.logger.warning(
                    "HTTP %d for %s on attempt %d",
                    resp.status_code, url, attempt + 1,
                )
                if resp.status_code in (429, 403):
                    time.sleep(self._escalate_delay(host))
            except Exception as exc:
                self.logger.warning(
                    "Request error for %s on attempt %d: %s",
                    url, attempt + 1, exc,
                )
                time.sleep(self._current_delay(host) * (attempt + 1))
        return None

    def _fetch_html(self, url: str, host: str) -> str | None:
        """Fetch with curl_cffi, then fall back to cloudscraper."""
        headers = self._headers_for(url)
        time.sleep(self._current_delay(host))

        with self._new_session() as session:
            html = self._fetch_with_retries(session, url, host, headers)
        if html is not None:
            return html

        self.logger.info(
            "curl_cffi exhausted for %s, falling back to cloudscraper",
            url,
        )
        try:
            _cs: Any = cloudscraper
            scraper: Any = _cs.create_scraper()
            fallback: Any = scraper.get(
                url, headers=headers, timeout=self._request_timeout,
            )
            if fallback.status_code == 200:
                self._record_success(host)
                return str(fallback.text)
        except Exception as exc:
            self.logger.error(
                "cloudscraper fallback failed for %s: %s",
                url, exc, exc_info=True,
            )
        self._record_failure(host)
        return None

    def extract(self, url: str) -> ExtractionResult:
        """Fetch *url* and parse its price, raising on any failure."""
        host = _host_of(url)
        if self._check_circuit(host):
            raise ExtractionError(url, "circuit breaker open")

        html = self._fetch_html(url, host)
        if html is None:
            raise ExtractionError(url, "page could not be fetched")

        result = parse_product_html(html)
        if result is None:
            raise ExtractionError(url, "no price found on page")

        self.logger.info(
            "Extracted %s %s from %s",
            result.price, result.currency_code or "(no currency)", url,
        )
        return result
