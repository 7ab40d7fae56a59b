# tests/test_html_extractor.py

"""Tests for HTML price parsing and the fetching extractor."""

import unittest
from decimal import Decimal
from unittest.mock import MagicMock, patch

from pricewatch.config.settings import Settings
from pricewatch.extractors.base_extractor import ExtractionError
from pricewatch.extractors.html_extractor import (
    HtmlPriceExtractor,
    detect_currency,
    parse_price_text,
    parse_product_html,
)

JSON_LD_PAGE = """
<html><head>
<meta property="og:title" content="Steel Bottle">
<script type="application/ld+json">
{"@context": "https://schema.org", "@type": "Product",
 "name": "Steel Bottle 1L",
 "offers": {"@type": "Offer", "price": "999.00", "priceCurrency": "INR"}}
</script>
</head><body><h1>Steel Bottle</h1></body></html>
"""

JSON_LD_GRAPH_PAGE = """
<html><head>
<script type="application/ld+json">
{"@graph": [
  {"@type": "WebPage", "name": "Shop"},
  {"@type": ["Product"], "name": "Desk Lamp",
   "offers": [{"@type": "AggregateOffer", "lowPrice": 19.5,
               "priceCurrency": "usd"}]}
]}
</script>
<script type="application/ld+json">{not json</script>
</head><body></body></html>
"""

META_PAGE = """
<html><head>
<meta property="product:price:amount" content="1.299,00">
<meta property="product:price:currency" content="eur">
</head><body><h1>Espresso Machine</h1></body></html>
"""

SELECTOR_PAGE = """
<html><body>
<h1>Electric Kettle</h1>
<span class="a-price"><span class="a-offscreen">₹4,899.00</span></span>
</body></html>
"""

RATING_ONLY_PAGE = """
<html><body><h1>Mug</h1>
<div class="price">4.5 out of 5 stars</div>
</body></html>
"""

NO_PRICE_PAGE = "<html><body><h1>Out of stock</h1></body></html>"

CAPTCHA_PAGE = (
    "<html><body>Please complete the CAPTCHA to continue</body></html>"
)


def _response(status: int, text: str = "") -> MagicMock:
    """Build a fake HTTP response."""
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    return resp


class TestParsePriceText(unittest.TestCase):
    """Tests for parse_price_text()."""

    def test_formats(self) -> None:
        """Common price spellings parse to the same Decimal."""
        cases = {
            "₹1,299.00": Decimal("1299.00"),
            "89,99 €": Decimal("89.99"),
            "$1,299": Decimal("1299"),
            "1,234,567": Decimal("1234567"),
            "1.299,00": Decimal("1299.00"),
            "USD 19.99": Decimal("19.99"),
            "999": Decimal("999"),
        }
        for text, expected in cases.items():
            with self.subTest(text=text):
                self.assertEqual(parse_price_text(text), expected)

    def test_rejects_non_prices(self) -> None:
        """Ratings, blanks and out-of-range values yield None."""
        for text in (
            None, "", "Free", "4.5 stars", "1,024 reviews",
            "0.00", "99999999",
        ):
            with self.subTest(text=text):
                self.assertIsNone(parse_price_text(text))


class TestDetectCurrency(unittest.TestCase):
    """Tests for detect_currency()."""

    def test_symbols_and_codes(self) -> None:
        """Symbols and ISO codes map to currency codes."""
        cases = {
            "₹499": "INR",
            "Rs. 499": "INR",
            "1,299 INR": "INR",
            "usd 5": "USD",
            "€ 5": "EUR",
            "£5": "GBP",
            "¥500": "JPY",
            "¥500 元": "CNY",
            "C$10": "CAD",
            "A$10": "AUD",
            "HK$10": "HKD",
            "S$10": "SGD",
            "$10": "USD",
            "CAD 10": "CAD",
        }
        for text, expected in cases.items():
            with self.subTest(text=text):
                self.assertEqual(detect_currency(text), expected)

    def test_no_hint(self) -> None:
        """Bare numbers leave the currency undecided."""
        self.assertIsNone(detect_currency("10"))
        self.assertIsNone(detect_currency(None))


class TestParseProductHtml(unittest.TestCase):
    """Tests for parse_product_html()."""

    def test_json_ld_offer(self) -> None:
        """JSON-LD Product offers win over everything else."""
        result = parse_product_html(JSON_LD_PAGE)
        assert result is not None
        self.assertEqual(result.price, Decimal("999.00"))
        self.assertEqual(result.currency_code, "INR")
        self.assertEqual(result.name, "Steel Bottle 1L")

    def test_json_ld_graph_and_low_price(self) -> None:
        """@graph nesting, type lists and lowPrice are understood."""
        result = parse_product_html(JSON_LD_GRAPH_PAGE)
        assert result is not None
        self.assertEqual(result.price, Decimal("19.5"))
        self.assertEqual(result.currency_code, "USD")
        self.assertEqual(result.name, "Desk Lamp")

    def test_meta_tags(self) -> None:
        """Open Graph price meta tags are the second source."""
        result = parse_product_html(META_PAGE)
        assert result is not None
        self.assertEqual(result.price, Decimal("1299.00"))
        self.assertEqual(result.currency_code, "EUR")
        self.assertEqual(result.name, "Espresso Machine")

    def test_visible_price_selector(self) -> None:
        """Visible price elements are the last resort."""
        result = parse_product_html(SELECTOR_PAGE)
        assert result is not None
        self.assertEqual(result.price, Decimal("4899.00"))
        self.assertEqual(result.currency_code, "INR")
        self.assertEqual(result.name, "Electric Kettle")

    def test_rating_text_not_a_price(self) -> None:
        """A .price element holding a rating is ignored."""
        self.assertIsNone(parse_product_html(RATING_ONLY_PAGE))

    def test_no_price(self) -> None:
        """Pages without any price yield None."""
        self.assertIsNone(parse_product_html(NO_PRICE_PAGE))


@patch("pricewatch.extractors.html_extractor.cloudscraper")
@patch("pricewatch.extractors.html_extractor.curl_requests.Session")
class TestHtmlPriceExtractor(unittest.TestCase):
    """Fetching, fallback and circuit breaking with mocked HTTP."""

    def _wire(
        self,
        mock_session_cls: MagicMock,
        mock_cloudscraper: MagicMock,
        curl_response: MagicMock,
        fallback_response: MagicMock | None = None,
    ) -> tuple[MagicMock, MagicMock]:
        session = MagicMock()
        session.get.return_value = curl_response
        mock_session_cls.return_value.__enter__.return_value = session
        scraper = MagicMock()
        scraper.get.return_value = fallback_response or _response(503)
        mock_cloudscraper.create_scraper.return_value = scraper
        return session, scraper

    def test_extracts_with_curl(
        self, mock_session_cls: MagicMock, mock_cloudscraper: MagicMock,
    ) -> None:
        """A 200 page is parsed without touching the fallback."""
        session, scraper = self._wire(
            mock_session_cls, mock_cloudscraper,
            _response(200, JSON_LD_PAGE),
        )
        result = HtmlPriceExtractor().extract("https://shop.example/p/1")

        self.assertEqual(result.price, Decimal("999.00"))
        self.assertEqual(result.currency_code, "INR")
        mock_session_cls.assert_called_once_with(
            impersonate=Settings.IMPERSONATE_BROWSER,
        )
        headers = session.get.call_args.kwargs["headers"]
        self.assertEqual(headers["Referer"], "https://shop.example/")
        self.assertEqual(
            session.get.call_args.kwargs["timeout"],
            Settings.REQUEST_TIMEOUT,
        )
        scraper.get.assert_not_called()

    def test_falls_back_to_cloudscraper(
        self, mock_session_cls: MagicMock, mock_cloudscraper: MagicMock,
    ) -> None:
        """After exhausting retries, cloudscraper is tried."""
        session, scraper = self._wire(
            mock_session_cls, mock_cloudscraper,
            _response(500), _response(200, META_PAGE),
        )
        result = HtmlPriceExtractor().extract("https://shop.example/p/2")

        self.assertEqual(result.price, Decimal("1299.00"))
        self.assertEqual(session.get.call_count, Settings.MAX_RETRIES)
        scraper.get.assert_called_once()

    def test_request_errors_are_retried(
        self, mock_session_cls: MagicMock, mock_cloudscraper: MagicMock,
    ) -> None:
        """A transport error on one attempt does not abort the fetch."""
        session, _ = self._wire(
            mock_session_cls, mock_cloudscraper, _response(200),
        )
        session.get.side_effect = [
            ConnectionError("reset"), _response(200, SELECTOR_PAGE),
        ]
        result = HtmlPriceExtractor().extract("https://shop.example/p/3")
        self.assertEqual(result.price, Decimal("4899.00"))
        self.assertEqual(session.get.call_count, 2)

    def test_unfetchable_page_raises(
        self, mock_session_cls: MagicMock, mock_cloudscraper: MagicMock,
    ) -> None:
        """Both transports failing raises ExtractionError."""
        self._wire(mock_session_cls, mock_cloudscraper, _response(500))
        with self.assertRaises(ExtractionError) as ctx:
            HtmlPriceExtractor().extract("https://shop.example/p/4")
        self.assertEqual(ctx.exception.url, "https://shop.example/p/4")
        self.assertEqual(ctx.exception.reason, "page could not be fetched")

    def test_captcha_page_is_not_accepted(
        self, mock_session_cls: MagicMock, mock_cloudscraper: MagicMock,
    ) -> None:
        """Bot challenges are retried and never parsed."""
        session, _ = self._wire(
            mock_session_cls, mock_cloudscraper, _response(200, CAPTCHA_PAGE),
        )
        with self.assertRaises(ExtractionError):
            HtmlPriceExtractor().extract("https://shop.example/p/5")
        self.assertEqual(session.get.call_count, Settings.MAX_RETRIES)

    def test_page_without_price_raises(
        self, mock_session_cls: MagicMock, mock_cloudscraper: MagicMock,
    ) -> None:
        """A fetched page with no price raises ExtractionError."""
        self._wire(
            mock_session_cls, mock_cloudscraper,
            _response(200, NO_PRICE_PAGE),
        )
        with self.assertRaises(ExtractionError) as ctx:
            HtmlPriceExtractor().extract("https://shop.example/p/6")
        self.assertEqual(str(ctx.exception), "no price found on page")

    def test_circuit_opens_after_threshold(
        self, mock_session_cls: MagicMock, mock_cloudscraper: MagicMock,
    ) -> None:
        """Consecutive failures stop further requests."""
        session, _ = self._wire(
            mock_session_cls, mock_cloudscraper, _response(500),
        )
        extractor = HtmlPriceExtractor()
        for _ in range(Settings.CIRCUIT_BREAKER_THRESHOLD):
            with self.assertRaises(ExtractionError):
                extractor.extract("https://shop.example/p/7")
        calls_before = session.get.call_count

        with self.assertRaises(ExtractionError) as ctx:
            extractor.extract("https://shop.example/p/7")
        self.assertEqual(ctx.exception.reason, "circuit breaker open")
        self.assertEqual(session.get.call_count, calls_before)

    def test_failing_hosts_do_not_trip_other_hosts(
        self, mock_session_cls: MagicMock, mock_cloudscraper: MagicMock,
    ) -> None:
        """Breaker state is per host; a healthy site keeps working."""
        session, _ = self._wire(
            mock_session_cls, mock_cloudscraper, _response(500),
        )

        def by_host(url: str, **_kwargs: object) -> MagicMock:
            if url.startswith("https://good.com/"):
                return _response(200, META_PAGE)
            return _response(500)

        session.get.side_effect = by_host
        extractor = HtmlPriceExtractor()
        for n in range(Settings.CIRCUIT_BREAKER_THRESHOLD):
            with self.assertRaises(ExtractionError) as ctx:
                extractor.extract(f"https://bad{n}.com/p")
            self.assertEqual(
                ctx.exception.reason, "page could not be fetched",
            )

        result = extractor.extract("https://good.com/p")
        self.assertEqual(result.price, Decimal("1299.00"))
        self.assertEqual(result.currency_code, "EUR")

    def test_breaker_opens_only_for_failing_host(
        self, mock_session_cls: MagicMock, mock_cloudscraper: MagicMock,
    ) -> None:
        """A tripped host is blocked while another host is still fetched."""
        session, _ = self._wire(
            mock_session_cls, mock_cloudscraper, _response(500),
        )

        def by_host(url: str, **_kwargs: object) -> MagicMock:
            if url.startswith("https://good.com/"):
                return _response(200, SELECTOR_PAGE)
            return _response(500)

        session.get.side_effect = by_host
        extractor = HtmlPriceExtractor()
        for _ in range(Settings.CIRCUIT_BREAKER_THRESHOLD):
            with self.assertRaises(ExtractionError):
                extractor.extract("https://bad.com/p")

        with self.assertRaises(ExtractionError) as ctx:
            extractor.extract("https://bad.com/other")
        self.assertEqual(ctx.exception.reason, "circuit breaker open")
        self.assertEqual(
            extractor.extract("https://good.com/p").price,
            Decimal("4899.00"),
        )


if __name__ == "__main__":
    unittest.main()
