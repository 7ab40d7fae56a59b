# pricewatch/services/currency_normalizer.py

"""Conversion of extracted prices into the base comparison currency."""

from decimal import ROUND_HALF_UP, Decimal

from pricewatch.config.settings import Settings


class UnknownCurrencyError(ValueError):
    """Raised when a currency code has no entry in the rate table."""

    def __init__(self, currency_code: str) -> None:
        super().__init__(f"Unknown currency code: {currency_code!r}")
        self.currency_code = currency_code


class CurrencyNormalizer:
    """Pure conversion against a fixed table of base-currency rates.

    Rates are expressed as units of the base currency per one unit of
    the keyed currency. Results are rounded half-up to
    ``Settings.PRICE_DECIMALS`` places.
    """

    def __init__(
        self,
        rates: dict[str, Decimal] | None = None,
        base_currency: str | None = None,
        decimals: int | None = None,
    ) -> None:
        table = rates if rates is not None else Settings.EXCHANGE_RATES
        self._rates: dict[str, Decimal] = {
            code.strip().upper(): Decimal(rate)
            for code, rate in table.items()
        }
        self.base_currency = (
            base_currency or Settings.BASE_CURRENCY
        ).upper()
        places = (
            decimals if decimals is not None
            else Settings.PRICE_DECIMALS
        )
        self._quantum = Decimal(1).scaleb(-places)

    def rate_for(self, currency_code: str) -> Decimal:
        """Return the base-currency rate for *currency_code*."""
        code = currency_code.strip().upper()
        try:
            return self._rates[code]
        except KeyError:
            raise UnknownCurrencyError(currency_code) from None

    def round_price(self, amount: Decimal) -> Decimal:
        """Round to the configured number of decimal places."""
        return amount.quantize(self._quantum, rounding=ROUND_HALF_UP)

    def to_base(self, amount: Decimal, currency_code: str) -> Decimal:
        """Convert *amount* in *currency_code* into the base currency."""
        return self.round_price(
            Decimal(amount) * self.rate_for(currency_code)
        )

    def convert(
        self,
        amount: Decimal,
        from_code: str,
        to_code: str,
    ) -> Decimal:
        """Convert between two table currencies via the base currency."""
        if from_code.strip().upper() == to_code.strip().upper():
            self.rate_for(from_code)
            return self.round_price(Decimal(amount))
        base = Decimal(amount) * self.rate_for(from_code)
        return self.round_price(base / self.rate_for(to_code))

    def supports(self, currency_code: str) -> bool:
        """Whether *currency_code* has a rate."""
        return currency_code.strip().upper() in self._rates
