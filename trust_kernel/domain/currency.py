"""Currency -- ISO 4217 registry and minor-unit precision."""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def minor_unit(self) -> Decimal:
        """Smallest representable amount (0.01 for USD, 1 for JPY)."""
        if self.decimal_places == 0:
            return Decimal("1")
        return Decimal("0." + "0" * (self.decimal_places - 1) + "1")


class CurrencyRegistry:
    """
    Registry of ISO 4217 currencies with their minor-unit decimal places.

    Trust accounts are held in the currency of the firm's bank account, so
    the registry lists the currencies law-firm trust accounts are actually
    denominated in, plus the zero- and three-decimal currencies needed to
    exercise precision rules.
    """

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        # Two decimal currencies
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "AUD": CurrencyInfo("AUD", 2, "Australian Dollar"),
        "NZD": CurrencyInfo("NZD", 2, "New Zealand Dollar"),
        "HKD": CurrencyInfo("HKD", 2, "Hong Kong Dollar"),
        "SGD": CurrencyInfo("SGD", 2, "Singapore Dollar"),
        "MXN": CurrencyInfo("MXN", 2, "Mexican Peso"),
        "INR": CurrencyInfo("INR", 2, "Indian Rupee"),
        "ZAR": CurrencyInfo("ZAR", 2, "South African Rand"),
        "SEK": CurrencyInfo("SEK", 2, "Swedish Krona"),
        "NOK": CurrencyInfo("NOK", 2, "Norwegian Krone"),
        "DKK": CurrencyInfo("DKK", 2, "Danish Krone"),
        "ILS": CurrencyInfo("ILS", 2, "Israeli New Shekel"),
        # Zero decimal currencies
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "KRW": CurrencyInfo("KRW", 0, "South Korean Won"),
        "CLP": CurrencyInfo("CLP", 0, "Chilean Peso"),
        # Three decimal currencies
        "BHD": CurrencyInfo("BHD", 3, "Bahraini Dinar"),
        "KWD": CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
        "JOD": CurrencyInfo("JOD", 3, "Jordanian Dinar"),
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return code in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        return cls._CURRENCIES.get(code)

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        """
        Decimal places for a currency.

        Raises:
            ValueError: If the currency is not registered.
        """
        info = cls._CURRENCIES.get(code)
        if info is None:
            raise ValueError(f"Unknown currency: {code}")
        return info.decimal_places

    @classmethod
    def get_minor_unit(cls, code: str) -> Decimal:
        info = cls._CURRENCIES.get(code)
        if info is None:
            raise ValueError(f"Unknown currency: {code}")
        return info.minor_unit
