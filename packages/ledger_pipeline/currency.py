"""Static-rate conversion of foreign amounts into the ledger's home currency.

Rates are approximate units of INR per unit of foreign currency. A host that
has live rates passes its own table; the pipeline only needs ``to_home``.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal

RATES_TO_INR: dict[str, Decimal] = {
    "INR": Decimal("1"),
    "USD": Decimal("83.12"),
    "EUR": Decimal("88.45"),
    "GBP": Decimal("102.34"),
    "JPY": Decimal("0.55"),
    "CNY": Decimal("11.38"),
    "AUD": Decimal("53.67"),
    "CAD": Decimal("60.89"),
    "CHF": Decimal("94.23"),
    "SGD": Decimal("61.45"),
    "HKD": Decimal("10.64"),
    "AED": Decimal("22.62"),
    "SAR": Decimal("22.16"),
    "QAR": Decimal("22.84"),
    "KWD": Decimal("271.23"),
    "OMR": Decimal("216.05"),
    "BHD": Decimal("220.45"),
    "MYR": Decimal("18.67"),
    "THB": Decimal("2.39"),
    "IDR": Decimal("0.0053"),
    "PHP": Decimal("1.48"),
    "KRW": Decimal("0.062"),
    "VND": Decimal("0.0034"),
}

# Symbols and spellings seen in bank alerts
CURRENCY_ALIASES: dict[str, str] = {
    "RS": "INR",
    "RS.": "INR",
    "₹": "INR",
    "$": "USD",
    "US$": "USD",
    "€": "EUR",
    "£": "GBP",
}

_CENT = Decimal("0.01")


def normalize_code(raw: str) -> str:
    token = raw.strip().upper()
    return CURRENCY_ALIASES.get(token, token)


class CurrencyConverter:
    """Convert between currencies through a common base (INR by default)."""

    def __init__(
        self,
        home_currency: str = "INR",
        *,
        rates_to_base: Mapping[str, Decimal] | None = None,
    ) -> None:
        self._rates = dict(rates_to_base or RATES_TO_INR)
        self.home_currency = normalize_code(home_currency)
        if self.home_currency not in self._rates:
            raise ValueError(f"no rate for home currency {self.home_currency!r}")

    def supports(self, code: str) -> bool:
        return normalize_code(code) in self._rates

    def to_home(self, amount: Decimal, code: str) -> Decimal:
        """Convert ``amount`` in ``code`` to the home currency, 2dp.

        Unknown currencies raise ``ValueError``; callers decide whether to
        keep the amount unconverted.
        """

        src = normalize_code(code)
        if src == self.home_currency:
            return amount.quantize(_CENT, rounding=ROUND_HALF_UP)
        try:
            src_rate = self._rates[src]
        except KeyError:
            raise ValueError(f"unsupported currency {code!r}") from None
        base = amount * src_rate
        home = base / self._rates[self.home_currency]
        return home.quantize(_CENT, rounding=ROUND_HALF_UP)


__all__ = ["CURRENCY_ALIASES", "RATES_TO_INR", "CurrencyConverter", "normalize_code"]
