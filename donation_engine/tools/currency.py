"""Currency conversion, rounding and formatting"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Dict, Mapping, List, Optional, Union
from donation_engine.constants import CENT, DEFAULT_EXCHANGE_RATES
from donation_engine.utils.errors import InvalidAmountError, UnsupportedCurrencyPairError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)

AmountLike = Union[Decimal, int, str, float]


def to_decimal(amount: AmountLike) -> Decimal:
    """
    Coerce an amount to Decimal without binary float artifacts.

    Raises:
        InvalidAmountError: If the value is not a finite number
    """
    if isinstance(amount, Decimal):
        value = amount
    else:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidAmountError(f"Amount is not a number: {amount!r}")

    if not value.is_finite():
        raise InvalidAmountError(f"Amount is not finite: {amount!r}")
    return value


def round_amount(amount: AmountLike) -> Decimal:
    """Round to cents, half away from zero"""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: AmountLike, currency: str) -> str:
    """
    Locale-fixed display string, e.g. "$1,234.56 CAD"

    Args:
        amount: Amount in major units
        currency: ISO currency code

    Returns:
        Formatted string
    """
    value = round_amount(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f} {str(getattr(currency, 'value', currency)).upper()}"


class CurrencyConverter:
    """Converts between supported currencies with a static rate table"""

    def __init__(self, rates: Optional[Mapping[str, Mapping[str, AmountLike]]] = None):
        source = DEFAULT_EXCHANGE_RATES if rates is None else rates
        self._rates: Dict[str, Dict[str, Decimal]] = {
            src.upper(): {dst.upper(): to_decimal(rate) for dst, rate in targets.items()}
            for src, targets in source.items()
        }

    @property
    def supported_currencies(self) -> List[str]:
        currencies = set(self._rates)
        for targets in self._rates.values():
            currencies.update(targets)
        return sorted(currencies)

    def rate(self, from_currency: str, to_currency: str) -> Decimal:
        """
        Look up rate[from][to]

        Raises:
            UnsupportedCurrencyPairError: If no rate entry exists
        """
        src = _code(from_currency)
        dst = _code(to_currency)
        if src == dst:
            return Decimal("1")

        rate = self._rates.get(src, {}).get(dst)
        if rate is None:
            raise UnsupportedCurrencyPairError(f"Exchange rate not available for {src} to {dst}")
        return rate

    def convert(self, amount: AmountLike, from_currency: str, to_currency: str) -> Decimal:
        """
        Convert an amount; identity when the currencies match.

        Non-identity results are rounded to cents at this point, never before.
        """
        value = to_decimal(amount)
        if _code(from_currency) == _code(to_currency):
            return value

        rate = self.rate(from_currency, to_currency)
        converted = round_amount(value * rate)
        logger.debug(
            "Currency conversion completed",
            original_amount=value,
            converted_amount=converted,
            rate=rate,
            from_currency=_code(from_currency),
            to_currency=_code(to_currency)
        )
        return converted


def _code(currency) -> str:
    return str(getattr(currency, 'value', currency)).upper()
