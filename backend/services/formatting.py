"""
French display formatting for documents: currency, dates, months and amounts in words.

Independent of the system locale so output is identical on every host.
"""
import re
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

DateLike = Union[str, date, datetime, None]
Number = Union[int, float, Decimal, str, None]

MONTH_NAMES_FR = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
]

CURRENCY_SYMBOL = "€"
THOUSANDS_SEPARATOR = " "
DECIMAL_SEPARATOR = ","


def to_decimal(value: Number) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value).replace(" ", "").replace(",", "."))
    except InvalidOperation:
        return None


def format_currency(value: Number) -> str:
    """1234.5 -> '1 234,50 €'"""
    amount = to_decimal(value)
    if amount is None:
        return ""
    amount = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    integer_part, _, cents = f"{abs(amount):.2f}".partition(".")
    groups = []
    while len(integer_part) > 3:
        groups.insert(0, integer_part[-3:])
        integer_part = integer_part[:-3]
    groups.insert(0, integer_part)
    return f"{sign}{THOUSANDS_SEPARATOR.join(groups)}{DECIMAL_SEPARATOR}{cents} {CURRENCY_SYMBOL}"


def parse_date(value: DateLike) -> Optional[date]:
    """
    Accepts date/datetime objects, ISO strings (optionally with a time part or
    trailing Z) and DD/MM/YYYY. Returns None for empty input, raises ValueError
    for anything unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if "T" in text:
        text = text.split("T")[0]
    text = text.split(" ")[0]

    iso_match = re.match(r"^(\d{4})-(\d{1,2})-(\d{1,2})$", text)
    if iso_match:
        year, month, day = map(int, iso_match.groups())
        return date(year, month, day)

    fr_match = re.match(r"^(\d{1,2})/(\d{1,2})/(\d{4})$", text)
    if fr_match:
        day, month, year = map(int, fr_match.groups())
        return date(year, month, day)

    month_match = re.match(r"^(\d{4})-(\d{1,2})$", text)
    if month_match:
        year, month = map(int, month_match.groups())
        return date(year, month, 1)

    raise ValueError(f"Cannot parse date: {value!r}")


def format_date(value: DateLike) -> str:
    """-> 'DD/MM/YYYY', or '' when empty"""
    parsed = parse_date(value)
    return parsed.strftime("%d/%m/%Y") if parsed else ""


def format_month(value: DateLike) -> str:
    """-> 'janvier 2024'"""
    parsed = parse_date(value)
    if not parsed:
        return ""
    return f"{MONTH_NAMES_FR[parsed.month - 1]} {parsed.year}"


_UNITS = ["zéro", "un", "deux", "trois", "quatre", "cinq", "six", "sept", "huit", "neuf",
          "dix", "onze", "douze", "treize", "quatorze", "quinze", "seize",
          "dix-sept", "dix-huit", "dix-neuf"]
_TENS = ["", "", "vingt", "trente", "quarante", "cinquante", "soixante"]


def _below_hundred(n: int) -> str:
    if n < 20:
        return _UNITS[n]
    if n < 70:
        ten, unit = divmod(n, 10)
        if unit == 0:
            return _TENS[ten]
        joiner = " et " if unit == 1 else "-"
        return f"{_TENS[ten]}{joiner}{_UNITS[unit]}"
    if n < 80:
        # 70-79: soixante-dix, soixante et onze, ...
        rest = n - 60
        joiner = " et " if rest == 11 else "-"
        return f"soixante{joiner}{_UNITS[rest]}"
    rest = n - 80
    if rest == 0:
        return "quatre-vingts"
    return f"quatre-vingt-{_UNITS[rest]}"


def _below_thousand(n: int) -> str:
    hundreds, rest = divmod(n, 100)
    if hundreds == 0:
        return _below_hundred(rest)
    head = "cent" if hundreds == 1 else f"{_UNITS[hundreds]} cent"
    if rest == 0:
        return head if hundreds == 1 else head + "s"
    return f"{head} {_below_hundred(rest)}"


def number_to_words(n: int) -> str:
    """Integer in French words, up to the millions."""
    if n < 0:
        return "moins " + number_to_words(-n)
    if n < 1000:
        return _below_thousand(n)
    if n < 1_000_000:
        thousands, rest = divmod(n, 1000)
        prefix = _below_thousand(thousands)
        # "cents" and "vingts" lose their plural before "mille"
        if prefix.endswith(("cents", "vingts")):
            prefix = prefix[:-1]
        head = "mille" if thousands == 1 else f"{prefix} mille"
        return head if rest == 0 else f"{head} {_below_thousand(rest)}"
    millions, rest = divmod(n, 1_000_000)
    head = f"{number_to_words(millions)} million" + ("s" if millions > 1 else "")
    return head if rest == 0 else f"{head} {number_to_words(rest)}"


def amount_in_words(value: Number) -> str:
    """950 -> 'neuf cent cinquante', 12.5 -> 'douze et cinquante centimes'"""
    amount = to_decimal(value)
    if amount is None:
        return ""
    amount = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    euros = int(amount)
    cents = int((abs(amount) - abs(Decimal(euros))) * 100)
    words = number_to_words(euros)
    if cents:
        words += f" et {number_to_words(cents)} centimes"
    return words
