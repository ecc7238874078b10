"""
Billing term identifiers.

A term is an integer ``YYYYMMDDHH`` naming the start of a rent period,
e.g. ``2024030100`` for March 2024.
"""

import calendar
from datetime import date, datetime
from typing import Optional, Union

from babel.core import Locale, UnknownLocaleError
from babel.dates import format_date

from rentcall.utils.exceptions import ValidationError

DUE_DATE_FORMAT = "%d/%m/%Y"


def parse_term(term: Union[int, str]) -> datetime:
    """Start of the period named by ``term``."""
    text = str(term)
    if isinstance(term, bool) or len(text) != 10 or not text.isdigit():
        raise ValidationError(f"Invalid term '{term}': expected YYYYMMDDHH")
    try:
        return datetime.strptime(text, "%Y%m%d%H")
    except ValueError as e:
        raise ValidationError(f"Invalid term '{term}': {e}") from e


def resolve_locale(locale: Optional[str], default: str = "en") -> Locale:
    for candidate in (locale, default, "en"):
        if not candidate:
            continue
        try:
            return Locale.parse(candidate.replace("-", "_"))
        except (UnknownLocaleError, ValueError):
            continue
    return Locale("en")


def period_label(term: Union[int, str], locale: Optional[str] = None) -> str:
    """Localized "<Month> <Year>" label, capitalized."""
    start = parse_term(term)
    label = format_date(start.date(), "LLLL yyyy", locale=resolve_locale(locale))
    return label[:1].upper() + label[1:]


def due_date(term: Union[int, str]) -> date:
    """Last calendar day of the term's month."""
    start = parse_term(term)
    last_day = calendar.monthrange(start.year, start.month)[1]
    return date(start.year, start.month, last_day)


def format_due_date(term: Union[int, str]) -> str:
    return due_date(term).strftime(DUE_DATE_FORMAT)


def days_overdue(term: Union[int, str], today: Optional[date] = None) -> int:
    """Whole days elapsed since the term started, never negative."""
    start = parse_term(term).date()
    today = today or date.today()
    return max(0, (today - start).days)
