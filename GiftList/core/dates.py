"""
Birthday strings and day arithmetic.

Birthdays are year agnostic strings of the form ``"<day> de <MonthName>"`` using Spanish
month names, e.g. ``"15 de Mayo"``. Parsing is case-insensitive and ignores commas.
Functions return ``None`` for strings they cannot parse instead of raising.

Days beyond the end of a month roll over into the next one, so ``"31 de Febrero"``
falls on the 3rd of March (the 2nd in leap years).
"""
import datetime
import re
import urllib.parse
from typing import List, Optional, Tuple

MONTHS: List[str] = [
    'Enero', 'Febrero', 'Marzo', 'Abril', 'Mayo', 'Junio',
    'Julio', 'Agosto', 'Septiembre', 'Octubre', 'Noviembre', 'Diciembre'
]

BIRTHDAY_RE = re.compile(r'^\s*(\d+)\s+de\s+([^\s]+)\s*$', re.IGNORECASE)

CALENDAR_URL = 'https://calendar.google.com/calendar/render'


def month_index(month_name: str) -> Optional[int]:
    """Return the 1-based month number of a month name, or None."""
    name = (month_name or '').strip().lower()
    for idx, month in enumerate(MONTHS, start=1):
        if month.lower() == name:
            return idx
    return None


def parse_birthday(birthday: str) -> Optional[Tuple[int, int]]:
    """Parse a birthday string into a ``(day, month)`` pair.

    Args:
        birthday (str): A string such as ``"15 de Mayo"``.

    Returns:
        tuple or None: ``(day, month)`` with a 1-based month, or None if the string does not match.
    """
    if not birthday or not isinstance(birthday, str):
        return None
    match = BIRTHDAY_RE.match(birthday.replace(',', ''))
    if not match:
        return None
    month = month_index(match.group(2))
    if month is None:
        return None
    return int(match.group(1)), month


def format_birthday(day: int, month: int) -> str:
    """
    Raises:
        ValueError: If month is not between 1 and 12.
    """
    if not 1 <= month <= len(MONTHS):
        raise ValueError(f'Invalid month: {month}')
    return f'{int(day)} de {MONTHS[month - 1]}'


def _date_in_year(year: int, month: int, day: int) -> datetime.date:
    return datetime.date(year, month, 1) + datetime.timedelta(days=day - 1)


def next_birthday(birthday: str, today: Optional[datetime.date] = None) -> Optional[datetime.date]:
    """Return the date of the next occurrence of the birthday, today included."""
    parsed = parse_birthday(birthday)
    if parsed is None:
        return None
    day, month = parsed
    today = today or datetime.date.today()

    try:
        date = _date_in_year(today.year, month, day)
        if date < today:
            date = _date_in_year(today.year + 1, month, day)
    except OverflowError:
        return None
    return date


def days_until(birthday: str, today: Optional[datetime.date] = None) -> Optional[int]:
    """Number of days until the next birthday. ``0`` when the birthday is today."""
    today = today or datetime.date.today()
    date = next_birthday(birthday, today=today)
    if date is None:
        return None
    return (date - today).days


def age_on_next_birthday(birthday: str, birth_year: Optional[int],
                         today: Optional[datetime.date] = None) -> Optional[int]:
    """The age a person turns on their next birthday, or None when the year is unknown."""
    if birth_year is None:
        return None
    date = next_birthday(birthday, today=today)
    if date is None:
        return None
    age = date.year - birth_year
    return age if age >= 0 else None


def reminder_url(name: str, birthday: str, today: Optional[datetime.date] = None) -> Optional[str]:
    """Google Calendar link creating a yearly all-day event on the next birthday."""
    start = next_birthday(birthday, today=today)
    if start is None:
        return None
    end = start + datetime.timedelta(days=1)
    query = urllib.parse.urlencode({
        'action': 'TEMPLATE',
        'text': f'🎂 Cumpleaños de {name}',
        'dates': f'{start:%Y%m%d}/{end:%Y%m%d}',
        'recur': 'RRULE:FREQ=YEARLY',
    }, safe='/:=')
    return f'{CALENDAR_URL}?{query}'
