"""
People and gift records.

:class:`Person` and :class:`Gift` are immutable; every change produces a new object and the
functions of this module return new lists, so the person list is always replaced whole.
The dictionary form uses the camelCase keys of the JSON payload stored in the spreadsheet.
"""
import dataclasses
import enum
import logging
import math
import uuid
from typing import Any, Dict, List, Optional, Tuple

from . import dates


class PersonColor(enum.StrEnum):
    """Cosmetic palette a person card is drawn with."""
    Slate = 'slate'
    Rose = 'rose'
    Orange = 'orange'
    Emerald = 'emerald'
    Blue = 'blue'
    Violet = 'violet'


class GiftPriority(enum.StrEnum):
    High = 'high'
    Medium = 'medium'
    Low = 'low'


class GiftStatus(enum.StrEnum):
    Pending = 'pending'
    Purchased = 'purchased'


PRIORITY_ORDER: Dict[GiftPriority, int] = {
    GiftPriority.High: 0,
    GiftPriority.Medium: 1,
    GiftPriority.Low: 2,
}

# Values written by earlier versions of the web app
STATUS_ALIASES: Dict[str, GiftStatus] = {
    'pendiente': GiftStatus.Pending,
    'comprado': GiftStatus.Purchased,
}


def new_id() -> str:
    return str(uuid.uuid4())


def _coerce_price(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValueError(f'Invalid price: {value!r}')
    try:
        price = float(value)
    except (TypeError, ValueError) as ex:
        raise ValueError(f'Invalid price: {value!r}') from ex
    if not math.isfinite(price):
        raise ValueError(f'Invalid price: {value!r}')
    if price < 0:
        raise ValueError(f'Price must not be negative, got {price}')
    return price


def parse_birth_year(value: Any) -> Optional[int]:
    """Return ``value`` as a year, or None when it is empty or not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        year = float(text)
    except ValueError:
        return None
    if not math.isfinite(year):
        return None
    return int(year)


def _coerce_status(value: Any) -> GiftStatus:
    if isinstance(value, GiftStatus):
        return value
    text = str(value or '').strip().lower()
    if text in STATUS_ALIASES:
        return STATUS_ALIASES[text]
    if not text:
        return GiftStatus.Pending
    return GiftStatus(text)


@dataclasses.dataclass(frozen=True)
class Gift:
    """A gift idea that belongs to exactly one person."""
    id: str
    name: str
    description: str = ''
    price: Optional[float] = None
    link: Optional[str] = None
    priority: GiftPriority = GiftPriority.Medium
    status: GiftStatus = GiftStatus.Pending

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError('Gift id must not be empty.')
        name = (self.name or '').strip()
        if not name:
            raise ValueError('Gift name must not be empty.')
        object.__setattr__(self, 'name', name)
        object.__setattr__(self, 'description', self.description or '')
        object.__setattr__(self, 'price', _coerce_price(self.price))
        object.__setattr__(self, 'link', self.link or None)
        object.__setattr__(self, 'priority', GiftPriority(self.priority or GiftPriority.Medium))
        object.__setattr__(self, 'status', _coerce_status(self.status))

    @property
    def is_purchased(self) -> bool:
        return self.status == GiftStatus.Purchased

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'priority': self.priority.value,
            'status': self.status.value,
        }
        if self.price is not None:
            data['price'] = self.price
        if self.link:
            data['link'] = self.link
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Gift':
        """Build a gift from its payload.

        Raises:
            ValueError: If the payload is not a mapping or holds invalid values.
        """
        if not isinstance(data, dict):
            raise ValueError(f'Gift payload must be an object, got {type(data).__name__}.')
        try:
            return cls(
                id=str(data.get('id') or ''),
                name=str(data.get('name') or ''),
                description=str(data.get('description') or ''),
                price=data.get('price'),
                link=data.get('link') or None,
                priority=data.get('priority') or GiftPriority.Medium,
                status=data.get('status') or GiftStatus.Pending,
            )
        except (TypeError, ValueError) as ex:
            raise ValueError(f'Invalid gift payload: {ex}') from ex


@dataclasses.dataclass(frozen=True)
class Person:
    """A person whose birthday is tracked, with their gift ideas."""
    id: str
    name: str
    birthday: str
    color: PersonColor = PersonColor.Slate
    birth_year: Optional[int] = None
    is_favorite: bool = False
    reminder_set: bool = False
    gifts: Tuple[Gift, ...] = ()

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError('Person id must not be empty.')
        name = (self.name or '').strip()
        if not name:
            raise ValueError('Person name must not be empty.')
        object.__setattr__(self, 'name', name)
        object.__setattr__(self, 'birthday', (self.birthday or '').strip())
        object.__setattr__(self, 'color', PersonColor(self.color))
        if self.birth_year is not None and (isinstance(self.birth_year, bool) or not isinstance(self.birth_year, int)):
            raise ValueError(f'Invalid birth year: {self.birth_year!r}')
        object.__setattr__(self, 'is_favorite', bool(self.is_favorite))
        object.__setattr__(self, 'reminder_set', bool(self.reminder_set))

        gifts = tuple(self.gifts)
        ids = [g.id for g in gifts]
        if len(ids) != len(set(ids)):
            raise ValueError(f'Duplicate gift ids for person "{self.name}".')
        object.__setattr__(self, 'gifts', gifts)

    @property
    def days_until_birthday(self) -> Optional[int]:
        return dates.days_until(self.birthday)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'name': self.name,
            'birthday': self.birthday,
            'color': self.color.value,
            'isFavorite': self.is_favorite,
            'reminderSet': self.reminder_set,
            'gifts': [g.to_dict() for g in self.gifts],
        }
        if self.birth_year is not None:
            data['birthYear'] = self.birth_year
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Person':
        """Build a person from its payload.

        Missing optional keys take their defaults and unknown colors fall back to slate.

        Raises:
            ValueError: If the payload is not a mapping, misses its id or name, or holds an invalid gift.
        """
        if not isinstance(data, dict):
            raise ValueError(f'Person payload must be an object, got {type(data).__name__}.')

        color = str(data.get('color') or PersonColor.Slate.value).lower()
        if color not in PersonColor._value2member_map_:
            logging.debug(f'Unknown color "{color}", using "{PersonColor.Slate.value}".')
            color = PersonColor.Slate.value

        birth_year = parse_birth_year(data.get('birthYear'))
        if birth_year is None and data.get('birthYear') not in (None, ''):
            logging.debug(f'Ignoring invalid birth year "{data.get("birthYear")}".')

        gifts = data.get('gifts') or []
        if not isinstance(gifts, list):
            raise ValueError('Person "gifts" must be a list.')

        try:
            return cls(
                id=str(data.get('id') or ''),
                name=str(data.get('name') or ''),
                birthday=str(data.get('birthday') or ''),
                color=PersonColor(color),
                birth_year=birth_year,
                is_favorite=bool(data.get('isFavorite', False)),
                reminder_set=bool(data.get('reminderSet', False)),
                gifts=tuple(Gift.from_dict(g) for g in gifts),
            )
        except (TypeError, ValueError) as ex:
            raise ValueError(f'Invalid person payload: {ex}') from ex


def people_to_json_list(people: List[Person]) -> List[Dict[str, Any]]:
    return [p.to_dict() for p in people]


def people_from_json_list(items: List[Dict[str, Any]]) -> List[Person]:
    """Decode a payload list, skipping entries that cannot be decoded."""
    people: List[Person] = []
    for item in items or []:
        try:
            people.append(Person.from_dict(item))
        except ValueError as ex:
            logging.warning(f'Skipping invalid person entry: {ex}')
    return people


# Lifecycle

def new_person(name: str, birthday: str, color: PersonColor = PersonColor.Slate,
               birth_year: Optional[int] = None) -> Person:
    """Create a person with a fresh id and no gifts."""
    return Person(id=new_id(), name=name, birthday=birthday, color=color, birth_year=birth_year)


def new_gift(name: str, description: str = '', price: Optional[float] = None, link: Optional[str] = None,
             priority: GiftPriority = GiftPriority.Medium) -> Gift:
    return Gift(id=new_id(), name=name, description=description, price=price, link=link, priority=priority)


def find_person(people: List[Person], person_id: str) -> Person:
    """
    Raises:
        KeyError: If no person has the given id.
    """
    for person in people:
        if person.id == person_id:
            return person
    raise KeyError(f'No person with id "{person_id}".')


def add_person(people: List[Person], person: Person) -> List[Person]:
    """
    Raises:
        ValueError: If the id is already used.
    """
    if any(p.id == person.id for p in people):
        raise ValueError(f'A person with id "{person.id}" already exists.')
    return [*people, person]


def replace_person(people: List[Person], person: Person) -> List[Person]:
    find_person(people, person.id)
    return [person if p.id == person.id else p for p in people]


def remove_person(people: List[Person], person_id: str) -> List[Person]:
    """Remove a person together with all of their gifts."""
    find_person(people, person_id)
    return [p for p in people if p.id != person_id]


def add_gift(person: Person, gift: Gift) -> Person:
    if any(g.id == gift.id for g in person.gifts):
        raise ValueError(f'Gift "{gift.id}" already belongs to "{person.name}".')
    return dataclasses.replace(person, gifts=(*person.gifts, gift))


def replace_gift(person: Person, gift: Gift) -> Person:
    if not any(g.id == gift.id for g in person.gifts):
        raise KeyError(f'No gift with id "{gift.id}" for "{person.name}".')
    return dataclasses.replace(person, gifts=tuple(gift if g.id == gift.id else g for g in person.gifts))


def remove_gift(person: Person, gift_id: str) -> Person:
    if not any(g.id == gift_id for g in person.gifts):
        raise KeyError(f'No gift with id "{gift_id}" for "{person.name}".')
    return dataclasses.replace(person, gifts=tuple(g for g in person.gifts if g.id != gift_id))


def toggle_gift_status(person: Person, gift_id: str) -> Person:
    for gift in person.gifts:
        if gift.id == gift_id:
            new_status = GiftStatus.Pending if gift.is_purchased else GiftStatus.Purchased
            return replace_gift(person, dataclasses.replace(gift, status=new_status))
    raise KeyError(f'No gift with id "{gift_id}" for "{person.name}".')


# Display helpers

def sort_by_upcoming(people: List[Person], today=None) -> List[Person]:
    """Sort people by days until their next birthday. Unknown birthdays go last."""

    def key(person: Person):
        days = dates.days_until(person.birthday, today=today)
        return (days is None, days if days is not None else 0, person.name.lower())

    return sorted(people, key=key)


def split_favorites(people: List[Person]) -> Tuple[List[Person], List[Person]]:
    favorites = [p for p in people if p.is_favorite]
    others = [p for p in people if not p.is_favorite]
    return favorites, others


def pending_gifts(person: Person) -> List[Gift]:
    """Pending gifts, high priority first."""
    pending = [g for g in person.gifts if not g.is_purchased]
    return sorted(pending, key=lambda g: PRIORITY_ORDER[g.priority])


def purchased_gifts(person: Person) -> List[Gift]:
    return [g for g in person.gifts if g.is_purchased]


def purchased_total(person: Person) -> float:
    return sum(g.price or 0.0 for g in purchased_gifts(person))


def budget_total(person: Person) -> float:
    return sum(g.price or 0.0 for g in person.gifts)


def gift_summary(person: Person) -> str:
    """Flattened, human readable list of gifts, e.g. ``Book (25€) [purchased]; Scarf``."""
    parts: List[str] = []
    for gift in person.gifts:
        text = gift.name
        if gift.price is not None:
            text += f' ({gift.price:g}€)'
        if gift.is_purchased:
            text += f' [{GiftStatus.Purchased.value}]'
        parts.append(text)
    return '; '.join(parts)


def birthdays_by_month(people: List[Person]) -> Dict[int, List[Person]]:
    """Group people by birthday month (1-12), sorted by day. Unparsable birthdays are left out."""
    grouped: Dict[int, List[Person]] = {m: [] for m in range(1, len(dates.MONTHS) + 1)}
    for person in people:
        parsed = dates.parse_birthday(person.birthday)
        if parsed is None:
            continue
        grouped[parsed[1]].append(person)
    for month in grouped:
        grouped[month].sort(key=lambda p: dates.parse_birthday(p.birthday)[0])
    return grouped
