"""
Typed values read out of bullet text and scopes: dates, locations, times
and flight numbers.
"""

import datetime
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from slate.slate_datatypes import DataWithProvenance, IdentifierRef, InlineExpr

DATE_REF_REGEX = re.compile(r'([0-9]{2})/([0-9]{2})/([0-9]{4})')
LAT_LONG_REGEX = re.compile(r'(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)')
TIME_REF_REGEX = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')
FLIGHT_NUMBER_REGEX = re.compile(r'\b([A-Z]{2}|[A-Z]\d|\d[A-Z])\s?(\d{1,4}[A-Z]?)\b')


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float

    def __str__(self):
        return f"{self.lat}, {self.lng}"


@dataclass(frozen=True)
class Time:
    hour: int
    minute: int

    def __str__(self):
        return f"{self.hour:02d}:{self.minute:02d}"


def parse_date(value: Any) -> Optional[datetime.date]:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str):
        return None
    m = DATE_REF_REGEX.search(value)
    if not m:
        return None
    month, day, year = (int(g) for g in m.groups())
    try:
        return datetime.date(year, month, day)
    except ValueError:
        return None


def format_date(date: datetime.date) -> str:
    return date.strftime('%m/%d/%Y')


def parse_lat_lng(value: Any) -> Optional[LatLng]:
    if isinstance(value, LatLng):
        return value
    if isinstance(value, dict) and 'lat' in value and 'lng' in value:
        try:
            return LatLng(float(value['lat']), float(value['lng']))
        except (TypeError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    m = LAT_LONG_REGEX.search(value)
    if not m:
        return None
    lat, lng = float(m.group(1)), float(m.group(2))
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return LatLng(lat, lng)


def parse_time(value: Any) -> Optional[Time]:
    if isinstance(value, Time):
        return value
    if not isinstance(value, str):
        return None
    m = TIME_REF_REGEX.match(value.strip())
    if not m:
        return None
    return Time(int(m.group(1)), int(m.group(2)))


def parse_flight_number(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    m = FLIGHT_NUMBER_REGEX.search(value)
    if not m:
        return None
    return m.group(1) + m.group(2)


# Parameter type -> property key carrying it
PROPERTY_KEYS: Dict[str, str] = {
    'date': 'date',
    'location': 'position',
    'time': 'time',
    'flight': 'flightNumber',
}

PARSERS: Dict[str, Callable[[Any], Any]] = {
    'date': parse_date,
    'location': parse_lat_lng,
    'time': parse_time,
    'flight': parse_flight_number,
}


def parse_typed(type_name: str, value: Any) -> Any:
    parser = PARSERS.get(type_name)
    if parser is None:
        raise ValueError(f"Unknown parameter type: {type_name!r}")
    return parser(value)


def _scope_content(scope) -> Any:
    """The value carried after a scope's key, evaluated when available."""
    if scope.is_resolved:
        values = [v for v in scope.value if v is not None]
        if len(values) == 1 and not isinstance(values[0], str):
            return values[0]
    return scope.label


def inline_transclusions(scope) -> list:
    """Scopes transcluded as a whole part, as in ``{#[paris]}``."""
    parts = scope.bullet.parts
    out = []
    for part in parts:
        if isinstance(part, InlineExpr) and isinstance(part.expr, IdentifierRef):
            target = scope.transcluded_scopes.get(part.expr.id)
            if target is not None:
                out.append(target)
    return out


def is_parents_property(scope, type_name: str) -> bool:
    """True when the parent already carries this scope's value as a named property."""
    parent = scope.parent_scope
    key = PROPERTY_KEYS.get(type_name)
    return parent is not None and key is not None and parent.get_child_scope(key) is scope


def read_as(scope, type_name: str) -> List[DataWithProvenance]:
    """Every value of ``type_name`` a scope carries, nearest source first."""
    key = PROPERTY_KEYS.get(type_name)
    if key is None:
        raise ValueError(f"Unknown parameter type: {type_name!r}")
    results: List[DataWithProvenance] = []

    if type_name == 'date':
        date = parse_date(scope.id)
        if date is not None:
            results.append(DataWithProvenance(scope, date))

    own_key = scope.bullet.key_name
    if own_key == key or (type_name == 'date' and own_key is None and not inline_transclusions(scope)):
        data = parse_typed(type_name, _scope_content(scope))
        if data is not None:
            results.append(DataWithProvenance(scope, data))

    child = scope.get_child_scope(key)
    if child is not None:
        data = parse_typed(type_name, _scope_content(child))
        if data is not None:
            results.append(DataWithProvenance(scope, data))

    for target in inline_transclusions(scope):
        results.extend(read_as(target, type_name))

    return results


async def read_as_async(scope, type_name: str) -> List[DataWithProvenance]:
    """Like ``read_as`` but waits for the scopes involved to resolve first."""
    await scope.value_of_async()
    child = scope.get_child_scope(PROPERTY_KEYS.get(type_name, ''))
    if child is not None:
        await child.value_of_async()
    for target in inline_transclusions(scope):
        await target.value_of_async()
    return read_as(scope, type_name)
