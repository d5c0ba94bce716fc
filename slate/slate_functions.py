"""
Domain functions: distances, routes, weather, daylight and flight status.

Location and date arguments arrive as scope handles (``#[id]``) and are read
through ``slate_properties``. Provider responses are memoized in bounded
per-provider caches.
"""

import datetime
import logging
import math
from typing import Any, Dict, List, Optional

from slate.slate_config import get_config
from slate.slate_datatypes import (
    ComputationResult, DataWithProvenance, EMPTY_ARGUMENT, HAS_MISSING_ARGUMENTS, Parameter, Suggestion,
    SuggestionArgument,
)
from slate.slate_http import LRUCache, ProviderError, cached_fetch_json
from slate.slate_properties import (
    LatLng, is_parents_property, parse_date, parse_flight_number, parse_lat_lng, parse_typed,
)
from slate.slate_runtime import slate_function
from slate.slate_scope import Scope

logger = logging.getLogger(__name__)

ROUTE_CACHE = LRUCache()
FORECAST_CACHE = LRUCache()
HISTORIC_WEATHER_CACHE = LRUCache()
DAYLIGHT_CACHE = LRUCache()
FLIGHT_CACHE = LRUCache()

EARTH_RADIUS_KM = 6371.0088
UNIT_FACTORS = {
    'kilometers': 1.0,
    'meters': 1000.0,
    'miles': 1 / 1.609344,
}
UNIT_SHORT_NAMES = {
    'kilometers': 'km',
    'meters': 'm',
    'miles': 'mi',
}
FORECAST_DAYS = 16


# =================================================================
# Argument helpers
# =================================================================

def has_empty_slot(named: Dict[str, Any], names) -> bool:
    """True when one of ``names`` was written as ``name:`` with no value."""
    return any(named.get(name) is EMPTY_ARGUMENT for name in names)


async def location_of(arg: Any) -> Optional[LatLng]:
    if isinstance(arg, Scope):
        found = await arg.read_as_async('location')
        return found[0].data if found else None
    return parse_lat_lng(arg)


async def date_of(arg: Any) -> Optional[datetime.date]:
    if isinstance(arg, Scope):
        found = await arg.read_as_async('date')
        return found[0].data if found else None
    return parse_date(arg)


async def positioned_children(scope: Scope) -> List[tuple]:
    """(child, [DataWithProvenance]) for each child of ``scope`` that carries a location."""
    out = []
    for child in scope.child_scopes:
        found = await child.read_as_async('location')
        if found:
            out.append((child, found))
    return out


def pair_suggestions(name: str, icon: str, labels, first: List[Parameter], second: List[Parameter],
                     penalty: float = 0.0, prefer_sibling_order: bool = False) -> List[Suggestion]:
    suggestions = []
    for a in first:
        for b in second:
            if a is b or a.expression == b.expression:
                continue
            rank = a.distance + b.distance + penalty
            if prefer_sibling_order and a.scope.is_preceding_sibling_of(b.scope):
                rank -= 1
            suggestions.append(Suggestion(
                name,
                [SuggestionArgument(labels[0], a.expression), SuggestionArgument(labels[1], b.expression)],
                rank=rank,
                icon=icon,
            ))
    return suggestions


def of_type(parameters: List[Parameter], type_name: str) -> List[Parameter]:
    return [p for p in parameters if p.type == type_name]


# =================================================================
# Distance
# =================================================================

def haversine_km(a: LatLng, b: LatLng) -> float:
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def line_feature(a: LatLng, b: LatLng) -> dict:
    return {
        'type': 'Feature',
        'geometry': {'type': 'LineString', 'coordinates': [[a.lng, a.lat], [b.lng, b.lat]]},
    }


def distance_info(a: LatLng, b: LatLng, unit: str = 'kilometers') -> dict:
    if unit not in UNIT_FACTORS:
        raise ValueError(f"Unknown unit: {unit!r}")
    value = haversine_km(a, b) * UNIT_FACTORS[unit]
    return {
        'value': value,
        'unit': unit,
        'display': f"{round(value)} {UNIT_SHORT_NAMES[unit]}",
        'geoJson': line_feature(a, b),
    }


@slate_function(
    'Distance',
    parameters={'from': 'location', 'to': 'location'},
    autocomplete=Suggestion('Distance', [SuggestionArgument('from'), SuggestionArgument('to')], icon='straighten'),
    summary='📏 {{display}}',
    icon='straighten',
)
async def distance(positional, named, scope):
    if has_empty_slot(named, ('from', 'to')):
        return HAS_MISSING_ARGUMENTS
    unit = named.get('unit') or 'kilometers'

    if 'from' in named and 'to' in named:
        a = await location_of(named['from'])
        b = await location_of(named['to'])
        if a is None or b is None:
            return None
        return distance_info(a, b, unit)

    # No arguments: annotate consecutive positioned children
    prev = []
    for child, current in await positioned_children(scope):
        for p in prev:
            for c in current:
                info = distance_info(p.data, c.data, unit)
                info.update({'from': p.scope.id, 'to': c.scope.id})
                child.add_computation_result(ComputationResult('distance', info))
        prev = current
    return None


@distance.suggester
def distance_suggestions(parameters: List[Parameter]) -> List[Suggestion]:
    locations = of_type(parameters, 'location')
    # Ranked behind Route for the same pair
    return pair_suggestions('Distance', 'straighten', ('from', 'to'), locations, locations,
                            penalty=0.5, prefer_sibling_order=True)


# =================================================================
# Route
# =================================================================

def humanize_duration(seconds: float, largest: int = 2) -> str:
    units = [('d', 86400), ('h', 3600), ('m', 60), ('s', 1)]
    remaining = int(round(seconds))
    parts = []
    for suffix, size in units:
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count}{suffix}")
    return " ".join(parts[:largest]) or "0s"


async def get_route_information(a: LatLng, b: LatLng) -> Optional[dict]:
    providers = get_config().providers
    url = f"{providers.routing_url}/route/v1/driving/{a.lng},{a.lat};{b.lng},{b.lat}"
    result = await cached_fetch_json(ROUTE_CACHE, url, {'overview': 'full', 'geometries': 'geojson'})
    routes = result.get('routes') or []
    if not routes:
        return None
    route = routes[0]
    return {
        'distance': f"{round(route.get('distance', 0) / 1000, 2)} km",
        'duration': humanize_duration(route.get('duration', 0)),
        'geoJson': {'type': 'Feature', 'geometry': route.get('geometry')},
    }


async def _route_result(from_scope, to_scope, a: LatLng, b: LatLng) -> Optional[ComputationResult]:
    try:
        info = await get_route_information(a, b)
    except ProviderError as e:
        logger.warning("Route lookup failed: %s", e)
        return None
    if info is None:
        return None
    from_label = await from_scope.get_label_async() if isinstance(from_scope, Scope) else str(a)
    to_label = await to_scope.get_label_async() if isinstance(to_scope, Scope) else str(b)
    return ComputationResult('Route', {'from': from_label, 'to': to_label, **info})


@slate_function(
    'Route',
    parameters={'from': 'location', 'to': 'location'},
    autocomplete=Suggestion('Route', [SuggestionArgument('from'), SuggestionArgument('to')], icon='directions_car'),
    summary='{{from}} -> {{to}} - {{duration}}, {{distance}}',
    icon='directions_car',
)
async def route(positional, named, scope):
    if has_empty_slot(named, ('from', 'to')):
        return HAS_MISSING_ARGUMENTS

    if 'from' in named and 'to' in named:
        a = await location_of(named['from'])
        b = await location_of(named['to'])
        if a is None or b is None:
            return None
        result = await _route_result(named['from'], named['to'], a, b)
        if result is None:
            return None
        scope.add_computation_result(result)
        return result.data

    prev = []
    for child, current in await positioned_children(scope):
        for p in prev:
            for c in current:
                result = await _route_result(p.scope, c.scope, p.data, c.data)
                if result is not None:
                    child.add_computation_result(result)
        prev = current
    return None


@route.suggester
def route_suggestions(parameters: List[Parameter]) -> List[Suggestion]:
    locations = of_type(parameters, 'location')
    return pair_suggestions('Route', 'directions_car', ('from', 'to'), locations, locations,
                            prefer_sibling_order=True)


# =================================================================
# Weather
# =================================================================

WEATHER_DESCRIPTIONS = {
    0: "clear sky", 1: "mainly clear", 2: "partly cloudy", 3: "overcast",
    45: "fog", 48: "depositing rime fog",
    51: "light drizzle", 53: "moderate drizzle", 55: "dense drizzle",
    56: "light freezing drizzle", 57: "intense freezing drizzle",
    61: "slight rain", 63: "moderate rain", 65: "heavy rain",
    66: "light freezing rain", 67: "heavy freezing rain",
    71: "slight snow fall", 73: "moderate snow fall", 75: "heavy snow fall", 77: "snow grains",
    80: "slight rain showers", 81: "moderate rain showers", 82: "violent rain showers",
    85: "slight snow showers", 86: "heavy snow showers",
    95: "thunderstorm", 96: "thunderstorm with slight hail", 99: "thunderstorm with heavy hail",
}


def weather_summary(info: dict) -> str:
    parts = []
    description = WEATHER_DESCRIPTIONS.get(info.get('weatherCode'))
    if description:
        parts.append(description)
    parts.append(f"{info.get('min')} • {info.get('max')}")
    return " ".join(parts)


async def fetch_forecast(location: LatLng) -> List[dict]:
    providers = get_config().providers
    raw = await cached_fetch_json(FORECAST_CACHE, providers.forecast_url, {
        'latitude': location.lat,
        'longitude': location.lng,
        'daily': 'temperature_2m_max,temperature_2m_min,temperature_2m_mean,weathercode',
        'hourly': 'temperature_2m,windspeed_10m,windgusts_10m,precipitation_probability',
        'forecast_days': FORECAST_DAYS,
        'timezone': 'auto',
    })
    daily = raw['daily']
    hourly = raw.get('hourly') or {}
    return [
        {
            'min': daily['temperature_2m_min'][i],
            'max': daily['temperature_2m_max'][i],
            'mean': daily['temperature_2m_mean'][i],
            'weatherCode': daily['weathercode'][i],
            'hourly': hours_of_day(hourly, day),
        }
        for i, day in enumerate(daily['time'])
    ]


def hours_of_day(hourly: dict, day: str) -> Dict[str, dict]:
    """Hourly values of one day keyed ``HH:MM``. Hourly times look like ``2024-06-01T13:00``."""
    out = {}
    for i, stamp in enumerate(hourly.get('time') or []):
        date_part, _, hour = stamp.partition('T')
        if date_part != day:
            continue
        out[hour[:5]] = {
            'temp': hourly['temperature_2m'][i],
            'precip': hourly['precipitation_probability'][i],
            'windspeed_10m': hourly['windspeed_10m'][i],
            'windgusts_10m': hourly['windgusts_10m'][i],
        }
    return out


async def fetch_historic_weather(location: LatLng, today: datetime.date) -> Dict[str, Dict[str, dict]]:
    """Daily values of the last 20 years grouped as ``{"MM-DD": {"YYYY": info}}``."""
    providers = get_config().providers
    start = today.replace(year=today.year - 20) if not (today.month == 2 and today.day == 29) \
        else today.replace(year=today.year - 20, day=28)
    raw = await cached_fetch_json(HISTORIC_WEATHER_CACHE, providers.archive_url, {
        'latitude': location.lat,
        'longitude': location.lng,
        'daily': 'temperature_2m_max,temperature_2m_min,temperature_2m_mean',
        'timezone': 'auto',
        'start_date': start.isoformat(),
        'end_date': (today - datetime.timedelta(days=1)).isoformat(),
    })
    daily = raw['daily']
    grouped: Dict[str, Dict[str, dict]] = {}
    for i, day in enumerate(daily['time']):
        low = daily['temperature_2m_min'][i]
        high = daily['temperature_2m_max'][i]
        mean = daily['temperature_2m_mean'][i]
        # Recent days without archived data yet
        if low is None or high is None or mean is None:
            continue
        year, month, dom = day.split('-')
        grouped.setdefault(f"{month}-{dom}", {})[year] = {'min': low, 'max': high, 'mean': mean}
    return grouped


async def get_weather_information(date: datetime.date, location: LatLng,
                                  today: Optional[datetime.date] = None) -> Optional[dict]:
    today = today or datetime.date.today()
    last_forecast_day = today + datetime.timedelta(days=FORECAST_DAYS)

    if date < today or date > last_forecast_day:
        historic = await fetch_historic_weather(location, today)
        day_group = historic.get(date.strftime('%m-%d'))
        if not day_group:
            return None
        exact = day_group.get(date.strftime('%Y'))
        if exact is not None:
            return exact
        # Normal for that day
        measurements = list(day_group.values())
        n = len(measurements)
        return {
            'min': round(sum(m['min'] for m in measurements) / n, 1),
            'max': round(sum(m['max'] for m in measurements) / n, 1),
            'mean': round(sum(m['mean'] for m in measurements) / n, 1),
        }

    forecast = await fetch_forecast(location)
    offset = (date - today).days
    return forecast[offset] if 0 <= offset < len(forecast) else None


@slate_function(
    'Weather',
    parameters={'in': 'location', 'on': 'date'},
    autocomplete=Suggestion('Weather', [SuggestionArgument('in'), SuggestionArgument('on')], icon='light_mode'),
    summary='{{min}} • {{max}}',
    icon='light_mode',
)
async def weather(positional, named, scope):
    if has_empty_slot(named, ('in', 'on')):
        return HAS_MISSING_ARGUMENTS
    if 'in' in named and 'on' in named:
        date = await date_of(named['on'])
        location = await location_of(named['in'])
        if date is None or location is None:
            return None
        try:
            info = await get_weather_information(date, location)
        except ProviderError as e:
            logger.warning("Weather lookup failed: %s", e)
            return None
        if info is not None:
            info = {**info, 'display': weather_summary(info)}
        return info

    # Missing arguments: annotate every place and day below the call
    context = {
        'dates': await _seed(scope, named.get('on'), 'date'),
        'locations': await _seed(scope, named.get('in'), 'location'),
    }
    for child in scope.child_scopes:
        await child.traverse_scope_async(_annotate_weather, context, skip_transcluded_scopes=True)
    return HAS_MISSING_ARGUMENTS


async def _seed(scope: Scope, arg: Any, type_name: str) -> List[DataWithProvenance]:
    """Values to start from: the given argument, else the nearest enclosing value."""
    if isinstance(arg, Scope):
        return await arg.read_as_async(type_name)
    if arg is not None:
        data = parse_typed(type_name, arg)
        return [DataWithProvenance(scope, data)] if data is not None else []
    # Enclosing scopes are read without waiting on them
    ancestor = scope
    while ancestor is not None:
        found = ancestor.read_as(type_name)
        if found:
            return found
        ancestor = ancestor.parent_scope
    return []


def _merge(known: List[DataWithProvenance], new: List[DataWithProvenance]) -> List[DataWithProvenance]:
    merged = list(known)
    for item in new:
        if all(k.data != item.data for k in merged):
            merged.append(item)
    return merged


async def _publish_weather(target: Scope, location: DataWithProvenance, date: DataWithProvenance):
    try:
        info = await get_weather_information(date.data, location.data)
    except ProviderError as e:
        logger.warning("Weather lookup for %s failed: %s", target.id, e)
        return
    if info is None:
        return
    target.add_computation_result(ComputationResult('Weather', {
        'in': location.scope.id,
        'on': date.scope.id,
        **info,
        'display': weather_summary(info),
    }))


async def _annotate_weather(scope: Scope, context: dict) -> dict:
    new_locations = [] if is_parents_property(scope, 'location') else await scope.read_as_async('location')
    new_dates = [] if is_parents_property(scope, 'date') else await scope.read_as_async('date')

    for location in new_locations:
        for date in context['dates']:
            await _publish_weather(scope, location, date)
    locations = _merge(context['locations'], new_locations)
    for date in new_dates:
        for location in locations:
            await _publish_weather(scope, location, date)

    return {'dates': _merge(context['dates'], new_dates), 'locations': locations}


def date_location_suggestions(name: str, icon: str):
    def suggest(parameters: List[Parameter]) -> List[Suggestion]:
        suggestions = []
        for date in of_type(parameters, 'date'):
            for location in of_type(parameters, 'location'):
                suggestions.append(Suggestion(
                    name,
                    [SuggestionArgument('in', location.expression), SuggestionArgument('on', date.expression)],
                    rank=location.distance + date.distance,
                    icon=icon,
                ))
        return suggestions
    return suggest


weather.suggester(date_location_suggestions('Weather', 'light_mode'))


# =================================================================
# Sunrise / Sunset
# =================================================================

async def get_daylight(date: datetime.date, location: LatLng, field: str,
                       today: Optional[datetime.date] = None) -> Optional[str]:
    today = today or datetime.date.today()
    if date > today + datetime.timedelta(days=FORECAST_DAYS):
        return None
    providers = get_config().providers
    url = providers.archive_url if date < today else providers.forecast_url
    raw = await cached_fetch_json(DAYLIGHT_CACHE, url, {
        'latitude': location.lat,
        'longitude': location.lng,
        'daily': 'sunrise,sunset',
        'timezone': 'auto',
        'start_date': date.isoformat(),
        'end_date': date.isoformat(),
    })
    values = (raw.get('daily') or {}).get(field) or []
    if not values or not values[0]:
        return None
    # "2024-03-14T06:12"
    return values[0].split('T')[-1][:5]


def make_daylight_function(name: str, field: str, emoji: str):
    @slate_function(
        name,
        parameters={'in': 'location', 'on': 'date'},
        autocomplete=Suggestion(name, [SuggestionArgument('in'), SuggestionArgument('on')], icon='wb_twilight'),
        summary=emoji + ' {{value}}',
        icon='wb_twilight',
    )
    async def daylight(positional, named, scope):
        if has_empty_slot(named, ('in', 'on')):
            return HAS_MISSING_ARGUMENTS
        if 'in' not in named or 'on' not in named:
            return None
        date = await date_of(named['on'])
        location = await location_of(named['in'])
        if date is None or location is None:
            return None
        try:
            return await get_daylight(date, location, field)
        except ProviderError as e:
            logger.warning("%s lookup failed: %s", name, e)
            return None

    daylight.suggester(date_location_suggestions(name, 'wb_twilight'))
    return daylight


sunrise = make_daylight_function('Sunrise', 'sunrise', '🌅')
sunset = make_daylight_function('Sunset', 'sunset', '🌌')


# =================================================================
# FlightStatus
# =================================================================

async def get_flight_status(flight_number: str) -> Optional[dict]:
    providers = get_config().providers
    api_key = providers.flight_api_key
    if not api_key:
        logger.warning("No flight API key in $%s", providers.flight_api_key_env)
        return None
    raw = await cached_fetch_json(FLIGHT_CACHE, providers.flight_url,
                                  {'api_key': api_key, 'flight_iata': flight_number})
    if raw.get('error'):
        logger.warning("Flight status for %s failed: %s", flight_number, raw['error'])
        return None
    return raw.get('response')


@slate_function(
    'FlightStatus',
    parameters={'of': 'flight'},
    autocomplete=Suggestion('FlightStatus', [SuggestionArgument('of')], icon='flight_takeoff'),
    summary='{{status}} | {{dep_iata}} @ {{dep_time}} ✈️ {{arr_iata}} @ {{arr_time}}',
    icon='flight_takeoff',
)
async def flight_status(positional, named, scope):
    if has_empty_slot(named, ('of',)):
        return HAS_MISSING_ARGUMENTS
    target = named.get('of')
    if target is None:
        return None
    if isinstance(target, Scope):
        raw = await target.get_property_async('flightNumber')
        flight_number = parse_flight_number(raw) if raw is not None else None
        if flight_number is None:
            found = await target.read_as_async('flight')
            flight_number = found[0].data if found else None
    else:
        flight_number = parse_flight_number(target)
    if not flight_number:
        return None
    try:
        return await get_flight_status(flight_number)
    except ProviderError as e:
        logger.warning("Flight status lookup failed: %s", e)
        return None


@flight_status.suggester
def flight_status_suggestions(parameters: List[Parameter]) -> List[Suggestion]:
    return [
        Suggestion('FlightStatus', [SuggestionArgument('of', p.expression)], rank=p.distance, icon='flight_takeoff')
        for p in of_type(parameters, 'flight')
    ]
