"""
Movie record validation and normalization.

`validate_movie` takes raw input from a form post, the JSON API or a merged
update, and returns a normalized document ready to persist, or raises
`ValidationError` carrying every field-level problem it found. It never
touches the store.

Normalization rules:
- camelCase keys from forms/JSON map to the stored snake_case names
- cast, genres and showTimes accept a comma-separated string or a list;
  items are trimmed and empty ones dropped
- isFull accepts form tokens ("on", "true", "1", "yes") as well as booleans
- releaseDate accepts a datetime, a date or an ISO-8601 string; naive
  values are taken as UTC
"""

from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError as SchemaError

import config
from errors import ValidationError
from schemas import RATINGS, Movie, schema_errors

REQUIRED_FIELDS = ("title", "director", "description", "poster_url", "rating", "release_date", "duration")
LIST_FIELDS = ("cast", "genres", "show_times")
TEXT_LIMITS = {"title": 100, "director": 100, "description": 2000}
URL_SCHEMES = ("http://", "https://")
MIN_DURATION, MAX_DURATION = 1, 500
TRUTHY = {"on", "true", "1", "yes"}

MOVIE_FIELDS = set(Movie.model_fields)

FIELD_ALIASES = {
    "posterUrl": "poster_url",
    "releaseDate": "release_date",
    "showTimes": "show_times",
    "theaterLocation": "theater_location",
    "isFull": "is_full",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in data.items():
        key = FIELD_ALIASES.get(key, key)
        if key in MOVIE_FIELDS:
            out[key] = value
    return out


def split_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        items = [value]
    return [str(item).strip() for item in items if item is not None and str(item).strip()]


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY


def parse_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported date value {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_duration(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean duration")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError(f"Unsupported duration value {value!r}")


def _empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_movie(candidate: Mapping[str, Any]) -> Dict[str, Any]:
    data = normalize_keys(candidate)
    errors: Dict[str, str] = {}

    for key in ("title", "director", "description", "poster_url", "rating", "language", "theater_location"):
        if isinstance(data.get(key), str):
            data[key] = data[key].strip()

    missing = [f for f in REQUIRED_FIELDS if _empty(data.get(f))]
    for f in missing:
        errors[f] = "This field is required"

    for f in LIST_FIELDS:
        data[f] = split_list(data.get(f))
    if not data["genres"]:
        errors["genres"] = "Please select at least one movie genre"

    for f, limit in TEXT_LIMITS.items():
        if f not in errors and len(str(data[f])) > limit:
            errors[f] = f"Cannot exceed {limit} characters"

    if "rating" not in errors:
        data["rating"] = str(data["rating"]).upper()
        if data["rating"] not in RATINGS:
            errors["rating"] = "The rating must be one of: " + ", ".join(RATINGS)

    if "poster_url" not in errors and not str(data["poster_url"]).startswith(URL_SCHEMES):
        errors["poster_url"] = "Please provide a valid poster URL"

    if "duration" not in errors:
        try:
            data["duration"] = parse_duration(data["duration"])
        except ValueError:
            errors["duration"] = "Duration must be a whole number of minutes"
        else:
            if not MIN_DURATION <= data["duration"] <= MAX_DURATION:
                errors["duration"] = f"Duration must be between {MIN_DURATION} and {MAX_DURATION} minutes"

    if "release_date" not in errors:
        try:
            data["release_date"] = parse_date(data["release_date"])
        except (ValueError, TypeError, OverflowError):
            errors["release_date"] = "Invalid date"

    data["is_full"] = parse_bool(data.get("is_full"))
    if _empty(data.get("language")):
        data["language"] = config.DEFAULT_LANGUAGE
    if _empty(data.get("theater_location")):
        data["theater_location"] = config.DEFAULT_THEATER_LOCATION

    if errors:
        if missing:
            message = "Please fill in all required fields: " + ", ".join(missing)
        else:
            message = next(iter(errors.values()))
        raise ValidationError(message, errors)

    try:
        movie = Movie(**data)
    except SchemaError as e:
        raise ValidationError("Invalid movie record", schema_errors(e)) from e
    return movie.model_dump()
