from datetime import date, datetime, timezone

import pytest

from errors import ValidationError
from validation import parse_bool, split_list, validate_movie

from conftest import sample_movie


def test_form_input_is_normalized():
    movie = validate_movie(sample_movie(isFull="on"))

    assert movie["poster_url"] == "https://example.com/posters/infernal-affairs.jpg"
    assert movie["genres"] == ["Crime", "Thriller"]
    assert movie["cast"] == ["Andy Lau", "Tony Leung"]
    assert movie["show_times"] == ["14:00", "19:30"]
    assert movie["duration"] == 101
    assert movie["is_full"] is True
    assert movie["release_date"] == datetime(2002, 12, 12, tzinfo=timezone.utc)
    assert movie["language"] == "English"
    assert movie["theater_location"] == "Hong Kong"


def test_sequences_pass_through():
    movie = validate_movie(sample_movie(genres=["Drama"], cast=["Tony Leung", " ", "Maggie Cheung"]))
    assert movie["genres"] == ["Drama"]
    assert movie["cast"] == ["Tony Leung", "Maggie Cheung"]


def test_missing_fields_are_all_reported():
    with pytest.raises(ValidationError) as exc:
        validate_movie(sample_movie(title="", director=None, posterUrl="  "))

    assert {"title", "director", "poster_url"} <= set(exc.value.errors)
    for field in ("title", "director", "poster_url"):
        assert field in exc.value.message


@pytest.mark.parametrize("rating", ["IV", "PG-13", "II"])
def test_rating_outside_classification_fails(rating):
    with pytest.raises(ValidationError) as exc:
        validate_movie(sample_movie(rating=rating))
    assert "rating" in exc.value.errors


def test_rating_is_upper_cased():
    assert validate_movie(sample_movie(rating="iia"))["rating"] == "IIA"


@pytest.mark.parametrize("duration", [0, 501, "-5", "two hours"])
def test_duration_out_of_bounds_fails(duration):
    with pytest.raises(ValidationError) as exc:
        validate_movie(sample_movie(duration=duration))
    assert "duration" in exc.value.errors


@pytest.mark.parametrize("genres", ["", " , ", [], None])
def test_zero_genres_fails(genres):
    with pytest.raises(ValidationError) as exc:
        validate_movie(sample_movie(genres=genres))
    assert "genres" in exc.value.errors


def test_poster_url_needs_http_scheme():
    with pytest.raises(ValidationError) as exc:
        validate_movie(sample_movie(posterUrl="ftp://example.com/poster.jpg"))
    assert "poster_url" in exc.value.errors


def test_invalid_release_date():
    with pytest.raises(ValidationError) as exc:
        validate_movie(sample_movie(releaseDate="12/32/2024"))
    assert exc.value.errors == {"release_date": "Invalid date"}
    assert exc.value.message == "Invalid date"


def test_release_date_accepts_date_and_datetime():
    assert validate_movie(sample_movie(releaseDate=date(2024, 5, 1)))["release_date"] == datetime(
        2024, 5, 1, tzinfo=timezone.utc
    )
    stamp = datetime(2024, 5, 1, 20, 0, tzinfo=timezone.utc)
    assert validate_movie(sample_movie(releaseDate=stamp))["release_date"] == stamp


def test_title_length_is_bounded():
    with pytest.raises(ValidationError) as exc:
        validate_movie(sample_movie(title="x" * 101))
    assert "title" in exc.value.errors


def test_validation_is_idempotent():
    once = validate_movie(sample_movie(isFull="true"))
    assert validate_movie(once) == once


def test_helpers():
    assert split_list("a, ,b,") == ["a", "b"]
    assert split_list(None) == []
    assert parse_bool("on") and parse_bool(True) and parse_bool("Yes")
    assert not parse_bool("off") and not parse_bool(None) and not parse_bool("")
