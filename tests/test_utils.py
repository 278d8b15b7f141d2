from datetime import datetime
from types import SimpleNamespace

import pytest

from dealer_api.main import _first_error, normalize_db_url
from dealer_api.utils import like_pattern, line_total, parse_datetime


def test_parse_datetime_variants() -> None:
    assert parse_datetime(None) is None
    assert parse_datetime("  ") is None
    assert parse_datetime("2024-01-31") == datetime(2024, 1, 31)
    assert parse_datetime("2024-01-31T10:30:00") == datetime(2024, 1, 31, 10, 30)
    assert parse_datetime("2024-01-31T10:30:00Z") == datetime(2024, 1, 31, 10, 30)
    assert parse_datetime("2024-01-31T12:30:00+02:00") == datetime(2024, 1, 31, 10, 30)


def test_parse_datetime_junk() -> None:
    with pytest.raises(ValueError, match="Invalid date"):
        parse_datetime("31/01/2024")


def test_line_total_rows_and_dicts() -> None:
    rows = [SimpleNamespace(price=100.0, qty=2), SimpleNamespace(price=50.0, qty=1)]
    assert line_total(rows) == 250.0
    assert line_total([{"price": 10, "qty": 3}]) == 30
    assert line_total([]) == 0


def test_like_pattern_escapes_wildcards() -> None:
    assert like_pattern("ev5") == "%ev5%"
    assert like_pattern("50%_off") == "%50\\%\\_off%"


@pytest.mark.parametrize(
    "url,expected",
    [
        ("postgres://u:p@db:5432/dealer", "postgresql+asyncpg://u:p@db:5432/dealer"),
        ("postgresql://u:p@db/dealer?sslmode=require", "postgresql+asyncpg://u:p@db/dealer"),
        ("postgresql+asyncpg://u:p@db/dealer", "postgresql+asyncpg://u:p@db/dealer"),
        ("sqlite+aiosqlite:////tmp/dealer.db", "sqlite+aiosqlite:////tmp/dealer.db"),
    ],
)
def test_normalize_db_url(url, expected) -> None:
    assert normalize_db_url(url) == expected


def test_first_error_message() -> None:
    errors = [
        {"loc": ("body", "items", 0, "price"), "msg": "Input should be greater than or equal to 0"},
        {"loc": ("body", "name"), "msg": "Field required"},
    ]
    assert _first_error(errors) == "items.0.price: Input should be greater than or equal to 0"
    assert _first_error([]) == "Invalid request"


def test_first_error_json_decode() -> None:
    errors = [{"type": "json_invalid", "loc": ("body", 1), "msg": "JSON decode error"}]
    assert _first_error(errors) == "Invalid JSON body"
