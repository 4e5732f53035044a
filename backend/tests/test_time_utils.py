# Overview: Pytest coverage for UTC timestamp normalization.

from datetime import datetime, timedelta, timezone

import pytest

from retailops.errors import ValidationError
from retailops.time_utils import parse_iso_datetime, to_utc_z
from retailops.validation import coerce_datetime


@pytest.mark.parametrize(
    "value",
    [
        "2026-03-01T10:00:00Z",
        "2026-03-01T16:00:00+06:00",
        "2026-03-01T10:00:00",
        datetime(2026, 3, 1, 16, 0, tzinfo=timezone(timedelta(hours=6))),
        datetime(2026, 3, 1, 10, 0),
    ],
)
def test_inputs_normalize_to_same_instant(value):
    assert parse_iso_datetime(value) == datetime(2026, 3, 1, 10, 0)


def test_blank_is_none():
    assert parse_iso_datetime(None) is None
    assert parse_iso_datetime("  ") is None


def test_serialized_form_drops_microseconds():
    assert to_utc_z(datetime(2026, 3, 1, 10, 0, 0, 999)) == "2026-03-01T10:00:00Z"
    assert to_utc_z(None) is None


def test_coerce_datetime_normalizes_aware_values():
    aware = datetime(2026, 3, 1, 16, 0, tzinfo=timezone(timedelta(hours=6)))
    assert coerce_datetime(aware, "date") == datetime(2026, 3, 1, 10, 0)

    with pytest.raises(ValidationError) as exc:
        coerce_datetime("yesterday", "date")
    assert exc.value.details == {"field": "date"}
