"""Date parameter helper tests."""
from datetime import date

import pytest

from business.dates import month_bounds, parse_date
from business.errors import ValidationError


class TestParseDate:

    def test_valid(self):
        assert parse_date("2024-02-29") == date(2024, 2, 29)

    def test_missing_defaults_to_today(self):
        assert parse_date(None) == date.today()
        assert parse_date("") == date.today()

    def test_explicit_default(self):
        assert parse_date(None, default=date(2020, 1, 1)) == date(2020, 1, 1)

    @pytest.mark.parametrize("value", ["2024-13-01", "28/01/2024", "soon",
                                       "2023-02-29"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError) as exc:
            parse_date(value, "startDate")
        assert exc.value.errors == [{"field": "startDate", "value": value}]


class TestMonthBounds:

    def test_leap_february(self):
        assert month_bounds(date(2024, 2, 10)) == (date(2024, 2, 1),
                                                   date(2024, 2, 29))

    def test_december(self):
        assert month_bounds(date(2023, 12, 31)) == (date(2023, 12, 1),
                                                    date(2023, 12, 31))
