from datetime import datetime

import pytest

from periods import (
    current_delivery_period,
    delivery_window_message,
    hours_until_delivery_window,
    is_delivery_hours,
    is_payment_window,
    month_of,
    period_of,
    settlement_period,
    timestamp,
)


def test_windows_at_four_and_six():
    assert is_payment_window(4) is True
    assert is_delivery_hours(4) is False
    assert is_payment_window(6) is False
    assert is_delivery_hours(6) is True


@pytest.mark.parametrize("hour", range(24))
def test_windows_never_overlap_and_cover_the_day(hour):
    assert is_payment_window(hour) != is_delivery_hours(hour)


def test_window_edges():
    assert is_payment_window(0)
    assert is_payment_window(5)
    assert is_delivery_hours(23)


def test_current_period_is_today_even_before_dawn():
    assert current_delivery_period(datetime(2024, 1, 15, 2, 30)) == "2024-01-15"
    assert current_delivery_period(datetime(2024, 1, 15, 23, 59)) == "2024-01-15"


def test_settlement_period_points_at_the_closed_day_during_payment_window():
    assert settlement_period(datetime(2024, 1, 16, 2, 0)) == "2024-01-15"
    assert settlement_period(datetime(2024, 3, 1, 5, 59)) == "2024-02-29"
    assert settlement_period(datetime(2024, 1, 15, 14, 0)) == "2024-01-15"


def test_hours_until_delivery_window():
    assert hours_until_delivery_window(datetime(2024, 1, 15, 10)) == 0
    assert hours_until_delivery_window(datetime(2024, 1, 15, 1)) == 5
    assert hours_until_delivery_window(datetime(2024, 1, 15, 5)) == 1


def test_delivery_window_message():
    assert delivery_window_message(datetime(2024, 1, 15, 12)) == "Delivery window is currently open"
    assert delivery_window_message(datetime(2024, 1, 15, 5)) == "Delivery opens in 1 hour"
    assert delivery_window_message(datetime(2024, 1, 15, 3)) == "Delivery opens in 3 hours"


def test_timestamp_helpers():
    moment = datetime(2024, 1, 15, 6, 0, 0, 123456)
    assert timestamp(moment) == "2024-01-15T06:00:00"
    assert period_of("2024-01-15T23:10:00") == "2024-01-15"
    assert month_of(moment) == "2024-01"
