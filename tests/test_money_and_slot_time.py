from datetime import date, datetime, time

import pytest

from utils.money import cancellation_breakdown, fee_percentage_for, percent_of
from utils.slot_time import SlotTimeError, parse_slot_time, slot_start_utc


@pytest.mark.parametrize(
    "hours, expected",
    [
        (0.5, 50),
        (3 + 59 / 60, 50),
        (4, 25),
        (10, 25),
        (11.99, 25),
        (12, 10),
        (23 + 59 / 60, 10),
        (24, 0),
        (72, 0),
    ],
)
def test_fee_tiers(hours, expected):
    assert fee_percentage_for(hours) == expected


def test_percent_of_rounds_half_up():
    assert percent_of(1000, 25) == 250
    assert percent_of(999, 10) == 100  # 99.9
    assert percent_of(5, 50) == 3  # 2.5 rounds up
    assert percent_of(1, 10) == 0


def test_breakdown_paid_booking_ten_hours_out():
    out = cancellation_breakdown(1000, 10, paid=True)
    assert out == {"total_amount": 1000, "fee_percentage": 25, "cancellation_fee": 250, "refund_amount": 750}


def test_breakdown_unpaid_booking_is_free():
    out = cancellation_breakdown(1000, 1, paid=False)
    assert out["fee_percentage"] == 0
    assert out["cancellation_fee"] == 0
    assert out["refund_amount"] == 0


@pytest.mark.parametrize(
    "label, expected",
    [
        ("9:30 AM", time(9, 30)),
        ("9 PM", time(21, 0)),
        ("09:30pm", time(21, 30)),
        ("12:00 AM", time(0, 0)),
        ("12:15 PM", time(12, 15)),
        ("18:00", time(18, 0)),
        (" 7:05 a.m. ", time(7, 5)),
    ],
)
def test_parse_slot_time(label, expected):
    assert parse_slot_time(label) == expected


@pytest.mark.parametrize("label", ["", "noon", "13:00 PM", "25:00", "9:75 AM", "0 AM"])
def test_parse_slot_time_rejects_garbage(label):
    with pytest.raises(SlotTimeError):
        parse_slot_time(label)


def test_slot_start_in_business_timezone():
    # 6:00 PM in Kolkata is 12:30 UTC
    assert slot_start_utc(date(2030, 1, 15), "6:00 PM", "Asia/Kolkata") == datetime(2030, 1, 15, 12, 30)
    assert slot_start_utc(date(2030, 1, 15), "6:00 PM") == datetime(2030, 1, 15, 18, 0)
