"""
Unit tests for opening-hours evaluation (Buenos Aires is UTC-3, no DST).
"""

import pytest
from datetime import date, datetime, time, timezone

from qrorder.exceptions import InputError
from qrorder.models import OperatingHour, ScheduleException
from qrorder.services.schedule_service import is_restaurant_open, local_now

# Monday 2024-01-01
MONDAY_1300_LOCAL = datetime(2024, 1, 1, 16, 0, tzinfo=timezone.utc)
MONDAY_1600_LOCAL = datetime(2024, 1, 1, 19, 0, tzinfo=timezone.utc)


@pytest.fixture
def lunch_hours(session, restaurant):
    """Monday 12:00-15:00 only."""
    session.add(OperatingHour(restaurant_id=restaurant.id, day_of_week=1,
                              open_time=time(12, 0), close_time=time(15, 0)))
    session.commit()


class TestIsRestaurantOpen:
    """Weekly hours, overnight ranges and exceptions."""

    def test_no_hours_means_always_open(self, session, restaurant):
        assert is_restaurant_open(session, restaurant, MONDAY_1600_LOCAL) is True

    def test_inside_range(self, session, restaurant, lunch_hours):
        assert is_restaurant_open(session, restaurant, MONDAY_1300_LOCAL) is True

    def test_outside_range(self, session, restaurant, lunch_hours):
        assert is_restaurant_open(session, restaurant, MONDAY_1600_LOCAL) is False

    def test_other_day_is_closed(self, session, restaurant, lunch_hours):
        tuesday = datetime(2024, 1, 2, 16, 0, tzinfo=timezone.utc)
        assert is_restaurant_open(session, restaurant, tuesday) is False

    def test_overnight_range_covers_next_morning(self, session, restaurant):
        """Friday 20:00-02:00 is still open at 01:00 on Saturday."""
        session.add(OperatingHour(restaurant_id=restaurant.id, day_of_week=5,
                                  open_time=time(20, 0), close_time=time(2, 0)))
        session.commit()

        friday_night = datetime(2024, 1, 6, 0, 30, tzinfo=timezone.utc)    # Fri 21:30 local
        saturday_0100 = datetime(2024, 1, 6, 4, 0, tzinfo=timezone.utc)    # Sat 01:00 local
        saturday_0300 = datetime(2024, 1, 6, 6, 0, tzinfo=timezone.utc)    # Sat 03:00 local

        assert is_restaurant_open(session, restaurant, friday_night) is True
        assert is_restaurant_open(session, restaurant, saturday_0100) is True
        assert is_restaurant_open(session, restaurant, saturday_0300) is False

    def test_closed_day_row_is_skipped(self, session, restaurant):
        session.add(OperatingHour(restaurant_id=restaurant.id, day_of_week=1,
                                  open_time=time(0, 0), close_time=time(0, 0), is_closed=True))
        session.commit()
        assert is_restaurant_open(session, restaurant, MONDAY_1300_LOCAL) is False

    def test_exception_closes_whole_day(self, session, restaurant, lunch_hours):
        session.add(ScheduleException(restaurant_id=restaurant.id, exception_date=date(2024, 1, 1),
                                      is_closed_all_day=True, reason='Feriado'))
        session.commit()
        assert is_restaurant_open(session, restaurant, MONDAY_1300_LOCAL) is False

    def test_exception_with_special_hours(self, session, restaurant, lunch_hours):
        session.add(ScheduleException(restaurant_id=restaurant.id, exception_date=date(2024, 1, 1),
                                      open_time=time(15, 0), close_time=time(18, 0)))
        session.commit()
        assert is_restaurant_open(session, restaurant, MONDAY_1600_LOCAL) is True
        assert is_restaurant_open(session, restaurant, MONDAY_1300_LOCAL) is False

    def test_exception_date_is_local(self, restaurant):
        """02:00 UTC on Jan 2nd is still Jan 1st in Buenos Aires."""
        local = local_now(restaurant, datetime(2024, 1, 2, 2, 0, tzinfo=timezone.utc))
        assert local.date() == date(2024, 1, 1)

    def test_unknown_timezone_falls_back(self, restaurant):
        restaurant.timezone = 'Mars/Olympus_Mons'
        local = local_now(restaurant, MONDAY_1300_LOCAL)
        assert local.hour == 13


class TestTakeawayHours:
    """Takeaway orders are only accepted while open."""

    def test_takeaway_rejected_when_closed(self, session, make_order, lunch_hours):
        with pytest.raises(InputError):
            make_order(takeaway=True, now=MONDAY_1600_LOCAL)

    def test_takeaway_accepted_when_open(self, session, make_order, lunch_hours):
        order = make_order(takeaway=True, now=MONDAY_1300_LOCAL)
        assert order.pickup_code

    def test_table_orders_ignore_hours(self, session, make_order, lunch_hours):
        assert make_order(now=MONDAY_1600_LOCAL) is not None
