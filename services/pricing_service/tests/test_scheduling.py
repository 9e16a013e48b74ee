# CREATE FILE: services/pricing_service/tests/test_scheduling.py

import re
import pytest
from datetime import datetime, timezone

from services.pricing_service.scheduling import (
    calculate_pickup_time, is_delivery_time_available, local_time_to_utc
)


class TestPickupTime:

    def test_default_buffer(self):
        pickup = calculate_pickup_time('2024-01-15', '14:00', tz='UTC')
        assert pickup == '2024-01-15T13:15:00.000Z'

    def test_custom_buffer(self):
        pickup = calculate_pickup_time('2024-01-15', '14:00', 60, tz='UTC')
        assert pickup == '2024-01-15T13:00:00.000Z'

    def test_iso_format(self):
        pickup = calculate_pickup_time('2024-01-15', '14:00')
        assert re.match(r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$', pickup)

    def test_local_timezone_conversion(self):
        # Pacific Standard Time is UTC-8 in January
        pickup = calculate_pickup_time('2024-01-15', '14:00', tz='America/Los_Angeles')
        assert pickup == '2024-01-15T21:15:00.000Z'

    def test_buffer_crosses_midnight(self):
        assert calculate_pickup_time('2024-01-15', '00:30', tz='UTC') == '2024-01-14T23:45:00.000Z'

    def test_invalid_time_raises(self):
        with pytest.raises(ValueError):
            local_time_to_utc('2024-01-15', '25:00', 'UTC')


class TestDeliveryTimeAvailability:

    @pytest.fixture
    def now(self):
        return datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_less_than_two_hours_ahead(self, now):
        assert is_delivery_time_available('2024-01-15', '11:00', now=now, tz='UTC') is False

    def test_within_business_hours(self, now):
        assert is_delivery_time_available('2024-01-15', '14:00', now=now, tz='UTC') is True

    def test_before_business_hours(self, now):
        assert is_delivery_time_available('2024-01-16', '06:00', now=now, tz='UTC') is False

    def test_after_business_hours(self, now):
        assert is_delivery_time_available('2024-01-15', '23:00', now=now, tz='UTC') is False

    def test_opening_hour(self, now):
        assert is_delivery_time_available('2024-01-16', '07:00', now=now, tz='UTC') is True

    def test_last_minute_before_close(self, now):
        assert is_delivery_time_available('2024-01-15', '21:59', now=now, tz='UTC') is True

    def test_exactly_two_hours_ahead(self, now):
        assert is_delivery_time_available('2024-01-15', '12:00', now=now, tz='UTC') is True

    def test_naive_now_treated_as_utc(self):
        assert is_delivery_time_available('2024-01-15', '14:00',
                                          now=datetime(2024, 1, 15, 10, 0), tz='UTC') is True
