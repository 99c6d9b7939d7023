from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from pmpulse.core.config import Settings
from pmpulse.services.business_hours_service import BusinessHoursService

LA = ZoneInfo("America/Los_Angeles")


@pytest.fixture
def service(test_settings):
    return BusinessHoursService(test_settings)


def local(*args):
    return datetime(*args, tzinfo=LA)


def test_weekday_business_hours(service):
    assert service.is_business_hours(local(2026, 3, 11, 10, 15))
    assert not service.is_business_hours(local(2026, 3, 11, 17, 0))
    assert not service.is_business_hours(local(2026, 3, 11, 8, 59))
    # Saturday
    assert not service.is_business_hours(local(2026, 3, 14, 10, 0))


def test_business_hours_cadence(service):
    assert service.get_sync_interval(local(2026, 3, 11, 10, 0)) == 15
    assert service.should_sync_now(local(2026, 3, 11, 10, 15))
    assert service.should_sync_now(local(2026, 3, 11, 10, 45))
    assert not service.should_sync_now(local(2026, 3, 11, 10, 20))


def test_off_hours_cadence_is_hourly(service):
    assert service.get_sync_interval(local(2026, 3, 14, 10, 0)) == 60
    assert service.should_sync_now(local(2026, 3, 14, 10, 0))
    assert not service.should_sync_now(local(2026, 3, 14, 10, 15))


def test_utc_input_is_converted_to_local_time(service):
    # 17:15 UTC is 10:15 in Los Angeles after the March DST change
    assert service.should_sync_now(datetime(2026, 3, 11, 17, 15, tzinfo=timezone.utc))


def test_next_sync_crosses_into_off_hours(service):
    assert service.get_next_sync_time(local(2026, 3, 11, 16, 50)) == local(2026, 3, 11, 17, 0)
    assert service.get_next_sync_time(local(2026, 3, 11, 10, 31)) == local(2026, 3, 11, 10, 45)


def test_disabled_business_hours_uses_fixed_interval():
    settings = Settings(_env_file=None, BUSINESS_HOURS_ENABLED=False, INCREMENTAL_SYNC_INTERVAL=30)
    service = BusinessHoursService(settings)

    saturday_night = local(2026, 3, 14, 23, 30)
    assert service.is_business_hours(saturday_night)
    assert service.get_sync_interval(saturday_night) == 30
    assert service.should_sync_now(saturday_night)
    assert service.get_sync_mode_description() == "Fixed interval: every 30 minutes"


def test_configuration_summary(test_settings):
    service = BusinessHoursService(test_settings, clock=lambda tz: local(2026, 3, 11, 9, 5))

    config = service.get_configuration()

    assert config["current_mode"] == "business_hours"
    assert config["current_interval"] == 15
    assert config["next_sync"] == local(2026, 3, 11, 9, 15).isoformat()
    assert config["full_sync_time"] == "02:00"
    assert config["description"].startswith("Business hours mode: every 15 minutes")


def test_business_hours_end_must_follow_start():
    with pytest.raises(ValueError):
        Settings(_env_file=None, BUSINESS_HOURS_START=18, BUSINESS_HOURS_END=9)
