"""
Tests for time utilities and configuration
"""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytz
from freezegun import freeze_time

from notify_cascade.config.redis import get_redis_config, get_redis_url
from notify_cascade.config.settings import Settings, load_settings
from notify_cascade.utils.time_utils import (
    format_consult_date, format_consult_time, local_time_on_date, now_utc, parse_iso_to_utc, to_utc
)


class TestTimeUtils:

    @freeze_time("2025-03-03 15:00:00")
    def test_now_utc_is_aware(self):
        now = now_utc()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)
        assert now == datetime(2025, 3, 3, 15, 0, tzinfo=pytz.UTC)

    def test_parse_trailing_z(self):
        assert parse_iso_to_utc("2025-03-05T15:00:00Z") == datetime(2025, 3, 5, 15, 0, tzinfo=pytz.UTC)

    def test_parse_offset_converts_to_utc(self):
        assert parse_iso_to_utc("2025-03-05T10:00:00-05:00") == datetime(2025, 3, 5, 15, 0, tzinfo=pytz.UTC)

    def test_parse_naive_assumes_utc(self):
        assert parse_iso_to_utc("2025-03-05T15:00:00").utcoffset() == timedelta(0)

    def test_to_utc_localizes_naive(self):
        assert to_utc(datetime(2025, 3, 5, 10, 0), "US/Eastern") == datetime(2025, 3, 5, 15, 0, tzinfo=pytz.UTC)

    def test_local_time_on_date_across_dst(self):
        """09:00 local is 14:00 UTC before the March change and 13:00 UTC after"""
        before = datetime(2025, 3, 7, 20, 0, tzinfo=pytz.UTC)
        after = datetime(2025, 3, 10, 20, 0, tzinfo=pytz.UTC)

        assert local_time_on_date(before, 9, "US/Eastern") == datetime(2025, 3, 7, 14, 0, tzinfo=pytz.UTC)
        assert local_time_on_date(after, 9, "US/Eastern") == datetime(2025, 3, 10, 13, 0, tzinfo=pytz.UTC)

    def test_local_date_differs_from_utc_date(self):
        """02:00 UTC on March 6 is still March 5 in New York"""
        late = datetime(2025, 3, 6, 2, 0, tzinfo=pytz.UTC)
        assert local_time_on_date(late, 9, "US/Eastern") == datetime(2025, 3, 5, 14, 0, tzinfo=pytz.UTC)

    def test_formatting(self):
        dt = datetime(2025, 3, 4, 19, 0, tzinfo=pytz.UTC)
        assert format_consult_date(dt, "US/Eastern") == "Tuesday, March 4"
        assert format_consult_time(dt, "US/Eastern") == "2:00 PM"
        assert format_consult_time(datetime(2025, 3, 4, 5, 5, tzinfo=pytz.UTC), "UTC") == "5:05 AM"


class TestSettings:

    def test_retry_delay_doubles(self):
        settings = Settings(backoff_base_seconds=60)
        assert [settings.retry_delay_seconds(a) for a in (1, 2, 3)] == [60, 120, 240]

    @patch.dict("os.environ", {
        "WORKER_CONCURRENCY": "8",
        "DELIVERY_MAX_ATTEMPTS": "4",
        "CLINIC_NAME": "Lakeside Health",
        "BASE_URL": "https://lakeside.example.com/",
        "CHANNELS_DRY_RUN": "true",
        "SMTP_USERNAME": "noreply@lakeside.example.com",
    }, clear=True)
    def test_load_settings_from_env(self):
        settings = load_settings()

        assert settings.worker_concurrency == 8
        assert settings.max_attempts == 4
        assert settings.clinic_name == "Lakeside Health"
        assert settings.email_from_name == "Lakeside Health"
        assert settings.base_url == "https://lakeside.example.com"
        assert settings.channels_dry_run is True
        assert settings.email_from == "noreply@lakeside.example.com"

    @patch.dict("os.environ", {}, clear=True)
    def test_defaults(self):
        settings = load_settings()

        assert settings.queue_name == "messages"
        assert settings.worker_concurrency == 5
        assert settings.max_attempts == 3
        assert settings.backoff_base_seconds == 60
        assert settings.channels_dry_run is False


class TestRedisConfig:

    @patch.dict("os.environ", {"REDIS_HOST": "cache", "REDIS_PORT": "6380", "REDIS_DB": "2"}, clear=True)
    def test_config_and_url(self):
        config = get_redis_config(decode_responses=False)

        assert config["host"] == "cache"
        assert config["port"] == 6380
        assert config["decode_responses"] is False
        assert get_redis_url() == "redis://cache:6380/2"

    @patch.dict("os.environ", {"REDIS_URL": "redis://example:6379/1"}, clear=True)
    def test_url_override(self):
        assert get_redis_url() == "redis://example:6379/1"
