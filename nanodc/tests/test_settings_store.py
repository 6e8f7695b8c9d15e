import pytest

from nanodc.telemetry.settings_store import KEY_REFRESH_INTERVAL_MS


class TestConfiguration:
    def test_defaults(self, settings_store):
        assert settings_store.get_active_facility_id() == "GY01"
        assert settings_store.get_refresh_interval_ms() == 30000
        assert settings_store.get_api_timeout_seconds() == 30

    def test_values_persist(self, settings_store):
        settings_store.set_active_facility_id("BC02")
        settings_store.set_refresh_interval_ms(5000)
        settings_store.set_api_timeout_seconds(2.5)

        assert settings_store.get_active_facility_id() == "BC02"
        assert settings_store.get_refresh_interval_ms() == 5000
        assert settings_store.get_api_timeout_seconds() == 2.5

    def test_overwrite(self, settings_store):
        settings_store.set_active_facility_id("BC01")
        settings_store.set_active_facility_id("GY01")

        assert settings_store.get_active_facility_id() == "GY01"

    @pytest.mark.parametrize("value", [0, -100])
    def test_non_positive_interval_rejected(self, settings_store, value):
        with pytest.raises(ValueError):
            settings_store.set_refresh_interval_ms(value)

    def test_non_positive_timeout_rejected(self, settings_store):
        with pytest.raises(ValueError):
            settings_store.set_api_timeout_seconds(0)

    def test_corrupt_value_falls_back_to_default(self, settings_store):
        settings_store.set(KEY_REFRESH_INTERVAL_MS, "soon")

        assert settings_store.get_refresh_interval_ms() == 30000


class TestUsageCounters:
    def test_record_calls(self, settings_store):
        settings_store.record_api_call(100.0, True, 2048)
        settings_store.record_api_call(300.0, True, 1024)
        settings_store.record_api_call(50.0, False)

        stats = settings_store.usage_statistics()
        assert stats.total_calls == 3
        assert stats.success_count == 2
        assert stats.fail_count == 1
        assert stats.avg_latency_ms == pytest.approx(150.0)
        assert stats.min_latency_ms == 50.0
        assert stats.max_latency_ms == 300.0
        assert stats.total_bytes == 3072
        assert stats.success_rate == pytest.approx(66.666, rel=1e-3)

    def test_failure_does_not_set_last_sync(self, settings_store):
        settings_store.record_api_call(10.0, False)

        assert settings_store.usage_statistics().last_sync_time is None

    def test_empty_statistics(self, settings_store):
        stats = settings_store.usage_statistics()

        assert stats.total_calls == 0
        assert stats.success_rate == 0.0

    def test_corrupt_counters_count_as_zero(self, settings_store):
        settings_store.set("totalCalls", "oops")
        settings_store.set("minLatencyMs", "fast")
        settings_store.set("lastSyncTime", "yesterday")

        stats = settings_store.usage_statistics()
        assert stats.total_calls == 0
        assert stats.min_latency_ms == 0.0
        assert stats.last_sync_time is None

        settings_store.record_api_call(40.0, True, 10)

        stats = settings_store.usage_statistics()
        assert stats.total_calls == 1
        assert stats.min_latency_ms == 40.0
        assert stats.last_sync_time is not None

    def test_reset_statistics_keeps_configuration(self, settings_store):
        settings_store.set_active_facility_id("BC01")
        settings_store.record_api_call(10.0, True, 10)

        settings_store.reset_statistics()

        assert settings_store.usage_statistics().total_calls == 0
        assert settings_store.get_active_facility_id() == "BC01"

    def test_reset_configuration(self, settings_store):
        settings_store.set_active_facility_id("BC01")
        settings_store.record_api_call(10.0, True, 10)

        settings_store.reset_configuration()

        assert settings_store.get_active_facility_id() == "GY01"
        assert settings_store.usage_statistics().total_calls == 0
