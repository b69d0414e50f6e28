from datetime import timedelta

import pytest

from api.services.audit import list_events
from api.services.exceptions import NotFoundError, ValidationError
from api.utils.config import DEFAULT_RUNTIME_HOURS_PER_DAY


class TestRecordMeasurement:
    def test_latest_reading_is_current_runtime(self, runtime, asset, now):
        runtime.record_measurement(asset.asset_id, 100, measured_at=now - timedelta(days=2))
        runtime.record_measurement(asset.asset_id, 150, measured_at=now)
        assert runtime.current_runtime(asset.asset_id) == 150

    def test_no_readings_means_unknown_runtime(self, runtime, asset):
        assert runtime.current_runtime(asset.asset_id) is None

    def test_numeric_strings_are_accepted(self, runtime, asset):
        measurement = runtime.record_measurement(asset.asset_id, "42.5")
        assert measurement.reported_hours == 42.5

    @pytest.mark.parametrize("hours", [-1, "abc", None, float("nan")])
    def test_invalid_hours_are_rejected(self, runtime, asset, hours):
        with pytest.raises(ValidationError):
            runtime.record_measurement(asset.asset_id, hours)
        assert runtime.current_runtime(asset.asset_id) is None

    def test_unknown_asset(self, runtime):
        with pytest.raises(NotFoundError):
            runtime.record_measurement(9999, 10)

    def test_backwards_reading_is_kept(self, runtime, asset, now):
        runtime.record_measurement(asset.asset_id, 200, measured_at=now - timedelta(hours=1))
        runtime.record_measurement(asset.asset_id, 180, measured_at=now)
        assert runtime.current_runtime(asset.asset_id) == 180
        assert len(runtime.measurement_history(asset.asset_id)) == 2

    def test_recording_is_audited(self, db, runtime, asset, admin):
        runtime.record_measurement(asset.asset_id, 75, user_id=admin.user_id)
        events = list_events(db, subject_type="asset", subject_id=asset.asset_id, event_name="runtime.recorded")
        assert len(events) == 1
        assert events[0].after_state == "75.0"
        assert events[0].actor_id == admin.user_id


class TestRuntimeDelta:
    def test_delta_uses_last_reading_before_since(self, runtime, asset, now):
        runtime.record_measurement(asset.asset_id, 100, measured_at=now - timedelta(days=3))
        runtime.record_measurement(asset.asset_id, 160, measured_at=now)
        assert runtime.runtime_delta_since(asset.asset_id, now - timedelta(days=1)) == 60

    def test_delta_without_baseline_counts_from_zero(self, runtime, asset, now):
        runtime.record_measurement(asset.asset_id, 160, measured_at=now)
        assert runtime.runtime_delta_since(asset.asset_id, now - timedelta(days=1)) == 160

    def test_delta_without_readings(self, runtime, asset, now):
        assert runtime.runtime_delta_since(asset.asset_id, now) is None


class TestAverageRuntime:
    def test_average_over_window(self, runtime, asset, now):
        runtime.record_measurement(asset.asset_id, 100, measured_at=now - timedelta(days=10))
        runtime.record_measurement(asset.asset_id, 180, measured_at=now - timedelta(days=5))
        assert runtime.average_runtime_per_day(asset.asset_id, now) == pytest.approx(16.0)

    def test_default_with_a_single_reading(self, runtime, asset, now):
        runtime.record_measurement(asset.asset_id, 100, measured_at=now - timedelta(days=1))
        assert runtime.average_runtime_per_day(asset.asset_id, now) == DEFAULT_RUNTIME_HOURS_PER_DAY
