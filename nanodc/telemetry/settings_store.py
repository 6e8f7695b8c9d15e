"""
Device settings store.

A small persisted key/value store holding the facility this device shows,
the refresh cadence, the API timeout and the API usage counters. Values
are kept as strings in the ``device_settings`` table and converted by the
typed accessors below.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from .config import (
    DEFAULT_API_TIMEOUT_SECONDS,
    DEFAULT_FACILITY_ID,
    DEFAULT_REFRESH_INTERVAL_MS,
)
from .models import DeviceSetting
from .schemas import UsageStatistics

logger = logging.getLogger(__name__)

KEY_ACTIVE_FACILITY_ID = "activeFacilityId"
KEY_REFRESH_INTERVAL_MS = "refreshIntervalMs"
KEY_API_TIMEOUT_SECONDS = "apiTimeoutSeconds"

KEY_TOTAL_CALLS = "totalCalls"
KEY_SUCCESS_COUNT = "successCount"
KEY_FAIL_COUNT = "failCount"
KEY_AVG_LATENCY_MS = "avgLatencyMs"
KEY_MIN_LATENCY_MS = "minLatencyMs"
KEY_MAX_LATENCY_MS = "maxLatencyMs"
KEY_TOTAL_BYTES = "totalBytes"
KEY_LAST_SYNC_TIME = "lastSyncTime"

COUNTER_KEYS = (
    KEY_TOTAL_CALLS,
    KEY_SUCCESS_COUNT,
    KEY_FAIL_COUNT,
    KEY_AVG_LATENCY_MS,
    KEY_MIN_LATENCY_MS,
    KEY_MAX_LATENCY_MS,
    KEY_TOTAL_BYTES,
    KEY_LAST_SYNC_TIME,
)


def _parse_value(key: str, raw: Optional[str], default, cast):
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid value {raw!r} stored for {key}")
        return default


def _counter(counters: Dict[str, str], key: str, cast=int):
    return _parse_value(key, counters.get(key), cast(0), cast)


class DeviceSettingsStore:
    """
    Typed access to the device settings table.

    Attributes:
        session_factory: SQLAlchemy session factory bound to the settings database
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # Raw key/value access

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        db = self.session_factory()
        try:
            setting = db.get(DeviceSetting, key)
            return setting.value if setting is not None else default
        finally:
            db.close()

    def set(self, key: str, value) -> None:
        db = self.session_factory()
        try:
            self._put(db, key, value)
            db.commit()
        finally:
            db.close()

    def _put(self, db: Session, key: str, value) -> None:
        setting = db.get(DeviceSetting, key)
        if setting is None:
            db.add(DeviceSetting(key=key, value=str(value)))
        else:
            setting.value = str(value)
            setting.updated_at = datetime.utcnow()

    def _get_number(self, key: str, default, cast):
        return _parse_value(key, self.get(key), default, cast)

    # Configuration read by the registry, client and scheduler

    def get_active_facility_id(self) -> str:
        return self.get(KEY_ACTIVE_FACILITY_ID, DEFAULT_FACILITY_ID)

    def set_active_facility_id(self, facility_id: str) -> None:
        self.set(KEY_ACTIVE_FACILITY_ID, facility_id)
        logger.info(f"Active facility set to: {facility_id}")

    def get_refresh_interval_ms(self) -> int:
        return self._get_number(KEY_REFRESH_INTERVAL_MS, DEFAULT_REFRESH_INTERVAL_MS, int)

    def set_refresh_interval_ms(self, interval_ms: int) -> None:
        if interval_ms <= 0:
            raise ValueError("Refresh interval must be positive")
        self.set(KEY_REFRESH_INTERVAL_MS, int(interval_ms))
        logger.info(f"Refresh interval set to: {interval_ms}ms")

    def get_api_timeout_seconds(self) -> float:
        return self._get_number(KEY_API_TIMEOUT_SECONDS, DEFAULT_API_TIMEOUT_SECONDS, float)

    def set_api_timeout_seconds(self, timeout_seconds: float) -> None:
        if timeout_seconds <= 0:
            raise ValueError("API timeout must be positive")
        self.set(KEY_API_TIMEOUT_SECONDS, timeout_seconds)
        logger.info(f"API timeout set to: {timeout_seconds}s")

    # Usage counters

    def record_api_call(self, latency_ms: float, success: bool, size_bytes: int = 0) -> None:
        """
        Record one API call in the usage counters.

        Args:
            latency_ms: Wall-clock duration of the call in milliseconds
            success: Whether the call produced a snapshot
            size_bytes: Size of the response body
        """
        db = self.session_factory()
        try:
            current = self._read_counters(db)
            total = _counter(current, KEY_TOTAL_CALLS) + 1
            successes = _counter(current, KEY_SUCCESS_COUNT) + (1 if success else 0)
            failures = _counter(current, KEY_FAIL_COUNT) + (0 if success else 1)
            previous_avg = _counter(current, KEY_AVG_LATENCY_MS, float)
            avg = previous_avg + (latency_ms - previous_avg) / total

            min_latency = _parse_value(KEY_MIN_LATENCY_MS, current.get(KEY_MIN_LATENCY_MS), latency_ms, float)
            max_latency = _counter(current, KEY_MAX_LATENCY_MS, float)

            self._put(db, KEY_TOTAL_CALLS, total)
            self._put(db, KEY_SUCCESS_COUNT, successes)
            self._put(db, KEY_FAIL_COUNT, failures)
            self._put(db, KEY_AVG_LATENCY_MS, round(avg, 3))
            self._put(db, KEY_MIN_LATENCY_MS, min(min_latency, latency_ms))
            self._put(db, KEY_MAX_LATENCY_MS, max(max_latency, latency_ms))
            self._put(db, KEY_TOTAL_BYTES, _counter(current, KEY_TOTAL_BYTES) + size_bytes)
            if success:
                self._put(db, KEY_LAST_SYNC_TIME, datetime.now().isoformat())
            db.commit()
        finally:
            db.close()

        logger.debug(
            "API call recorded - Success: %s, Response time: %.1fms, Data: %dB",
            success,
            latency_ms,
            size_bytes,
        )

    def _read_counters(self, db: Session) -> Dict[str, str]:
        rows = db.query(DeviceSetting).filter(DeviceSetting.key.in_(COUNTER_KEYS)).all()
        return {row.key: row.value for row in rows}

    def usage_statistics(self) -> UsageStatistics:
        db = self.session_factory()
        try:
            counters = self._read_counters(db)
        finally:
            db.close()

        total = _counter(counters, KEY_TOTAL_CALLS)
        successes = _counter(counters, KEY_SUCCESS_COUNT)
        last_sync = _parse_value(KEY_LAST_SYNC_TIME, counters.get(KEY_LAST_SYNC_TIME), None, datetime.fromisoformat)
        return UsageStatistics(
            total_calls=total,
            success_count=successes,
            fail_count=_counter(counters, KEY_FAIL_COUNT),
            success_rate=(successes / total * 100.0) if total else 0.0,
            avg_latency_ms=_counter(counters, KEY_AVG_LATENCY_MS, float),
            min_latency_ms=_counter(counters, KEY_MIN_LATENCY_MS, float),
            max_latency_ms=_counter(counters, KEY_MAX_LATENCY_MS, float),
            total_bytes=_counter(counters, KEY_TOTAL_BYTES),
            last_sync_time=last_sync,
        )

    def reset_statistics(self) -> None:
        db = self.session_factory()
        try:
            db.query(DeviceSetting).filter(DeviceSetting.key.in_(COUNTER_KEYS)).delete(
                synchronize_session=False
            )
            db.commit()
        finally:
            db.close()
        logger.info("Usage statistics reset")

    def reset_configuration(self) -> None:
        """Drop every stored setting, counters included."""
        db = self.session_factory()
        try:
            db.query(DeviceSetting).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()
        logger.info("Device configuration reset completed")
