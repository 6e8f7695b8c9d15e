import pytest

from nanodc.telemetry.normalizer import MetricCategory, normalize, parse_number, thermal_band
from nanodc.telemetry.schemas import HardwareSpec, UsageSample


def usage(**fields):
    return UsageSample(node_id="n1", timestamp="2024-05-01T10:00:00", **fields)


class TestAlwaysPresentMetrics:
    def test_missing_memory_is_unset_not_zero(self):
        metrics = normalize(usage(cpu_usage_percent="57.3", mem_usage_percent=None))

        assert metrics.cpu.percentage == 57.3
        assert metrics.cpu.raw_value_label == "57.3%"
        assert metrics.memory is not None
        assert metrics.memory.percentage is None
        assert not metrics.memory.is_set

    def test_reported_zero_stays_zero(self):
        metrics = normalize(usage(gpu_usage_percent="0"))

        assert metrics.gpu.percentage == 0.0
        assert metrics.gpu.is_set

    def test_unparseable_value_is_unset(self):
        metrics = normalize(usage(cpu_usage_percent="n/a"))

        assert metrics.cpu.percentage is None
        assert metrics.cpu.raw_value_label == "N/A"

    def test_out_of_range_is_clamped(self):
        metrics = normalize(usage(cpu_usage_percent="130", mem_usage_percent="-4"))

        assert metrics.cpu.percentage == 100.0
        assert metrics.memory.percentage == 0.0

    def test_no_usage_sample(self):
        metrics = normalize(None)

        assert [m.percentage for m in (metrics.cpu, metrics.memory, metrics.gpu, metrics.storage)] == [None] * 4
        assert metrics.present() == []


class TestOptionalMetrics:
    def test_gpu_temperature_absent(self):
        assert normalize(usage(gpu_temp=None)).gpu_temperature is None

    def test_gpu_temperature_zero(self):
        metric = normalize(usage(gpu_temp="0")).gpu_temperature

        assert metric is not None
        assert metric.percentage == 0.0

    def test_temperature_keeps_degrees_in_label(self):
        metric = normalize(usage(gpu_temp="65", cpu_temp="41.5")).gpu_temperature

        assert metric.percentage == 65.0
        assert metric.raw_value_label == "65°C"
        assert metric.category is MetricCategory.THERMAL
        assert normalize(usage(cpu_temp="41.5")).cpu_temperature.raw_value_label == "41.5°C"

    def test_health_and_vram(self):
        metrics = normalize(usage(ssd_health_percent="98", gpu_vram_percent="garbage"))

        assert metrics.ssd_health.percentage == 98.0
        assert metrics.ssd_health.category is MetricCategory.HEALTH
        assert metrics.gpu_vram is None

    def test_present_skips_unset(self):
        metrics = normalize(usage(cpu_usage_percent="10", gpu_temp="50"))

        assert [m.name for m in metrics.present()] == ["cpu", "gpu_temperature"]


class TestStorage:
    def test_percentage_and_absolute_label(self):
        metric = normalize(usage(harddisk_used_percent="40.6", used_storage_gb="812")).storage

        assert metric.percentage == 40.6
        assert metric.raw_value_label == "812GB"
        assert metric.category is MetricCategory.STORAGE

    def test_percentage_derived_from_hardware_spec(self):
        spec = HardwareSpec(node_id="n1", storage_total_gb="2000")

        metric = normalize(usage(used_storage_gb="812"), spec).storage

        assert metric.percentage == pytest.approx(40.6)
        assert metric.raw_value_label == "812GB"

    def test_absolute_value_without_capacity(self):
        metric = normalize(usage(used_storage_gb="812")).storage

        assert metric.percentage is None
        assert metric.raw_value_label == "812GB"

    def test_zero_capacity_is_ignored(self):
        spec = HardwareSpec(node_id="n1", storage_total_gb="0")

        assert normalize(usage(used_storage_gb="5"), spec).storage.percentage is None


@pytest.mark.parametrize(
    "celsius, band",
    [(None, None), (12, "Cool"), (30, "Normal"), (59.9, "Normal"), (60, "Warm"), (80, "Hot")],
)
def test_thermal_band(celsius, band):
    assert thermal_band(celsius) == band


@pytest.mark.parametrize("raw, expected", [("57.3", 57.3), (" 8 ", 8.0), ("", None), ("nan", None), (None, None)])
def test_parse_number(raw, expected):
    assert parse_number(raw) == expected


def test_to_dict_keeps_missing_fields():
    data = normalize(usage(cpu_usage_percent="1")).to_dict()

    assert data["cpu"]["percentage"] == 1.0
    assert data["memory"]["percentage"] is None
    assert data["gpu_temperature"] is None
