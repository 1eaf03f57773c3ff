import pytest

from sensing.telemetry import PerformanceTelemetry


def test_performance_telemetry_streaming_mean():
    t = PerformanceTelemetry()
    assert t.snapshot().count == 0
    assert t.snapshot().avg_ms == 0.0

    for ms in (10.0, 20.0, 30.0):
        t.record(ms)
    snap = t.snapshot()
    assert snap.count == 3
    assert snap.avg_ms == pytest.approx(20.0)
    assert snap.min_ms == 10.0
    assert snap.max_ms == 30.0
    assert snap.last_ms == 30.0


def test_performance_telemetry_matches_arithmetic_mean():
    t = PerformanceTelemetry()
    samples = [0.5, 3.25, 120.0, 7.0, 7.0, 0.0, 42.5]
    for ms in samples:
        t.record(ms)
    assert t.snapshot().avg_ms == pytest.approx(sum(samples) / len(samples))
    assert t.snapshot().min_ms == 0.0


def test_performance_telemetry_reset_and_negative():
    t = PerformanceTelemetry()
    t.record(-5.0)
    assert t.snapshot().avg_ms == 0.0
    t.record(4.0)
    t.reset()
    snap = t.snapshot()
    assert snap.count == 0 and snap.avg_ms == 0.0 and snap.max_ms == 0.0
