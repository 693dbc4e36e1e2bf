"""Unit tests for jogarm.server.loop_timer."""

import threading
import time

import pytest

from jogarm.server.loop_timer import (
    EventRateMetrics,
    LoopMetrics,
    LoopTimer,
    PhaseTimer,
    format_hz_summary,
)


class TestLoopTimer:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            LoopTimer(0.0)

    def test_paces_iterations(self):
        timer = LoopTimer(0.005, busy_threshold_s=0.001, stats_interval=5)
        timer.start()
        t0 = time.perf_counter()
        for _ in range(10):
            assert timer.wait_for_next_tick() is True
        elapsed = time.perf_counter() - t0
        assert elapsed >= 0.045
        assert timer.metrics.loop_count == 10
        assert timer.metrics.mean_period_s > 0.0

    def test_stop_event_interrupts_wait(self):
        stop = threading.Event()
        timer = LoopTimer(5.0, stop)
        timer.start()
        threading.Timer(0.05, stop.set).start()
        t0 = time.perf_counter()
        assert timer.wait_for_next_tick() is False
        assert time.perf_counter() - t0 < 2.0

    def test_overrun_is_counted(self):
        timer = LoopTimer(0.001, busy_threshold_s=0.0)
        timer.start()
        time.sleep(0.01)
        timer.wait_for_next_tick()
        assert timer.metrics.overrun_count == 1


class TestMetrics:
    def test_summary_of_empty_metrics(self):
        assert format_hz_summary(LoopMetrics(0.01)) == "0.0Hz σ=0.00ms p99=0.00ms"

    def test_summary_reports_rate(self):
        m = LoopMetrics(0.01)
        for _ in range(20):
            m.record_period(0.01)
        m.compute_stats()
        assert format_hz_summary(m).startswith("100.0Hz")
        assert m.p99_period_s == pytest.approx(0.01)

    def test_event_rate(self):
        rate = EventRateMetrics()
        for i in range(11):
            rate.record(10.0 + i * 0.1)
        assert rate.rate_hz(11.0) == pytest.approx(10.0)
        assert rate.event_count == 11

    def test_event_rate_decays_when_idle(self):
        rate = EventRateMetrics()
        rate.record(1.0)
        rate.record(1.1)
        assert rate.rate_hz(10.0, window_s=3.0) == 0.0

    def test_phase_summary(self):
        phases = PhaseTimer(["model", "solve"], 0.01, stats_interval=1)
        with phases.phase("model"):
            time.sleep(0.002)
        phases.tick()
        summary = phases.summary()
        assert summary.startswith("model=")
        assert "solve=0.00/0.00ms" in summary
        assert phases.phases["model"].max_s >= 0.001
