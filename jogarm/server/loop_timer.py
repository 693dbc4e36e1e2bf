"""Deadline-paced loop timing with rolling period statistics."""

import threading
import time
from typing import TYPE_CHECKING

import numpy as np
from numba import njit  # type: ignore[import-untyped]

from jogarm import config as cfg

if TYPE_CHECKING:
    from typing import Self


# Seconds of history kept by the rolling statistics
_HISTORY_SECONDS = 5.0


def _buffer_size(interval_s: float) -> int:
    """History length for a loop period, rounded up to a power of 2."""
    raw = max(16, int(_HISTORY_SECONDS / max(interval_s, 1e-6)))
    return 1 << (raw - 1).bit_length()


# =============================================================================
# Numba statistics kernels (cached to disk)
# =============================================================================


@njit(cache=True)
def _partition(arr: np.ndarray, left: int, right: int) -> int:
    pivot = arr[right]
    i = left - 1
    for j in range(left, right):
        if arr[j] <= pivot:
            i += 1
            arr[i], arr[j] = arr[j], arr[i]
    arr[i + 1], arr[right] = arr[right], arr[i + 1]
    return i + 1


@njit(cache=True)
def _select(arr: np.ndarray, k: int) -> float:
    """k-th smallest element, partially reordering ``arr`` in place."""
    left = 0
    right = len(arr) - 1
    while left < right:
        p = _partition(arr, left, right)
        if p == k:
            return arr[k]
        elif p < k:
            left = p + 1
        else:
            right = p - 1
    return arr[k]


@njit(cache=True)
def _period_stats(
    samples: np.ndarray, scratch: np.ndarray, n: int
) -> tuple[float, float, float, float, float]:
    """mean, std, min, max, p99 of the first ``n`` samples (Welford)."""
    if n == 0:
        return 0.0, 0.0, 0.0, 0.0, 0.0

    mean = 0.0
    m2 = 0.0
    lo = samples[0]
    hi = samples[0]
    for i in range(n):
        x = samples[i]
        delta = x - mean
        mean += delta / (i + 1)
        m2 += delta * (x - mean)
        if x < lo:
            lo = x
        if x > hi:
            hi = x
    std = np.sqrt(m2 / n)

    if n >= 20:
        for i in range(n):
            scratch[i] = samples[i]
        p99 = _select(scratch[:n], int(n * 0.99))
    else:
        p99 = hi
    return mean, std, lo, hi, p99


@njit(cache=True)
def _mean_max(samples: np.ndarray, n: int) -> tuple[float, float]:
    if n == 0:
        return 0.0, 0.0
    total = 0.0
    hi = samples[0]
    for i in range(n):
        total += samples[i]
        if samples[i] > hi:
            hi = samples[i]
    return total / n, hi


@njit(cache=True)
def _event_rate(buffer: np.ndarray, count: int, now: float, window_s: float) -> float:
    """Events per second among timestamps newer than ``now - window_s``."""
    cutoff = now - window_s
    seen = 0
    oldest = now
    newest = 0.0
    for i in range(count):
        ts = buffer[i]
        if ts >= cutoff:
            seen += 1
            if ts < oldest:
                oldest = ts
            if ts > newest:
                newest = ts
    if seen < 2 or newest - oldest < 0.001:
        return 0.0
    return (seen - 1) / (newest - oldest)


class EventRateMetrics:
    """Rate of sporadic events (inbound commands); decays to 0 when idle."""

    __slots__ = ("_buffer", "_mask", "_idx", "_count", "_last", "event_count")

    def __init__(self, buffer_size: int = 64) -> None:
        size = 1 << (max(buffer_size, 2) - 1).bit_length()
        self._buffer = np.zeros(size, dtype=np.float64)
        self._mask = size - 1
        self._idx = 0
        self._count = 0
        self._last = 0.0
        self.event_count = 0

    def record(self, now: float) -> None:
        self._last = now
        self.event_count += 1
        self._buffer[self._idx] = now
        self._idx = (self._idx + 1) & self._mask
        if self._count < len(self._buffer):
            self._count += 1

    def rate_hz(self, now: float, window_s: float = 3.0) -> float:
        if self._count < 2 or now - self._last > window_s:
            return 0.0
        return _event_rate(self._buffer, self._count, now, window_s)


# =============================================================================
# PhaseTimer - durations of named sections inside one loop iteration
# =============================================================================


class PhaseMetrics:
    """Rolling mean/max of one phase's duration."""

    __slots__ = ("_buffer", "_mask", "_idx", "_count", "last_s", "mean_s", "max_s")

    def __init__(self, size: int) -> None:
        self._buffer = np.zeros(size, dtype=np.float64)
        self._mask = size - 1
        self._idx = 0
        self._count = 0
        self.last_s = 0.0
        self.mean_s = 0.0
        self.max_s = 0.0

    def record(self, duration: float) -> None:
        self.last_s = duration
        self._buffer[self._idx] = duration
        self._idx = (self._idx + 1) & self._mask
        if self._count < len(self._buffer):
            self._count += 1

    def compute_stats(self) -> None:
        if self._count:
            self.mean_s, self.max_s = _mean_max(self._buffer, self._count)


class PhaseTimer:
    """Time named phases of a loop body.

    Usage:
        timer = PhaseTimer(["model", "solve"], interval_s=0.008)
        with timer.phase("model"):
            J = client.get_jacobian(js)
        timer.tick()
    """

    def __init__(
        self, phase_names: list[str], interval_s: float, stats_interval: int = 50
    ):
        size = _buffer_size(interval_s)
        self._phases = {name: PhaseMetrics(size) for name in phase_names}
        self._stats_interval = stats_interval
        self._ticks = 0

    @property
    def phases(self) -> dict[str, PhaseMetrics]:
        return self._phases

    def phase(self, name: str) -> "_PhaseContext":
        return _PhaseContext(self._phases[name])

    def tick(self) -> None:
        self._ticks += 1
        if self._ticks % self._stats_interval == 0:
            for p in self._phases.values():
                p.compute_stats()

    def summary(self) -> str:
        """One-line 'name=mean/max ms' summary for debug logs."""
        return " ".join(
            f"{name}={p.mean_s * 1000:.2f}/{p.max_s * 1000:.2f}ms"
            for name, p in self._phases.items()
        )


class _PhaseContext:
    __slots__ = ("_metrics", "_start")

    def __init__(self, metrics: PhaseMetrics):
        self._metrics = metrics
        self._start = 0.0

    def __enter__(self) -> "Self":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        self._metrics.record(time.perf_counter() - self._start)


# =============================================================================
# LoopMetrics
# =============================================================================


class LoopMetrics:
    """Rolling period statistics and overrun accounting of a paced loop."""

    __slots__ = (
        "loop_count",
        "overrun_count",
        "mean_period_s",
        "std_period_s",
        "min_period_s",
        "max_period_s",
        "p99_period_s",
        "mean_overshoot_s",
        "max_overshoot_s",
        "_periods",
        "_overshoots",
        "_scratch",
        "_mask",
        "_period_idx",
        "_period_count",
        "_overshoot_idx",
        "_overshoot_count",
        "_target_period_s",
        "_last_log_time",
        "_last_warn_time",
        "_start_time",
        "_grace_period_s",
    )

    def __init__(self, target_period_s: float, grace_period_s: float = 5.0) -> None:
        size = _buffer_size(target_period_s)
        self.loop_count = 0
        self.overrun_count = 0
        self.mean_period_s = 0.0
        self.std_period_s = 0.0
        self.min_period_s = 0.0
        self.max_period_s = 0.0
        self.p99_period_s = 0.0
        self.mean_overshoot_s = 0.0
        self.max_overshoot_s = 0.0
        self._periods = np.zeros(size, dtype=np.float64)
        self._overshoots = np.zeros(size, dtype=np.float64)
        self._scratch = np.zeros(size, dtype=np.float64)
        self._mask = size - 1
        self._period_idx = 0
        self._period_count = 0
        self._overshoot_idx = 0
        self._overshoot_count = 0
        self._target_period_s = target_period_s
        self._last_log_time = 0.0
        self._last_warn_time = 0.0
        self._start_time = 0.0
        # Overbudget warnings are suppressed while numba kernels compile
        self._grace_period_s = grace_period_s

    @property
    def target_period_s(self) -> float:
        return self._target_period_s

    def mark_started(self, now: float) -> None:
        self._start_time = now

    def should_log(self, now: float, interval: float) -> bool:
        """Returns True and updates timestamp if interval has passed."""
        if now - self._last_log_time >= interval:
            self._last_log_time = now
            return True
        return False

    def check_degraded(
        self, now: float, threshold: float, rate_limit: float
    ) -> tuple[bool, float]:
        """Check if p99 exceeds target by threshold. Returns (should_warn, degradation_pct)."""
        if self._target_period_s <= 0 or self.p99_period_s <= 0:
            return False, 0.0
        if self._start_time > 0 and (now - self._start_time) < self._grace_period_s:
            return False, 0.0
        if now - self._last_warn_time < rate_limit:
            return False, 0.0
        if self.p99_period_s > self._target_period_s * (1.0 + threshold):
            self._last_warn_time = now
            return True, (self.p99_period_s / self._target_period_s - 1.0) * 100.0
        return False, 0.0

    def record_period(self, period: float) -> None:
        self._periods[self._period_idx] = period
        self._period_idx = (self._period_idx + 1) & self._mask
        if self._period_count < len(self._periods):
            self._period_count += 1

    def record_overshoot(self, overshoot: float) -> None:
        self._overshoots[self._overshoot_idx] = overshoot
        self._overshoot_idx = (self._overshoot_idx + 1) & self._mask
        if self._overshoot_count < len(self._overshoots):
            self._overshoot_count += 1

    def compute_stats(self) -> None:
        if self._period_count > 0:
            (
                self.mean_period_s,
                self.std_period_s,
                self.min_period_s,
                self.max_period_s,
                self.p99_period_s,
            ) = _period_stats(self._periods, self._scratch, self._period_count)
        if self._overshoot_count > 0:
            self.mean_overshoot_s, self.max_overshoot_s = _mean_max(
                self._overshoots, self._overshoot_count
            )


def format_hz_summary(m: LoopMetrics) -> str:
    """Format metrics as 'XXX.XHz σ=X.XXms p99=X.XXms'."""
    if m.mean_period_s <= 0:
        return "0.0Hz σ=0.00ms p99=0.00ms"
    hz = 1.0 / m.mean_period_s
    return (
        f"{hz:.1f}Hz σ={m.std_period_s * 1000:.2f}ms p99={m.p99_period_s * 1000:.2f}ms"
    )


class LoopTimer:
    """Deadline-based loop pacing with hybrid sleep + busy-wait.

    The sleep part waits on ``stop_event`` (when given) so a shutdown
    request interrupts the wait immediately. On overrun the deadline is
    re-anchored to now instead of trying to catch up.
    """

    def __init__(
        self,
        interval_s: float,
        stop_event: threading.Event | None = None,
        busy_threshold_s: float | None = None,
        stats_interval: int = 50,
    ):
        if interval_s <= 0:
            raise ValueError(f"Loop interval must be positive, got {interval_s}")
        self._interval = interval_s
        self._stop_event = stop_event
        self._busy_threshold = (
            busy_threshold_s
            if busy_threshold_s is not None
            else cfg.BUSY_THRESHOLD_MS / 1000.0
        )
        self._stats_interval = stats_interval
        self._next_deadline = 0.0
        self._prev_t = 0.0
        self.metrics = LoopMetrics(interval_s)

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def busy_threshold(self) -> float:
        return self._busy_threshold

    def start(self) -> None:
        """Anchor the first deadline. Call once before entering the loop."""
        now = time.perf_counter()
        self._next_deadline = now
        self._prev_t = now
        self.metrics.mark_started(now)

    def wait_for_next_tick(self) -> bool:
        """Block until the next deadline.

        Returns False if the stop event was set while waiting.
        """
        m = self.metrics
        m.loop_count += 1
        if m.loop_count % self._stats_interval == 0:
            m.compute_stats()

        self._next_deadline += self._interval
        sleep_time = self._next_deadline - time.perf_counter()

        if sleep_time > self._busy_threshold:
            if self._stop_event is not None:
                if self._stop_event.wait(sleep_time - self._busy_threshold):
                    return False
            else:
                time.sleep(sleep_time - self._busy_threshold)

        if sleep_time > 0:
            while time.perf_counter() < self._next_deadline:
                pass
            now = time.perf_counter()
            m.record_overshoot(now - self._next_deadline)
        else:
            m.overrun_count += 1
            now = time.perf_counter()
            self._next_deadline = now

        if self._prev_t > 0:
            m.record_period(now - self._prev_t)
        self._prev_t = now
        return not (self._stop_event is not None and self._stop_event.is_set())
