"""
JIT warmup.

Call warmup_jit() on startup so numba compiles (or loads from its cache)
every kernel before the loops start and no cycle stalls on compilation.
"""

import logging
import time

import numpy as np

from jogarm.motion.filters import _filter_step
from jogarm.motion.kinematics import _clamp_increments
from jogarm.server.loop_timer import (
    _event_rate,
    _mean_max,
    _partition,
    _period_stats,
    _select,
)

logger = logging.getLogger(__name__)


def warmup_jit(num_joints: int = 6) -> float:
    """Call each numba kernel once with dummy data; returns seconds taken."""
    logger.info("Warming JIT...")
    start = time.perf_counter()

    zeros = np.zeros(num_joints, dtype=np.float64)
    out = np.zeros(num_joints, dtype=np.float64)

    # jogarm/motion/filters.py
    x = np.zeros((3, num_joints), dtype=np.float64)
    y = np.zeros((2, num_joints), dtype=np.float64)
    _filter_step(x, y, zeros, out, 0.1, 0.1, 0.1)

    # jogarm/motion/kinematics.py
    has_limits = np.ones(num_joints, dtype=np.bool_)
    _clamp_increments(zeros, zeros, zeros, zeros, zeros, has_limits, 0.0, out)

    # jogarm/server/loop_timer.py
    samples = np.linspace(0.004, 0.006, 128)
    scratch = np.zeros(128, dtype=np.float64)
    _partition(scratch[:10].copy(), 0, 9)
    _select(samples.copy(), 64)
    _period_stats(samples, scratch, 128)
    _mean_max(samples, 128)
    _event_rate(samples, 128, 1.0, 1.0)

    elapsed = time.perf_counter() - start
    logger.info("\tJIT warmup completed in %.1fms", elapsed * 1000)
    return elapsed
