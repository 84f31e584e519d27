"""Tests for efficiency/performance frequency classification."""

from power_scope.frequency import (
    EFFICIENCY,
    PERFORMANCE,
    apply_frequencies,
    classify_frequencies,
)
from power_scope.models import MetricsState


def test_classify_hybrid_split():
    """Markers split readings into E and P lists ordered by CPU number."""
    readings = {0: 972, 1: 1020, 2: 3000, 3: 2800}
    markers = {(EFFICIENCY, 1), (EFFICIENCY, 0), (PERFORMANCE, 3), (PERFORMANCE, 2)}

    result = classify_frequencies(readings, markers)

    assert result.efficiency == [972, 1020]
    assert result.performance == [3000, 2800]
    assert result.cores == []
    assert result.hybrid


def test_classify_efficiency_only():
    """With only efficiency markers every core is an efficiency core."""
    readings = {0: 600, 1: 972, 2: 1020}
    markers = {(EFFICIENCY, 0), (EFFICIENCY, 1), (EFFICIENCY, 2)}

    result = classify_frequencies(readings, markers)

    assert result.efficiency == [600, 972, 1020]
    assert result.performance == []


def test_classify_without_markers_is_flat():
    """No markers gives one list, one entry per distinct core."""
    readings = {3: 2400, 0: 2200, 1: 2300}

    result = classify_frequencies(readings, set())

    assert result.cores == [2200, 2300, 2400]
    assert len(result.cores) == len(readings)
    assert not result.hybrid


def test_marked_core_missing_from_sample_reads_zero():
    """A core marked in an earlier sample but silent now reads 0 MHz."""
    result = classify_frequencies({0: 972}, {(EFFICIENCY, 0), (EFFICIENCY, 1)})
    assert result.efficiency == [972, 0]


def test_apply_frequencies_tracks_max_cores_and_history():
    """apply_frequencies() writes lists, keeps max counts and extends histories."""
    state = MetricsState(per_cpu_samples=2)

    apply_frequencies(state, classify_frequencies({0: 600, 1: 700}, {("E", 0), ("E", 1)}))
    apply_frequencies(state, classify_frequencies({0: 800}, {("E", 0)}))
    apply_frequencies(state, classify_frequencies({0: 900}, {("E", 0)}))

    assert state.e_core_freq == [900]
    assert state.max_e_cores == 2
    assert state.e_core_freq_history[0].samples == [800.0, 900.0]
    assert state.e_core_freq_history[1].samples == [700.0]
