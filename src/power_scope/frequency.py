# src/power_scope/frequency.py
"""Assign per-core frequency readings to efficiency/performance clusters.

powermetrics prints per-CPU frequency lines under cluster headers
(``E-Cluster``, ``P0-Cluster``, ...) on Apple Silicon, and without any
cluster header on older hardware. While a cluster header is in scope the
parser records a marker per CPU; the classifier uses those markers to split
the readings.
"""

from dataclasses import dataclass, field

from power_scope.models import MetricsState, history_for

EFFICIENCY = "E"
PERFORMANCE = "P"


@dataclass
class FrequencyClassification:
    """Result of one classification pass, in MHz, ordered by core number."""

    efficiency: list[int] = field(default_factory=list)
    performance: list[int] = field(default_factory=list)
    cores: list[int] = field(default_factory=list)  # non-hybrid: one flat list

    @property
    def hybrid(self) -> bool:
        return not self.cores and bool(self.efficiency or self.performance)


def classify_frequencies(
    readings: dict[int, int],
    markers: set[tuple[str, int]],
) -> FrequencyClassification:
    """Split per-core readings using cluster markers.

    Args:
        readings: CPU number -> MHz gathered in this sample
        markers: (cluster kind, CPU number) pairs, kind being "E" or "P"

    Returns:
        Efficiency and performance lists when any marker exists (a marked core
        missing from ``readings`` reads 0). Otherwise a single sorted list of
        every reading.
    """
    if not markers:
        return FrequencyClassification(cores=[readings[cpu] for cpu in sorted(readings)])

    e_cores = sorted({cpu for kind, cpu in markers if kind == EFFICIENCY})
    p_cores = sorted({cpu for kind, cpu in markers if kind == PERFORMANCE})
    return FrequencyClassification(
        efficiency=[readings.get(cpu, 0) for cpu in e_cores],
        performance=[readings.get(cpu, 0) for cpu in p_cores],
    )


def apply_frequencies(state: MetricsState, result: FrequencyClassification) -> None:
    """Write a classification into the state and extend per-core histories.

    Histories are keyed by position in the output list, so the Nth
    efficiency core keeps one contiguous series even when CPU numbering
    has gaps.
    """
    state.e_core_freq = result.efficiency
    state.p_core_freq = result.performance
    state.core_freq = result.cores
    state.max_e_cores = max(state.max_e_cores, len(result.efficiency))
    state.max_p_cores = max(state.max_p_cores, len(result.performance))

    for values, histories in (
        (result.efficiency, state.e_core_freq_history),
        (result.performance, state.p_core_freq_history),
        (result.cores, state.core_freq_history),
    ):
        for index, mhz in enumerate(values):
            history_for(histories, index, state.per_cpu_samples).push(float(mhz))
