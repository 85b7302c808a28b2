"""Job-to-VM binding policies.

Each strategy is a plain function of ``(jobs, vms, config, rng)`` that returns
an assignment; ``JobBindingEngine`` selects one by configuration, writes the
chosen VM ids back onto the jobs and derives the load metrics. Randomised
strategies draw only from the injected ``numpy.random.Generator``.
"""

from typing import Callable, Dict, List, NamedTuple, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum
import numpy as np
from loguru import logger

from ..core.resources import VirtualMachine
from ..core.workload import Job


class BindingStrategy(Enum):
    """Binding strategies selectable by configuration."""
    ROUND_ROBIN = "round_robin"
    SATURATION = "saturation"
    FIRST_COME_FIRST_SERVED = "fcfs"
    GREEDY_LOAD_BALANCE = "greedy_load_balance"
    RANDOM = "random"
    RANDOM_CLUSTERED = "random_clustered"
    COST_MIN_CLUSTERED = "cost_min_clustered"
    CLUSTERED_LOAD_BALANCE = "clustered_load_balance"
    MIN_MIN = "min_min"
    MAX_MIN = "max_min"
    LENGTH_PRIORITY = "length_priority"
    RANK_PAIRED = "rank_paired"


@dataclass
class BindingConfig:
    """Configuration for binding strategies."""
    strategy: BindingStrategy = BindingStrategy.ROUND_ROBIN

    # Saturation: first ``saturation_count`` jobs go to ``saturation_target``
    saturation_count: int = 1000
    saturation_target: int = 0

    # Clustering: random sizes in [1, max_cluster_size] unless cluster_size is fixed
    max_cluster_size: int = 100
    cluster_size: Optional[int] = None

    # Greedy load balance: predicted finish time per VM before any job is bound
    baseline_finish_times: Optional[List[float]] = None

    seed: Optional[int] = None


@dataclass
class BindingResult:
    """Outcome of one binding pass."""
    bindings: Dict[int, int]  # job_id -> vm_id
    order: List[int]  # job ids in processing (= submission) order
    job_counts: Dict[int, int]  # vm_id -> bound jobs
    transition_cost: int
    cluster_counts: Dict[int, int] = field(default_factory=dict)  # vm_id -> clusters
    postponed: List[int] = field(default_factory=list)  # job ids whose VM is not created

    @property
    def num_bound(self) -> int:
        return len(self.bindings)


class _Assignment(NamedTuple):
    order: List[Job]
    bindings: Dict[int, int]
    postponed: Dict[int, Optional[int]]  # job_id -> requested vm_id
    cluster_counts: Dict[int, int]


Strategy = Callable[[List[Job], List[VirtualMachine], BindingConfig, np.random.Generator], _Assignment]


def transition_cost(order: List[int], bindings: Dict[int, int]) -> int:
    """Number of adjacent bound jobs in ``order`` that sit on different VMs."""
    bound = [bindings[job_id] for job_id in order if job_id in bindings]
    return sum(1 for prev, cur in zip(bound, bound[1:]) if prev != cur)


def make_clusters(
    num_jobs: int,
    rng: np.random.Generator,
    max_cluster_size: int = 100,
    cluster_size: Optional[int] = None,
) -> List[Tuple[int, int]]:
    """Split ``range(num_jobs)`` into contiguous ``(start, end)`` clusters.

    With ``cluster_size`` every cluster has that size except a shorter last
    one; otherwise sizes are drawn uniformly from ``[1, max_cluster_size]``
    and the last draw is truncated so the clusters cover exactly ``num_jobs``.
    """
    if cluster_size is not None and cluster_size < 1:
        raise ValueError(f"cluster_size must be >= 1, got {cluster_size}")
    if max_cluster_size < 1:
        raise ValueError(f"max_cluster_size must be >= 1, got {max_cluster_size}")

    clusters = []
    total = 0
    while total < num_jobs:
        if cluster_size is not None:
            size = cluster_size
        else:
            size = int(rng.integers(1, max_cluster_size + 1))
        size = min(size, num_jobs - total)
        clusters.append((total, total + size))
        total += size
    return clusters


def greedy_with_feedback(cost: np.ndarray) -> List[int]:
    """Pick the cheapest column per row, penalising reuse.

    After row ``i`` chooses column ``c``, its original cost on ``c`` is added
    to every other row's entry in column ``c``. Ties go to the lowest column.
    """
    cost = np.array(cost, dtype=float)
    original = cost.copy()
    rows = cost.shape[0]
    chosen = []
    for i in range(rows):
        col = int(np.argmin(cost[i]))
        chosen.append(col)
        others = np.arange(rows) != i
        cost[others, col] += original[i, col]
    return chosen


def _plain(order: List[Job], bindings: Dict[int, int]) -> _Assignment:
    return _Assignment(order, bindings, {}, {})


def _round_robin(jobs, vms, config, rng) -> _Assignment:
    bindings = {job.job_id: vms[i % len(vms)].vm_id for i, job in enumerate(jobs)}
    return _plain(list(jobs), bindings)


def _saturation(jobs, vms, config, rng) -> _Assignment:
    created = {vm.vm_id for vm in vms}
    target = config.saturation_target
    bindings: Dict[int, int] = {}
    postponed: Dict[int, Optional[int]] = {}
    for idx, job in enumerate(jobs):
        if idx < config.saturation_count:
            if target in created:
                bindings[job.job_id] = target
            else:
                postponed[job.job_id] = target
        else:
            bindings[job.job_id] = vms[int(rng.integers(len(vms)))].vm_id
    if postponed:
        logger.warning(f"Saturation target VM #{target} was not created; "
                       f"{len(postponed)} job(s) postponed")
    return _Assignment(list(jobs), bindings, postponed, {})


def _first_come_first_served(jobs, vms, config, rng) -> _Assignment:
    n = len(vms)
    block = len(jobs) // n
    bindings = {}
    for idx, job in enumerate(jobs):
        if block and idx < block * n:
            vm = vms[idx // block]
        else:
            # leftover jobs that do not fill a whole block
            vm = vms[(idx - block * n) % n]
        bindings[job.job_id] = vm.vm_id
    return _plain(list(jobs), bindings)


def _baseline(vms: List[VirtualMachine], config: BindingConfig) -> np.ndarray:
    times = np.zeros(len(vms), dtype=float)
    baseline = config.baseline_finish_times
    if baseline:
        if len(baseline) != len(vms):
            logger.warning(f"Baseline has {len(baseline)} entries for {len(vms)} VM(s); "
                           f"missing entries start at 0")
        k = min(len(baseline), len(vms))
        times[:k] = baseline[:k]
    return times


def _greedy_load_balance(jobs, vms, config, rng) -> _Assignment:
    times = _baseline(vms, config)
    bindings = {}
    for job in jobs:
        idx = int(np.argmin(times))
        bindings[job.job_id] = vms[idx].vm_id
        times[idx] += job.length / vms[idx].mips
    return _plain(list(jobs), bindings)


def _random(jobs, vms, config, rng) -> _Assignment:
    bindings = {job.job_id: vms[int(rng.integers(len(vms)))].vm_id for job in jobs}
    return _plain(list(jobs), bindings)


def _bind_clusters(jobs, clusters, vm_indices, vms) -> _Assignment:
    bindings = {}
    cluster_counts: Dict[int, int] = {}
    for (start, end), idx in zip(clusters, vm_indices):
        vm_id = vms[idx].vm_id
        cluster_counts[vm_id] = cluster_counts.get(vm_id, 0) + 1
        for job in jobs[start:end]:
            bindings[job.job_id] = vm_id
    return _Assignment(list(jobs), bindings, {}, cluster_counts)


def _random_clustered(jobs, vms, config, rng) -> _Assignment:
    clusters = make_clusters(len(jobs), rng, config.max_cluster_size)
    logger.debug(f"Random clustering produced {len(clusters)} cluster(s)")
    vm_indices = [c % len(vms) for c in range(len(clusters))]
    return _bind_clusters(jobs, clusters, vm_indices, vms)


def _cost_min_clustered(jobs, vms, config, rng) -> _Assignment:
    clusters = make_clusters(len(jobs), rng, config.max_cluster_size, config.cluster_size)
    lengths = np.array([sum(job.length for job in jobs[start:end]) for start, end in clusters])
    mips = np.array([vm.mips for vm in vms], dtype=float)
    cost = np.outer(lengths, 1.0 / mips)
    return _bind_clusters(jobs, clusters, greedy_with_feedback(cost), vms)


def _clustered_load_balance(jobs, vms, config, rng) -> _Assignment:
    clusters = make_clusters(len(jobs), rng, config.max_cluster_size, config.cluster_size)
    times = _baseline(vms, config)
    vm_indices = []
    for start, end in clusters:
        idx = int(np.argmin(times))
        vm_indices.append(idx)
        for job in jobs[start:end]:
            times[idx] += job.length / vms[idx].mips
    return _bind_clusters(jobs, clusters, vm_indices, vms)


def _length_sorted(descending: bool) -> Strategy:
    def bind(jobs, vms, config, rng) -> _Assignment:
        order = sorted(jobs, key=lambda job: job.total_length, reverse=descending)
        lengths = np.array([job.length for job in order], dtype=float)
        mips = np.array([vm.mips for vm in vms], dtype=float)
        chosen = greedy_with_feedback(np.outer(lengths, 1.0 / mips))
        bindings = {job.job_id: vms[idx].vm_id for job, idx in zip(order, chosen)}
        return _plain(order, bindings)

    return bind


def _by_total_length(jobs: List[Job]) -> List[Job]:
    # sorted() is stable, so equal lengths keep their submission order
    return sorted(jobs, key=lambda job: job.total_length)


def _length_priority(jobs, vms, config, rng) -> _Assignment:
    return _round_robin(_by_total_length(jobs), vms, config, rng)


def _rank_paired(jobs, vms, config, rng) -> _Assignment:
    ranked = sorted(vms, key=lambda vm: vm.mips * vm.num_pes)
    return _round_robin(_by_total_length(jobs), ranked, config, rng)


_STRATEGIES: Dict[BindingStrategy, Strategy] = {
    BindingStrategy.ROUND_ROBIN: _round_robin,
    BindingStrategy.SATURATION: _saturation,
    BindingStrategy.FIRST_COME_FIRST_SERVED: _first_come_first_served,
    BindingStrategy.GREEDY_LOAD_BALANCE: _greedy_load_balance,
    BindingStrategy.RANDOM: _random,
    BindingStrategy.RANDOM_CLUSTERED: _random_clustered,
    BindingStrategy.COST_MIN_CLUSTERED: _cost_min_clustered,
    BindingStrategy.CLUSTERED_LOAD_BALANCE: _clustered_load_balance,
    BindingStrategy.MIN_MIN: _length_sorted(descending=False),
    BindingStrategy.MAX_MIN: _length_sorted(descending=True),
    BindingStrategy.LENGTH_PRIORITY: _length_priority,
    BindingStrategy.RANK_PAIRED: _rank_paired,
}


def _merge_order(jobs: List[Job], pinned: Dict[int, Optional[int]], free_order: List[Job]) -> List[Job]:
    """Pinned jobs keep their input slot; free jobs fill the rest in strategy order."""
    remaining = iter(free_order)
    return [job if job.job_id in pinned else next(remaining) for job in jobs]


class JobBindingEngine:
    """Binds jobs to created VMs with the configured strategy."""

    def __init__(self, config: Optional[BindingConfig] = None, rng: Optional[np.random.Generator] = None):
        self.config = config or BindingConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self.invocations = 0
        logger.info(f"Binding engine initialized with {self.config.strategy.value} policy")

    @property
    def strategy(self) -> BindingStrategy:
        return self.config.strategy

    def compute(self, jobs: List[Job], vms: List[VirtualMachine]) -> BindingResult:
        """Work out a binding without touching the jobs.

        Jobs that already carry a ``vm_id`` are pinned: they stay on that VM
        when it was created and are postponed otherwise. The strategy only
        sees the unpinned jobs.
        """
        jobs = list(jobs)
        if not vms:
            assignment = _Assignment(jobs, {}, {job.job_id: job.vm_id for job in jobs}, {})
        else:
            created = {vm.vm_id for vm in vms}
            pinned = {job.job_id: job.vm_id for job in jobs if job.vm_id is not None}
            free = [job for job in jobs if job.job_id not in pinned]
            if free:
                assignment = _STRATEGIES[self.strategy](free, list(vms), self.config, self.rng)
            else:
                assignment = _Assignment([], {}, {}, {})

            bindings = dict(assignment.bindings)
            postponed = dict(assignment.postponed)
            for job_id, vm_id in pinned.items():
                if vm_id in created:
                    bindings[job_id] = vm_id
                else:
                    postponed[job_id] = vm_id
            missing = len(pinned.keys() & postponed.keys())
            if missing:
                logger.warning(f"{missing} pinned job(s) postponed: bound VM not created")
            assignment = _Assignment(_merge_order(jobs, pinned, assignment.order), bindings,
                                     postponed, assignment.cluster_counts)

        order = [job.job_id for job in assignment.order]
        job_counts = {vm.vm_id: 0 for vm in vms}
        for vm_id in assignment.bindings.values():
            job_counts[vm_id] = job_counts.get(vm_id, 0) + 1

        return BindingResult(
            bindings=assignment.bindings,
            order=order,
            job_counts=job_counts,
            transition_cost=transition_cost(order, assignment.bindings),
            cluster_counts=assignment.cluster_counts,
            postponed=list(assignment.postponed),
        )

    def bind(self, jobs: List[Job], vms: List[VirtualMachine]) -> BindingResult:
        """Bind ``jobs`` onto ``vms`` and write the choice to ``job.vm_id``."""
        self.invocations += 1
        result = self.compute(jobs, vms)

        postponed = set(result.postponed)
        for job in jobs:
            if job.job_id in result.bindings:
                job.vm_id = result.bindings[job.job_id]
            elif (job.job_id in postponed and job.vm_id is None
                  and self.strategy == BindingStrategy.SATURATION and vms):
                # kept explicit so the job follows the target once it exists
                job.vm_id = self.config.saturation_target

        logger.info(f"Bound {result.num_bound} job(s) to {len(vms)} VM(s) with {self.strategy.value} "
                    f"(transition cost {result.transition_cost}, {len(result.postponed)} postponed)")
        for vm_id, count in result.job_counts.items():
            logger.debug(f"Jobs on VM #{vm_id} = {count}")
        return result


def create_binding_engine(
    strategy_name: str,
    seed: Optional[int] = None,
    **options,
) -> JobBindingEngine:
    """Create a binding engine from a strategy name."""
    try:
        strategy = BindingStrategy(strategy_name)
    except ValueError:
        valid = [s.value for s in BindingStrategy]
        raise ValueError(f"Unknown binding strategy: {strategy_name}. Must be one of {valid}") from None
    return JobBindingEngine(BindingConfig(strategy=strategy, seed=seed, **options))
