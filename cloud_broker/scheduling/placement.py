"""VM placement policies: map a VM onto a physical host under the PE ledger."""

from typing import Callable, Dict, List, Optional
from enum import Enum
from loguru import logger

from ..core.ledger import CapacityLedger, CircularHostList
from ..core.resources import Host, VirtualMachine


class PlacementStrategy(Enum):
    """Placement strategies selectable by configuration."""
    ROUND_ROBIN = "round_robin"
    GREEDY_FIRST_FIT = "greedy_first_fit"
    RANK_BASED = "rank_based"
    WORST_FIT = "worst_fit"
    LEAST_VMS = "least_vms"
    BEST_FIT = "best_fit"


class VmPlacementEngine:
    """Places VMs on hosts with one interchangeable strategy.

    Every strategy reserves through the shared ``CapacityLedger`` and only
    records a VM on a host once the reservation succeeded, so a failed
    ``place`` call leaves no trace in the ledger.
    """

    def __init__(
        self,
        hosts: List[Host],
        strategy: PlacementStrategy = PlacementStrategy.WORST_FIT,
        ledger: Optional[CapacityLedger] = None,
    ):
        self.hosts = list(hosts)
        self.strategy = strategy
        self.ledger = ledger if ledger is not None else CapacityLedger()
        self.ledger.register(self.hosts)
        self.rotation = CircularHostList(self.hosts, self.ledger)

        logger.info(f"Placement engine initialized with {strategy.value} policy "
                    f"over {len(self.hosts)} host(s)")

    def place(self, vm: VirtualMachine) -> Optional[Host]:
        """Find a host for ``vm``; ``None`` when no host can take it."""
        existing = self.ledger.host_of(vm)
        if existing is not None:
            return existing

        host = _STRATEGIES[self.strategy](self, vm)
        if host is None:
            logger.warning(f"Could not place VM {vm.uid} ({vm.num_pes} PE) - no suitable host")
        else:
            logger.info(f"VM {vm.uid} allocated to host #{host.host_id} "
                        f"({self.strategy.value}, {self.ledger.free_pes(host)} PE(s) left)")
        return host

    def place_on(self, vm: VirtualMachine, host: Host) -> bool:
        """Place ``vm`` on a caller-chosen host."""
        if self.ledger.contains(vm):
            return self.ledger.host_of(vm) is host
        placed = self.try_allocate(vm, host)
        if placed:
            logger.info(f"VM {vm.uid} allocated to requested host #{host.host_id}")
        return placed

    def deallocate(self, vm: VirtualMachine) -> Optional[Host]:
        """Release ``vm``'s PEs and remove it from its host."""
        host = self.ledger.release(vm)
        if host is not None:
            host.vm_destroy(vm)
            logger.debug(f"VM {vm.uid} deallocated from host #{host.host_id}")
        return host

    def host_of(self, vm: VirtualMachine) -> Optional[Host]:
        return self.ledger.host_of(vm)

    def try_allocate(self, vm: VirtualMachine, host: Host) -> bool:
        """One placement attempt: host constraints first, then the PE reservation."""
        if not host.is_suitable_for(vm):
            return False
        if not self.ledger.reserve(vm, host, vm.num_pes):
            return False
        host.vm_create(vm)
        return True

    def available_mips(self, host: Host) -> float:
        return self.ledger.free_pes(host) * host.mips_per_pe


def _round_robin(engine: VmPlacementEngine, vm: VirtualMachine) -> Optional[Host]:
    tried = set()
    for _ in range(len(engine.rotation)):
        host = engine.rotation.next()
        if host is None:
            break
        if host.host_id in tried:
            continue
        if engine.try_allocate(vm, host):
            return host
        tried.add(host.host_id)
    return None


def _greedy_first_fit(engine: VmPlacementEngine, vm: VirtualMachine) -> Optional[Host]:
    for host in engine.hosts:
        if engine.try_allocate(vm, host):
            return host
    return None


def _best_fit(engine: VmPlacementEngine, vm: VirtualMachine) -> Optional[Host]:
    # tightest host first; the rotation index is not touched
    for host in engine.rotation.ordered_asc_by_free_pes():
        if engine.ledger.free_pes(host) >= vm.num_pes and engine.try_allocate(vm, host):
            return host
    return None


def _best_by(metric: Callable[[VmPlacementEngine, Host], float]) -> Callable[[VmPlacementEngine, VirtualMachine], Optional[Host]]:
    """Build a strategy that keeps trying the eligible host with the largest ``metric``.

    The metric is recomputed on every attempt; ties go to the earliest host in
    list order. A host that rejects the VM is ineligible for the rest of the call.
    """

    def select(engine: VmPlacementEngine, vm: VirtualMachine) -> Optional[Host]:
        eligible = list(engine.hosts)
        for _ in range(len(engine.hosts)):
            if not eligible:
                break
            best = eligible[0]
            best_value = metric(engine, best)
            for host in eligible[1:]:
                value = metric(engine, host)
                if value > best_value:
                    best, best_value = host, value
            if engine.try_allocate(vm, best):
                return best
            eligible.remove(best)
        return None

    return select


_STRATEGIES: Dict[PlacementStrategy, Callable[[VmPlacementEngine, VirtualMachine], Optional[Host]]] = {
    PlacementStrategy.ROUND_ROBIN: _round_robin,
    PlacementStrategy.GREEDY_FIRST_FIT: _greedy_first_fit,
    PlacementStrategy.RANK_BASED: _best_by(lambda engine, host: engine.available_mips(host)),
    PlacementStrategy.WORST_FIT: _best_by(lambda engine, host: engine.ledger.free_pes(host)),
    PlacementStrategy.LEAST_VMS: _best_by(lambda engine, host: -len(host.vms)),
    PlacementStrategy.BEST_FIT: _best_fit,
}


def create_placement_engine(strategy_name: str, hosts: List[Host]) -> VmPlacementEngine:
    """Create a placement engine from a strategy name."""
    try:
        strategy = PlacementStrategy(strategy_name)
    except ValueError:
        valid = [s.value for s in PlacementStrategy]
        raise ValueError(f"Unknown placement strategy: {strategy_name}. Must be one of {valid}") from None
    return VmPlacementEngine(hosts, strategy)
