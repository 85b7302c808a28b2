"""PE capacity ledger and the rotating host list used by placement policies."""

from typing import Dict, Iterator, List, Optional, Tuple
from loguru import logger

from .resources import Host, VirtualMachine


class LedgerInvariantError(RuntimeError):
    """Raised when the ledger's free-PE counts disagree with its reservations."""


class CapacityLedger:
    """Authoritative record of free PEs per host.

    Keeps ``vm.uid -> (host, pe demand)`` plus a free-PE list parallel to the
    registered host list. For every host, free PEs equal total PEs minus the
    demand of every VM reserved on it.
    """

    def __init__(self, hosts: Optional[List[Host]] = None):
        self._hosts: List[Host] = []
        self._index: Dict[int, int] = {}  # host_id -> position in _hosts
        self._free_pes: List[int] = []
        self._vm_table: Dict[str, Tuple[Host, int]] = {}

        if hosts:
            self.register(hosts)

    def register(self, hosts: List[Host]) -> None:
        """Add hosts with all of their PEs free."""
        for host in hosts:
            if host.host_id in self._index:
                logger.debug(f"Host #{host.host_id} already registered in ledger")
                continue
            self._index[host.host_id] = len(self._hosts)
            self._hosts.append(host)
            self._free_pes.append(host.num_pes)

    @property
    def hosts(self) -> List[Host]:
        return list(self._hosts)

    def __len__(self) -> int:
        return len(self._vm_table)

    def index_of(self, host: Host) -> int:
        try:
            return self._index[host.host_id]
        except KeyError:
            raise KeyError(f"Host #{host.host_id} is not registered in the ledger") from None

    def free_pes(self, host: Host) -> int:
        return self._free_pes[self.index_of(host)]

    def used_pes(self, host: Host) -> int:
        return host.num_pes - self.free_pes(host)

    def contains(self, vm: VirtualMachine) -> bool:
        return vm.uid in self._vm_table

    def host_of(self, vm: VirtualMachine) -> Optional[Host]:
        entry = self._vm_table.get(vm.uid)
        return entry[0] if entry else None

    def reserve(self, vm: VirtualMachine, host: Host, pe_demand: int) -> bool:
        """Take ``pe_demand`` PEs on ``host`` for ``vm``.

        Fails without touching any state when the demand is not positive, the
        host is unknown or short of free PEs, or ``vm`` is already recorded.
        """
        if pe_demand < 1:
            logger.error(f"Rejected reservation of {pe_demand} PE(s) for VM {vm.uid}")
            return False
        idx = self._index.get(host.host_id)
        if idx is None or vm.uid in self._vm_table:
            return False
        if self._free_pes[idx] < pe_demand:
            return False

        self._free_pes[idx] -= pe_demand
        self._vm_table[vm.uid] = (host, pe_demand)
        self.check_invariants()

        logger.debug(f"Reserved {pe_demand} PE(s) on host #{host.host_id} for VM {vm.uid} "
                     f"({self._free_pes[idx]} free)")
        return True

    def release(self, vm: VirtualMachine) -> Optional[Host]:
        """Give back the PEs recorded for ``vm`` and return its host.

        An unknown VM points at a caller-side ordering bug; it is reported and
        the ledger is left untouched.
        """
        entry = self._vm_table.pop(vm.uid, None)
        if entry is None:
            logger.error(f"Release requested for VM {vm.uid} which holds no reservation")
            return None

        host, pe_demand = entry
        idx = self._index[host.host_id]
        self._free_pes[idx] += pe_demand
        self.check_invariants()

        logger.debug(f"Released {pe_demand} PE(s) on host #{host.host_id} from VM {vm.uid}")
        return host

    def check_invariants(self) -> None:
        """Recompute free PEs from the reservations and compare."""
        reserved = [0] * len(self._hosts)
        for host, pe_demand in self._vm_table.values():
            reserved[self._index[host.host_id]] += pe_demand

        for idx, host in enumerate(self._hosts):
            expected = host.num_pes - reserved[idx]
            actual = self._free_pes[idx]
            if actual != expected or not 0 <= actual <= host.num_pes:
                raise LedgerInvariantError(
                    f"Host #{host.host_id}: free PEs {actual}, expected {expected} "
                    f"(total {host.num_pes}, reserved {reserved[idx]})"
                )


class CircularHostList:
    """Ordered, rotatable view over hosts whose free PEs come from a ledger."""

    def __init__(self, hosts: List[Host], ledger: CapacityLedger):
        self._list: List[Host] = list(hosts)
        self._ledger = ledger
        self._ini = 0

    def add(self, host: Host) -> None:
        self._list.append(host)

    def remove(self, host: Host) -> bool:
        try:
            self._list.remove(host)
        except ValueError:
            return False
        return True

    def next(self) -> Optional[Host]:
        """Return the host at the rotation index and advance it."""
        if not self._list:
            return None
        host = self._list[self._ini % len(self._list)]
        self._ini += 1
        return host

    def get(self) -> List[Host]:
        return list(self._list)

    def __iter__(self) -> Iterator[Host]:
        return iter(self.get())

    def __len__(self) -> int:
        return len(self._list)

    def ordered_asc_by_free_pes(self) -> "CircularHostList":
        """New list sorted by free PEs ascending; ties keep list order."""
        ordered = sorted(self._list, key=self._ledger.free_pes)
        return CircularHostList(ordered, self._ledger)

    def get_with_minimum_free_pes(self, num_pes: int) -> Optional[Host]:
        """Tightest host that still has ``num_pes`` free PEs."""
        for host in self.ordered_asc_by_free_pes():
            if self._ledger.free_pes(host) >= num_pes:
                return host
        return None
