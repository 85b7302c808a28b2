"""Resource models: physical hosts, virtual machines and provider characteristics."""

from typing import Dict, List, Optional
from dataclasses import dataclass, field
from enum import Enum
from loguru import logger


class ResourceState(Enum):
    """Resource state enumeration."""
    AVAILABLE = "available"
    ALLOCATED = "allocated"
    FAILED = "failed"


@dataclass
class HostSpecs:
    """Capacity of a single physical host."""
    num_pes: int
    mips_per_pe: float = 1000.0
    ram: int = 16384  # MB
    bw: int = 100000  # Mbit/s
    storage: int = 1000000  # MB


class Host:
    """Physical host owned by a datacenter.

    Free PE accounting lives in the placement side's ``CapacityLedger``; the
    host only tracks the non-PE constraints (RAM, bandwidth) and which VMs it
    currently runs.
    """

    def __init__(self, host_id: int, specs: HostSpecs):
        if specs.num_pes < 1:
            raise ValueError(f"Host {host_id} needs at least one PE, got {specs.num_pes}")

        self.host_id = host_id
        self.specs = specs
        self.state = ResourceState.AVAILABLE

        self.ram_in_use = 0
        self.bw_in_use = 0
        self.vms: Dict[str, "VirtualMachine"] = {}

        logger.debug(f"Host #{host_id} created with {specs.num_pes} PEs "
                     f"x {specs.mips_per_pe:.0f} MIPS, {specs.ram}MB RAM")

    @property
    def num_pes(self) -> int:
        return self.specs.num_pes

    @property
    def mips_per_pe(self) -> float:
        return self.specs.mips_per_pe

    @property
    def total_mips(self) -> float:
        return self.specs.num_pes * self.specs.mips_per_pe

    def is_suitable_for(self, vm: "VirtualMachine") -> bool:
        """Check the non-PE constraints for hosting ``vm``."""
        return (
            self.state == ResourceState.AVAILABLE and
            vm.mips <= self.specs.mips_per_pe and
            self.ram_in_use + vm.ram <= self.specs.ram and
            self.bw_in_use + vm.bw <= self.specs.bw
        )

    def vm_create(self, vm: "VirtualMachine") -> bool:
        """Record ``vm`` as running on this host."""
        if vm.uid in self.vms:
            return True
        if not self.is_suitable_for(vm):
            return False

        self.ram_in_use += vm.ram
        self.bw_in_use += vm.bw
        self.vms[vm.uid] = vm
        vm.host = self
        vm.state = ResourceState.ALLOCATED
        return True

    def vm_destroy(self, vm: "VirtualMachine") -> None:
        """Forget ``vm`` and give back its RAM and bandwidth."""
        if self.vms.pop(vm.uid, None) is None:
            return
        self.ram_in_use = max(0, self.ram_in_use - vm.ram)
        self.bw_in_use = max(0, self.bw_in_use - vm.bw)
        if vm.host is self:
            vm.host = None
        vm.state = ResourceState.AVAILABLE

    def fail(self) -> None:
        """Simulate host failure."""
        self.state = ResourceState.FAILED
        logger.warning(f"Host #{self.host_id} failed")

    def recover(self) -> None:
        """Simulate host recovery."""
        self.state = ResourceState.AVAILABLE
        logger.info(f"Host #{self.host_id} recovered")

    def __repr__(self) -> str:
        return f"Host(host_id={self.host_id}, num_pes={self.num_pes}, vms={len(self.vms)})"


class VirtualMachine:
    """Virtual execution resource requested by a broker and placed on a host."""

    def __init__(
        self,
        vm_id: int,
        user_id: int,
        mips: float,
        num_pes: int = 1,
        ram: int = 512,
        bw: int = 1000,
        size: int = 10000,
        vmm: str = "Xen",
    ):
        if num_pes < 1:
            raise ValueError(f"VM #{vm_id} needs at least one PE, got {num_pes}")
        if mips <= 0:
            raise ValueError(f"VM #{vm_id} needs a positive MIPS rating, got {mips}")

        self.vm_id = vm_id
        self.user_id = user_id
        self.mips = mips
        self.num_pes = num_pes
        self.ram = ram
        self.bw = bw
        self.size = size
        self.vmm = vmm
        self.state = ResourceState.AVAILABLE

        # Set by the placing datacenter / the broker respectively
        self.host: Optional[Host] = None
        self.datacenter_id: Optional[int] = None

    @staticmethod
    def make_uid(user_id: int, vm_id: int) -> str:
        return f"{user_id}-{vm_id}"

    @property
    def uid(self) -> str:
        return self.make_uid(self.user_id, self.vm_id)

    def __repr__(self) -> str:
        return (f"VirtualMachine(vm_id={self.vm_id}, mips={self.mips}, "
                f"num_pes={self.num_pes}, datacenter_id={self.datacenter_id})")


@dataclass
class DatacenterCharacteristics:
    """Characteristics record a provider returns once per negotiation."""
    datacenter_id: int
    name: str
    num_hosts: int
    num_pes: int
    num_free_pes: int
    total_mips: float
    architecture: str = "x86"
    os: str = "Linux"
    vmm: str = "Xen"
    cost_per_second: float = 3.0
    host_ids: List[int] = field(default_factory=list)
