"""Reference resource provider: places VMs on its hosts and runs submitted jobs."""

from typing import Dict, List, Optional, Tuple
from loguru import logger

from .events import EventType, SimulationEvent
from .kernel import Kernel, SimEntity
from .resources import DatacenterCharacteristics, Host, VirtualMachine
from .workload import Job
from ..scheduling.placement import PlacementStrategy, VmPlacementEngine


class Datacenter(SimEntity):
    """Provider entity answering the broker protocol.

    Jobs are space-shared per VM: a job starts when its VM finishes the
    previous one and runs for ``length / vm.mips``.
    """

    def __init__(
        self,
        name: str,
        kernel: Kernel,
        hosts: List[Host],
        placement: PlacementStrategy = PlacementStrategy.WORST_FIT,
        cost_per_second: float = 3.0,
    ):
        super().__init__(name)
        self.kernel = kernel
        self.hosts = list(hosts)
        self.placement = VmPlacementEngine(self.hosts, placement)
        self.cost_per_second = cost_per_second

        # (owner entity, vm_id) -> VM / time at which the VM becomes idle
        self._vms: Dict[Tuple[int, int], VirtualMachine] = {}
        self._busy_until: Dict[Tuple[int, int], float] = {}
        self.jobs_executed = 0

        self._handlers = {
            EventType.RESOURCE_CHARACTERISTICS: self._on_characteristics_request,
            EventType.VM_CREATE: self._on_vm_create,
            EventType.VM_DESTROY: self._on_vm_destroy,
            EventType.CLOUDLET_SUBMIT: self._on_cloudlet_submit,
        }

        logger.info(f"Datacenter {name} created with {len(self.hosts)} host(s)")

    @property
    def ledger(self):
        return self.placement.ledger

    def characteristics(self) -> DatacenterCharacteristics:
        return DatacenterCharacteristics(
            datacenter_id=self.entity_id,
            name=self.name,
            num_hosts=len(self.hosts),
            num_pes=sum(host.num_pes for host in self.hosts),
            num_free_pes=sum(self.ledger.free_pes(host) for host in self.hosts),
            total_mips=sum(host.total_mips for host in self.hosts),
            cost_per_second=self.cost_per_second,
            host_ids=[host.host_id for host in self.hosts],
        )

    def vm(self, owner: int, vm_id: int) -> Optional[VirtualMachine]:
        return self._vms.get((owner, vm_id))

    def handle(self, event: SimulationEvent) -> None:
        handler = self._handlers.get(event.event_type)
        if handler is None:
            logger.warning(f"{self.name}: Unexpected event {event.event_type.value} from #{event.source}")
            return
        handler(event)

    def _on_characteristics_request(self, event: SimulationEvent) -> None:
        self.kernel.send(self.entity_id, event.source, EventType.RESOURCE_CHARACTERISTICS,
                         self.characteristics())

    def _on_vm_create(self, event: SimulationEvent) -> None:
        vm = event.data
        if not isinstance(vm, VirtualMachine):
            logger.error(f"{self.name}: Malformed VM creation request: {vm!r}")
            return

        host = self.placement.place(vm)
        if host is not None:
            key = (event.source, vm.vm_id)
            self._vms[key] = vm
            self._busy_until[key] = self.kernel.now()
        self.kernel.send(self.entity_id, event.source, EventType.VM_CREATE_ACK,
                         [self.entity_id, vm.vm_id, host is not None])

    def _on_vm_destroy(self, event: SimulationEvent) -> None:
        vm = event.data
        if not isinstance(vm, VirtualMachine):
            logger.error(f"{self.name}: Malformed VM destroy request: {vm!r}")
            return
        key = (event.source, vm.vm_id)
        self._vms.pop(key, None)
        self._busy_until.pop(key, None)
        self.placement.deallocate(vm)

    def _on_cloudlet_submit(self, event: SimulationEvent) -> None:
        job = event.data
        if not isinstance(job, Job):
            logger.error(f"{self.name}: Malformed job submission: {job!r}")
            return

        key = (event.source, job.vm_id)
        vm = self._vms.get(key)
        if vm is None:
            logger.error(f"{self.name}: Job #{job.job_id} targets VM #{job.vm_id} which is not hosted here")
            return

        now = self.kernel.now()
        start = max(now, self._busy_until[key])
        finish = start + job.length / vm.mips
        self._busy_until[key] = finish
        job.exec_start_time = start
        job.finish_time = finish
        self.jobs_executed += 1

        logger.debug(f"{self.name}: Job #{job.job_id} on VM #{vm.vm_id} runs {start:.2f} -> {finish:.2f}")
        self.kernel.send(self.entity_id, event.source, EventType.CLOUDLET_RETURN, job, delay=finish - now)
