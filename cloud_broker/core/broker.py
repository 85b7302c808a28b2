"""Datacenter broker: negotiates VMs with providers and distributes jobs over them.

The broker is an event-driven state machine. It asks every provider for its
characteristics, requests VM creation provider by provider until the VM set
is satisfied (or accepts a partial set), binds pending jobs to the created
VMs, submits them, and tears the VMs down once every job came back. Jobs left
pending because their VM never materialised trigger a bounded recovery round.
"""

from typing import Dict, List, Optional, Set, Tuple
from dataclasses import dataclass, field
from enum import Enum
from loguru import logger

from .events import EventType, SimulationEvent
from .kernel import Kernel, SimEntity
from .resources import DatacenterCharacteristics, VirtualMachine
from .workload import Job
from ..scheduling.binding import BindingResult, JobBindingEngine


class BrokerInvariantError(RuntimeError):
    """Raised when the broker's own bookkeeping becomes inconsistent."""


class BrokerState(Enum):
    """Negotiation phases of the broker."""
    INIT = "init"
    AWAITING_CHARACTERISTICS = "awaiting_characteristics"
    REQUESTING_VMS = "requesting_vms"
    SUBMITTING_JOBS = "submitting_jobs"
    AWAITING_COMPLETIONS = "awaiting_completions"
    DONE = "done"
    ABORTED = "aborted"


TERMINAL_STATES = (BrokerState.DONE, BrokerState.ABORTED)


@dataclass
class BrokerConfig:
    """Configuration for the broker."""
    name: str = "Broker"
    max_recovery_rounds: int = 3


@dataclass
class NegotiationContext:
    """Counters carried across negotiation rounds."""
    vms_requested: int = 0
    vms_acks: int = 0
    vms_destroyed: int = 0
    jobs_outstanding: int = 0
    recovery_rounds: int = 0
    binding_rounds: int = 0
    providers_tried: Set[int] = field(default_factory=set)
    current_provider: Optional[int] = None


class DatacenterBroker(SimEntity):
    """Acquires VMs from providers and runs a job list on them."""

    def __init__(
        self,
        name: str,
        kernel: Kernel,
        binding_engine: Optional[JobBindingEngine] = None,
        config: Optional[BrokerConfig] = None,
    ):
        super().__init__(name)
        self.kernel = kernel
        self.binding_engine = binding_engine or JobBindingEngine()
        self.config = config or BrokerConfig(name=name)
        self.context = NegotiationContext()

        self.state = BrokerState.INIT
        self.state_history: List[Tuple[float, BrokerState]] = [(0.0, BrokerState.INIT)]

        self._vm_list: List[VirtualMachine] = []
        self._vms_created: List[VirtualMachine] = []
        self._job_list: List[Job] = []
        self._jobs_submitted: List[Job] = []
        self._jobs_received: List[Job] = []
        self._vm_to_datacenter: Dict[int, int] = {}
        self._datacenter_ids: List[int] = []
        self._characteristics: Dict[int, DatacenterCharacteristics] = {}
        self._last_binding: Optional[BindingResult] = None

        self._started = False
        self._shut_down = False
        self._end_logged = False

        self._log = logger.bind(component=name)
        self._handlers = {
            EventType.RESOURCE_CHARACTERISTICS_REQUEST: self._on_characteristics_request,
            EventType.RESOURCE_CHARACTERISTICS: self._on_characteristics,
            EventType.VM_CREATE_ACK: self._on_vm_create_ack,
            EventType.CLOUDLET_RETURN: self._on_cloudlet_return,
            EventType.END_OF_SIMULATION: self._on_end_of_simulation,
        }

    # Public API

    def submit_vm_list(self, vms: List[VirtualMachine]) -> None:
        self._vm_list.extend(vms)
        self._log.info(f"{self.name}: {len(vms)} VM(s) submitted ({len(self._vm_list)} total)")

    def submit_job_list(self, jobs: List[Job]) -> None:
        self._job_list.extend(jobs)
        self._log.info(f"{self.name}: {len(jobs)} job(s) submitted ({len(self._job_list)} pending)")

    def bind_job_to_vm(self, job_id: int, vm_id: int) -> bool:
        """Pin a pending job to a VM before submission."""
        for job in self._job_list:
            if job.job_id == job_id:
                job.vm_id = vm_id
                self._log.debug(f"{self.name}: Job #{job_id} bound to VM #{vm_id}")
                return True
        self._log.warning(f"{self.name}: Cannot bind job #{job_id}: not pending")
        return False

    def start(self) -> None:
        """Schedule the characteristics request to self."""
        if self._started:
            return
        if self.entity_id is None:
            raise BrokerInvariantError(f"{self.name} must be registered with the kernel before start")
        self._started = True
        self._log.info(f"{self.name} is starting...")
        self._send(self.entity_id, EventType.RESOURCE_CHARACTERISTICS_REQUEST)

    def handle(self, event: Optional[SimulationEvent]) -> None:
        """Dispatch one event according to its type."""
        if event is None:
            self._log.warning(f"{self.name}: Ignoring null event")
            return

        if self.state in TERMINAL_STATES:
            if event.event_type == EventType.END_OF_SIMULATION and not self._end_logged:
                self._end_logged = True
                self._log.info(f"{self.name} is shutting down ({self.state.value})")
            else:
                self._log.debug(f"{self.name}: Ignoring {event.event_type.value} in {self.state.value}")
            return

        handler = self._handlers.get(event.event_type)
        if handler is None:
            self._log.warning(f"{self.name}: Unknown event type {event.event_type}")
            return
        handler(event)

    def shutdown(self) -> None:
        """Destroy any created VMs and end the run; repeated calls do nothing."""
        if self._shut_down:
            return
        self._shut_down = True
        self._clear_datacenters(terminal=True)
        if self.state not in TERMINAL_STATES:
            unfinished = self._job_list or self.context.jobs_outstanding
            self._transition(BrokerState.ABORTED if unfinished else BrokerState.DONE)
        self._log.info(f"{self.name}: Shutdown in state {self.state.value}")

    # Read-only views

    @property
    def vm_list(self) -> List[VirtualMachine]:
        return list(self._vm_list)

    @property
    def vms_created(self) -> List[VirtualMachine]:
        return list(self._vms_created)

    @property
    def job_list(self) -> List[Job]:
        return list(self._job_list)

    @property
    def jobs_submitted(self) -> List[Job]:
        return list(self._jobs_submitted)

    @property
    def jobs_received(self) -> List[Job]:
        return list(self._jobs_received)

    @property
    def vm_to_datacenter(self) -> Dict[int, int]:
        return dict(self._vm_to_datacenter)

    @property
    def datacenter_ids(self) -> List[int]:
        return list(self._datacenter_ids)

    @property
    def characteristics(self) -> Dict[int, DatacenterCharacteristics]:
        return dict(self._characteristics)

    @property
    def last_binding(self) -> Optional[BindingResult]:
        return self._last_binding

    # Event handlers

    def _on_characteristics_request(self, event: SimulationEvent) -> None:
        if self.state != BrokerState.INIT:
            self._log.warning(f"{self.name}: Characteristics trigger in {self.state.value}, ignored")
            return

        self._datacenter_ids = self.kernel.provider_ids()
        self._characteristics = {}
        if not self._datacenter_ids:
            self._abort("no resource providers are registered")
            return

        self._log.info(f"{self.kernel.now():.2f}: {self.name}: Cloud Resource List received "
                       f"with {len(self._datacenter_ids)} resource(s)")
        self._transition(BrokerState.AWAITING_CHARACTERISTICS)
        for datacenter_id in self._datacenter_ids:
            self._send(datacenter_id, EventType.RESOURCE_CHARACTERISTICS, self.entity_id)

    def _on_characteristics(self, event: SimulationEvent) -> None:
        characteristics = event.data
        if not isinstance(characteristics, DatacenterCharacteristics):
            self._log.error(f"{self.name}: Malformed characteristics from #{event.source}: {characteristics!r}")
            return
        if self.state != BrokerState.AWAITING_CHARACTERISTICS:
            self._log.warning(f"{self.name}: Late characteristics from #{characteristics.datacenter_id}, ignored")
            return

        self._characteristics[characteristics.datacenter_id] = characteristics
        if len(self._characteristics) == len(self._datacenter_ids):
            self.context.providers_tried.clear()
            self._request_vms(self._datacenter_ids[0])

    def _on_vm_create_ack(self, event: SimulationEvent) -> None:
        data = event.data
        if not isinstance(data, (list, tuple)) or len(data) != 3:
            self._log.error(f"{self.name}: Malformed VM creation ack: {data!r}")
            return
        if self.state != BrokerState.REQUESTING_VMS:
            self._log.warning(f"{self.name}: VM creation ack in {self.state.value}, ignored")
            return

        datacenter_id, vm_id, success = data
        vm = self._find_vm(vm_id)
        if vm is None:
            self._log.error(f"{self.name}: Ack for unknown VM #{vm_id} from #{datacenter_id}")
            return

        ctx = self.context
        ctx.vms_acks += 1
        if ctx.vms_acks > ctx.vms_requested:
            raise BrokerInvariantError(
                f"{self.name}: {ctx.vms_acks} acks for {ctx.vms_requested} VM creation request(s)"
            )

        if success:
            self._vm_to_datacenter[vm_id] = datacenter_id
            vm.datacenter_id = datacenter_id
            self._vms_created.append(vm)
            self._log.info(f"{self.kernel.now():.2f}: {self.name}: VM #{vm_id} has been created "
                           f"in Datacenter #{datacenter_id}")
        else:
            self._log.info(f"{self.kernel.now():.2f}: {self.name}: Creation of VM #{vm_id} failed "
                           f"in Datacenter #{datacenter_id}")

        self._evaluate_vm_round()

    def _on_cloudlet_return(self, event: SimulationEvent) -> None:
        job = event.data
        if not isinstance(job, Job):
            self._log.error(f"{self.name}: Malformed job return: {job!r}")
            return
        if job not in self._jobs_submitted or job in self._jobs_received:
            self._log.warning(f"{self.name}: Unexpected return of job #{job.job_id}, ignored")
            return

        job.mark_completed()
        self._jobs_received.append(job)
        self.context.jobs_outstanding -= 1
        self._log.info(f"{self.kernel.now():.2f}: {self.name}: Cloudlet #{job.job_id} received")

        if self.state == BrokerState.AWAITING_COMPLETIONS:
            self._check_completion()

    def _on_end_of_simulation(self, event: SimulationEvent) -> None:
        self._log.warning(f"{self.name}: End of simulation in {self.state.value}")
        self.shutdown()

    # Negotiation steps

    def _request_vms(self, datacenter_id: int) -> None:
        """Ask one provider to create every VM that has no owner yet."""
        self._transition(BrokerState.REQUESTING_VMS)
        ctx = self.context
        ctx.providers_tried.add(datacenter_id)
        ctx.current_provider = datacenter_id

        characteristics = self._characteristics.get(datacenter_id)
        datacenter_name = characteristics.name if characteristics else f"#{datacenter_id}"

        requested = 0
        for vm in self._vm_list:
            if vm.vm_id in self._vm_to_datacenter:
                continue
            self._log.info(f"{self.kernel.now():.2f}: {self.name}: Trying to Create VM #{vm.vm_id} "
                           f"in {datacenter_name}")
            self._send(datacenter_id, EventType.VM_CREATE, vm)
            requested += 1

        ctx.vms_requested = requested
        ctx.vms_acks = 0
        if requested == 0:
            self._evaluate_vm_round()

    def _evaluate_vm_round(self) -> None:
        ctx = self.context
        if len(self._vms_created) == len(self._vm_list) - ctx.vms_destroyed:
            self._submit_jobs()
            return
        if ctx.vms_acks != ctx.vms_requested:
            return

        for datacenter_id in self._datacenter_ids:
            if datacenter_id not in ctx.providers_tried:
                self._request_vms(datacenter_id)
                return

        if self._vms_created:
            self._log.warning(f"{self.name}: Only {len(self._vms_created)} of {len(self._vm_list)} "
                              f"VM(s) could be created; continuing with those")
            self._submit_jobs()
        else:
            self._abort("none of the required VMs could be created")

    def _submit_jobs(self) -> None:
        """Bind the pending jobs and send every job whose VM exists."""
        self._transition(BrokerState.SUBMITTING_JOBS)
        ctx = self.context
        ctx.binding_rounds += 1
        self._last_binding = self.binding_engine.bind(self._job_list, self._vms_created)

        pending = {job.job_id: job for job in self._job_list}
        submitted = []
        for job_id in self._last_binding.order:
            job = pending.get(job_id)
            if job is None:
                continue
            datacenter_id = self._vm_to_datacenter.get(job.vm_id) if job.vm_id is not None else None
            if datacenter_id is None:
                self._log.info(f"{self.kernel.now():.2f}: {self.name}: Postponing execution of "
                               f"cloudlet #{job_id}: bound VM #{job.vm_id} not available")
                continue

            self._log.info(f"{self.kernel.now():.2f}: {self.name}: Sending cloudlet #{job_id} "
                           f"to VM #{job.vm_id}")
            self._send(datacenter_id, EventType.CLOUDLET_SUBMIT, job)
            job.mark_submitted(self.kernel.now(), datacenter_id)
            ctx.jobs_outstanding += 1
            submitted.append(job)

        sent = {job.job_id for job in submitted}
        self._job_list = [job for job in self._job_list if job.job_id not in sent]
        self._jobs_submitted.extend(submitted)

        self._transition(BrokerState.AWAITING_COMPLETIONS)
        self._check_completion()

    def _check_completion(self) -> None:
        ctx = self.context
        if ctx.jobs_outstanding > 0:
            return

        if not self._job_list:
            self._log.info(f"{self.kernel.now():.2f}: {self.name}: All Cloudlets executed. Finishing...")
            self._clear_datacenters(terminal=True)
            self._shut_down = True
            self._transition(BrokerState.DONE)
            self._send(self.entity_id, EventType.END_OF_SIMULATION)
            return

        if ctx.recovery_rounds >= self.config.max_recovery_rounds:
            postponed = [job.job_id for job in self._job_list]
            self._abort(f"{len(postponed)} job(s) still postponed after "
                        f"{ctx.recovery_rounds} recovery round(s): {postponed}")
            return

        ctx.recovery_rounds += 1
        self._log.warning(f"{self.kernel.now():.2f}: {self.name}: {len(self._job_list)} cloudlet(s) "
                          f"waiting for VMs; recovery round {ctx.recovery_rounds}")
        self._clear_datacenters(terminal=False)
        ctx.providers_tried.clear()
        self._request_vms(self._datacenter_ids[0])

    def _clear_datacenters(self, terminal: bool) -> None:
        """Send destroy requests for every created VM and forget their owners."""
        for vm in self._vms_created:
            datacenter_id = self._vm_to_datacenter.pop(vm.vm_id, None)
            if datacenter_id is None:
                raise BrokerInvariantError(f"{self.name}: created VM #{vm.vm_id} has no owning provider")
            self._log.info(f"{self.kernel.now():.2f}: {self.name}: Destroying VM #{vm.vm_id}")
            self._send(datacenter_id, EventType.VM_DESTROY, vm)
            vm.datacenter_id = None
            if terminal:
                self.context.vms_destroyed += 1
        self._vms_created = []

    def _abort(self, reason: str) -> None:
        self._log.error(f"{self.kernel.now():.2f}: {self.name}: Aborting: {reason}")
        self._clear_datacenters(terminal=True)
        self._shut_down = True
        self._transition(BrokerState.ABORTED)
        self._send(self.entity_id, EventType.END_OF_SIMULATION)

    # Helpers

    def _transition(self, new_state: BrokerState) -> None:
        if new_state == self.state:
            return
        self._log.debug(f"{self.name}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.state_history.append((self.kernel.now(), new_state))

    def _send(self, destination: int, event_type: EventType, data=None) -> None:
        self.kernel.send(self.entity_id, destination, event_type, data)

    def _find_vm(self, vm_id: int) -> Optional[VirtualMachine]:
        for vm in self._vm_list:
            if vm.vm_id == vm_id:
                return vm
        return None
