"""Core simulation components."""

from .resources import Host, HostSpecs, VirtualMachine, DatacenterCharacteristics
from .workload import Job, JobStatus, WorkloadGenerator
from .events import SimulationEvent, EventType
from .kernel import Kernel, SimEntity, SimPyKernel
from .ledger import CapacityLedger, CircularHostList, LedgerInvariantError

__all__ = [
    "Host",
    "HostSpecs",
    "VirtualMachine",
    "DatacenterCharacteristics",
    "Job",
    "JobStatus",
    "WorkloadGenerator",
    "SimulationEvent",
    "EventType",
    "Kernel",
    "SimEntity",
    "SimPyKernel",
    "CapacityLedger",
    "CircularHostList",
    "LedgerInvariantError",
]
