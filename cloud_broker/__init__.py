"""Cloud broker simulator: VM negotiation, placement and job binding."""

__version__ = "0.1.0"
__author__ = "Cloud Project Team"

from .core import Host, HostSpecs, VirtualMachine, Job, JobStatus, SimPyKernel, CapacityLedger
from .core.broker import DatacenterBroker, BrokerConfig, BrokerState, BrokerInvariantError
from .core.datacenter import Datacenter
from .core.simulator import BrokerSimulation
from .scheduling import (
    PlacementStrategy,
    VmPlacementEngine,
    BindingStrategy,
    BindingConfig,
    JobBindingEngine,
)

__all__ = [
    "Host",
    "HostSpecs",
    "VirtualMachine",
    "Job",
    "JobStatus",
    "SimPyKernel",
    "CapacityLedger",
    "DatacenterBroker",
    "BrokerConfig",
    "BrokerState",
    "BrokerInvariantError",
    "Datacenter",
    "BrokerSimulation",
    "PlacementStrategy",
    "VmPlacementEngine",
    "BindingStrategy",
    "BindingConfig",
    "JobBindingEngine",
]
