"""Simulation events and event types exchanged between entities."""

from enum import Enum
from typing import Any, Optional
from dataclasses import dataclass
from loguru import logger


class EventType(Enum):
    """Tags of messages exchanged between the broker and providers."""

    # Negotiation
    RESOURCE_CHARACTERISTICS_REQUEST = "resource_characteristics_request"
    RESOURCE_CHARACTERISTICS = "resource_characteristics"

    # VM lifecycle
    VM_CREATE = "vm_create"
    VM_CREATE_ACK = "vm_create_ack"
    VM_DESTROY = "vm_destroy"

    # Job lifecycle
    CLOUDLET_SUBMIT = "cloudlet_submit"
    CLOUDLET_RETURN = "cloudlet_return"

    # Run control
    END_OF_SIMULATION = "end_of_simulation"


@dataclass
class SimulationEvent:
    """A message delivered by the kernel to one entity."""

    timestamp: float
    event_type: EventType
    source: int
    destination: int
    data: Optional[Any] = None
    serial: int = 0

    def __post_init__(self) -> None:
        logger.trace(
            f"Event created: {self.event_type.value} at {self.timestamp:.2f} "
            f"from #{self.source} to #{self.destination}"
        )
