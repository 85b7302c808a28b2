"""Discrete-event kernel interface and its SimPy adapter."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import simpy
from loguru import logger

from .events import EventType, SimulationEvent


class SimEntity(ABC):
    """Anything the kernel can deliver events to."""

    def __init__(self, name: str):
        self.name = name
        self.entity_id: Optional[int] = None

    def start(self) -> None:
        """Called once by the kernel before the first event is delivered."""

    @abstractmethod
    def handle(self, event: SimulationEvent) -> None:
        """Process one delivered event."""


class Kernel(ABC):
    """What entities need from the simulation kernel."""

    @abstractmethod
    def now(self) -> float:
        """Current simulation time."""

    @abstractmethod
    def send(
        self,
        source: int,
        destination: int,
        event_type: EventType,
        data: Optional[Any] = None,
        delay: float = 0.0,
    ) -> None:
        """Schedule ``event_type`` for ``destination`` after ``delay``."""

    @abstractmethod
    def provider_ids(self) -> List[int]:
        """Ids of the registered resource providers, in registration order."""


class SimPyKernel(Kernel):
    """Kernel backed by a ``simpy.Environment``.

    Each send becomes a timeout carrying the event; SimPy processes timeouts
    in time order and FIFO among equal times, which gives the delivery order.
    """

    def __init__(self, env: Optional[simpy.Environment] = None):
        self.env = env if env is not None else simpy.Environment()
        self._entities: Dict[int, SimEntity] = {}
        self._providers: List[int] = []
        self._serial = 0
        self._started = False
        self.events_delivered = 0
        self.events_dropped = 0

    def register(self, entity: SimEntity, provider: bool = False) -> int:
        """Assign an id to ``entity``; providers are listed by ``provider_ids``."""
        entity_id = len(self._entities)
        entity.entity_id = entity_id
        self._entities[entity_id] = entity
        if provider:
            self._providers.append(entity_id)
        logger.debug(f"Registered entity {entity.name} as #{entity_id}"
                     f"{' (provider)' if provider else ''}")
        return entity_id

    def now(self) -> float:
        return self.env.now

    def provider_ids(self) -> List[int]:
        return list(self._providers)

    def send(self, source, destination, event_type, data=None, delay=0.0) -> None:
        if delay < 0:
            raise ValueError(f"Send delay must not be negative, got {delay}")

        self._serial += 1
        event = SimulationEvent(
            timestamp=self.env.now + delay,
            event_type=event_type,
            source=source,
            destination=destination,
            data=data,
            serial=self._serial,
        )
        timeout = self.env.timeout(delay, value=event)
        timeout.callbacks.append(self._deliver)

    def _deliver(self, timeout: simpy.events.Event) -> None:
        event: SimulationEvent = timeout.value
        entity = self._entities.get(event.destination)
        if entity is None:
            self.events_dropped += 1
            logger.warning(f"Dropping {event.event_type.value}: no entity #{event.destination}")
            return
        self.events_delivered += 1
        entity.handle(event)

    def run(self, until: Optional[float] = None) -> float:
        """Start entities once, then run until the queue drains or ``until``."""
        if not self._started:
            self._started = True
            for entity in list(self._entities.values()):
                entity.start()

        logger.info(f"Running simulation with {len(self._entities)} entities"
                    f"{f' until t={until}' if until is not None else ''}")
        self.env.run(until=until)
        logger.info(f"Simulation stopped at t={self.env.now:.2f} "
                    f"({self.events_delivered} events delivered)")
        return self.env.now
