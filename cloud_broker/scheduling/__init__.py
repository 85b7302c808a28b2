"""VM placement and job binding policies."""

from .placement import PlacementStrategy, VmPlacementEngine, create_placement_engine
from .binding import (
    BindingStrategy,
    BindingConfig,
    BindingResult,
    JobBindingEngine,
    create_binding_engine,
)

__all__ = [
    "PlacementStrategy",
    "VmPlacementEngine",
    "create_placement_engine",
    "BindingStrategy",
    "BindingConfig",
    "BindingResult",
    "JobBindingEngine",
    "create_binding_engine",
]
