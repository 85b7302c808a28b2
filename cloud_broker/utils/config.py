"""Configuration management utilities."""

from typing import Dict, Any, List
from pathlib import Path
import yaml
import json
from pydantic import BaseModel, ConfigDict, Field
from loguru import logger

from ..core.broker import BrokerConfig
from ..scheduling.binding import BindingConfig
from ..scheduling.placement import PlacementStrategy


class HostGroupConfig(BaseModel):
    """A batch of identical hosts."""
    count: int = Field(1, ge=1)
    num_pes: int = Field(4, ge=1)
    mips_per_pe: float = Field(1000.0, gt=0)
    ram: int = Field(16384, gt=0)  # MB
    bw: int = Field(100000, gt=0)  # Mbit/s
    storage: int = Field(1000000, gt=0)  # MB


class DatacenterConfig(BaseModel):
    """One provider and its hosts."""
    name: str = "Datacenter_0"
    placement: PlacementStrategy = PlacementStrategy.WORST_FIT
    cost_per_second: float = 3.0
    hosts: List[HostGroupConfig] = Field(default_factory=lambda: [HostGroupConfig(count=2)])


class WorkloadConfig(BaseModel):
    """Synthetic VM and job lists generated for the broker."""
    seed: int = 42

    num_vms: int = Field(5, ge=0)
    vm_mips: float = Field(100.0, gt=0)
    vm_mips_step: float = 5.0
    vm_pes: int = Field(1, ge=1)
    vm_ram: int = 512
    vm_bw: int = 1000

    num_jobs: int = Field(20, ge=0)
    job_length: float = Field(10000.0, gt=0)
    job_length_step: float = 1000.0
    job_pes: int = Field(1, ge=1)

    jitter_levels: int = Field(10, ge=1)


class Config(BaseModel):
    """Main configuration class."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    binding: BindingConfig = Field(default_factory=BindingConfig)
    datacenters: List[DatacenterConfig] = Field(default_factory=lambda: [DatacenterConfig()])
    workload: WorkloadConfig = Field(default_factory=WorkloadConfig)

    # Free-form experiment metadata
    experiment: Dict[str, Any] = Field(default_factory=dict)


def load_config(config_path: Path) -> Config:
    """Load configuration from file."""

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, 'r') as f:
        if config_path.suffix.lower() in ['.yaml', '.yml']:
            config_data = yaml.safe_load(f)
        elif config_path.suffix.lower() == '.json':
            config_data = json.load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

    config = Config.model_validate(config_data or {})

    logger.info(f"Configuration loaded: {len(config.datacenters)} datacenter(s), "
                f"{config.binding.strategy.value} binding, seed {config.workload.seed}")

    return config


def save_config(config: Config, config_path: Path) -> None:
    """Save configuration to file."""

    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump(mode="json")

    with open(config_path, 'w') as f:
        if config_path.suffix.lower() in ['.yaml', '.yml']:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)
        elif config_path.suffix.lower() == '.json':
            json.dump(config_dict, f, indent=2)
        else:
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

    logger.info(f"Configuration saved to {config_path}")


def save_results(analysis: Dict[str, Any], output_dir: Path) -> None:
    """Save run results to files."""

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    results_file = output_dir / "simulation_results.json"
    with open(results_file, 'w') as f:
        json.dump(analysis, f, indent=2, default=str)

    logger.info(f"Results saved to {results_file}")

    # Save the job table separately if available
    if 'jobs' in analysis:
        jobs_file = output_dir / "jobs.json"
        with open(jobs_file, 'w') as f:
            json.dump(analysis['jobs'], f, indent=2, default=str)

        logger.info(f"Job table saved to {jobs_file}")
