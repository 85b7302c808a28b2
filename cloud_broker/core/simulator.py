"""Scenario assembly: datacenters, one broker and a generated workload on a SimPy kernel."""

from typing import Any, Dict, List, Optional
from loguru import logger

from .broker import DatacenterBroker
from .datacenter import Datacenter
from .kernel import SimPyKernel
from .resources import Host, HostSpecs
from .workload import WorkloadGenerator
from ..evaluation.metrics import summarize_run
from ..scheduling.binding import JobBindingEngine
from ..utils.config import Config, DatacenterConfig


def build_hosts(config: DatacenterConfig, first_host_id: int = 0) -> List[Host]:
    """Expand the host groups of one datacenter into hosts with consecutive ids."""
    hosts = []
    host_id = first_host_id
    for group in config.hosts:
        specs = HostSpecs(
            num_pes=group.num_pes,
            mips_per_pe=group.mips_per_pe,
            ram=group.ram,
            bw=group.bw,
            storage=group.storage,
        )
        for _ in range(group.count):
            hosts.append(Host(host_id, specs))
            host_id += 1
    return hosts


class BrokerSimulation:
    """One broker negotiating with the configured datacenters."""

    def __init__(self, config: Config):
        self.config = config
        self.kernel = SimPyKernel()

        self.datacenters: List[Datacenter] = []
        next_host_id = 0
        for dc_config in config.datacenters:
            hosts = build_hosts(dc_config, next_host_id)
            next_host_id += len(hosts)
            datacenter = Datacenter(
                dc_config.name,
                self.kernel,
                hosts,
                placement=dc_config.placement,
                cost_per_second=dc_config.cost_per_second,
            )
            self.kernel.register(datacenter, provider=True)
            self.datacenters.append(datacenter)

        self.binding_engine = JobBindingEngine(config.binding)
        self.broker = DatacenterBroker(config.broker.name, self.kernel, self.binding_engine, config.broker)
        self.kernel.register(self.broker)

        workload = config.workload
        generator = WorkloadGenerator(workload.seed)
        user_id = self.broker.entity_id
        self.broker.submit_vm_list(generator.generate_vms(
            user_id,
            workload.num_vms,
            base_mips=workload.vm_mips,
            mips_step=workload.vm_mips_step,
            jitter_levels=workload.jitter_levels,
            num_pes=workload.vm_pes,
            ram=workload.vm_ram,
            bw=workload.vm_bw,
        ))
        self.broker.submit_job_list(generator.generate_jobs(
            user_id,
            workload.num_jobs,
            base_length=workload.job_length,
            length_step=workload.job_length_step,
            jitter_levels=workload.jitter_levels,
            num_pes=workload.job_pes,
        ))

        logger.info(f"BrokerSimulation initialized with {len(self.datacenters)} datacenter(s), "
                    f"{workload.num_vms} VM(s) and {workload.num_jobs} job(s)")

    def run(self, until: Optional[float] = None) -> DatacenterBroker:
        """Run until the event queue drains (or ``until``) and return the broker."""
        self.kernel.run(until=until)
        logger.info(f"Run finished in state {self.broker.state.value}: "
                    f"{len(self.broker.jobs_received)} job(s) received")
        return self.broker

    def results(self) -> Dict[str, Any]:
        analysis = summarize_run(self.broker)
        analysis['summary']['events_delivered'] = self.kernel.events_delivered
        analysis['summary']['simulation_time'] = self.kernel.now()
        analysis['summary']['jobs_per_datacenter'] = {
            datacenter.name: datacenter.jobs_executed for datacenter in self.datacenters
        }
        return analysis
