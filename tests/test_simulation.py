"""
End-to-end runs on the SimPy kernel with reference datacenters.
"""
import pytest

from cloud_broker.core.broker import BrokerState, DatacenterBroker
from cloud_broker.core.datacenter import Datacenter
from cloud_broker.core.events import EventType
from cloud_broker.core.kernel import SimEntity, SimPyKernel
from cloud_broker.core.simulator import BrokerSimulation, build_hosts
from cloud_broker.core.workload import JobStatus
from cloud_broker.scheduling.binding import BindingConfig, BindingStrategy, JobBindingEngine
from cloud_broker.scheduling.placement import PlacementStrategy
from cloud_broker.utils.config import Config, DatacenterConfig, HostGroupConfig, WorkloadConfig
from test_utils import create_test_hosts, create_test_jobs, create_test_vms


class Recorder(SimEntity):
    def __init__(self, name="recorder"):
        super().__init__(name)
        self.received = []

    def handle(self, event):
        self.received.append((event.timestamp, event.data))


def two_datacenter_config(binding=BindingStrategy.ROUND_ROBIN, num_vms=6, num_jobs=30):
    config = Config(
        datacenters=[
            DatacenterConfig(name="Small", hosts=[HostGroupConfig(count=1, num_pes=2)]),
            DatacenterConfig(name="Large", placement=PlacementStrategy.ROUND_ROBIN,
                             hosts=[HostGroupConfig(count=2, num_pes=4)]),
        ],
        workload=WorkloadConfig(seed=1, num_vms=num_vms, num_jobs=num_jobs),
    )
    config.binding.strategy = binding
    config.binding.seed = 1
    config.binding.max_cluster_size = 5
    return config


def test_kernel_delivers_in_time_then_fifo_order():
    kernel = SimPyKernel()
    recorder = Recorder()
    kernel.register(recorder)

    kernel.send(0, recorder.entity_id, EventType.END_OF_SIMULATION, "late", delay=2.0)
    kernel.send(0, recorder.entity_id, EventType.END_OF_SIMULATION, "first", delay=1.0)
    kernel.send(0, recorder.entity_id, EventType.END_OF_SIMULATION, "second", delay=1.0)
    kernel.run()

    assert recorder.received == [(1.0, "first"), (1.0, "second"), (2.0, "late")]
    assert kernel.events_delivered == 3
    assert kernel.now() == 2.0


def test_kernel_rejects_negative_delay_and_drops_unknown_destination():
    kernel = SimPyKernel()
    with pytest.raises(ValueError):
        kernel.send(0, 0, EventType.END_OF_SIMULATION, delay=-1.0)

    kernel.send(0, 99, EventType.END_OF_SIMULATION)
    kernel.run()
    assert kernel.events_dropped == 1


def test_kernel_lists_providers_in_registration_order():
    kernel = SimPyKernel()
    ids = [kernel.register(Recorder(f"r{i}"), provider=(i != 1)) for i in range(3)]
    assert ids == [0, 1, 2]
    assert kernel.provider_ids() == [0, 2]


def test_default_scenario_runs_to_completion():
    simulation = BrokerSimulation(Config())
    broker = simulation.run()

    assert broker.state == BrokerState.DONE
    assert len(broker.jobs_received) == 20
    assert broker.job_list == []
    assert broker.context.vms_destroyed == 5
    for datacenter in simulation.datacenters:
        assert len(datacenter.ledger) == 0
        assert all(datacenter.ledger.free_pes(host) == host.num_pes for host in datacenter.hosts)


def test_vms_spill_over_to_second_datacenter():
    """The small datacenter takes two VMs, the rest go to the large one."""
    simulation = BrokerSimulation(two_datacenter_config())
    broker = simulation.run()

    assert broker.state == BrokerState.DONE
    by_datacenter = {}
    for job in broker.jobs_received:
        by_datacenter.setdefault(job.datacenter_id, set()).add(job.vm_id)
    small_id, large_id = (dc.entity_id for dc in simulation.datacenters)
    assert len(by_datacenter[small_id]) == 2
    assert len(by_datacenter[large_id]) == 4
    assert broker.context.binding_rounds == 1


@pytest.mark.parametrize("strategy", list(BindingStrategy))
def test_every_binding_strategy_completes(strategy):
    simulation = BrokerSimulation(two_datacenter_config(strategy))
    broker = simulation.run()
    assert broker.state == BrokerState.DONE
    assert all(job.status == JobStatus.COMPLETED for job in broker.jobs_received)
    assert len(broker.jobs_received) == 30


def test_space_shared_execution_times():
    """Jobs on one VM run back to back at length / mips."""
    kernel = SimPyKernel()
    datacenter = Datacenter("DC", kernel, create_test_hosts(1))
    kernel.register(datacenter, provider=True)
    broker = DatacenterBroker("Broker", kernel, JobBindingEngine(BindingConfig(seed=0)))
    kernel.register(broker)
    broker.submit_vm_list(create_test_vms(1, mips=100.0, user_id=broker.entity_id))
    jobs = create_test_jobs([1000, 500])
    broker.submit_job_list(jobs)

    kernel.run()

    assert broker.state == BrokerState.DONE
    assert [(job.exec_start_time, job.finish_time) for job in jobs] == [(0.0, 10.0), (10.0, 15.0)]
    assert kernel.now() == 15.0


def test_unplaceable_vms_abort_the_run():
    config = Config(
        datacenters=[DatacenterConfig(hosts=[HostGroupConfig(count=1, num_pes=1)])],
        workload=WorkloadConfig(num_vms=2, vm_pes=2, num_jobs=3),
    )
    simulation = BrokerSimulation(config)
    broker = simulation.run()

    assert broker.state == BrokerState.ABORTED
    assert broker.binding_engine.invocations == 0
    assert len(broker.job_list) == 3


def test_datacenter_reports_characteristics():
    kernel = SimPyKernel()
    hosts = create_test_hosts(2, num_pes=4, mips_per_pe=500.0)
    datacenter = Datacenter("DC", kernel, hosts, cost_per_second=1.5)
    kernel.register(datacenter, provider=True)

    characteristics = datacenter.characteristics()
    assert characteristics.datacenter_id == 0
    assert characteristics.num_hosts == 2
    assert characteristics.num_pes == 8
    assert characteristics.num_free_pes == 8
    assert characteristics.total_mips == 4000.0
    assert characteristics.host_ids == [0, 1]


def test_end_of_run_stays_with_the_broker(log_messages):
    """The broker ends the run by messaging itself; datacenters only log stray end events."""
    kernel = SimPyKernel()
    datacenter = Datacenter("DC", kernel, create_test_hosts(1))
    kernel.register(datacenter, provider=True)
    broker = DatacenterBroker("Broker", kernel, JobBindingEngine(BindingConfig(seed=0)))
    kernel.register(broker)
    broker.submit_vm_list(create_test_vms(1, user_id=broker.entity_id))
    broker.submit_job_list(create_test_jobs([100]))
    kernel.run()

    assert broker.state == BrokerState.DONE
    assert not any("Unexpected event" in message for message in log_messages)

    kernel.send(broker.entity_id, datacenter.entity_id, EventType.END_OF_SIMULATION)
    kernel.run()
    assert any("DC: Unexpected event end_of_simulation" in message for message in log_messages)


def test_build_hosts_assigns_consecutive_ids():
    config = DatacenterConfig(hosts=[HostGroupConfig(count=2, num_pes=2), HostGroupConfig(count=1, num_pes=8)])
    hosts = build_hosts(config, first_host_id=10)
    assert [(host.host_id, host.num_pes) for host in hosts] == [(10, 2), (11, 2), (12, 8)]


def test_results_include_kernel_statistics():
    simulation = BrokerSimulation(two_datacenter_config(num_jobs=10))
    simulation.run()
    results = simulation.results()
    assert results['summary']['final_state'] == "done"
    assert results['summary']['events_delivered'] > 0
    assert results['summary']['simulation_time'] == simulation.kernel.now()
    assert sum(results['summary']['jobs_per_datacenter'].values()) == 10
