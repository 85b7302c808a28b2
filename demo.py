#!/usr/bin/env python3
"""
Demonstration script for the cloud broker simulator.

Runs one broker against two datacenters, the first of which is too small for
every VM, then compares the binding strategies on the same workload.
"""

import sys

from cloud_broker.core.simulator import BrokerSimulation
from cloud_broker.scheduling.binding import BindingStrategy
from cloud_broker.scheduling.placement import PlacementStrategy
from cloud_broker.utils.config import Config, DatacenterConfig, HostGroupConfig, WorkloadConfig
from cloud_broker.utils.log import setup_logging
from loguru import logger


def create_config(binding: BindingStrategy = BindingStrategy.ROUND_ROBIN) -> Config:
    """Two datacenters: a small one that fills up and a larger fallback."""
    config = Config(
        datacenters=[
            DatacenterConfig(
                name="Datacenter_0",
                placement=PlacementStrategy.WORST_FIT,
                hosts=[HostGroupConfig(count=2, num_pes=2)],
            ),
            DatacenterConfig(
                name="Datacenter_1",
                placement=PlacementStrategy.ROUND_ROBIN,
                hosts=[HostGroupConfig(count=4, num_pes=4)],
            ),
        ],
        workload=WorkloadConfig(seed=42, num_vms=8, num_jobs=60),
    )
    config.binding.strategy = binding
    config.binding.seed = 42
    config.binding.max_cluster_size = 10
    return config


def run_baseline_demo():
    """Run a single negotiation with round-robin binding."""
    logger.info("Starting baseline broker demo")

    simulation = BrokerSimulation(create_config())
    broker = simulation.run()
    logger.info(f"VM placement: {broker.vm_to_datacenter}")

    print_results(simulation.results())


def run_comparison_demo():
    """Run every binding strategy on the same infrastructure and workload."""
    logger.info("Starting binding strategy comparison demo")

    results = {}
    for strategy in BindingStrategy:
        simulation = BrokerSimulation(create_config(strategy))
        simulation.run()
        results[strategy.value] = simulation.results()

    print_comparison(results)


def print_results(analysis: dict):
    """Print run results in a formatted way."""
    print("\n" + "="*60)
    print("SIMULATION RESULTS")
    print("="*60)

    summary = analysis['summary']
    job_metrics = analysis['job_metrics']
    binding = analysis['binding_metrics']

    print("Jobs:")
    print(f"   Total: {summary['total_jobs']}")
    print(f"   Received: {summary['jobs_received']}")
    print(f"   Postponed: {summary['jobs_postponed']}")

    print("\nTiming:")
    print(f"   Makespan: {job_metrics['makespan']:.2f}s")
    print(f"   Avg Execution Time: {job_metrics['avg_execution_time']:.2f}s")
    print(f"   Avg Wait Time: {job_metrics['avg_wait_time']:.2f}s")

    print("\nBinding:")
    print(f"   Jobs per VM: {binding['jobs_per_vm']}")
    print(f"   Transition Cost: {binding['transition_cost']}")

    print(f"\nFinal state: {summary['final_state']}")
    print("="*60)


def print_comparison(results: dict):
    """Print comparison results between binding strategies."""
    print("\n" + "="*70)
    print("BINDING STRATEGY COMPARISON")
    print("="*70)

    print(f"{'Strategy':<24} {'Makespan':<12} {'Imbalance':<12} {'Transitions':<12}")
    print("-" * 70)

    for strategy, analysis in results.items():
        makespan = analysis['job_metrics']['makespan']
        imbalance = analysis['binding_metrics']['load_imbalance']
        transitions = analysis['binding_metrics']['transition_cost']

        print(f"{strategy:<24} {makespan:<12.2f} {imbalance:<12.3f} {transitions:<12}")

    print("="*70)


def main():
    """Main demonstration function."""
    setup_logging("WARNING")
    print("Cloud Broker Simulator Demo")
    print()

    run_baseline_demo()
    run_comparison_demo()

    print("\nDemo completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
