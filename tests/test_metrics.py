"""
Tests for run analysis metrics.
"""
import pytest

from cloud_broker.core.simulator import BrokerSimulation
from cloud_broker.evaluation.metrics import (
    JOB_COLUMNS,
    MetricsCalculator,
    binding_metrics,
    jobs_to_dataframe,
    summarize_run,
)
from cloud_broker.utils.config import Config
from test_utils import create_test_jobs


def test_jobs_to_dataframe_columns_and_wait_time():
    jobs = create_test_jobs([100, 200])
    jobs[0].mark_submitted(1.0, 3)
    jobs[0].vm_id = 0
    jobs[0].exec_start_time = 2.5
    jobs[0].finish_time = 4.0
    jobs[0].mark_completed()

    frame = jobs_to_dataframe(jobs)
    assert list(frame.columns) == JOB_COLUMNS
    assert len(frame) == 2
    first = frame.iloc[0]
    assert first["status"] == "completed"
    assert first["wait_time"] == pytest.approx(1.5)
    assert first["cpu_time"] == pytest.approx(1.5)
    assert frame.iloc[1]["status"] == "pending"


def test_jobs_to_dataframe_empty():
    frame = jobs_to_dataframe([])
    assert frame.empty
    assert list(frame.columns) == JOB_COLUMNS


def test_binding_metrics():
    metrics = binding_metrics([0, 1, 2, 3], {0: 0, 1: 0, 2: 1, 3: 1})
    assert metrics['transition_cost'] == 1
    assert metrics['jobs_per_vm'] == {0: 2, 1: 2}
    assert metrics['vms_used'] == 2
    assert metrics['load_imbalance'] == pytest.approx(0.0)

    skewed = binding_metrics([0, 1, 2, 3], {0: 0, 1: 0, 2: 0, 3: 1})
    assert skewed['load_imbalance'] == pytest.approx(0.5)


def test_binding_metrics_empty():
    assert binding_metrics([], {})['vms_used'] == 0


def test_job_metrics_without_completions_are_zero():
    calculator = MetricsCalculator()
    assert calculator.calculate_job_metrics(jobs_to_dataframe(create_test_jobs([10])))['makespan'] == 0.0
    assert calculator.calculate_vm_metrics(jobs_to_dataframe([])) == {}


def test_summarize_finished_run():
    simulation = BrokerSimulation(Config())
    broker = simulation.run()
    analysis = summarize_run(broker)

    summary = analysis['summary']
    assert summary['final_state'] == "done"
    assert summary['total_jobs'] == 20
    assert summary['jobs_received'] == 20
    assert summary['jobs_postponed'] == 0
    assert analysis['job_metrics']['makespan'] > 0
    assert sum(row['jobs'] for row in analysis['vm_metrics'].values()) == 20
    assert analysis['binding_metrics']['vms_used'] == 5
    assert analysis['state_history'][-1]['state'] == "done"
    assert len(analysis['jobs']) == 20
