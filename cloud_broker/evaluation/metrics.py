"""Run analysis: job tables, timing statistics and binding quality."""

from typing import Any, Dict, List
import numpy as np
import pandas as pd
from loguru import logger

from ..core.broker import DatacenterBroker
from ..core.workload import Job, JobStatus
from ..scheduling.binding import transition_cost

JOB_COLUMNS = [
    "job_id", "vm_id", "datacenter_id", "status", "length", "num_pes",
    "submission_time", "exec_start_time", "finish_time", "cpu_time", "wait_time",
]


def jobs_to_dataframe(jobs: List[Job]) -> pd.DataFrame:
    """One row per job with its binding and timing."""
    records = []
    for job in jobs:
        wait = None
        if job.submission_time is not None and job.exec_start_time is not None:
            wait = job.exec_start_time - job.submission_time
        records.append({
            "job_id": job.job_id,
            "vm_id": job.vm_id,
            "datacenter_id": job.datacenter_id,
            "status": job.status.value,
            "length": job.length,
            "num_pes": job.num_pes,
            "submission_time": job.submission_time,
            "exec_start_time": job.exec_start_time,
            "finish_time": job.finish_time,
            "cpu_time": job.actual_cpu_time,
            "wait_time": wait,
        })
    return pd.DataFrame.from_records(records, columns=JOB_COLUMNS)


def binding_metrics(order: List[int], bindings: Dict[int, int]) -> Dict[str, Any]:
    """Load spread and transition cost of a binding."""
    if not bindings:
        return {
            'transition_cost': 0,
            'jobs_per_vm': {},
            'vms_used': 0,
            'load_imbalance': 0.0,
        }

    counts = pd.Series(list(bindings.values())).value_counts().sort_index()
    mean = counts.mean()
    return {
        'transition_cost': transition_cost(order, bindings),
        'jobs_per_vm': {int(vm_id): int(n) for vm_id, n in counts.items()},
        'vms_used': int(len(counts)),
        # coefficient of variation of jobs per VM
        'load_imbalance': float(counts.std(ddof=0) / mean) if mean else 0.0,
    }


class MetricsCalculator:
    """Calculator for job timing metrics."""

    def __init__(self):
        self.logger = logger.bind(component="MetricsCalculator")

    def calculate_job_metrics(self, jobs: pd.DataFrame) -> Dict[str, float]:
        completed = jobs[jobs["status"] == JobStatus.COMPLETED.value]
        if completed.empty:
            return {
                'makespan': 0.0,
                'avg_execution_time': 0.0,
                'p95_execution_time': 0.0,
                'avg_wait_time': 0.0,
                'max_wait_time': 0.0,
            }

        cpu_times = completed["cpu_time"].to_numpy(dtype=float)
        wait_times = completed["wait_time"].dropna().to_numpy(dtype=float)
        makespan = completed["finish_time"].max() - completed["submission_time"].min()

        return {
            'makespan': float(makespan),
            'avg_execution_time': float(np.mean(cpu_times)),
            'p95_execution_time': float(np.percentile(cpu_times, 95)),
            'avg_wait_time': float(np.mean(wait_times)) if wait_times.size else 0.0,
            'max_wait_time': float(np.max(wait_times)) if wait_times.size else 0.0,
        }

    def calculate_vm_metrics(self, jobs: pd.DataFrame) -> Dict[int, Dict[str, float]]:
        """Per-VM job count, busy time and last finish."""
        completed = jobs[jobs["status"] == JobStatus.COMPLETED.value]
        if completed.empty:
            return {}
        grouped = completed.groupby("vm_id").agg(
            jobs=("job_id", "count"),
            busy_time=("cpu_time", "sum"),
            last_finish=("finish_time", "max"),
        )
        return {
            int(vm_id): {
                'jobs': int(row["jobs"]),
                'busy_time': float(row["busy_time"]),
                'last_finish': float(row["last_finish"]),
            }
            for vm_id, row in grouped.iterrows()
        }


class SimulationAnalyzer:
    """Analyzer for a finished broker run."""

    def __init__(self):
        self.calculator = MetricsCalculator()
        self.logger = logger.bind(component="SimulationAnalyzer")

    def analyze_run(self, broker: DatacenterBroker) -> Dict[str, Any]:
        # submitted jobs stay listed after they are received
        jobs = broker.jobs_submitted + broker.job_list
        frame = jobs_to_dataframe(jobs)
        self.logger.info(f"Analyzing run of {broker.name}: {len(broker.jobs_received)} of "
                         f"{len(jobs)} job(s) received")

        binding = broker.last_binding
        submitted = broker.jobs_submitted
        analysis = {
            'summary': {
                'broker': broker.name,
                'final_state': broker.state.value,
                'total_jobs': len(jobs),
                'jobs_received': len(broker.jobs_received),
                'jobs_postponed': len(broker.job_list),
                'vms_requested': len(broker.vm_list),
                'vms_destroyed': broker.context.vms_destroyed,
                'binding_rounds': broker.context.binding_rounds,
                'recovery_rounds': broker.context.recovery_rounds,
            },
            'job_metrics': self.calculator.calculate_job_metrics(frame),
            'vm_metrics': self.calculator.calculate_vm_metrics(frame),
            'binding_metrics': binding_metrics(
                [job.job_id for job in submitted],
                {job.job_id: job.vm_id for job in submitted},
            ),
            'last_binding_transition_cost': binding.transition_cost if binding else 0,
            'state_history': [
                {'time': time, 'state': state.value} for time, state in broker.state_history
            ],
            'jobs': frame.to_dict(orient="records"),
        }

        self.logger.info(f"Analysis completed. Makespan: {analysis['job_metrics']['makespan']:.2f}")
        return analysis


def summarize_run(broker: DatacenterBroker) -> Dict[str, Any]:
    """Analyze a finished broker run with the default analyzer."""
    return SimulationAnalyzer().analyze_run(broker)
