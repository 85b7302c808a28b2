"""Job (cloudlet) model and synthetic workload generation."""

from typing import List, Optional
from enum import Enum
import numpy as np
from loguru import logger

from .resources import VirtualMachine


class JobStatus(Enum):
    """Lifecycle of a job as seen by the broker."""
    PENDING = "pending"
    SUBMITTED = "submitted"
    COMPLETED = "completed"


class Job:
    """A unit of work with a length (MI) and a PE demand."""

    def __init__(
        self,
        job_id: int,
        length: float,
        num_pes: int = 1,
        user_id: Optional[int] = None,
        vm_id: Optional[int] = None,
        file_size: int = 300,
        output_size: int = 300,
    ):
        if length <= 0:
            raise ValueError(f"Job #{job_id} needs a positive length, got {length}")
        if num_pes < 1:
            raise ValueError(f"Job #{job_id} needs at least one PE, got {num_pes}")

        self.job_id = job_id
        self.length = length
        self.num_pes = num_pes
        self.user_id = user_id
        self.vm_id = vm_id  # None means "any VM"
        self.file_size = file_size
        self.output_size = output_size
        self.status = JobStatus.PENDING

        # Execution tracking
        self.datacenter_id: Optional[int] = None
        self.submission_time: Optional[float] = None
        self.exec_start_time: Optional[float] = None
        self.finish_time: Optional[float] = None

    @property
    def total_length(self) -> float:
        """Length across all PEs of the job."""
        return self.length * self.num_pes

    @property
    def actual_cpu_time(self) -> float:
        if self.exec_start_time is None or self.finish_time is None:
            return 0.0
        return self.finish_time - self.exec_start_time

    def mark_submitted(self, current_time: float, datacenter_id: int) -> None:
        self.status = JobStatus.SUBMITTED
        self.submission_time = current_time
        self.datacenter_id = datacenter_id

    def mark_completed(self) -> None:
        self.status = JobStatus.COMPLETED

    def __repr__(self) -> str:
        return (f"Job(job_id={self.job_id}, length={self.length}, "
                f"vm_id={self.vm_id}, status={self.status.value})")


class WorkloadGenerator:
    """Generates VM and job lists for scenarios.

    Lengths and MIPS ratings get a seeded integer jitter on top of a base
    value, in steps, so runs are reproducible.
    """

    def __init__(self, random_seed: int = 42):
        self.random_seed = random_seed
        self.rng = np.random.default_rng(random_seed)
        logger.info(f"WorkloadGenerator initialized with seed {random_seed}")

    def generate_vms(
        self,
        user_id: int,
        count: int,
        base_mips: float = 100.0,
        mips_step: float = 5.0,
        jitter_levels: int = 10,
        num_pes: int = 1,
        ram: int = 512,
        bw: int = 1000,
        id_shift: int = 0,
    ) -> List[VirtualMachine]:
        """Generate ``count`` VMs with MIPS ``base + k * step``, ``k`` in ``[0, jitter_levels)``."""
        offsets = self.rng.integers(0, max(1, jitter_levels), size=count)
        vms = [
            VirtualMachine(
                vm_id=id_shift + i,
                user_id=user_id,
                mips=base_mips + int(offsets[i]) * mips_step,
                num_pes=num_pes,
                ram=ram,
                bw=bw,
            )
            for i in range(count)
        ]
        logger.info(f"Generated {len(vms)} VMs for user #{user_id}")
        return vms

    def generate_jobs(
        self,
        user_id: int,
        count: int,
        base_length: float = 10000.0,
        length_step: float = 1000.0,
        jitter_levels: int = 10,
        num_pes: int = 1,
        id_shift: int = 0,
    ) -> List[Job]:
        """Generate ``count`` jobs with length ``base + k * step``, ``k`` in ``[0, jitter_levels)``."""
        offsets = self.rng.integers(0, max(1, jitter_levels), size=count)
        jobs = [
            Job(
                job_id=id_shift + i,
                length=base_length + int(offsets[i]) * length_step,
                num_pes=num_pes,
                user_id=user_id,
            )
            for i in range(count)
        ]
        logger.info(f"Generated {len(jobs)} jobs for user #{user_id}")
        return jobs
