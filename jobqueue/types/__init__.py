"""
Type definitions for the job queue.
"""

from jobqueue.types.job import Job, SweepResult

__all__ = [
    "Job",
    "SweepResult",
]
