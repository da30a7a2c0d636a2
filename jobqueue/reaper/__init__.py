"""
Reaper module.
Contains the maintenance loop for abandoned and finished jobs.
"""

from jobqueue.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
