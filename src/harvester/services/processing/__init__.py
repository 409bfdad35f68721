"""
Scrape worker: verifies queued jobs, runs them in a browser and stores results.
"""

from .job_executor import JobExecutor, JobOutcome, JobState

__all__ = ["JobExecutor", "JobOutcome", "JobState"]
