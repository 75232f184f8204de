from .recurrence import run_recurrence_tick, run_recurrence_tick_job

__all__ = [
    "run_recurrence_tick",
    "run_recurrence_tick_job",
]
"""Background job modules for RQ workers and schedulers."""
