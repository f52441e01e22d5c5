from . import jobs, processor, scheduler

__all__ = ["jobs", "processor", "scheduler"]
