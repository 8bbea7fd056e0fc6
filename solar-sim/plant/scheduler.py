import logging
from dataclasses import dataclass
from typing import Callable, List

logger = logging.getLogger("PlantEngine")


@dataclass
class ScheduledJob:
    name: str
    every: int  # ticks (seconds)
    action: Callable[[], None]


class TickScheduler:
    """
    Runs jobs on fixed cadences measured in whole ticks. Jobs due on the same
    tick run in registration order, so registering the clock first and the
    anomaly sweep after the generation update gives the required ordering.
    """

    def __init__(self):
        self._jobs: List[ScheduledJob] = []
        self.tick_count = 0

    def every(self, seconds: int, name: str, action: Callable[[], None]) -> ScheduledJob:
        if seconds < 1:
            raise ValueError(f"Job {name} must run at most once per tick")
        job = ScheduledJob(name, seconds, action)
        self._jobs.append(job)
        return job

    def due(self, tick: int) -> List[ScheduledJob]:
        return [job for job in self._jobs if tick % job.every == 0]

    def run_tick(self) -> List[str]:
        """Advance one tick and run whatever is due. Returns the names of the jobs run."""
        self.tick_count += 1
        ran = []
        for job in self.due(self.tick_count):
            job.action()
            ran.append(job.name)
        return ran
