from datetime import datetime, timedelta
from typing import Callable, Optional


class SimClock:
    """
    Tracks wall-clock time and an optional simulated time.

    When a simulated time is set the plant runs in simulation mode and every
    tick advances it by exactly one second; otherwise the wall clock is
    authoritative and ticks simply re-read it.
    """

    def __init__(self, wall_clock: Callable[[], datetime] = None):
        self._wall_clock = wall_clock or datetime.now
        self.wall_now: datetime = self._wall_clock()
        self.simulated_now: Optional[datetime] = None

    @property
    def simulation_mode(self) -> bool:
        return self.simulated_now is not None

    def effective_now(self) -> datetime:
        """Return the authoritative time (simulated if set, else wall clock)."""
        if self.simulated_now is not None:
            return self.simulated_now
        return self.wall_now

    def set_manual_time(self, hour: int, minute: int) -> datetime:
        """Switch to simulation mode at hh:mm on the current wall-clock date."""
        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ValueError(f"Invalid time {hour}:{minute:02d}")
        self.wall_now = self._wall_clock()
        self.simulated_now = self.wall_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        return self.simulated_now

    def reset(self) -> datetime:
        """Return to real-time mode."""
        self.simulated_now = None
        self.wall_now = self._wall_clock()
        return self.wall_now

    def advance(self, delta: timedelta) -> bool:
        """
        Move the authoritative time forward. Switches to simulation mode when
        called in real-time mode. Returns True if the hour rolled over to 0.
        """
        before = self.effective_now()
        self.simulated_now = before + delta
        return crossed_midnight(before, self.simulated_now)

    def advance_one_hour(self) -> bool:
        return self.advance(timedelta(hours=1))

    def tick(self) -> bool:
        """
        Per-second tick. Returns True if this tick crossed from hour 23 into hour 0.
        """
        before = self.effective_now()
        self.wall_now = self._wall_clock()
        if self.simulated_now is not None:
            self.simulated_now = self.simulated_now + timedelta(seconds=1)
        return crossed_midnight(before, self.effective_now())


def crossed_midnight(before: datetime, after: datetime) -> bool:
    return before.hour == 23 and after.hour == 0
