import random
from datetime import datetime, timedelta

import pytest

from assistant import ChatAssistant
from plant import SimulationState, SolarPlantEngine
from settings import SettingsStore

START = datetime(2024, 6, 15, 9, 30, 0)


class FixedClock:
    """Wall clock that only moves when a test moves it."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now


class ScriptedRandom(random.Random):
    """
    Seeded random source whose random() calls can be forced. Queued values
    are served first; integer draws (randint, sample, choice) stay on the
    seeded stream.
    """

    def __init__(self, seed: int = 1234):
        super().__init__(seed)
        self.queue = []

    def random(self):
        if self.queue:
            return self.queue.pop(0)
        return super().random()

    def getrandbits(self, k):
        return super().getrandbits(k)


class OfflineAssistant(ChatAssistant):
    """Assistant whose transport is a canned response list instead of HTTP."""

    def __init__(self, available: bool = True, replies=None):
        super().__init__("http://llm.test")
        self.available = available
        self.replies = list(replies or [])
        self.requests = []

    def _request(self, method, path, payload=None):
        self.requests.append((method, path, payload))
        if not self.available:
            raise OSError("connection refused")
        if path == '/v1/models':
            return 200, {'data': []}
        reply = self.replies.pop(0) if self.replies else "ok"
        if isinstance(reply, tuple):
            return reply
        return 200, {'choices': [{'message': {'content': reply}}]}


def advance(state: SimulationState, seconds: float) -> None:
    state.clock.simulated_now = state.clock.simulated_now + timedelta(seconds=seconds)


@pytest.fixture
def rng():
    return ScriptedRandom()


@pytest.fixture
def state(rng):
    """Plant state in simulation mode at 12:00 with manual environment defaults."""
    sim = SimulationState(rng=rng, wall_clock=FixedClock())
    sim.clock.set_manual_time(12, 0)
    sim.reinitialize()
    return sim


@pytest.fixture
def engine(rng, monkeypatch):
    monkeypatch.delenv("PLANT_CAPACITY_MW", raising=False)
    monkeypatch.delenv("SIMULATION_SPEED", raising=False)
    monkeypatch.delenv("SEED", raising=False)
    eng = SolarPlantEngine(rng=rng, wall_clock=FixedClock())
    eng.set_manual_time(12, 0)
    return eng


@pytest.fixture
def settings_store(tmp_path):
    return SettingsStore(str(tmp_path / "settings.yaml"))
