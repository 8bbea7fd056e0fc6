import logging
import random
from datetime import datetime
from typing import Callable, Dict

from .anomalies import AnomalyEngine
from .clock import SimClock
from .drone import DroneScanner
from .environment import EnvironmentModel
from .equipment import EquipmentRegistry
from .events import EventLog
from .generation import GenerationState, instantaneous_generation
from .parameters import SimulationParameters

logger = logging.getLogger("PlantEngine")


class SimulationState:
    """
    The single mutable aggregate shared by every plant component.

    Components receive the collaborators they need from here at construction
    time; nothing in the core keeps module-level state.
    """

    def __init__(self,
                 rng: random.Random = None,
                 params: SimulationParameters = None,
                 wall_clock: Callable[[], datetime] = None,
                 environment: EnvironmentModel = None):
        self.rng = rng or random.Random()
        self.params = params or SimulationParameters()
        self.clock = SimClock(wall_clock)
        self.events = EventLog(self.clock.effective_now)
        self.environment = environment or EnvironmentModel()
        self.equipment = EquipmentRegistry(self.rng, self.params)
        self.generation = GenerationState(last_update=self.clock.effective_now())
        self.anomalies = AnomalyEngine(
            self.equipment, self.environment, self.events, self.rng, self.params, self.clock.effective_now
        )
        self.drone = DroneScanner(self.equipment, self.anomalies, self.events, self.rng)
        self.session_start = self.clock.effective_now()

    def now(self) -> datetime:
        return self.clock.effective_now()

    def compute_generation(self) -> float:
        """Instantaneous output for the current time, environment and anomalies."""
        params = self.params
        return instantaneous_generation(
            self.now(),
            params.get('capacity_mw'),
            self.environment.effective_factors(),
            self.anomalies.active(),
            temp_coeff=params.get('temp_derate_per_deg'),
            dust_coeff=params.get('dust_derate_max'),
            cloud_coeff=params.get('cloud_derate_max'),
        )

    def update_generation(self) -> bool:
        """Recompute output and integrate the daily total. Returns True on a midnight reset."""
        return self.generation.update(self.now(), self.compute_generation())

    def refresh_generation(self) -> float:
        """Recompute the instantaneous value only (after operator actions)."""
        self.generation.instantaneous_mw = self.compute_generation()
        return self.generation.instantaneous_mw

    def reinitialize(self, preserve_logs: bool = False) -> None:
        """
        Restart the plant as if it had just started operating at the current
        authoritative time. Anomalies are erased, not resolved.
        """
        now = self.now()
        self.generation.reset(now)
        self.anomalies.clear()
        self.equipment.reset_all()
        if self.environment.manual_control:
            self.environment.reset_manual_defaults()
        self.environment.overrides.clear()
        self.drone.reset()
        if not preserve_logs:
            self.events.clear()
            self.session_start = now
        self.events.record(f"System initialized at {now:%H:%M:%S}", 'system')
        logger.info(f"Plant state reinitialized at {now:%Y-%m-%d %H:%M:%S} (logs preserved: {preserve_logs})")

    def snapshot(self) -> Dict:
        now = self.now()
        capacity = self.params.get('capacity_mw')
        active = self.anomalies.active()
        return {
            'time': now.isoformat(),
            'simulation_mode': self.clock.simulation_mode,
            'generation': {
                'instantaneous_mw': round(self.generation.instantaneous_mw, 3),
                'daily_cumulative_mwh': round(self.generation.daily_cumulative_mwh, 3),
                'capacity_mw': capacity,
                'percent_of_capacity': round(self.generation.instantaneous_mw / capacity * 100, 1),
            },
            'environment': self.environment.snapshot(),
            'equipment_summary': self.equipment.summary(),
            'active_anomalies': len(active),
            'total_anomalies': len(self.anomalies.anomalies),
            'drone': self.drone.snapshot(),
            'log_count': self.events.counter(),
        }
