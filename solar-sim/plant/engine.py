import os
import time
import threading
import logging
import random
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from interfaces import SimulationEngine, SnapshotProvider, StateObserver
from .anomalies import Anomaly
from .environment import EnvironmentModel
from .parameters import SimulationParameters
from .scheduler import TickScheduler
from .state import SimulationState
from .types import AnomalyType, Severity

logger = logging.getLogger("PlantEngine")

ANOMALY_EVENTS = (
    ("System performance degraded due to active anomalies", Severity.WARNING),
    ("Monitoring active anomalies for changes", Severity.INFO),
    ("Maintenance team notified of ongoing issues", Severity.INFO),
)

NORMAL_EVENTS = (
    ("System operating normally", Severity.INFO),
    ("Maintenance check scheduled", Severity.INFO),
    ("Grid synchronization stable", Severity.INFO),
)


class SolarPlantEngine(SimulationEngine, SnapshotProvider):
    """
    Drives the plant simulation: one tick per simulated second on a
    background thread, plus the operator actions exposed to the API.
    Every tick and action runs to completion under a single lock.
    """

    def __init__(self,
                 state: SimulationState = None,
                 rng: random.Random = None,
                 params: SimulationParameters = None,
                 wall_clock: Callable[[], datetime] = None,
                 environment: EnvironmentModel = None,
                 location_name: str = None):
        self._seed: str = os.environ.get("SEED", "")
        if rng is None and state is None:
            rng = random.Random(self._seed) if self._seed else random.Random()
        self._state = state or SimulationState(rng=rng, params=params, wall_clock=wall_clock,
                                               environment=environment)

        capacity = os.environ.get("PLANT_CAPACITY_MW")
        if capacity and params is None and state is None:
            self._state.params.set('capacity_mw', float(capacity))

        self._simulation_speed: float = max(0.1, min(100.0, float(os.environ.get("SIMULATION_SPEED", "1.0"))))
        self._location_name: str = location_name or os.environ.get("LOCATION_NAME", "Rajasthan, India")

        self._running = False
        self._thread = None
        self._lock = threading.Lock()
        self._observers: List[StateObserver] = []
        self._pending_midnight = False

        self._scheduler = TickScheduler()
        # Registration order is execution order within a tick
        self._scheduler.every(1, 'clock', self._clock_pass)
        self._scheduler.every(10, 'environment', self._environment_pass)
        self._scheduler.every(1, 'generation', self._generation_pass)
        self._scheduler.every(10, 'anomalies', self._anomaly_pass)
        self._scheduler.every(10, 'health', self._health_pass)
        self._scheduler.every(15, 'random-events', self._random_event_pass)
        self._scheduler.every(60, 'degradation', self._degradation_pass)
        self._scheduler.every(1, 'drone', self._drone_pass)

        self._state.update_generation()
        self._state.events.record("System initialized", 'info')
        logger.info(f"Solar plant engine ready: {self._state.params.get('capacity_mw'):.0f} MW "
                    f"at {self._location_name}")

    @property
    def state(self) -> SimulationState:
        return self._state

    @property
    def location_name(self) -> str:
        return self._location_name

    @property
    def simulation_speed(self) -> float:
        return self._simulation_speed

    @property
    def seed(self) -> str:
        return self._seed

    # --- Observers ---

    def subscribe(self, observer: StateObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: StateObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self, snapshot: Dict[str, Any]) -> None:
        for observer in list(self._observers):
            try:
                observer.on_state_changed(snapshot)
            except Exception as e:
                logger.error(f"Observer {type(observer).__name__} failed: {e}")

    def _run_action(self, action: Callable[[], Any]) -> Any:
        """Execute an operator action atomically, then publish the new state."""
        with self._lock:
            result = action()
            snapshot = self._state.snapshot()
        self._notify(snapshot)
        return result

    # --- Tick loop ---

    def start(self) -> None:
        """Start the tick loop."""
        self._running = True
        self._thread = threading.Thread(target=self._tick_loop, daemon=True)
        self._thread.start()
        logger.info("Plant Engine Started")

    def stop(self) -> None:
        """Stop the tick loop."""
        self._running = False
        if self._thread:
            self._thread.join()
            self._thread = None
        logger.info("Plant Engine Stopped")

    def _tick_loop(self) -> None:
        while self._running:
            start_time = time.time()
            try:
                self.step()
            except Exception as e:
                logger.error(f"Tick {self._scheduler.tick_count} failed: {e}")
            elapsed = time.time() - start_time
            time.sleep(max(0.01, 1.0 / self._simulation_speed - elapsed))

    def step(self) -> List[str]:
        """Run one tick synchronously. Returns the names of the jobs that ran."""
        with self._lock:
            ran = self._scheduler.run_tick()
            snapshot = self._state.snapshot()
        self._notify(snapshot)
        return ran

    def run_ticks(self, count: int) -> None:
        for _ in range(count):
            self.step()

    def _clock_pass(self) -> None:
        if self._state.clock.tick():
            self._pending_midnight = True

    def _environment_pass(self) -> None:
        self._state.environment.background_tick(self._state.now(), self._state.rng)

    def _generation_pass(self) -> None:
        reset = self._state.update_generation()
        self._finish_midnight(reset)

    def _finish_midnight(self, reset: bool) -> None:
        crossed = self._pending_midnight
        self._pending_midnight = False
        if crossed and not reset:
            self._state.generation.daily_cumulative_mwh = 0.0
            reset = True
        if reset:
            self._state.events.alert("Midnight - Daily cumulative reset", Severity.INFO)

    def _anomaly_pass(self) -> None:
        self._state.anomalies.check(self._state.now())

    def _health_pass(self) -> None:
        self._state.equipment.health_check_pass(self._state.anomalies.health_trigger)

    def _degradation_pass(self) -> None:
        degraded = self._state.equipment.degrade_pass()
        if degraded:
            logger.debug(f"Passive degradation applied to {len(degraded)} units")

    def _drone_pass(self) -> None:
        self._state.drone.step(self._state.now())

    def _random_event_pass(self) -> None:
        rng = self._state.rng
        events = self._state.events
        if self._state.anomalies.active():
            if rng.random() > 0.8:
                message, severity = rng.choice(ANOMALY_EVENTS)
                events.alert(message, severity)
            return

        factors = self._state.environment.effective_factors()
        pool = list(NORMAL_EVENTS)
        if factors.temperature > 35:
            pool.append(("Temperature rising above optimal", Severity.WARNING))
        if factors.dust_level > 30:
            pool.append(("Dust accumulation detected", Severity.WARNING))
        if factors.temperature <= 30 and factors.dust_level <= 20:
            pool.append(("Operating conditions optimal", Severity.INFO))

        if rng.random() > 0.7:
            message, severity = rng.choice(pool)
            events.alert(message, severity)

    # --- Time actions ---

    def set_manual_time(self, hour: int, minute: int) -> datetime:
        """Enter simulation mode at hh:mm and restart the plant from that moment."""
        def action():
            now = self._state.clock.set_manual_time(hour, minute)
            self._state.reinitialize(preserve_logs=True)
            self._state.events.alert(f"System initialized with simulation time {hour}:{minute:02d}", Severity.INFO)
            self._state.update_generation()
            return now
        return self._run_action(action)

    def reset_time(self) -> datetime:
        """Return to real-time mode and restart the plant."""
        def action():
            now = self._state.clock.reset()
            self._state.reinitialize(preserve_logs=True)
            self._state.events.alert("System initialized with current time - Real-time mode active", Severity.INFO)
            self._state.update_generation()
            return now
        return self._run_action(action)

    def advance_one_hour(self) -> datetime:
        """Jump forward one hour without reinitializing anything."""
        def action():
            self._pending_midnight = self._state.clock.advance_one_hour()
            self._finish_midnight(self._state.update_generation())
            now = self._state.now()
            self._state.events.record(f"Time advanced to {now:%H:%M}", 'system')
            self._state.events.alert(f"Time advanced to {now:%H:%M}", Severity.INFO)
            return now
        return self._run_action(action)

    # --- Environment actions ---

    def set_manual_control(self, enabled: bool) -> None:
        def action():
            self._state.environment.set_manual_control(enabled)
            if enabled:
                self._state.events.alert("Manual environmental control enabled", Severity.INFO)
                self._state.events.record("Manual environmental control enabled", 'control')
            else:
                self._state.events.alert("Returned to automatic simulation", Severity.INFO)
                self._state.events.record("Manual environmental control disabled", 'control')
            self._state.refresh_generation()
        self._run_action(action)

    def set_factor(self, name: str, value: float) -> bool:
        """Direct factor input; returns False when manual control is off."""
        return self.set_factors({name: value})

    def set_factors(self, values: Dict[str, float]) -> bool:
        """
        Apply direct factor inputs as one action. Raises ValueError for an
        unknown factor or an out-of-range value, leaving the state untouched.
        """
        def action():
            accepted = self._state.environment.set_factors(values)
            if accepted:
                self._state.refresh_generation()
            return accepted
        return self._run_action(action)

    def reset_environment(self) -> None:
        def action():
            self._state.environment.reset_to_simulated()
            self._state.events.alert("Environmental factors reset to simulation values", Severity.INFO)
            self._state.events.record("Environmental factors reset", 'control')
            self._state.refresh_generation()
        self._run_action(action)

    # --- Anomaly actions ---

    def generate_anomaly(self, anomaly_type: str) -> Anomaly:
        """Spawn an anomaly by wire name. Raises ValueError for an unknown type."""
        kind = AnomalyType.from_name(anomaly_type)

        def action():
            anomaly = self._state.anomalies.spawn(kind)
            self._state.refresh_generation()
            return anomaly
        return self._run_action(action)

    def correct_anomaly(self, anomaly_id: int) -> bool:
        def action():
            corrected = self._state.anomalies.correct(anomaly_id)
            if corrected:
                self._state.refresh_generation()
            return corrected
        return self._run_action(action)

    # --- Tuning ---

    def update_parameters(self, values: Dict[str, Any]) -> Dict[str, bool]:
        """
        Apply simulation parameter changes atomically. Raises ValueError or
        TypeError for a non-numeric value before anything is applied.
        """
        numeric = {key: float(value) for key, value in values.items()}

        def action():
            results = self._state.params.set_multiple(numeric)
            self._state.refresh_generation()
            return results
        return self._run_action(action)

    # --- Drone ---

    def start_drone_scan(self) -> bool:
        def action():
            dust = self._state.environment.effective_factors().dust_level
            return self._state.drone.start(self._state.now(), dust)
        return self._run_action(action)

    # --- Views ---

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self._state.snapshot()

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            status = self._state.snapshot()
        status['location_name'] = self._location_name
        status['simulation_speed'] = self._simulation_speed
        status['seed'] = self._seed
        status['tick'] = self._scheduler.tick_count
        return status

    def get_equipment(self) -> List[Dict]:
        with self._lock:
            return self._state.equipment.to_list()

    def get_anomalies(self, active_only: bool = False) -> List[Dict]:
        with self._lock:
            anomalies = self._state.anomalies.active() if active_only else self._state.anomalies.anomalies
            return [a.to_dict() for a in anomalies]

    def get_environment(self) -> Dict[str, Any]:
        with self._lock:
            return self._state.environment.snapshot()

    def get_alerts(self, limit: int = 20) -> List[Dict]:
        with self._lock:
            return [e.to_dict() for e in self._state.events.alerts(limit)]

    def get_logs(self, count: int = 50) -> List[Dict]:
        with self._lock:
            return [e.to_dict() for e in self._state.events.recent(count)]

    def get_drone(self) -> Dict[str, Any]:
        with self._lock:
            return self._state.drone.snapshot()

    def read_state(self, reader: Callable[[SimulationState], Any]) -> Any:
        """Run a read-only function against the state under the plant lock."""
        with self._lock:
            return reader(self._state)

    def record_event(self, message: str, category: str = 'info') -> None:
        with self._lock:
            self._state.events.record(message, category)

    def raise_alert(self, message: str, severity: Severity = Severity.INFO) -> None:
        with self._lock:
            self._state.events.alert(message, severity)
