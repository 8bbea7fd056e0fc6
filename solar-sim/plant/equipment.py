import logging
import math
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .parameters import SimulationParameters
from .types import EquipmentKind, EquipmentStatus

logger = logging.getLogger("Equipment")

# Fixed plant inventory
EQUIPMENT_COUNTS = {
    EquipmentKind.PANEL: 20,
    EquipmentKind.INVERTER: 5,
    EquipmentKind.BATTERY: 3,
    EquipmentKind.TRANSFORMER: 2,
}


@dataclass(frozen=True)
class ClaimEffect:
    """How an anomaly marks a unit it claims."""
    status: EquipmentStatus
    issue: str
    health_drop: float
    health_floor: float


@dataclass
class Equipment:
    id: str
    name: str
    kind: EquipmentKind
    health: float = 100.0
    status: EquipmentStatus = EquipmentStatus.HEALTHY
    issues: List[str] = field(default_factory=list)
    active_anomaly_id: Optional[int] = None

    @property
    def number(self) -> int:
        return int(self.id.split('-')[1])

    @property
    def claimed(self) -> bool:
        return self.active_anomaly_id is not None

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'name': self.name,
            'kind': self.kind.value,
            'health': round(self.health, 2),
            'status': self.status.value,
            'issues': list(self.issues),
            'active_anomaly_id': self.active_anomaly_id,
        }


class EquipmentRegistry:
    """
    Fixed mapping of equipment id -> unit. Units are created once and only
    mutated afterwards: passive degradation, anomaly claims and repairs.
    """

    def __init__(self, rng: random.Random, params: SimulationParameters):
        self._rng = rng
        self._params = params
        self._units: Dict[str, Equipment] = {}
        for kind, count in EQUIPMENT_COUNTS.items():
            for i in range(1, count + 1):
                unit = Equipment(id=f"{kind.value}-{i}", name=f"{kind.value} {i}", kind=kind)
                unit.health = self._fresh_health()
                self._units[unit.id] = unit

    def _fresh_health(self) -> float:
        return self._rng.uniform(self._params.get('initial_health_min'), 100.0)

    def _repaired_health(self) -> float:
        return self._rng.uniform(self._params.get('repair_health_min'), 100.0)

    def get(self, equipment_id: str) -> Optional[Equipment]:
        return self._units.get(equipment_id)

    def all(self) -> List[Equipment]:
        return list(self._units.values())

    def of_kind(self, kind: EquipmentKind) -> List[Equipment]:
        return [u for u in self._units.values() if u.kind == kind]

    def unclaimed(self, kind: EquipmentKind) -> List[Equipment]:
        return [u for u in self.of_kind(kind) if not u.claimed]

    def __len__(self) -> int:
        return len(self._units)

    def claim(self, equipment_id: str, anomaly_id: int, effect: ClaimEffect,
              health_drop: float = None) -> bool:
        """Attach a unit to an anomaly. Refuses units already claimed."""
        unit = self._units.get(equipment_id)
        if unit is None or unit.claimed:
            return False
        drop = effect.health_drop if health_drop is None else health_drop
        unit.status = effect.status
        unit.issues = [effect.issue]
        unit.active_anomaly_id = anomaly_id
        unit.health = max(effect.health_floor, unit.health - drop)
        return True

    def release(self, equipment_id: str) -> bool:
        """Repair a unit after its anomaly resolves."""
        unit = self._units.get(equipment_id)
        if unit is None:
            return False
        unit.status = EquipmentStatus.HEALTHY
        unit.issues = []
        unit.active_anomaly_id = None
        unit.health = self._repaired_health()
        return True

    def reset_all(self) -> None:
        for unit in self._units.values():
            unit.health = self._fresh_health()
            unit.status = EquipmentStatus.HEALTHY
            unit.issues = []
            unit.active_anomaly_id = None

    def degrade_pass(self) -> List[Equipment]:
        """Wear down a random share of healthy, unclaimed units."""
        threshold = self._params.get('health_trigger_threshold')
        floor = self._params.get('degradation_floor')
        eligible = [
            u for u in self._units.values()
            if u.status == EquipmentStatus.HEALTHY and u.health > threshold and not u.claimed
        ]
        count = math.ceil(len(eligible) * self._params.get('degradation_fraction'))
        selected = self._rng.sample(eligible, count)

        low = self._params.get('degradation_min_step')
        high = self._params.get('degradation_max_step')
        for unit in selected:
            unit.health = max(floor, unit.health - self._rng.uniform(low, high))
        return selected

    def health_check_pass(self, trigger: Callable[[Equipment], Optional[object]]) -> List[object]:
        """
        Hand every healthy, unclaimed unit whose health fell below the trigger
        threshold to `trigger`, which decides whether to spawn an anomaly.
        """
        threshold = self._params.get('health_trigger_threshold')
        spawned = []
        for unit in list(self._units.values()):
            if unit.status == EquipmentStatus.HEALTHY and unit.health < threshold and not unit.claimed:
                result = trigger(unit)
                if result is not None:
                    spawned.append(result)
        return spawned

    def summary(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in EquipmentStatus}
        for unit in self._units.values():
            counts[unit.status.value] += 1
        counts['total'] = len(self._units)
        return counts

    def to_list(self) -> List[Dict]:
        return [u.to_dict() for u in self._units.values()]
