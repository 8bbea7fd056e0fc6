"""
Anomaly lifecycle: spawn, escalate, auto-resolve, manual correction and the
dust-storm cascade.

Each anomaly is Active(escalation 0..max) until it becomes Resolved, either
by the operator or by the auto-timeout. Resolved anomalies stay in the list
as history. Equipment anomalies claim units exclusively; environmental
anomalies push an override into the environment model instead.
"""
import itertools
import logging
import math
import random
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .environment import EnvironmentModel
from .equipment import ClaimEffect, Equipment, EquipmentRegistry
from .events import EventLog
from .parameters import SimulationParameters
from .types import AnomalyType, EquipmentKind, EquipmentStatus, ResolvedBy, Severity

logger = logging.getLogger("AnomalyEngine")


@dataclass(frozen=True)
class AnomalyProfile:
    name: str
    impact_percent: float
    severity: Severity
    max_escalation: int
    equipment_kind: Optional[EquipmentKind] = None
    claim_effect: Optional[ClaimEffect] = None
    # Health drop used when the anomaly is raised by the health monitor
    triggered_health_drop: Optional[float] = None
    override_factor: Optional[str] = None
    override_increase_param: Optional[str] = None


PROFILES: Dict[AnomalyType, AnomalyProfile] = {
    AnomalyType.PANEL_FAULT: AnomalyProfile(
        name="Panel Fault", impact_percent=15.0, severity=Severity.CRITICAL, max_escalation=3,
        equipment_kind=EquipmentKind.PANEL,
        claim_effect=ClaimEffect(EquipmentStatus.FAULTY, "panel fault", 50.0, 20.0),
        triggered_health_drop=30.0,
    ),
    AnomalyType.DUST_ACCUMULATION: AnomalyProfile(
        name="Dust Accumulation", impact_percent=10.0, severity=Severity.WARNING, max_escalation=3,
        equipment_kind=EquipmentKind.PANEL,
        claim_effect=ClaimEffect(EquipmentStatus.DEGRADED, "dust accumulation", 30.0, 20.0),
        triggered_health_drop=25.0,
    ),
    AnomalyType.INVERTER_OVERLOAD: AnomalyProfile(
        name="Inverter Overload", impact_percent=20.0, severity=Severity.CRITICAL, max_escalation=3,
        equipment_kind=EquipmentKind.INVERTER,
        claim_effect=ClaimEffect(EquipmentStatus.FAULTY, "overload detected", 40.0, 30.0),
        triggered_health_drop=40.0,
    ),
    AnomalyType.DUST_STORM: AnomalyProfile(
        name="Dust Storm", impact_percent=30.0, severity=Severity.WARNING, max_escalation=1,
        override_factor='dust_level', override_increase_param='dust_storm_increase',
    ),
    AnomalyType.CLOUD_COVER: AnomalyProfile(
        name="Cloud Cover Spike", impact_percent=40.0, severity=Severity.INFO, max_escalation=1,
        override_factor='cloud_cover', override_increase_param='cloud_spike_increase',
    ),
}

# Panels hit by the dust left behind after a storm
CASCADE_PANELS = (4, 8)
CASCADE_HEALTH_DROP = 25.0
CLAIM_RANGE = (2, 4)


@dataclass
class Anomaly:
    id: int
    type: AnomalyType
    name: str
    location: str
    impact_percent: float
    severity: Severity
    created_at: datetime
    last_escalation_at: datetime
    active: bool = True
    escalation_level: int = 0
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[ResolvedBy] = None

    @property
    def profile(self) -> AnomalyProfile:
        return PROFILES[self.type]

    @property
    def max_escalation(self) -> int:
        return self.profile.max_escalation

    @property
    def affected_equipment_ids(self) -> List[str]:
        return []

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'type': self.type.value,
            'name': self.name,
            'location': self.location,
            'impact_percent': self.impact_percent,
            'severity': self.severity.value,
            'created_at': self.created_at.isoformat(),
            'active': self.active,
            'escalation_level': self.escalation_level,
            'last_escalation_at': self.last_escalation_at.isoformat(),
            'affected_equipment_ids': list(self.affected_equipment_ids),
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'resolved_by': self.resolved_by.value if self.resolved_by else None,
            'environmental': self.type.is_environmental,
        }


@dataclass
class EquipmentAnomaly(Anomaly):
    """Panel fault, dust accumulation or inverter overload; claims units."""
    claimed_ids: List[str] = field(default_factory=list)
    caused_by: Optional[AnomalyType] = None

    @property
    def affected_equipment_ids(self) -> List[str]:
        return self.claimed_ids

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data['caused_by'] = self.caused_by.value if self.caused_by else None
        return data


@dataclass
class EnvironmentalAnomaly(Anomaly):
    """Dust storm or cloud spike; forces an environment override instead of claiming units."""
    override_factor: str = 'dust_level'
    override_value: float = 0.0

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data['override_factor'] = self.override_factor
        data['override_value'] = self.override_value
        return data


class AnomalyEngine:
    """Spawns, escalates and resolves anomalies against the shared plant state."""

    def __init__(self,
                 equipment: EquipmentRegistry,
                 environment: EnvironmentModel,
                 events: EventLog,
                 rng: random.Random,
                 params: SimulationParameters,
                 now: Callable[[], datetime]):
        self._equipment = equipment
        self._environment = environment
        self._events = events
        self._rng = rng
        self._params = params
        self._now = now
        self._ids = itertools.count(1)
        self.anomalies: List[Anomaly] = []

    # --- Queries ---

    def get(self, anomaly_id: int) -> Optional[Anomaly]:
        for anomaly in self.anomalies:
            if anomaly.id == anomaly_id:
                return anomaly
        return None

    def active(self) -> List[Anomaly]:
        return [a for a in self.anomalies if a.active]

    def claim_conflicts(self) -> List[str]:
        """Equipment ids referenced by more than one active anomaly (should always be empty)."""
        counts = Counter(eid for a in self.active() for eid in a.affected_equipment_ids)
        return [eid for eid, n in counts.items() if n > 1]

    def clear(self) -> None:
        """Erase all anomalies (reinitialization, not resolution)."""
        self.anomalies = []

    # --- Spawning ---

    def spawn(self, anomaly_type: AnomalyType) -> Anomaly:
        """Operator-requested anomaly."""
        profile = PROFILES[anomaly_type]
        now = self._now()

        if anomaly_type.is_environmental:
            anomaly = self._spawn_environmental(anomaly_type, profile, now)
        else:
            low, high = CLAIM_RANGE
            anomaly = self._new_equipment_anomaly(anomaly_type, profile, now)
            candidates = self._equipment.unclaimed(profile.equipment_kind)
            wanted = min(self._rng.randint(low, high), len(candidates))
            for unit in self._rng.sample(candidates, wanted):
                self._claim(anomaly, unit)
            if not anomaly.claimed_ids:
                logger.warning(f"{profile.name} spawned with no free {profile.equipment_kind.value.lower()}s to claim")
            anomaly.location = self._location_for(anomaly)

        self._register(anomaly)
        self._events.alert(f"Anomaly generated: {anomaly.name} at {anomaly.location}", anomaly.severity)
        self._events.record(f"Anomaly generated: {anomaly.name}", 'anomaly')
        return anomaly

    def spawn_for_equipment(self, anomaly_type: AnomalyType, unit: Equipment) -> Optional[Anomaly]:
        """Health-monitor anomaly claiming exactly the unit that tripped the threshold."""
        profile = PROFILES[anomaly_type]
        if profile.equipment_kind is None or unit.kind != profile.equipment_kind or unit.claimed:
            return None
        health = unit.health
        anomaly = self._new_equipment_anomaly(anomaly_type, profile, self._now())
        self._claim(anomaly, unit, profile.triggered_health_drop)
        anomaly.location = self._location_for(anomaly)
        self._register(anomaly)

        self._events.alert(
            f"Auto-generated {anomaly_type.value} for {unit.name} (health dropped to {health:.1f}%)",
            Severity.WARNING
        )
        self._events.record(
            f"Auto-generated {anomaly_type.value} for {unit.id} (health: {health:.1f}%)", 'anomaly'
        )
        return anomaly

    def health_trigger(self, unit: Equipment) -> Optional[Anomaly]:
        """Pick an anomaly type for a unit whose health dropped below threshold."""
        if unit.kind == EquipmentKind.PANEL:
            # 70% dust, 30% fault
            if self._rng.random() > 0.3:
                anomaly_type = AnomalyType.DUST_ACCUMULATION
            else:
                anomaly_type = AnomalyType.PANEL_FAULT
        elif unit.kind == EquipmentKind.INVERTER:
            anomaly_type = AnomalyType.INVERTER_OVERLOAD
        else:
            return None
        return self.spawn_for_equipment(anomaly_type, unit)

    def _spawn_environmental(self, anomaly_type: AnomalyType, profile: AnomalyProfile,
                             now: datetime) -> EnvironmentalAnomaly:
        factor = profile.override_factor
        base = getattr(self._environment.base_factors(), factor)
        value = min(100.0, base + self._params.get(profile.override_increase_param))
        value = self._environment.apply_override(factor, value)
        location = "Entire facility" if anomaly_type == AnomalyType.DUST_STORM else "Regional"
        return EnvironmentalAnomaly(
            id=next(self._ids), type=anomaly_type, name=profile.name, location=location,
            impact_percent=profile.impact_percent, severity=profile.severity,
            created_at=now, last_escalation_at=now,
            override_factor=factor, override_value=value,
        )

    def _spawn_cascade(self, storm: Anomaly) -> EquipmentAnomaly:
        profile = PROFILES[AnomalyType.DUST_ACCUMULATION]
        anomaly = self._new_equipment_anomaly(AnomalyType.DUST_ACCUMULATION, profile, self._now())
        anomaly.location = "Multiple Sections"
        anomaly.caused_by = storm.type

        candidates = self._equipment.unclaimed(EquipmentKind.PANEL)
        wanted = min(self._rng.randint(*CASCADE_PANELS), len(candidates))
        for unit in self._rng.sample(candidates, wanted):
            self._claim(anomaly, unit, CASCADE_HEALTH_DROP)
        self._register(anomaly)

        count = len(anomaly.claimed_ids)
        self._events.alert(f"Dust accumulation detected on {count} panels after dust storm", Severity.WARNING)
        self._events.record(f"Dust accumulation anomaly generated after dust storm on {count} panels", 'anomaly')
        return anomaly

    def _new_equipment_anomaly(self, anomaly_type: AnomalyType, profile: AnomalyProfile,
                               now: datetime) -> EquipmentAnomaly:
        return EquipmentAnomaly(
            id=next(self._ids), type=anomaly_type, name=profile.name, location="",
            impact_percent=profile.impact_percent, severity=profile.severity,
            created_at=now, last_escalation_at=now,
        )

    def _claim(self, anomaly: EquipmentAnomaly, unit: Equipment, health_drop: float = None) -> None:
        if self._equipment.claim(unit.id, anomaly.id, anomaly.profile.claim_effect, health_drop):
            anomaly.claimed_ids.append(unit.id)

    def _location_for(self, anomaly: EquipmentAnomaly) -> str:
        if anomaly.type == AnomalyType.INVERTER_OVERLOAD:
            if anomaly.claimed_ids:
                return ", ".join(self._equipment.get(eid).name for eid in anomaly.claimed_ids)
            return "Inverter bank"
        row = self._rng.randint(1, 8)
        col = self._rng.randint(1, 8)
        return f"Section {row}-{col}"

    def _register(self, anomaly: Anomaly) -> None:
        self.anomalies.append(anomaly)
        conflicts = self.claim_conflicts()
        if conflicts:
            logger.error(f"Equipment claimed by more than one active anomaly: {conflicts}")
        logger.info(f"Anomaly {anomaly.id} spawned: {anomaly.name} at {anomaly.location}")

    # --- Lifecycle sweep ---

    def check(self, now: datetime = None) -> List[Anomaly]:
        """
        Evaluate every active anomaly. The auto-resolve timeout is checked
        before escalation so an anomaly exactly at the limit resolves.
        Returns the anomalies resolved in this sweep.
        """
        now = now or self._now()
        timeout = self._params.get('auto_resolve_seconds')
        resolved = []
        for anomaly in self.active():
            age = anomaly.age_seconds(now)
            if age >= timeout:
                self._resolve(anomaly, ResolvedBy.AUTO_TIMEOUT, now)
                resolved.append(anomaly)
                continue
            self._escalate(anomaly, now)
        return resolved

    def _escalate(self, anomaly: Anomaly, now: datetime) -> None:
        interval = timedelta(seconds=self._params.get('escalation_interval_seconds'))
        timeout = self._params.get('auto_resolve_seconds')
        while anomaly.escalation_level < anomaly.max_escalation and now - anomaly.last_escalation_at >= interval:
            anomaly.escalation_level += 1
            anomaly.last_escalation_at = anomaly.last_escalation_at + interval
            age = anomaly.age_seconds(anomaly.last_escalation_at)
            minutes = math.floor(age / 60)

            if anomaly.type.is_environmental:
                self._events.alert(f"{anomaly.name} ongoing for {minutes} minutes - Environmental condition",
                                   Severity.WARNING)
            elif anomaly.escalation_level == 1:
                self._events.alert(f"ESCALATION: {anomaly.name} has been active for {minutes} minutes",
                                   Severity.WARNING)
            elif anomaly.escalation_level == 2:
                self._events.alert(f"CRITICAL ESCALATION: {anomaly.name} requires immediate attention!",
                                   Severity.CRITICAL)
            else:
                remaining = math.ceil((timeout - age) / 60)
                self._events.alert(f"MAXIMUM ESCALATION: {anomaly.name} will auto-correct in {remaining} minutes",
                                   Severity.CRITICAL)
            self._events.record(f"Anomaly escalated: {anomaly.name} - Level {anomaly.escalation_level}",
                                'escalation')

    def correct(self, anomaly_id: int) -> bool:
        """Operator correction. Unknown or already-resolved ids are a silent no-op."""
        anomaly = self.get(anomaly_id)
        if anomaly is None or not anomaly.active:
            return False
        self._resolve(anomaly, ResolvedBy.USER, self._now())
        return True

    def _resolve(self, anomaly: Anomaly, resolved_by: ResolvedBy, now: datetime) -> None:
        anomaly.active = False
        anomaly.resolved_at = now
        anomaly.resolved_by = resolved_by

        timeout = int(self._params.get('auto_resolve_seconds'))
        if resolved_by == ResolvedBy.USER:
            self._events.alert(f"Anomaly corrected: {anomaly.name}", Severity.INFO)
            self._events.record(f"Anomaly manually corrected: {anomaly.name}", 'resolution')
        elif anomaly.type.is_environmental:
            self._events.alert(f"Environmental condition cleared: {anomaly.name}", Severity.INFO)
            self._events.record(f"Environmental anomaly cleared after {timeout} seconds: {anomaly.name}",
                                'resolution')
        else:
            self._events.alert(f"Anomaly auto-corrected after timeout: {anomaly.name}", Severity.INFO)
            self._events.record(f"Anomaly auto-corrected after {timeout} seconds: {anomaly.name}", 'resolution')

        if isinstance(anomaly, EnvironmentalAnomaly):
            still_active = any(a.type == anomaly.type for a in self.active())
            if not still_active:
                self._environment.clear_override(anomaly.override_factor)
            if anomaly.type == AnomalyType.DUST_STORM:
                self._spawn_cascade(anomaly)
        else:
            for equipment_id in anomaly.affected_equipment_ids:
                self._equipment.release(equipment_id)
        logger.info(f"Anomaly {anomaly.id} resolved by {resolved_by.value}: {anomaly.name}")
