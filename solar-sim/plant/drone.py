import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .anomalies import AnomalyEngine
from .equipment import EquipmentRegistry
from .events import EventLog
from .types import EquipmentKind, EquipmentStatus, Severity

logger = logging.getLogger("DroneScan")

DAMAGE_HEALTH_THRESHOLD = 70.0
DETAIL_ALERT_LIMIT = 3


@dataclass
class DroneReport:
    timestamp: datetime
    duration_seconds: float
    panels_scanned: int
    issues_found: List[str]
    observations: List[str]
    dust_level: float

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'duration_seconds': round(self.duration_seconds, 1),
            'panels_scanned': self.panels_scanned,
            'issues_found': list(self.issues_found),
            'observations': list(self.observations),
            'dust_level': round(self.dust_level, 1),
        }


@dataclass
class DroneScan:
    """Progress of a sweep that inspects one panel per tick."""
    started_at: datetime
    dust_level: float
    position: int = 0
    issues: List[str] = field(default_factory=list)
    observations: List[str] = field(default_factory=list)


class DroneScanner:
    """Flies over the panel field one panel per second and reports what it sees."""

    def __init__(self, equipment: EquipmentRegistry, anomalies: AnomalyEngine,
                 events: EventLog, rng: random.Random):
        self._equipment = equipment
        self._anomalies = anomalies
        self._events = events
        self._rng = rng
        self.current: Optional[DroneScan] = None
        self.last_report: Optional[DroneReport] = None

    @property
    def scanning(self) -> bool:
        return self.current is not None

    def _panels(self):
        return sorted(self._equipment.of_kind(EquipmentKind.PANEL), key=lambda u: u.number)

    def start(self, now: datetime, dust_level: float) -> bool:
        if self.scanning:
            return False
        self.current = DroneScan(started_at=now, dust_level=dust_level)
        self._events.alert("Drone scan initiated - Scanning all solar panels", Severity.INFO)
        self._events.record("Drone scan started", 'scan')
        logger.info(f"Drone scan started (dust snapshot {dust_level:.1f}%)")
        return True

    def step(self, now: datetime) -> Optional[DroneReport]:
        """Inspect the next panel. Returns the report when the sweep completes."""
        scan = self.current
        if scan is None:
            return None

        panels = self._panels()
        if scan.position < len(panels):
            self._inspect(scan, panels[scan.position])
            scan.position += 1
        if scan.position >= len(panels):
            return self._finish(scan, now)
        return None

    def _inspect(self, scan: DroneScan, panel) -> None:
        found = []
        if panel.status == EquipmentStatus.FAULTY or panel.health < DAMAGE_HEALTH_THRESHOLD:
            found.append(f"{panel.name}: Potential damage detected (Health: {panel.health:.1f}%)")

        if scan.dust_level > 40 and self._rng.random() > 0.7:
            scan.observations.append(f"{panel.name}: Heavy dust accumulation")
        elif scan.dust_level > 20 and self._rng.random() > 0.8:
            scan.observations.append(f"{panel.name}: Moderate dust accumulation")

        if panel.claimed:
            anomaly = self._anomalies.get(panel.active_anomaly_id)
            if anomaly is not None and anomaly.active:
                found.append(f"{panel.name}: Affected by {anomaly.name}")

        if found:
            scan.issues.extend(found)
            self._events.alert(f"Drone scan: issues found on {panel.name}", Severity.WARNING)

    def _finish(self, scan: DroneScan, now: datetime) -> DroneReport:
        report = DroneReport(
            timestamp=now,
            duration_seconds=(now - scan.started_at).total_seconds(),
            panels_scanned=scan.position,
            issues_found=list(scan.issues),
            observations=list(scan.observations),
            dust_level=scan.dust_level,
        )
        self.last_report = report
        self.current = None

        issue_count = len(report.issues_found)
        if issue_count:
            self._events.alert(
                f"Drone scan complete: {issue_count} issues found across {report.panels_scanned} panels",
                Severity.WARNING
            )
            for issue in report.issues_found[:DETAIL_ALERT_LIMIT]:
                self._events.alert(issue, Severity.WARNING)
            if issue_count > DETAIL_ALERT_LIMIT:
                self._events.alert(f"...and {issue_count - DETAIL_ALERT_LIMIT} more issues", Severity.WARNING)
        else:
            self._events.alert(
                f"Drone scan complete: all {report.panels_scanned} panels operating normally", Severity.INFO
            )
        self._events.record(
            f"Drone scan completed: {report.panels_scanned} panels scanned, {issue_count} issues, "
            f"{len(report.observations)} observations",
            'scan'
        )
        logger.info(f"Drone scan finished with {issue_count} issues")
        return report

    def reset(self) -> None:
        """Abort any scan in progress. The last completed report is kept."""
        self.current = None

    def snapshot(self) -> Dict:
        return {
            'scanning': self.scanning,
            'progress': self.current.position if self.current else 0,
            'total_panels': len(self._equipment.of_kind(EquipmentKind.PANEL)),
            'last_report': self.last_report.to_dict() if self.last_report else None,
        }
