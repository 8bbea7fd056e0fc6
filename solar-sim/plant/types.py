from enum import Enum


class EquipmentKind(Enum):
    PANEL = "Panel"
    INVERTER = "Inverter"
    BATTERY = "Battery"
    TRANSFORMER = "Transformer"


class EquipmentStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAULTY = "faulty"


class Severity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ResolvedBy(Enum):
    USER = "user"
    AUTO_TIMEOUT = "auto-timeout"


class AnomalyType(Enum):
    PANEL_FAULT = "panel-fault"
    DUST_ACCUMULATION = "dust-accumulation"
    DUST_STORM = "dust-storm"
    INVERTER_OVERLOAD = "inverter-overload"
    CLOUD_COVER = "cloud-cover"

    @property
    def is_environmental(self) -> bool:
        return self in (AnomalyType.DUST_STORM, AnomalyType.CLOUD_COVER)

    @classmethod
    def from_name(cls, name: str) -> 'AnomalyType':
        """Look up an anomaly type by its wire name (e.g. 'dust-storm')."""
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown anomaly type: {name}") from None
