from .types import AnomalyType, EquipmentKind, EquipmentStatus, ResolvedBy, Severity
from .parameters import SimulationParameters
from .clock import SimClock, crossed_midnight
from .environment import AnomalyOverrides, EnvironmentalFactors, EnvironmentModel
from .generation import (
    GenerationModelError, GenerationState, base_generation, derating_factors,
    anomaly_factor, instantaneous_generation
)
from .equipment import ClaimEffect, Equipment, EquipmentRegistry, EQUIPMENT_COUNTS
from .events import ANOMALY_CATEGORIES, EventLog, LogEntry
from .anomalies import (
    Anomaly, AnomalyEngine, AnomalyProfile, EnvironmentalAnomaly, EquipmentAnomaly, PROFILES
)
from .drone import DroneReport, DroneScanner
from .scheduler import TickScheduler
from .state import SimulationState
from .engine import SolarPlantEngine

__all__ = [
    'AnomalyType', 'EquipmentKind', 'EquipmentStatus', 'ResolvedBy', 'Severity',
    'SimulationParameters',
    'SimClock', 'crossed_midnight',
    'AnomalyOverrides', 'EnvironmentalFactors', 'EnvironmentModel',
    'GenerationModelError', 'GenerationState', 'base_generation', 'derating_factors',
    'anomaly_factor', 'instantaneous_generation',
    'ClaimEffect', 'Equipment', 'EquipmentRegistry', 'EQUIPMENT_COUNTS',
    'ANOMALY_CATEGORIES', 'EventLog', 'LogEntry',
    'Anomaly', 'AnomalyEngine', 'AnomalyProfile', 'EnvironmentalAnomaly', 'EquipmentAnomaly', 'PROFILES',
    'DroneReport', 'DroneScanner',
    'TickScheduler',
    'SimulationState',
    'SolarPlantEngine',
]
