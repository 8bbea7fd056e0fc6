import logging
from typing import Dict, Optional

logger = logging.getLogger("PlantEngine")


class SimulationParameters:
    """
    Tunable constants that control the plant simulation.
    Each SimulationState owns its own instance.
    """

    DEFAULTS = {
        # Generation model
        'capacity_mw': {
            'value': 100.0,
            'min': 1.0,
            'max': 1000.0,
            'unit': 'MW',
            'description': 'Nameplate plant capacity (hard ceiling on output)',
            'category': 'generation'
        },
        'temp_derate_per_deg': {
            'value': 0.004,
            'min': 0.0,
            'max': 0.01,
            'unit': '1/°C',
            'description': 'Fractional output loss per degree above 25°C',
            'category': 'generation'
        },
        'dust_derate_max': {
            'value': 0.3,
            'min': 0.0,
            'max': 0.9,
            'unit': '',
            'description': 'Fractional output loss at 100% dust',
            'category': 'generation'
        },
        'cloud_derate_max': {
            'value': 0.5,
            'min': 0.0,
            'max': 0.9,
            'unit': '',
            'description': 'Fractional output loss at 100% cloud cover',
            'category': 'generation'
        },

        # Anomaly lifecycle
        'auto_resolve_seconds': {
            'value': 200.0,
            'min': 30.0,
            'max': 3600.0,
            'unit': 's',
            'description': 'Active time after which an anomaly clears itself',
            'category': 'anomaly'
        },
        'escalation_interval_seconds': {
            'value': 60.0,
            'min': 10.0,
            'max': 600.0,
            'unit': 's',
            'description': 'Active time between escalation steps',
            'category': 'anomaly'
        },
        'dust_storm_increase': {
            'value': 50.0,
            'min': 0.0,
            'max': 100.0,
            'unit': '%',
            'description': 'Dust level added on top of the base value during a dust storm',
            'category': 'anomaly'
        },
        'cloud_spike_increase': {
            'value': 60.0,
            'min': 0.0,
            'max': 100.0,
            'unit': '%',
            'description': 'Cloud cover added on top of the base value during a cloud spike',
            'category': 'anomaly'
        },

        # Equipment health
        'health_trigger_threshold': {
            'value': 80.0,
            'min': 50.0,
            'max': 95.0,
            'unit': '%',
            'description': 'Health below which healthy equipment auto-generates an anomaly',
            'category': 'equipment'
        },
        'degradation_floor': {
            'value': 75.0,
            'min': 0.0,
            'max': 95.0,
            'unit': '%',
            'description': 'Passive degradation never takes health below this value',
            'category': 'equipment'
        },
        'degradation_fraction': {
            'value': 0.25,
            'min': 0.0,
            'max': 1.0,
            'unit': '',
            'description': 'Share of eligible equipment degraded per pass',
            'category': 'equipment'
        },
        'degradation_min_step': {
            'value': 0.1,
            'min': 0.0,
            'max': 5.0,
            'unit': '%',
            'description': 'Smallest health loss per degradation pass',
            'category': 'equipment'
        },
        'degradation_max_step': {
            'value': 0.5,
            'min': 0.0,
            'max': 5.0,
            'unit': '%',
            'description': 'Largest health loss per degradation pass',
            'category': 'equipment'
        },
        'initial_health_min': {
            'value': 95.0,
            'min': 50.0,
            'max': 100.0,
            'unit': '%',
            'description': 'Lower bound of the fresh health roll',
            'category': 'equipment'
        },
        'repair_health_min': {
            'value': 96.0,
            'min': 50.0,
            'max': 100.0,
            'unit': '%',
            'description': 'Lower bound of health restored on anomaly resolution',
            'category': 'equipment'
        },
    }

    def __init__(self):
        self._values: Dict[str, float] = {key: meta['value'] for key, meta in self.DEFAULTS.items()}

    def get(self, key: str) -> float:
        """Current value; unknown keys raise KeyError."""
        return self._values[key]

    def set(self, key: str, value: float) -> bool:
        """
        Clamp and store a value. Returns False for an unknown key. A
        non-numeric value raises ValueError/TypeError from float().
        """
        meta = self.DEFAULTS.get(key)
        if meta is None:
            logger.warning(f"Ignoring unknown simulation parameter '{key}'")
            return False
        clamped = min(meta['max'], max(meta['min'], float(value)))
        self._values[key] = clamped
        logger.info(f"Simulation parameter '{key}' set to {clamped} {meta['unit']}".rstrip())
        return True

    def set_multiple(self, params: Dict[str, float]) -> Dict[str, bool]:
        return {key: self.set(key, value) for key, value in params.items()}

    def values(self) -> Dict[str, float]:
        return dict(self._values)

    def get_all(self, category: Optional[str] = None) -> Dict[str, Dict]:
        """Values with their metadata, optionally limited to one category."""
        return {
            key: {**meta, 'default': meta['value'], 'value': self._values[key]}
            for key, meta in self.DEFAULTS.items()
            if category is None or meta['category'] == category
        }

    def reset(self, key: Optional[str] = None) -> None:
        """Restore one parameter, or all of them, to the default."""
        keys = self.DEFAULTS if key is None else [key] if key in self.DEFAULTS else []
        for name in keys:
            self._values[name] = self.DEFAULTS[name]['value']
