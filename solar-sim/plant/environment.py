import logging
import math
import random
from dataclasses import dataclass, asdict, replace
from datetime import datetime
from typing import Dict, Optional

from weather import (
    DiurnalTemperatureModel, DryClimateHumidityModel, HumidityModel, TemperatureModel, clamp
)

logger = logging.getLogger("Environment")

FACTOR_NAMES = ('temperature', 'dust_level', 'cloud_cover', 'humidity')
PERCENT_FACTORS = ('dust_level', 'cloud_cover', 'humidity')
OVERRIDABLE_FACTORS = ('dust_level', 'cloud_cover')
# Accepted range for direct temperature input (°C)
TEMPERATURE_LIMITS = (-50.0, 100.0)


def checked_factor(name: str, value: float) -> float:
    """Validate one direct input. Percentages are clamped, temperature must lie in TEMPERATURE_LIMITS."""
    if name not in FACTOR_NAMES:
        raise ValueError(f"Unknown environmental factor: {name}")
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number")
    if name in PERCENT_FACTORS:
        return clamp(value)
    low, high = TEMPERATURE_LIMITS
    if not low <= value <= high:
        raise ValueError(f"Temperature must be between {low:.0f} and {high:.0f} °C")
    return value


@dataclass
class EnvironmentalFactors:
    temperature: float  # °C
    dust_level: float  # %
    cloud_cover: float  # %
    humidity: float  # %

    @classmethod
    def manual_defaults(cls) -> 'EnvironmentalFactors':
        return cls(temperature=30.0, dust_level=5.0, cloud_cover=7.0, humidity=10.0)

    @classmethod
    def simulated_defaults(cls) -> 'EnvironmentalFactors':
        return cls(temperature=35.0, dust_level=20.0, cloud_cover=10.0, humidity=30.0)

    def copy(self) -> 'EnvironmentalFactors':
        return replace(self)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class AnomalyOverrides:
    """Values forced by active environmental anomalies; None = no override."""
    dust_level: Optional[float] = None
    cloud_cover: Optional[float] = None

    def clear(self) -> None:
        self.dust_level = None
        self.cloud_cover = None

    def to_dict(self) -> Dict[str, Optional[float]]:
        return asdict(self)


class EnvironmentModel:
    """
    Holds the manual and background-simulated factor sets plus anomaly overrides.
    Precedence for dust/cloud: override > manual > simulated.
    """

    def __init__(self,
                 temperature_model: TemperatureModel = None,
                 humidity_model: HumidityModel = None):
        self._temperature_model = temperature_model or DiurnalTemperatureModel()
        self._humidity_model = humidity_model or DryClimateHumidityModel()
        self.manual = EnvironmentalFactors.manual_defaults()
        self.simulated = EnvironmentalFactors.simulated_defaults()
        self.manual_control = True
        self.overrides = AnomalyOverrides()

    def base_factors(self) -> EnvironmentalFactors:
        """The authoritative source before anomaly overrides."""
        return self.manual if self.manual_control else self.simulated

    def effective_factors(self) -> EnvironmentalFactors:
        factors = self.base_factors().copy()
        if self.overrides.dust_level is not None:
            factors.dust_level = self.overrides.dust_level
        if self.overrides.cloud_cover is not None:
            factors.cloud_cover = self.overrides.cloud_cover
        return factors

    def background_tick(self, now: datetime, rng: random.Random) -> bool:
        """Perturb the simulated set. Does nothing under manual control."""
        if self.manual_control:
            return False

        sim = self.simulated
        sim.temperature = self._temperature_model.temperature(now, rng)
        # Slight upward drift on dust (dry season)
        sim.dust_level = clamp(sim.dust_level + (rng.random() - 0.4) * 10)
        sim.cloud_cover = clamp(sim.cloud_cover + (rng.random() - 0.5) * 15)
        sim.humidity = clamp(self._humidity_model.humidity(now, rng))

        # The live set mirrors the simulation so a switch to manual starts from it
        self.manual = sim.copy()
        return True

    def set_factor(self, name: str, value: float) -> bool:
        """Direct factor input; rejected unless manual control is on."""
        return self.set_factors({name: value})

    def set_factors(self, values: Dict[str, float]) -> bool:
        """
        Apply several direct inputs together. Every value is checked before
        any is stored; a bad one raises ValueError and changes nothing.
        """
        if not self.manual_control:
            logger.debug(f"Rejected direct input for {', '.join(values)}: manual control is off")
            return False
        checked = {name: checked_factor(name, value) for name, value in values.items()}
        for name, value in checked.items():
            setattr(self.manual, name, value)
        return True

    def set_manual_control(self, enabled: bool) -> None:
        self.manual_control = enabled
        if not enabled:
            self.manual = self.simulated.copy()

    def reset_to_simulated(self) -> None:
        self.manual = self.simulated.copy()

    def reset_manual_defaults(self) -> None:
        self.manual = EnvironmentalFactors.manual_defaults()

    def apply_override(self, name: str, value: float) -> float:
        if name not in OVERRIDABLE_FACTORS:
            raise ValueError(f"Factor cannot be overridden: {name}")
        value = clamp(value)
        setattr(self.overrides, name, value)
        logger.info(f"Anomaly override applied: {name} = {value:.1f}")
        return value

    def clear_override(self, name: str) -> None:
        if name not in OVERRIDABLE_FACTORS:
            raise ValueError(f"Factor cannot be overridden: {name}")
        setattr(self.overrides, name, None)
        logger.info(f"Anomaly override cleared: {name}")

    def snapshot(self) -> Dict:
        return {
            'manual_control': self.manual_control,
            'manual': self.manual.to_dict(),
            'simulated': self.simulated.to_dict(),
            'overrides': self.overrides.to_dict(),
            'effective': self.effective_factors().to_dict(),
        }
