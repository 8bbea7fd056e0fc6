import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional

from .environment import EnvironmentalFactors

SUNRISE_HOUR = 6.0
SUNSET_HOUR = 18.0


class GenerationModelError(ValueError):
    """Raised when the derating chain produces a physically impossible output."""


def hour_fraction(time: datetime) -> float:
    return time.hour + time.minute / 60.0 + time.second / 3600.0


def base_generation(time: datetime, capacity: float) -> float:
    """Half-sine daylight curve: 0 outside [06:00, 18:00), capacity at noon."""
    hour = hour_fraction(time)
    if hour < SUNRISE_HOUR or hour >= SUNSET_HOUR:
        return 0.0
    day_progress = (hour - SUNRISE_HOUR) / (SUNSET_HOUR - SUNRISE_HOUR)
    return max(0.0, capacity * math.sin(math.pi * day_progress))


def derating_factors(factors: EnvironmentalFactors,
                     temp_coeff: float = 0.004,
                     dust_coeff: float = 0.3,
                     cloud_coeff: float = 0.5) -> Dict[str, float]:
    """Multiplicative environmental derating. Expects effective (overridden) dust/cloud."""
    return {
        'temperature': 1 - max(0.0, (factors.temperature - 25) * temp_coeff),
        'dust': 1 - (factors.dust_level / 100) * dust_coeff,
        'cloud': 1 - (factors.cloud_cover / 100) * cloud_coeff,
    }


def anomaly_factor(active_anomalies: Iterable) -> float:
    """
    Product of (1 - impact) over active equipment anomalies. Dust storms and
    cloud spikes are skipped; they act through the environment override.
    """
    factor = 1.0
    for anomaly in active_anomalies:
        if anomaly.active and not anomaly.type.is_environmental:
            factor *= (1 - anomaly.impact_percent / 100)
    return factor


def instantaneous_generation(time: datetime, capacity: float,
                             factors: EnvironmentalFactors,
                             active_anomalies: Iterable = (),
                             temp_coeff: float = 0.004,
                             dust_coeff: float = 0.3,
                             cloud_coeff: float = 0.5) -> float:
    """Instantaneous plant output in MW."""
    base = base_generation(time, capacity)
    derate = derating_factors(factors, temp_coeff, dust_coeff, cloud_coeff)
    output = (base * derate['temperature'] * derate['dust'] * derate['cloud']
              * anomaly_factor(active_anomalies))
    if output < 0:
        raise GenerationModelError(
            f"Negative generation {output:.3f} MW at {time:%H:%M} with factors {derate}"
        )
    return output


@dataclass
class GenerationState:
    instantaneous_mw: float = 0.0
    daily_cumulative_mwh: float = 0.0
    last_update: Optional[datetime] = None

    def reset(self, now: datetime) -> None:
        self.instantaneous_mw = 0.0
        self.daily_cumulative_mwh = 0.0
        self.last_update = now

    def update(self, now: datetime, instantaneous_mw: float) -> bool:
        """
        Record a new reading and integrate energy since the last one.
        Returns True if the hour-23 -> hour-0 crossing reset the daily total.
        """
        self.instantaneous_mw = instantaneous_mw
        last = self.last_update or now
        self.last_update = now
        if last.hour == 23 and now.hour == 0:
            self.daily_cumulative_mwh = 0.0
            return True
        elapsed_hours = (now - last).total_seconds() / 3600
        if elapsed_hours > 0:
            self.daily_cumulative_mwh += instantaneous_mw * elapsed_hours
        return False

    def to_dict(self) -> Dict:
        return {
            'instantaneous_mw': self.instantaneous_mw,
            'daily_cumulative_mwh': self.daily_cumulative_mwh,
            'last_update': self.last_update.isoformat() if self.last_update else None,
        }
