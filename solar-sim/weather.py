import math
import random
from abc import ABC, abstractmethod
from datetime import datetime

# Realistic ambient band for a desert site (°C)
TEMPERATURE_BAND = (15.0, 55.0)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


class TemperatureModel(ABC):
    """
    Abstract ambient temperature model (OCP - extensible for different climates).
    """

    @abstractmethod
    def temperature(self, now: datetime, rng: random.Random) -> float:
        """Sample the ambient temperature (°C) at the given local time."""
        pass


class DiurnalTemperatureModel(TemperatureModel):
    """
    Hot, dry climate: a uniform base band plus a daily sine swing that
    bottoms out at midnight and peaks at noon.
    """

    def __init__(self, base_temp: float = 25.0, noise: float = 20.0, swing: float = 5.0):
        self._base_temp = base_temp
        self._noise = noise
        self._swing = swing

    def temperature(self, now: datetime, rng: random.Random) -> float:
        hour = now.hour
        # sin(-pi/2) at midnight -> 0 contribution, +2*swing at noon
        wave = math.sin(hour / 24 * math.pi * 2 - math.pi / 2) + 1
        value = self._base_temp + rng.random() * self._noise + wave * self._swing
        return clamp(value, *TEMPERATURE_BAND)


class HumidityModel(ABC):
    """Abstract relative humidity model."""

    @abstractmethod
    def humidity(self, now: datetime, rng: random.Random) -> float:
        pass


class DryClimateHumidityModel(HumidityModel):
    """Uniform resample inside a fixed low-humidity band."""

    def __init__(self, low: float = 20.0, high: float = 50.0):
        self._low = low
        self._high = high

    def humidity(self, now: datetime, rng: random.Random) -> float:
        return self._low + rng.random() * (self._high - self._low)
