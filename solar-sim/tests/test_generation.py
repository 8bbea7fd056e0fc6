from datetime import datetime
from types import SimpleNamespace

import pytest

from plant import AnomalyType, EnvironmentalFactors, GenerationModelError, GenerationState
from plant.generation import anomaly_factor, base_generation, instantaneous_generation


def _at(hour, minute=0, second=0):
    return datetime(2024, 6, 15, hour, minute, second)


def _clear_sky():
    return EnvironmentalFactors(temperature=25, dust_level=0, cloud_cover=0, humidity=10)


def _anomaly(kind, impact, active=True):
    return SimpleNamespace(type=kind, impact_percent=impact, active=active)


def test_noon_clear_sky_produces_full_capacity():
    assert instantaneous_generation(_at(12), 100, _clear_sky()) == pytest.approx(100.0)


@pytest.mark.parametrize("time", [_at(0), _at(3, 15), _at(5, 59, 59), _at(18), _at(18, 0, 1), _at(21, 30), _at(23, 59)])
def test_no_generation_outside_daylight(time):
    assert instantaneous_generation(time, 100, _clear_sky()) == 0.0


def test_half_sine_is_symmetric_around_noon():
    assert base_generation(_at(9), 100) == pytest.approx(base_generation(_at(15), 100))
    assert base_generation(_at(9), 100) == pytest.approx(100 * 0.7071067811865476)


def test_output_stays_within_capacity_for_realistic_inputs():
    for hour in range(0, 24):
        for temperature in (15, 25, 40, 55):
            for dust in (0, 50, 100):
                for cloud in (0, 50, 100):
                    factors = EnvironmentalFactors(temperature, dust, cloud, 30)
                    output = instantaneous_generation(_at(hour, 30), 100, factors)
                    assert 0 <= output <= 100


def test_environmental_derating_matches_formula():
    factors = EnvironmentalFactors(temperature=35, dust_level=50, cloud_cover=20, humidity=10)
    expected = 100 * (1 - 10 * 0.004) * (1 - 0.5 * 0.3) * (1 - 0.2 * 0.5)
    assert instantaneous_generation(_at(12), 100, factors) == pytest.approx(expected)


def test_cold_panels_are_not_boosted():
    cold = EnvironmentalFactors(temperature=15, dust_level=0, cloud_cover=0, humidity=10)
    assert instantaneous_generation(_at(12), 100, cold) == pytest.approx(100.0)


def test_equipment_anomalies_compose_multiplicatively():
    anomalies = [
        _anomaly(AnomalyType.PANEL_FAULT, 15),
        _anomaly(AnomalyType.INVERTER_OVERLOAD, 20),
    ]
    assert anomaly_factor(anomalies) == pytest.approx(0.85 * 0.8)
    assert instantaneous_generation(_at(12), 100, _clear_sky(), anomalies) == pytest.approx(68.0)


def test_environmental_and_inactive_anomalies_do_not_derate_directly():
    anomalies = [
        _anomaly(AnomalyType.DUST_STORM, 30),
        _anomaly(AnomalyType.CLOUD_COVER, 40),
        _anomaly(AnomalyType.PANEL_FAULT, 15, active=False),
    ]
    assert anomaly_factor(anomalies) == 1.0


def test_many_stacked_faults_never_go_negative():
    anomalies = [_anomaly(AnomalyType.INVERTER_OVERLOAD, 20) for _ in range(50)]
    assert instantaneous_generation(_at(12), 100, _clear_sky(), anomalies) >= 0


def test_negative_output_raises_instead_of_clamping():
    hot = EnvironmentalFactors(temperature=55, dust_level=0, cloud_cover=0, humidity=10)
    with pytest.raises(GenerationModelError):
        instantaneous_generation(_at(12), 100, hot, temp_coeff=0.1)


def test_cumulative_integrates_over_elapsed_time():
    gen = GenerationState()
    gen.reset(_at(10))
    gen.update(_at(11), 10.0)
    assert gen.daily_cumulative_mwh == pytest.approx(10.0)
    gen.update(_at(11, 30), 20.0)
    assert gen.daily_cumulative_mwh == pytest.approx(20.0)


def test_cumulative_resets_exactly_at_midnight():
    gen = GenerationState(instantaneous_mw=0.0, daily_cumulative_mwh=250.0, last_update=_at(23, 59, 59))
    assert gen.update(datetime(2024, 6, 16, 0, 0, 0), 0.0) is True
    assert gen.daily_cumulative_mwh == 0.0


def test_cumulative_does_not_reset_on_other_hour_changes():
    gen = GenerationState(daily_cumulative_mwh=40.0, last_update=_at(11, 59, 59))
    assert gen.update(_at(12), 100.0) is False
    assert gen.daily_cumulative_mwh > 40.0
