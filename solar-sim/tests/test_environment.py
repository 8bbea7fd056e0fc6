from datetime import datetime

import pytest

from plant import EnvironmentModel
from conftest import ScriptedRandom


def test_manual_defaults_are_authoritative_initially():
    env = EnvironmentModel()
    factors = env.effective_factors()
    assert (factors.temperature, factors.dust_level, factors.cloud_cover, factors.humidity) == (30, 5, 7, 10)


def test_simulated_set_is_used_when_manual_control_is_off():
    env = EnvironmentModel()
    env.simulated.dust_level = 42.0
    env.manual_control = False
    assert env.effective_factors().dust_level == 42.0


def test_override_beats_manual_and_simulated():
    env = EnvironmentModel()
    env.apply_override('dust_level', 80)
    assert env.effective_factors().dust_level == 80
    env.manual_control = False
    assert env.effective_factors().dust_level == 80
    env.clear_override('dust_level')
    assert env.effective_factors().dust_level == env.simulated.dust_level


def test_direct_input_rejected_without_manual_control():
    env = EnvironmentModel()
    env.set_manual_control(False)
    before = env.manual.temperature
    assert env.set_factor('temperature', 50) is False
    assert env.manual.temperature == before


def test_direct_input_clamps_percentages_but_not_temperature():
    env = EnvironmentModel()
    assert env.set_factor('dust_level', 140)
    assert env.set_factor('cloud_cover', -5)
    assert env.set_factor('temperature', 61)
    assert env.manual.dust_level == 100
    assert env.manual.cloud_cover == 0
    assert env.manual.temperature == 61


def test_unknown_factor_raises():
    with pytest.raises(ValueError):
        EnvironmentModel().set_factor('wind_speed', 3)


def test_background_tick_is_noop_under_manual_control():
    env = EnvironmentModel()
    before = env.simulated.to_dict()
    assert env.background_tick(datetime(2024, 6, 15, 12), ScriptedRandom()) is False
    assert env.simulated.to_dict() == before


def test_background_tick_stays_in_bounds():
    env = EnvironmentModel()
    env.set_manual_control(False)
    rng = ScriptedRandom(99)
    for minute in range(0, 24 * 60, 7):
        now = datetime(2024, 6, 15, minute // 60, minute % 60)
        env.background_tick(now, rng)
        sim = env.simulated
        assert 15 <= sim.temperature <= 55
        assert 0 <= sim.dust_level <= 100
        assert 0 <= sim.cloud_cover <= 100
        assert 20 <= sim.humidity <= 50


def test_reset_to_simulated_copies_values():
    env = EnvironmentModel()
    env.simulated.temperature = 44.0
    env.reset_to_simulated()
    assert env.manual.temperature == 44.0
    env.manual.temperature = 10.0
    assert env.simulated.temperature == 44.0


@pytest.mark.parametrize("name, value", [
    ('temperature', 300),
    ('temperature', -60),
    ('temperature', float('inf')),
    ('dust_level', float('nan')),
    ('humidity', float('-inf')),
])
def test_out_of_range_input_raises_and_changes_nothing(name, value):
    env = EnvironmentModel()
    before = env.manual.to_dict()
    with pytest.raises(ValueError):
        env.set_factor(name, value)
    assert env.manual.to_dict() == before


def test_temperature_band_edges_are_accepted():
    env = EnvironmentModel()
    assert env.set_factor('temperature', -50)
    assert env.set_factor('temperature', 100)
    assert env.manual.temperature == 100


def test_set_factors_is_all_or_nothing():
    env = EnvironmentModel()
    before = env.manual.to_dict()
    with pytest.raises(ValueError):
        env.set_factors({'dust_level': 40, 'temperature': 500})
    assert env.manual.to_dict() == before

    assert env.set_factors({'dust_level': 40, 'cloud_cover': 15})
    assert (env.manual.dust_level, env.manual.cloud_cover) == (40, 15)
