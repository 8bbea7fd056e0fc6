from datetime import timedelta

import pytest

from plant import AnomalyType, EquipmentKind, EquipmentStatus, ResolvedBy
from conftest import advance


def messages(state):
    return [e.message for e in state.events.alerts(limit=1000)]


def test_panel_fault_claims_panels(state):
    anomaly = state.anomalies.spawn(AnomalyType.PANEL_FAULT)
    assert 2 <= len(anomaly.claimed_ids) <= 4
    assert anomaly.location.startswith("Section ")
    for eid in anomaly.claimed_ids:
        unit = state.equipment.get(eid)
        assert unit.kind == EquipmentKind.PANEL
        assert unit.status == EquipmentStatus.FAULTY
        assert unit.active_anomaly_id == anomaly.id
    assert f"Anomaly generated: Panel Fault at {anomaly.location}" in messages(state)


def test_inverter_overload_location_names_inverters(state):
    anomaly = state.anomalies.spawn(AnomalyType.INVERTER_OVERLOAD)
    names = [state.equipment.get(eid).name for eid in anomaly.claimed_ids]
    assert anomaly.location == ", ".join(names)
    assert all(name.startswith("Inverter") for name in names)


def test_escalates_to_max_then_auto_resolves_at_timeout(state):
    anomaly = state.anomalies.spawn(AnomalyType.PANEL_FAULT)
    claimed = list(anomaly.claimed_ids)

    advance(state, 199)
    assert state.anomalies.check() == []
    assert anomaly.active
    assert anomaly.escalation_level == 3

    advance(state, 1)
    assert state.anomalies.check() == [anomaly]
    assert not anomaly.active
    assert anomaly.resolved_by == ResolvedBy.AUTO_TIMEOUT
    for eid in claimed:
        unit = state.equipment.get(eid)
        assert unit.status == EquipmentStatus.HEALTHY
        assert unit.active_anomaly_id is None
        assert 96 <= unit.health <= 100
    assert "Anomaly auto-corrected after timeout: Panel Fault" in messages(state)


def test_escalation_catches_up_missed_intervals(state):
    anomaly = state.anomalies.spawn(AnomalyType.DUST_ACCUMULATION)
    advance(state, 130)
    state.anomalies.check()
    assert anomaly.escalation_level == 2
    assert anomaly.last_escalation_at == anomaly.created_at + timedelta(seconds=120)
    alerts = messages(state)
    assert "ESCALATION: Dust Accumulation has been active for 1 minutes" in alerts
    assert "CRITICAL ESCALATION: Dust Accumulation requires immediate attention!" in alerts


def test_resolution_is_checked_before_escalation(state):
    anomaly = state.anomalies.spawn(AnomalyType.PANEL_FAULT)
    advance(state, 250)
    state.anomalies.check()
    assert not anomaly.active
    assert anomaly.escalation_level == 0


def test_environmental_escalation_is_capped_at_one(state):
    storm = state.anomalies.spawn(AnomalyType.CLOUD_COVER)
    advance(state, 199)
    state.anomalies.check()
    assert storm.escalation_level == 1
    ongoing = [m for m in messages(state) if "ongoing for" in m]
    assert ongoing == ["Cloud Cover Spike ongoing for 1 minutes - Environmental condition"]


def test_dust_storm_overrides_dust_and_reverts(state):
    storm = state.anomalies.spawn(AnomalyType.DUST_STORM)
    assert storm.affected_equipment_ids == []
    assert state.environment.effective_factors().dust_level == 55.0

    advance(state, 200)
    state.anomalies.check()
    assert not storm.active
    assert state.environment.overrides.dust_level is None
    assert state.environment.effective_factors().dust_level == 5.0


def test_override_is_capped_at_100(state):
    state.environment.set_factor('cloud_cover', 80)
    state.anomalies.spawn(AnomalyType.CLOUD_COVER)
    assert state.environment.effective_factors().cloud_cover == 100.0


def test_dust_storm_resolution_cascades_into_dust_accumulation(state):
    storm = state.anomalies.spawn(AnomalyType.DUST_STORM)
    advance(state, 200)
    state.anomalies.check()

    cascade = [a for a in state.anomalies.active() if a.type == AnomalyType.DUST_ACCUMULATION]
    assert len(cascade) == 1
    dust = cascade[0]
    assert dust.location == "Multiple Sections"
    assert dust.caused_by == AnomalyType.DUST_STORM
    assert 4 <= len(dust.claimed_ids) <= 8
    for eid in dust.claimed_ids:
        assert state.equipment.get(eid).status == EquipmentStatus.DEGRADED
    assert storm.id != dust.id


def test_manual_correction_of_dust_storm_also_cascades(state):
    storm = state.anomalies.spawn(AnomalyType.DUST_STORM)
    assert state.anomalies.correct(storm.id)
    assert storm.resolved_by == ResolvedBy.USER
    assert any(a.caused_by == AnomalyType.DUST_STORM for a in state.anomalies.active())
    assert "Anomaly corrected: Dust Storm" in messages(state)


def test_override_survives_while_another_storm_is_active(state):
    first = state.anomalies.spawn(AnomalyType.DUST_STORM)
    advance(state, 100)
    second = state.anomalies.spawn(AnomalyType.DUST_STORM)

    advance(state, 100)
    state.anomalies.check()
    assert not first.active
    assert second.active
    assert state.environment.overrides.dust_level is not None

    advance(state, 100)
    state.anomalies.check()
    assert not second.active
    assert state.environment.overrides.dust_level is None


def test_correct_unknown_or_resolved_is_noop(state):
    anomaly = state.anomalies.spawn(AnomalyType.PANEL_FAULT)
    before = len(state.events)
    assert state.anomalies.correct(999) is False
    assert len(state.events) == before
    assert state.anomalies.correct(anomaly.id) is True
    assert state.anomalies.correct(anomaly.id) is False


def test_claims_stay_exclusive_when_panels_run_out(state):
    spawned = [state.anomalies.spawn(AnomalyType.PANEL_FAULT) for _ in range(12)]
    claimed = [eid for a in spawned for eid in a.claimed_ids]
    assert len(claimed) == len(set(claimed))
    assert len(claimed) <= 20
    assert state.anomalies.claim_conflicts() == []
    # Later spawns still register even with nothing left to claim
    assert len(state.anomalies.active()) == 12


def test_health_trigger_panel_fault(state, rng):
    unit = state.equipment.get('Panel-3')
    unit.health = 78.0
    rng.queue = [0.2]
    anomaly = state.anomalies.health_trigger(unit)
    assert anomaly.type == AnomalyType.PANEL_FAULT
    assert anomaly.claimed_ids == ['Panel-3']
    assert unit.health == 48.0
    assert unit.status == EquipmentStatus.FAULTY
    assert "Auto-generated panel-fault for Panel 3 (health dropped to 78.0%)" in messages(state)


def test_health_trigger_dust_accumulation(state, rng):
    unit = state.equipment.get('Panel-9')
    unit.health = 78.0
    rng.queue = [0.9]
    anomaly = state.anomalies.health_trigger(unit)
    assert anomaly.type == AnomalyType.DUST_ACCUMULATION
    assert unit.health == 53.0
    assert unit.status == EquipmentStatus.DEGRADED


def test_health_trigger_inverter_overload(state):
    unit = state.equipment.get('Inverter-2')
    unit.health = 70.0
    anomaly = state.anomalies.health_trigger(unit)
    assert anomaly.type == AnomalyType.INVERTER_OVERLOAD
    assert anomaly.location == "Inverter 2"
    assert unit.health == 30.0


def test_batteries_and_transformers_are_never_auto_faulted(state):
    state.equipment.get('Battery-1').health = 60.0
    state.equipment.get('Transformer-2').health = 60.0
    spawned = state.equipment.health_check_pass(state.anomalies.health_trigger)
    assert spawned == []
    assert state.anomalies.anomalies == []
    assert not state.equipment.get('Battery-1').claimed


def test_active_anomalies_reduce_generation(state):
    clean = state.compute_generation()
    state.anomalies.spawn(AnomalyType.INVERTER_OVERLOAD)
    assert state.compute_generation() == pytest.approx(clean * 0.8)


def test_reinitialize_erases_anomalies_without_resolving(state):
    anomaly = state.anomalies.spawn(AnomalyType.PANEL_FAULT)
    state.anomalies.spawn(AnomalyType.DUST_STORM)
    state.reinitialize()
    assert state.anomalies.anomalies == []
    assert anomaly.resolved_by is None
    assert state.environment.overrides.dust_level is None
    assert all(not unit.claimed for unit in state.equipment.all())
