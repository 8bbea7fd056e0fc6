from plant import AnomalyType
from conftest import advance


def run_scan(state, dust=5.0):
    state.drone.start(state.now(), dust)
    report = None
    while report is None:
        advance(state, 1)
        report = state.drone.step(state.now())
    return report


def alert_messages(state):
    return [e.message for e in state.events.alerts(limit=1000)]


def test_clean_field_reports_normal_operation(state):
    report = run_scan(state)
    assert report.panels_scanned == 20
    assert report.issues_found == []
    assert report.duration_seconds == 20
    assert "Drone scan complete: all 20 panels operating normally" in alert_messages(state)
    assert state.drone.last_report is report


def test_scan_visits_one_panel_per_step(state):
    state.drone.start(state.now(), 5.0)
    for _ in range(5):
        state.drone.step(state.now())
    snapshot = state.drone.snapshot()
    assert snapshot['scanning'] is True
    assert snapshot['progress'] == 5


def test_second_start_is_rejected_while_scanning(state):
    assert state.drone.start(state.now(), 5.0)
    assert not state.drone.start(state.now(), 5.0)


def test_faulty_panel_reports_damage_and_anomaly(state):
    unit = state.equipment.get('Panel-3')
    state.anomalies.spawn_for_equipment(AnomalyType.PANEL_FAULT, unit)
    report = run_scan(state)
    assert report.issues_found == [
        f"Panel 3: Potential damage detected (Health: {unit.health:.1f}%)",
        "Panel 3: Affected by Panel Fault",
    ]
    alerts = alert_messages(state)
    assert "Drone scan: issues found on Panel 3" in alerts
    assert "Drone scan complete: 2 issues found across 20 panels" in alerts


def test_low_health_alone_counts_as_damage(state):
    state.equipment.get('Panel-12').health = 65.0
    report = run_scan(state)
    assert report.issues_found == ["Panel 12: Potential damage detected (Health: 65.0%)"]


def test_detail_alerts_are_limited(state):
    for n in range(1, 6):
        state.anomalies.spawn_for_equipment(AnomalyType.PANEL_FAULT, state.equipment.get(f'Panel-{n}'))
    report = run_scan(state)
    assert len(report.issues_found) == 10
    alerts = alert_messages(state)
    assert "...and 7 more issues" in alerts
    assert report.issues_found[0] in alerts
    assert report.issues_found[3] not in alerts


def test_heavy_dust_observation(state, rng):
    rng.queue = [0.9]
    report = run_scan(state, dust=50.0)
    assert report.observations[0] == "Panel 1: Heavy dust accumulation"
    assert report.dust_level == 50.0


def test_reset_keeps_last_report(state):
    report = run_scan(state)
    state.drone.start(state.now(), 5.0)
    state.drone.reset()
    assert not state.drone.scanning
    assert state.drone.last_report is report
