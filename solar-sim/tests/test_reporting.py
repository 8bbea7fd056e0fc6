from datetime import datetime

import pytest

from plant import AnomalyType, Severity
from reporting import (
    REPORT_SECTIONS, UNAVAILABLE_SECTIONS, export_log_document, generate_report,
    identify_recurring_issues, log_export_filename, parse_current_state, parse_report_sections,
    prepare_report_data, write_log_export
)
from conftest import OfflineAssistant, advance

GENERATED = datetime(2024, 6, 15, 12, 5, 0)


def read(state):
    return lambda reader: reader(state)


def test_export_round_trips_current_state(state):
    state.anomalies.spawn(AnomalyType.PANEL_FAULT)
    advance(state, 1800)
    state.update_generation()

    document = export_log_document(state, generated_at=GENERATED)
    parsed = parse_current_state(document)
    assert parsed['generation_mw'] == pytest.approx(state.generation.instantaneous_mw, abs=0.005)
    assert parsed['daily_cumulative_mwh'] == pytest.approx(state.generation.daily_cumulative_mwh, abs=0.005)
    assert parsed['active_anomalies'] == 1


def test_export_sections_appear_in_order(state):
    state.events.alert("Grid synchronization stable", Severity.INFO)
    anomaly = state.anomalies.spawn(AnomalyType.INVERTER_OVERLOAD)
    transcript = [
        {'role': 'user', 'content': "How is the plant?", 'timestamp': GENERATED},
        {'role': 'assistant', 'content': "Health: Normal", 'timestamp': GENERATED},
    ]
    document = export_log_document(state, transcript, GENERATED, generated_at=GENERATED)

    headers = [
        "=== SOLAR PLANT OPERATION LOGS ===",
        "--- Current System State ---",
        "--- Alerts & Notifications ---",
        "--- Anomaly History ---",
        "--- System Operations ---",
        "--- Active Anomalies Details ---",
        "--- AI Assistant Conversation History ---",
    ]
    positions = [document.index(h) for h in headers]
    assert positions == sorted(positions)
    assert f"Affected Equipment: {', '.join(anomaly.claimed_ids)}" in document
    assert "[12:05:00] AI: Health: Normal" in document
    assert "Generated: 2024-06-15T12:05:00" in document


def test_export_includes_drone_report(state):
    state.drone.start(state.now(), 5.0)
    for _ in range(20):
        advance(state, 1)
        state.drone.step(state.now())
    document = export_log_document(state, generated_at=GENERATED)
    assert "--- Last Drone Scan Report ---" in document
    assert "Panels Scanned: 20" in document


def test_parse_rejects_document_without_state_section():
    with pytest.raises(ValueError):
        parse_current_state("=== SOLAR PLANT OPERATION LOGS ===\nnothing here\n")


def test_write_log_export(tmp_path):
    moment = datetime(2024, 6, 15, 14, 30, 5)
    path = write_log_export("hello\n", str(tmp_path / "exports"), moment)
    assert path.endswith(log_export_filename(moment))
    assert log_export_filename(moment) == "solar_plant_logs_2024-06-15_14-30-05.txt"
    with open(path, encoding='utf-8') as f:
        assert f.read() == "hello\n"


def test_recurring_issues_need_two_mentions(state):
    state.events.record("Auto-generated panel-fault for Panel-4 (health: 78.0%)", 'anomaly')
    state.events.alert("Inverter-2 running hot", Severity.WARNING)
    state.events.record("Auto-generated dust-accumulation for Panel-4 (health: 77.0%)", 'anomaly')
    state.events.record("Panel-9 cleaned", 'maintenance')
    assert identify_recurring_issues(state.events.entries) == [{'equipment': 'Panel-4', 'count': 2}]


def test_report_bundle_shape(state):
    anomaly = state.anomalies.spawn(AnomalyType.PANEL_FAULT)
    advance(state, 120)
    state.anomalies.correct(anomaly.id)
    data = prepare_report_data(state)
    assert set(data) >= {
        'plant_info', 'environmental', 'anomalies', 'equipment', 'logs', 'log_analysis',
        'last_drone_scan', 'operational_insights', 'environmental_impact',
    }
    assert data['anomalies']['resolved'] == 1
    assert data['anomalies']['avg_resolution_time'] == "2 minutes"
    assert len(data['equipment']['breakdown']['panels']) == 20
    assert data['last_drone_scan'] is None


def test_parse_report_sections():
    text = """### Executive Summary
Plant is running at 92% of expected output.

### Equipment Health Assessment
Two panels degraded by dust.

### Efficiency Analysis
Efficiency is normal.

### Risk Assessment
Low risk.

### Recommendations
1. Clean panels 4 and 9
2. Inspect Inverter-2
- Review cloud forecast

### Maintenance Plan
Cleaning crew tomorrow morning.

### Performance Predictions
- Output steady for the next 24 hours
"""
    sections = parse_report_sections(text)
    assert list(sections) == [key for key, _ in REPORT_SECTIONS]
    assert sections['summary'] == "Plant is running at 92% of expected output."
    assert sections['risk_assessment'] == "Low risk."
    assert sections['recommendations'] == ["Clean panels 4 and 9", "Inspect Inverter-2", "Review cloud forecast"]
    assert sections['predictions'] == ["Output steady for the next 24 hours"]


def test_parse_report_sections_fallbacks():
    sections = parse_report_sections("The model ignored the requested layout.")
    assert sections['summary'] == 'Section not available'
    assert sections['recommendations'] == ["Continue monitoring system performance"]
    assert sections['predictions'] == ["Generation expected to maintain current efficiency levels"]


def test_generate_report_without_llm(state):
    report = generate_report(read(state), OfflineAssistant(available=False))
    assert report['analysis'] == UNAVAILABLE_SECTIONS
    assert report['data']['plant_info']['capacity_mw'] == 100.0


def test_generate_report_with_llm(state):
    chat = OfflineAssistant(replies=["Executive Summary:\nAll good.\n\nRecommendations:\n- Keep going\n"])
    report = generate_report(read(state), chat, "Rajasthan")
    assert report['analysis']['summary'] == "All good."
    assert report['analysis']['recommendations'] == ["Keep going"]
    method, path, payload = chat.requests[-1]
    assert path == '/v1/chat/completions'
    assert payload['max_tokens'] == 2000
    assert "Facility: 100MW Solar Power Plant - Rajasthan" in payload['messages'][-1]['content']


def test_generate_report_llm_error(state):
    chat = OfflineAssistant(replies=[(500, {'error': {'message': 'model crashed'}})])
    report = generate_report(read(state), chat)
    assert report['analysis']['summary'] == "AI analysis error"
    assert "model crashed" in report['analysis']['health_assessment']
