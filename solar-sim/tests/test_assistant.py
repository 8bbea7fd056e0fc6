from assistant import (
    HISTORY_LIMIT, ChatAssistant, repair_history, summarize_logs, summarize_system_state
)
from plant import AnomalyType, Severity
from conftest import OfflineAssistant


def read(state):
    return lambda reader: reader(state)


def test_repair_history_inserts_placeholder_replies():
    history = [
        {'role': 'user', 'content': 'a'},
        {'role': 'user', 'content': 'b'},
        {'role': 'assistant', 'content': 'c'},
        {'role': 'user', 'content': 'd'},
    ]
    fixed = repair_history(history)
    assert [m['role'] for m in fixed] == ['user', 'assistant', 'user', 'assistant', 'user', 'assistant']
    assert fixed[1]['content'] == 'I understand.'
    assert fixed[-1]['content'] == 'I understand. Please continue.'


def test_repair_history_drops_leading_assistant_turn():
    fixed = repair_history([{'role': 'assistant', 'content': 'hello'}, {'role': 'user', 'content': 'hi'}])
    assert fixed[0] == {'role': 'user', 'content': 'hi'}


def test_send_prompt_success_records_history():
    chat = OfflineAssistant(replies=["Health: Normal"])
    result = chat.send_prompt("status?", system="be brief")
    assert result == {'message': "Health: Normal"}
    assert chat.history == [
        {'role': 'user', 'content': "status?"},
        {'role': 'assistant', 'content': "Health: Normal"},
    ]
    _, path, payload = chat.requests[-1]
    assert path == '/v1/chat/completions'
    assert payload['messages'][0] == {'role': 'system', 'content': "be brief"}
    assert payload['temperature'] == 0.7
    assert payload['max_tokens'] == 150


def test_send_prompt_when_server_unreachable():
    chat = OfflineAssistant(available=False)
    result = chat.send_prompt("status?")
    assert 'error' in result
    assert "not available" in result['error']
    assert chat.connected is False
    assert chat.history == []


def test_send_prompt_http_error_is_reported():
    chat = OfflineAssistant(replies=[(503, {'error': 'model loading'})])
    result = chat.send_prompt("status?")
    assert result['error'] == "Failed to communicate with LLM: LLM server returned 503: model loading"
    assert chat.history == []


def test_history_is_truncated():
    chat = OfflineAssistant(replies=[f"reply {i}" for i in range(20)])
    for i in range(20):
        chat.send_prompt(f"question {i}")
    assert len(chat.history) == HISTORY_LIMIT
    assert chat.history[-1] == {'role': 'assistant', 'content': "reply 19"}


def test_chat_records_transcript():
    chat = OfflineAssistant(replies=["All good"])
    chat.chat("How are we doing?")
    assert [m['role'] for m in chat.transcript] == ['user', 'assistant']
    chat.clear_history()
    assert chat.transcript == [] and chat.history == []


def test_default_base_url_is_local_server():
    assert ChatAssistant().base_url == "http://127.0.0.1:1234"


def test_summarize_logs_reports_normal_operation(state):
    state.events.record("Anomaly generated: Panel Fault", 'anomaly')
    state.events.alert("System operating normally", Severity.INFO)
    assert summarize_logs(state.events.entries).endswith("SYSTEM NORMAL")


def test_summarize_logs_counts_generated_anomalies(state):
    state.anomalies.spawn(AnomalyType.PANEL_FAULT)
    state.anomalies.spawn(AnomalyType.DUST_STORM)
    summary = summarize_logs(state.events.entries)
    assert "2 active anomalies" in summary


def test_system_summary_mentions_anomaly_mix(state):
    state.anomalies.spawn(AnomalyType.PANEL_FAULT)
    state.anomalies.spawn(AnomalyType.CLOUD_COVER)
    state.refresh_generation()
    summary = summarize_system_state(state)
    assert summary.startswith("Time:12:00:00")
    assert "Anomalies[Equipment:1, Maintenance:0, Environmental:1]" in summary


def test_maintenance_prompt_separates_faulty_and_degraded(state):
    fault = state.anomalies.spawn_for_equipment(AnomalyType.PANEL_FAULT, state.equipment.get('Panel-1'))
    state.anomalies.spawn_for_equipment(AnomalyType.DUST_ACCUMULATION, state.equipment.get('Panel-2'))
    prompt = ChatAssistant.build_maintenance_prompt(state)
    assert "Faulty (needs repair): Panel-1 (panel fault)" in prompt
    assert "Degraded (needs cleaning): Panel-2 (dust accumulation)" in prompt
    assert fault.claimed_ids == ['Panel-1']


def test_quick_actions_use_state_reader(state):
    chat = OfflineAssistant(replies=["clean panels", "tilt panels"])
    assert chat.predict_maintenance(read(state)) == {'message': "clean panels"}
    assert chat.optimize_performance(read(state)) == {'message': "tilt panels"}
    assert "efficiency" in chat.requests[-1][2]['messages'][-1]['content']


def test_analyze_logs_stamps_last_analysis(state):
    chat = OfflineAssistant(replies=["Health: Normal"])
    chat.analyze_logs(read(state))
    assert chat.last_analysis is not None
