"""
LLM chat collaborator for the plant monitor.

Talks to an OpenAI-compatible server (LM Studio style) over plain HTTP:
GET /v1/models for availability and POST /v1/chat/completions for turns.
Every failure is reported as {'error': ...}; nothing here raises into the
simulation.
"""
import json
import logging
import threading
import urllib.error
import urllib.request
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from interfaces import ChatService
from plant import EquipmentStatus, LogEntry, SimulationState
from plant.generation import base_generation, derating_factors

logger = logging.getLogger("Assistant")

HISTORY_LIMIT = 25
RECENT_LOG_WINDOW = 25
REQUEST_TIMEOUT = 30  # seconds

NORMAL_MARKERS = ('System operating normally', 'Operating conditions optimal')

ANALYSIS_SYSTEM_PROMPT = """You are a solar plant AI assistant. Key understanding:
1. Equipment with "degraded" status has dust accumulation and needs cleaning - it is NOT failing or broken
2. Only "faulty" status indicates actual equipment failure
3. Maintenance anomalies (dust) are routine - not critical
4. Environmental anomalies are temporary weather effects
5. Solar generation naturally varies with time - zero at night, low in morning/evening
6. Expected generation already includes environmental impacts (temperature, dust, clouds)
7. Performance ratio compares actual vs expected - not vs theoretical ideal
8. Performance thresholds: >95% = Excellent, 80-95% = Normal, <80% = Investigate
9. Focus on actual failures and performance below 80% of expected
10. When logs show "SYSTEM NORMAL" it means the plant is operating optimally - report Health as "Normal"
11. Do not consider past/resolved anomalies when determining current health status
12. "Operating conditions optimal" means the system is performing as expected for current conditions
13. Performance ratios 80-85% can be normal with high environmental impacts
14. Only flag as critical if performance is unexpectedly low compared to conditions"""

ANALYSIS_PROMPT = """Analyze solar plant status (be very concise, max 150 words):

System: {system}
Logs: {logs}

EQUIPMENT STATUS DEFINITIONS:
- Healthy: Normal operation
- Degraded: Reduced performance (dust, needs cleaning) - NOT a failure
- Faulty: Actual equipment failure requiring repair

ANOMALY TYPES:
- Equipment: Panel faults, inverter issues (critical)
- Maintenance: Dust accumulation (routine cleaning needed)
- Environmental: Weather effects (temporary)

IMPORTANT:
- "Degraded" equipment just needs cleaning, NOT failing
- Low generation in evening/night is NORMAL
- Compare actual vs EXPECTED generation (which includes environmental impacts)
- Performance >95% of expected = Excellent, 80-95% = Normal, <80% = Investigate
- If system shows "Operating conditions optimal", performance is acceptable regardless of percentage
- Environmental impact is already factored into expected generation
- If logs show "SYSTEM NORMAL" or no active anomalies, Health = Normal
- Past/resolved anomalies should NOT affect current health status

Provide only:
1. Health: Normal/Warning/Critical (use "Normal" when system is operating normally)
2. Main issue (if any - distinguish maintenance from failures)
3. Action needed (1 line - prioritize critical over routine)"""

MAINTENANCE_SYSTEM_PROMPT = ("Distinguish between equipment failures (faulty status) that need immediate repair "
                             "and degraded equipment that just needs cleaning. Dust accumulation is routine "
                             "maintenance, not a failure.")


def repair_history(history: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """
    Force strict user/assistant alternation, starting with a user turn and
    ending with an assistant turn. A user turn with no reply gets a
    placeholder reply; an assistant turn with no question is dropped.
    """
    fixed = []
    expected = 'user'
    for message in history:
        role = message.get('role')
        if role == expected:
            fixed.append(message)
            expected = 'assistant' if expected == 'user' else 'user'
        elif role == 'user' and expected == 'assistant':
            fixed.append({'role': 'assistant', 'content': 'I understand.'})
            fixed.append(message)
            expected = 'assistant'
        elif role == 'assistant' and expected == 'user':
            logger.warning("Skipping orphaned assistant message in history")
    if fixed and fixed[-1]['role'] == 'user':
        fixed.append({'role': 'assistant', 'content': 'I understand. Please continue.'})
    return fixed


def summarize_logs(entries: List[LogEntry]) -> str:
    """One-line digest of log entries after the most recent all-clear marker."""
    relevant = entries
    for index in range(len(entries) - 1, -1, -1):
        if any(marker in entries[index].message for marker in NORMAL_MARKERS):
            relevant = entries[index:]
            break

    critical = sum(1 for e in relevant if e.category in ('alert-critical', 'critical'))
    generated = 0
    for entry in relevant:
        text = entry.message.lower()
        if entry.category == 'anomaly' and 'generated' in entry.message and not any(
                word in text for word in ('escalation', 'system performance degraded', 'resolved', 'corrected')):
            generated += 1
    normal = any(any(marker in e.message for marker in NORMAL_MARKERS) for e in relevant)

    summary = f"{len(relevant)} logs, {critical} critical"
    if normal:
        summary += ", SYSTEM NORMAL"
    elif generated:
        summary += f", {generated} active anomalies"
    else:
        summary += ", no active issues"
    return summary


def summarize_system_state(state: SimulationState) -> str:
    """Generation versus expected output, conditions, equipment and anomaly mix."""
    now = state.now()
    capacity = state.params.get('capacity_mw')
    factors = state.environment.base_factors()

    ideal = base_generation(now, capacity)
    expected = ideal
    if ideal > 0:
        derate = derating_factors(factors, state.params.get('temp_derate_per_deg'),
                                  state.params.get('dust_derate_max'), state.params.get('cloud_derate_max'))
        expected = ideal * derate['temperature'] * derate['dust'] * derate['cloud']
    actual = state.generation.instantaneous_mw
    ratio = f"{actual / expected * 100:.1f}" if expected > 0 else "N/A"
    env_impact = (ideal - expected) / ideal * 100 if ideal > 0 else 0.0

    counts = state.equipment.summary()
    active = state.anomalies.active()
    equipment_faults = sum(1 for a in active if a.type.value in ('panel-fault', 'inverter-overload'))
    maintenance = sum(1 for a in active if a.type.value == 'dust-accumulation')
    environmental = sum(1 for a in active if a.type.is_environmental)

    summary = (f"Time:{now:%H:%M:%S}, Gen:{actual:.1f}MW/Expected:{expected:.1f}MW ({ratio}%), "
               f"Temp:{factors.temperature:.0f}°C, Dust:{factors.dust_level:.0f}%, Cloud:{factors.cloud_cover:.0f}%, "
               f"EnvImpact:-{env_impact:.1f}%")
    summary += (f", Equipment[Healthy:{counts[EquipmentStatus.HEALTHY.value]}, "
                f"Degraded:{counts[EquipmentStatus.DEGRADED.value]}, Faulty:{counts[EquipmentStatus.FAULTY.value]}]")
    if active:
        summary += f", Anomalies[Equipment:{equipment_faults}, Maintenance:{maintenance}, Environmental:{environmental}]"
    else:
        summary += ", No active anomalies"
    return summary


class ChatAssistant(ChatService):
    """
    Conversation state plus prompt builders for the plant's quick actions.
    Prompts are built from a consistent view of the plant via `read_state`
    (typically `engine.read_state`) and sent without holding any plant lock.
    """

    def __init__(self, base_url: str = "http://127.0.0.1:1234", timeout: float = REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.history: List[Dict[str, str]] = []
        self.transcript: List[Dict[str, Any]] = []
        self.connected = False
        self.last_analysis: Optional[datetime] = None
        self._lock = threading.Lock()

    # --- Transport ---

    def _request(self, method: str, path: str, payload: Dict = None) -> Tuple[int, Any]:
        """Perform one HTTP call and return (status, decoded JSON body or text)."""
        data = json.dumps(payload).encode('utf-8') if payload is not None else None
        req = urllib.request.Request(f"{self.base_url}{path}", data=data, method=method)
        req.add_header('Content-Type', 'application/json')
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                return response.getcode(), json.loads(response.read().decode('utf-8') or 'null')
        except urllib.error.HTTPError as e:
            body = e.read().decode('utf-8', errors='replace')
            try:
                return e.code, json.loads(body)
            except ValueError:
                return e.code, body

    def check_availability(self) -> bool:
        try:
            status, _ = self._request('GET', '/v1/models')
            self.connected = status == 200
        except (urllib.error.URLError, OSError, ValueError) as e:
            logger.debug(f"LLM server unreachable at {self.base_url}: {e}")
            self.connected = False
        return self.connected

    def send_prompt(self, text: str, system: Optional[str] = None,
                    max_tokens: int = 150) -> Dict[str, str]:
        if not self.check_availability():
            return {'error': f"LLM server not available. Please ensure it is running on {self.base_url}"}

        with self._lock:
            self.history = repair_history(self.history)
            messages = []
            if system:
                messages.append({'role': 'system', 'content': system})
            messages.extend(self.history)
            messages.append({'role': 'user', 'content': text})

        try:
            status, body = self._request('POST', '/v1/chat/completions', {
                'messages': messages,
                'temperature': 0.7,
                'max_tokens': max_tokens,
            })
        except (urllib.error.URLError, OSError, ValueError) as e:
            logger.error(f"LLM request failed: {e}")
            return {'error': f"Failed to communicate with LLM: {e}"}

        if status != 200:
            detail = body
            if isinstance(body, dict) and body.get('error'):
                error = body['error']
                detail = error.get('message', error) if isinstance(error, dict) else error
            message = f"LLM server returned {status}"
            if detail:
                message += f": {detail}"
            logger.error(message)
            return {'error': f"Failed to communicate with LLM: {message}"}

        try:
            reply = body['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            logger.error(f"Unexpected LLM response shape: {body!r}")
            return {'error': "Failed to communicate with LLM: malformed response"}

        with self._lock:
            self.history.append({'role': 'user', 'content': text})
            self.history.append({'role': 'assistant', 'content': reply})
            if len(self.history) > HISTORY_LIMIT:
                self.history = self.history[-HISTORY_LIMIT:]
        return {'message': reply}

    def clear_history(self) -> None:
        with self._lock:
            self.history = []
            self.transcript = []

    # --- Transcript ---

    def record(self, role: str, content: str, timestamp: datetime = None) -> Dict[str, Any]:
        """Keep a display copy of a chat turn ('user', 'assistant', 'system' or 'error')."""
        entry = {'role': role, 'content': content, 'timestamp': timestamp or datetime.now()}
        with self._lock:
            self.transcript.append(entry)
        return entry

    def chat(self, text: str, system: Optional[str] = None, max_tokens: int = 150) -> Dict[str, str]:
        """Send an operator message and record both sides in the transcript."""
        self.record('user', text)
        result = self.send_prompt(text, system, max_tokens)
        if 'message' in result:
            self.record('assistant', result['message'])
        else:
            self.record('error', result['error'])
        return result

    # --- Prompt builders (call with the plant lock held) ---

    @staticmethod
    def build_analysis_prompt(state: SimulationState) -> str:
        return ANALYSIS_PROMPT.format(
            system=summarize_system_state(state),
            logs=summarize_logs(state.events.recent(RECENT_LOG_WINDOW)),
        )

    @staticmethod
    def build_recent_events_prompt(state: SimulationState) -> str:
        digest = summarize_logs(state.events.recent(RECENT_LOG_WINDOW))
        return f"Recent solar plant events: {digest}. Identify main pattern or issue in 50 words max."

    @staticmethod
    def build_maintenance_prompt(state: SimulationState) -> str:
        degraded, faulty = [], []
        for unit in state.equipment.all():
            if unit.status == EquipmentStatus.DEGRADED:
                degraded.append(f"{unit.id} ({', '.join(unit.issues) or 'degraded'})")
            elif unit.status == EquipmentStatus.FAULTY:
                faulty.append(f"{unit.id} ({', '.join(unit.issues) or 'fault'})")
        return (f"Equipment status - Faulty (needs repair): {', '.join(faulty) or 'None'}. "
                f"Degraded (needs cleaning): {', '.join(degraded) or 'None'}. "
                "Prioritize critical repairs over routine cleaning. Give top maintenance action in 50 words.")

    @staticmethod
    def build_optimization_prompt(state: SimulationState) -> str:
        efficiency = state.generation.instantaneous_mw / state.params.get('capacity_mw') * 100
        factors = state.environment.effective_factors()
        return (f"Solar at {efficiency:.0f}% efficiency. Dust:{factors.dust_level:.0f}%, "
                f"Temp:{factors.temperature:.0f}°C. Give ONE actionable optimization in 50 words.")

    # --- Quick actions ---

    def analyze_logs(self, read_state: Callable) -> Dict[str, str]:
        self.last_analysis = datetime.now()
        return self.send_prompt(read_state(self.build_analysis_prompt), ANALYSIS_SYSTEM_PROMPT)

    def analyze_recent_events(self, read_state: Callable) -> Dict[str, str]:
        return self.send_prompt(read_state(self.build_recent_events_prompt))

    def predict_maintenance(self, read_state: Callable) -> Dict[str, str]:
        return self.send_prompt(read_state(self.build_maintenance_prompt), MAINTENANCE_SYSTEM_PROMPT)

    def optimize_performance(self, read_state: Callable) -> Dict[str, str]:
        return self.send_prompt(read_state(self.build_optimization_prompt))
