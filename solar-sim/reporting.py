"""
Operator-facing documents built from plant state: the plain-text log
export, its reader, and the structured report bundle plus the LLM
narrative that accompanies it.
"""
import logging
import math
import os
import re
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from interfaces import ChatService
from plant import (
    ANOMALY_CATEGORIES, EnvironmentalFactors, EquipmentKind, EquipmentStatus, LogEntry, SimulationState
)
from plant.generation import base_generation, derating_factors

logger = logging.getLogger("Reporting")

REPORT_LOG_WINDOW = 50
NORMAL_MARKERS = ('System operating normally', 'Operating conditions optimal')
EQUIPMENT_ID_PATTERN = re.compile(r'(Panel|Inverter|Battery|Transformer)-\d+')
LIST_ITEM_PATTERN = re.compile(r'^(\d+\.|-|•)')

REPORT_SECTIONS = (
    ('summary', 'Executive Summary'),
    ('health_assessment', 'Equipment Health Assessment'),
    ('efficiency_analysis', 'Efficiency Analysis'),
    ('risk_assessment', 'Risk Assessment'),
    ('recommendations', 'Recommendations'),
    ('maintenance_plan', 'Maintenance Plan'),
    ('predictions', 'Performance Predictions'),
)

REPORT_SYSTEM_PROMPT = ("You are an expert solar plant analyst with 20 years of experience. Provide detailed, "
                        "technical analysis with specific metrics and actionable insights. Use professional "
                        "language and be thorough in your assessment.")

UNAVAILABLE_SECTIONS = {
    'summary': "AI analysis unavailable - LLM not connected",
    'health_assessment': "Unable to assess",
    'efficiency_analysis': "Analysis unavailable",
    'risk_assessment': "Unable to assess risks",
    'recommendations': ["Connect to LLM for detailed analysis"],
    'maintenance_plan': "Unable to generate maintenance plan",
    'predictions': ["AI predictions unavailable"],
}


def _iso(value: datetime) -> str:
    return value.isoformat(timespec='seconds')


# --- Log export ---

def export_log_document(state: SimulationState, transcript: List[Dict[str, Any]] = None,
                        last_analysis: datetime = None, generated_at: datetime = None) -> str:
    """Render the session log as the plain-text operations document."""
    generated_at = generated_at or datetime.now()
    entries = state.events.entries
    now = state.now()
    first = entries[0].timestamp if entries else now
    capacity = state.params.get('capacity_mw')
    generation = state.generation
    factors = state.environment.effective_factors()
    active = state.anomalies.active()

    lines = [
        "=== SOLAR PLANT OPERATION LOGS ===",
        f"Generated: {_iso(generated_at)}",
        f"Session Duration: {max(0, math.floor((now - first).total_seconds() / 60))} minutes",
        f"Total Log Entries: {len(entries)}",
        "",
        "--- Current System State ---",
        f"Time: {now:%H:%M:%S}",
        f"Generation: {generation.instantaneous_mw:.2f} MW ({generation.instantaneous_mw / capacity * 100:.1f}%)",
        f"Daily Cumulative: {generation.daily_cumulative_mwh:.2f} MWh",
        f"Active Anomalies: {len(active)}",
        f"Environmental Control: {'Manual' if state.environment.manual_control else 'Automatic'}",
        f"Temperature: {factors.temperature:.1f}°C",
        f"Dust Level: {factors.dust_level:.1f}%",
        f"Cloud Cover: {factors.cloud_cover:.1f}%",
        f"Humidity: {factors.humidity:.1f}%",
        "",
    ]

    alerts = [e for e in entries if e.is_alert]
    anomaly_logs = [e for e in entries if e.category in ANOMALY_CATEGORIES]
    system_logs = [e for e in entries if not e.is_alert and e.category not in ANOMALY_CATEGORIES]

    if alerts:
        lines.append("--- Alerts & Notifications ---")
        for entry in alerts:
            severity = entry.category.replace('alert-', '')
            lines.append(f"{_iso(entry.timestamp)} [{severity.upper()}] {entry.message}")
        lines.append("")

    if anomaly_logs:
        lines.append("--- Anomaly History ---")
        for entry in anomaly_logs:
            lines.append(f"{_iso(entry.timestamp)} [{entry.category.upper()}] {entry.message}")
        lines.append("")

    lines.append("--- System Operations ---")
    for entry in system_logs:
        lines.append(f"{_iso(entry.timestamp)} [{entry.category.upper()}] {entry.message}")

    if active:
        lines.append("")
        lines.append("--- Active Anomalies Details ---")
        for anomaly in active:
            lines.append("")
            lines.append(f"{anomaly.name}:")
            lines.append(f"  Type: {anomaly.type.value}")
            lines.append(f"  Location: {anomaly.location}")
            lines.append(f"  Impact: {anomaly.impact_percent:.0f}%")
            lines.append(f"  Duration: {math.floor(anomaly.age_seconds(now) / 60)} minutes")
            lines.append(f"  Escalation Level: {anomaly.escalation_level}")
            if anomaly.affected_equipment_ids:
                lines.append(f"  Affected Equipment: {', '.join(anomaly.affected_equipment_ids)}")

    report = state.drone.last_report
    if report is not None:
        lines.append("")
        lines.append("--- Last Drone Scan Report ---")
        lines.append(f"Scan Date: {_iso(report.timestamp)}")
        lines.append(f"Duration: {report.duration_seconds:.0f} seconds")
        lines.append(f"Panels Scanned: {report.panels_scanned}")
        lines.append(f"Dust Level at Scan: {report.dust_level:.0f}%")
        if report.issues_found:
            lines.append("")
            lines.append("Issues Found:")
            lines.extend(f"  - {issue}" for issue in report.issues_found)
        if report.observations:
            lines.append("")
            lines.append("Observations:")
            lines.extend(f"  - {observation}" for observation in report.observations)

    if transcript:
        lines.append("")
        lines.append("--- AI Assistant Conversation History ---")
        lines.append(f"Total Messages: {len(transcript)}")
        lines.append(f"Last Analysis: {_iso(last_analysis) if last_analysis else 'N/A'}")
        lines.append("")
        labels = {'user': 'USER', 'assistant': 'AI', 'error': 'ERROR'}
        for message in transcript:
            if message['role'] == 'system':
                lines.append(f"[SYSTEM] {message['content']}")
            else:
                label = labels.get(message['role'], message['role'].upper())
                lines.append(f"[{message['timestamp']:%H:%M:%S}] {label}: {message['content']}")
            lines.append("")

    return "\n".join(lines) + "\n"


def parse_current_state(document: str) -> Dict[str, float]:
    """Read generation, daily cumulative and active anomaly count back out of an export."""
    start = document.find("--- Current System State ---")
    if start < 0:
        raise ValueError("Document has no current system state section")
    end = document.find("\n--- ", start + 1)
    section = document[start:end if end >= 0 else len(document)]

    generation = re.search(r'^Generation: ([\d.]+) MW', section, re.MULTILINE)
    cumulative = re.search(r'^Daily Cumulative: ([\d.]+) MWh', section, re.MULTILINE)
    active = re.search(r'^Active Anomalies: (\d+)$', section, re.MULTILINE)
    if not (generation and cumulative and active):
        raise ValueError("Current system state section is incomplete")
    return {
        'generation_mw': float(generation.group(1)),
        'daily_cumulative_mwh': float(cumulative.group(1)),
        'active_anomalies': int(active.group(1)),
    }


def log_export_filename(moment: datetime = None) -> str:
    moment = moment or datetime.now()
    return f"solar_plant_logs_{moment:%Y-%m-%d_%H-%M-%S}.txt"


def write_log_export(document: str, directory: str, moment: datetime = None) -> str:
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, log_export_filename(moment))
    with open(path, 'w', encoding='utf-8') as f:
        f.write(document)
    logger.info(f"Log export written to {path}")
    return path


# --- Report bundle ---

def analyze_log_patterns(entries: List[LogEntry]) -> Dict[str, Any]:
    """Counts by kind for entries after the most recent all-clear marker."""
    relevant = entries
    for index in range(len(entries) - 1, -1, -1):
        if any(marker in entries[index].message for marker in NORMAL_MARKERS):
            relevant = entries[index + 1:]
            break

    by_hour = Counter(e.timestamp.hour for e in relevant)
    most_active_hour = None
    if by_hour:
        most_active_hour = max(sorted(by_hour), key=lambda hour: by_hour[hour])

    return {
        'critical_events': [e.to_dict() for e in relevant if e.category == 'alert-critical'],
        'warnings': [e.to_dict() for e in relevant if e.category == 'alert-warning'],
        'anomalies': [e.to_dict() for e in relevant
                      if e.category == 'anomaly' and 'ESCALATION' not in e.message
                      and 'System performance degraded' not in e.message],
        'system_events': [e.to_dict() for e in relevant if e.category == 'system'],
        'events_by_hour': dict(by_hour),
        'most_active_hour': most_active_hour,
        'patterns': identify_recurring_issues(relevant),
    }


def identify_recurring_issues(entries: Iterable[LogEntry]) -> List[Dict[str, Any]]:
    """Equipment ids named in two or more anomaly/warning/critical entries."""
    counts = Counter()
    for entry in entries:
        if entry.category in ('anomaly', 'alert-warning', 'alert-critical'):
            match = EQUIPMENT_ID_PATTERN.search(entry.message)
            if match:
                counts[match.group(0)] += 1
    return [{'equipment': equipment, 'count': count} for equipment, count in counts.items() if count >= 2]


def average_resolution_time(anomalies) -> str:
    resolved = [a for a in anomalies if not a.active and a.resolved_at is not None]
    if not resolved:
        return 'N/A'
    total = sum((a.resolved_at - a.created_at).total_seconds() for a in resolved)
    return f"{math.floor(total / len(resolved) / 60)} minutes"


def environmental_impact(factors) -> Dict[str, str]:
    """Rough additive loss percentages used in the report narrative."""
    temperature = max(0.0, (factors.temperature - 25) * 0.4)
    dust = factors.dust_level / 100 * 30
    cloud = factors.cloud_cover / 100 * 50
    return {
        'temperature_loss': f"{temperature:.1f}%",
        'dust_loss': f"{dust:.1f}%",
        'cloud_loss': f"{cloud:.1f}%",
        'total_impact': f"{temperature + dust + cloud:.1f}%",
    }


def operational_insights(state: SimulationState) -> List[Dict[str, str]]:
    insights = []
    factors = state.environment.effective_factors()
    if factors.dust_level > 20:
        insights.append({
            'type': 'environmental', 'severity': 'warning',
            'message': f"High dust levels ({factors.dust_level:.0f}%) are reducing generation efficiency "
                       f"by approximately {factors.dust_level * 0.5:.1f}%",
        })
    if factors.temperature > 35:
        insights.append({
            'type': 'environmental', 'severity': 'warning',
            'message': f"High temperature ({factors.temperature:.0f}°C) causing "
                       f"{(factors.temperature - 25) * 0.4:.1f}% efficiency loss",
        })

    unhealthy = [u for u in state.equipment.all() if u.health < 85]
    if unhealthy:
        insights.append({
            'type': 'equipment',
            'severity': 'critical' if any(u.health < 70 for u in unhealthy) else 'warning',
            'message': f"{len(unhealthy)} equipment units require attention (health below 85%)",
        })

    hour = state.now().hour
    capacity = state.params.get('capacity_mw')
    if 6 <= hour <= 18 and state.generation.instantaneous_mw < capacity * 0.5:
        insights.append({
            'type': 'generation', 'severity': 'warning',
            'message': "Generation below 50% capacity during peak hours - investigate potential issues",
        })
    return insights


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def prepare_report_data(state: SimulationState) -> Dict[str, Any]:
    """Structured bundle handed to the report writer. Call with the plant lock held."""
    now = state.now()
    capacity = state.params.get('capacity_mw')
    generation = state.generation
    entries = state.events.recent(REPORT_LOG_WINDOW)
    anomalies = state.anomalies.anomalies
    active = state.anomalies.active()
    units = state.equipment.all()

    breakdown = {
        'panels': [u.to_dict() for u in units if u.kind == EquipmentKind.PANEL],
        'inverters': [u.to_dict() for u in units if u.kind == EquipmentKind.INVERTER],
        'batteries': [u.to_dict() for u in units if u.kind == EquipmentKind.BATTERY],
        'transformers': [u.to_dict() for u in units if u.kind == EquipmentKind.TRANSFORMER],
    }
    panels = state.equipment.of_kind(EquipmentKind.PANEL)
    inverters = state.equipment.of_kind(EquipmentKind.INVERTER)

    return {
        'timestamp': _iso(datetime.now()),
        'plant_info': {
            'capacity_mw': capacity,
            'current_generation_mw': generation.instantaneous_mw,
            'daily_cumulative_mwh': generation.daily_cumulative_mwh,
            'efficiency': round(generation.instantaneous_mw / capacity * 100, 1),
            'current_time': _iso(now),
        },
        'environmental': state.environment.effective_factors().to_dict(),
        'anomalies': {
            'total': len(anomalies),
            'active': len(active),
            'resolved': len(anomalies) - len(active),
            'details': [a.to_dict() for a in anomalies],
            'avg_resolution_time': average_resolution_time(anomalies),
        },
        'equipment': {
            'total': len(units),
            'healthy': sum(1 for u in units if u.status == EquipmentStatus.HEALTHY),
            'breakdown': breakdown,
            'metrics': {
                'avg_panel_health': _average([u.health for u in panels]),
                'avg_inverter_health': _average([u.health for u in inverters]),
                'critical_equipment': [u.id for u in units if u.health < 80],
                'maintenance_needed': [{'id': u.id, 'issues': list(u.issues)} for u in units if u.issues],
            },
        },
        'logs': [e.to_dict() for e in entries],
        'log_analysis': analyze_log_patterns(entries),
        'last_drone_scan': state.drone.last_report.to_dict() if state.drone.last_report else None,
        'operational_insights': operational_insights(state),
        'environmental_impact': environmental_impact(state.environment.effective_factors()),
    }


def build_report_prompt(data: Dict[str, Any], location_name: str = "Rajasthan") -> str:
    plant = data['plant_info']
    env = data['environmental']
    impact = data['environmental_impact']
    anomalies = data['anomalies']
    metrics = data['equipment']['metrics']
    breakdown = data['equipment']['breakdown']
    analysis = data['log_analysis']
    current_time = datetime.fromisoformat(plant['current_time'])
    capacity = plant['capacity_mw']

    ideal = base_generation(current_time, capacity)
    expected = 0.0
    if ideal > 0:
        derate = derating_factors(EnvironmentalFactors(**env))
        expected = ideal * derate['temperature'] * derate['dust'] * derate['cloud']
    ratio = f"{plant['current_generation_mw'] / expected * 100:.1f}" if expected > 0 else "N/A"
    daily_target = capacity * 6

    active_lines = "\n".join(
        f"- {a['name']} at {a['location']} (Impact: {a['impact_percent']:.0f}%)"
        for a in anomalies['details'] if a['active']
    ) or "No active anomalies"
    insight_lines = "\n".join(
        f"- [{i['severity'].upper()}] {i['message']}" for i in data['operational_insights']
    ) or "No critical operational issues detected"
    issue_lines = "\n".join(
        f"- {item['id']}: {', '.join(item['issues'])}" for item in metrics['maintenance_needed']
    ) or "No equipment issues reported"
    recurring = ", ".join(f"{p['equipment']} ({p['count']} times)" for p in analysis['patterns']) or "None"
    busiest = f"{analysis['most_active_hour']}:00" if analysis['most_active_hour'] is not None else "N/A"

    sections = "\n\n".join(f"### {title}" for _, title in REPORT_SECTIONS)
    return f"""You are an expert solar plant analyst. Generate a DETAILED and COMPREHENSIVE analysis report based on this operational data:

=== PLANT OVERVIEW ===
Facility: {capacity:.0f}MW Solar Power Plant - {location_name}
Current Time: {current_time:%Y-%m-%d %H:%M:%S}
Operating Status: {'ONLINE' if plant['current_generation_mw'] > 0 else 'OFFLINE'}

=== GENERATION METRICS ===
- Current Output: {plant['current_generation_mw']:.2f}MW ({plant['efficiency']}% of capacity)
- Daily Production: {plant['daily_cumulative_mwh']:.2f}MWh
- Expected Daily Target: {daily_target:.0f}MWh (6 peak sun hours)
- Performance vs Target: {plant['daily_cumulative_mwh'] / daily_target * 100:.1f}%
- Ideal Generation (current time): {ideal:.2f}MW
- Expected Generation (with env factors): {expected:.2f}MW
- Performance Ratio: {ratio}%

=== EQUIPMENT STATUS ===
Panels: {len(breakdown['panels'])} units, Avg Health: {metrics['avg_panel_health']:.1f}%
Inverters: {len(breakdown['inverters'])} units, Avg Health: {metrics['avg_inverter_health']:.1f}%
Critical Equipment (<80% health): {len(metrics['critical_equipment'])} units
Maintenance Required: {len(metrics['maintenance_needed'])} units

Detailed Issues:
{issue_lines}

=== ENVIRONMENTAL CONDITIONS ===
- Temperature: {env['temperature']:.1f}°C (Impact: {impact['temperature_loss']})
- Dust Level: {env['dust_level']:.1f}% (Impact: {impact['dust_loss']})
- Cloud Cover: {env['cloud_cover']:.1f}% (Impact: {impact['cloud_loss']})
- Total Environmental Impact: {impact['total_impact']}

=== ANOMALY STATUS ===
Active/Total/Resolved: {anomalies['active']}/{anomalies['total']}/{anomalies['resolved']}
Average Resolution Time: {anomalies['avg_resolution_time']}

Active Anomalies:
{active_lines}

=== OPERATIONAL INSIGHTS ===
{insight_lines}

=== LOG ANALYSIS (Last {REPORT_LOG_WINDOW} entries) ===
- Critical Events: {len(analysis['critical_events'])}
- Warnings: {len(analysis['warnings'])}
- Anomaly Events: {len(analysis['anomalies'])}
- System Events: {len(analysis['system_events'])}
- Most Active Hour: {busiest}
- Recurring Issues: {recurring}

IMPORTANT GUIDELINES:
1. Be specific with numbers and percentages
2. Prioritize actionable insights
3. Consider environmental impacts (already calculated above)
4. Focus on ROI and efficiency improvements
5. Provide clear timelines for all recommendations

Generate a comprehensive report with these sections:

{sections}"""


def _list_items(text: str) -> List[str]:
    return [LIST_ITEM_PATTERN.sub('', line.strip()).strip()
            for line in text.split('\n') if LIST_ITEM_PATTERN.match(line.strip())]


def parse_report_sections(text: str) -> Dict[str, Any]:
    """Split the narrative on the seven section headers; list sections become lists."""
    positions = []
    for key, title in REPORT_SECTIONS:
        match = re.search(rf'{re.escape(title)}:?[ \t]*\n', text, re.IGNORECASE)
        positions.append((key, match))

    sections = {}
    for index, (key, match) in enumerate(positions):
        content = ''
        if match:
            end = len(text)
            for _, later in positions[index + 1:]:
                if later and later.start() > match.end():
                    end = later.start()
                    break
            content = text[match.end():end].strip().rstrip('#').strip()
        sections[key] = content or 'Section not available'

    recommendations = _list_items(sections['recommendations'])
    sections['recommendations'] = recommendations or ["Continue monitoring system performance"]
    predictions = _list_items(sections['predictions'])
    sections['predictions'] = predictions or ["Generation expected to maintain current efficiency levels"]
    return sections


def generate_report(read_state, chat: ChatService, location_name: str = "Rajasthan") -> Dict[str, Any]:
    """Collect the report bundle under the plant lock, then ask the LLM for the narrative."""
    data = read_state(prepare_report_data)
    if not chat.check_availability():
        return {'data': data, 'analysis': dict(UNAVAILABLE_SECTIONS)}

    result = chat.send_prompt(build_report_prompt(data, location_name), REPORT_SYSTEM_PROMPT, 2000)
    if 'error' in result:
        logger.warning(f"Report narrative failed: {result['error']}")
        analysis = {
            'summary': "AI analysis error",
            'health_assessment': result['error'],
            'efficiency_analysis': "Analysis failed",
            'risk_assessment': "Error in analysis",
            'recommendations': ["Check LLM connection"],
            'maintenance_plan': "Unable to generate",
            'predictions': ["Unable to generate predictions"],
        }
    else:
        analysis = parse_report_sections(result['message'])
    return {'data': data, 'analysis': analysis}
