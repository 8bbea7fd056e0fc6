import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List

from .types import Severity

logger = logging.getLogger("EventLog")

ANOMALY_CATEGORIES = ('anomaly', 'escalation', 'resolution')


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    message: str
    category: str

    @property
    def is_alert(self) -> bool:
        return self.category.startswith('alert-')

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'message': self.message,
            'category': self.category,
        }


class EventLog:
    """
    Append-only record of alerts and log lines for one session.
    Timestamps come from the plant's authoritative clock.
    """

    def __init__(self, now: Callable[[], datetime]):
        self._now = now
        self._entries: List[LogEntry] = []

    def record(self, message: str, category: str = 'info') -> LogEntry:
        entry = LogEntry(self._now(), message, category)
        self._entries.append(entry)
        if category == 'alert-critical':
            logger.warning(message)
        elif category == 'alert-warning':
            logger.info(message)
        else:
            logger.debug(f"[{category}] {message}")
        return entry

    def alert(self, message: str, severity: Severity = Severity.INFO) -> LogEntry:
        """Raise an operator alert; alerts are logged under 'alert-<severity>'."""
        return self.record(message, f"alert-{severity.value}")

    def counter(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def recent(self, count: int) -> List[LogEntry]:
        return self._entries[-count:] if count > 0 else []

    def alerts(self, limit: int = 20) -> List[LogEntry]:
        """Most recent alerts, newest first."""
        found = [e for e in self._entries if e.is_alert]
        return list(reversed(found[-limit:]))

    def clear(self) -> None:
        self._entries = []
