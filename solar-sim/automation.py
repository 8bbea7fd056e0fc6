"""
Background automation: periodic AI log analysis and periodic log export.
Each purpose has at most one running timer; restarting a task always
stops the previous run first.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from assistant import ChatAssistant
from plant import Severity, SolarPlantEngine
from reporting import export_log_document, write_log_export
from settings import Settings, SettingsStore

logger = logging.getLogger("Automation")


class PeriodicTask:
    """Runs `action` immediately and then every `interval` seconds on a daemon thread."""

    def __init__(self, name: str, action: Callable[[], None]):
        self.name = name
        self._action = action
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self.interval: float = 0
        self.last_run: Optional[datetime] = None
        self.run_count = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval: float, run_immediately: bool = True) -> None:
        self.stop()
        self.interval = interval
        stop_event = threading.Event()
        self._stop_event = stop_event
        self._thread = threading.Thread(
            target=self._loop, args=(stop_event, interval, run_immediately),
            name=f"task-{self.name}", daemon=True
        )
        self._thread.start()
        logger.info(f"Task {self.name} started (every {interval:.0f}s)")

    def stop(self) -> None:
        if self._stop_event is None:
            return
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        self._stop_event = None
        self._thread = None
        logger.info(f"Task {self.name} stopped")

    def _loop(self, stop_event: threading.Event, interval: float, run_immediately: bool) -> None:
        if run_immediately:
            self._run_once()
        while not stop_event.wait(interval):
            self._run_once()

    def _run_once(self) -> None:
        try:
            self._action()
        except Exception as e:
            logger.error(f"Task {self.name} failed: {e}")
        self.last_run = datetime.now()
        self.run_count += 1


class AutomationController:
    """Owns the auto-analysis and auto-download tasks and reacts to settings changes."""

    def __init__(self, engine: SolarPlantEngine, assistant: ChatAssistant,
                 settings: SettingsStore, export_dir: str = "exports"):
        self._engine = engine
        self._assistant = assistant
        self._settings = settings
        self._export_dir = export_dir
        self.analysis_task = PeriodicTask('auto-analysis', self.run_analysis)
        self.download_task = PeriodicTask('auto-download', self.run_download)
        self.last_export_path: Optional[str] = None

    def run_analysis(self) -> Dict[str, str]:
        result = self._assistant.analyze_logs(self._engine.read_state)
        if 'message' in result:
            self._assistant.record('assistant', result['message'])
            self._engine.record_event(f"AI - Assistant: {result['message'][:100]}", 'ai-chat')
        else:
            self._assistant.record('error', result['error'])
            self._engine.record_event(f"AI - Error: {result['error']}", 'ai-error')
        return result

    def export_document(self) -> str:
        return self._engine.read_state(lambda state: export_log_document(
            state, self._assistant.transcript, self._assistant.last_analysis
        ))

    def run_download(self) -> str:
        path = write_log_export(self.export_document(), self._export_dir)
        self.last_export_path = path
        self._engine.raise_alert("Auto-download: Logs saved successfully", Severity.INFO)
        return path

    def set_auto_analysis(self, enabled: bool) -> None:
        if enabled:
            self.analysis_task.start(self._settings.settings.ai_analysis_interval)
            self._engine.record_event("AI Assistant enabled", 'system')
        else:
            self.analysis_task.stop()
            self._engine.record_event("AI Assistant disabled", 'system')

    def set_auto_download(self, enabled: bool) -> None:
        interval = self._settings.settings.log_download_interval
        if enabled:
            # The first export happens after one full interval
            self.download_task.start(interval, run_immediately=False)
            self._engine.raise_alert(f"Auto-download enabled - Logs will be saved every {interval} seconds",
                                     Severity.INFO)
            self._engine.record_event("Auto-download enabled", 'system')
        else:
            self.download_task.stop()
            self._engine.raise_alert("Auto-download disabled", Severity.INFO)
            self._engine.record_event("Auto-download disabled", 'system')

    def apply_settings(self, settings: Settings) -> None:
        """Point the assistant at the new server and restart running timers with new intervals."""
        self._assistant.base_url = settings.llm_base_url
        if self.analysis_task.running:
            self.analysis_task.start(settings.ai_analysis_interval, run_immediately=False)
        if self.download_task.running:
            self.download_task.start(settings.log_download_interval, run_immediately=False)

    def status(self) -> Dict:
        return {
            'auto_analysis': {
                'enabled': self.analysis_task.running,
                'interval': self._settings.settings.ai_analysis_interval,
                'last_run': self.analysis_task.last_run.isoformat() if self.analysis_task.last_run else None,
            },
            'auto_download': {
                'enabled': self.download_task.running,
                'interval': self._settings.settings.log_download_interval,
                'last_run': self.download_task.last_run.isoformat() if self.download_task.last_run else None,
                'last_path': self.last_export_path,
            },
        }

    def stop(self) -> None:
        self.analysis_task.stop()
        self.download_task.stop()
