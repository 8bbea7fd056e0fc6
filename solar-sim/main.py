"""
Solar Plant Simulator entry point.

Wires the plant engine, the LLM assistant, persisted settings, automation
tasks and the web API together and keeps them running.
"""
__version__ = "0.1.0"

import asyncio
import logging
import os

from assistant import ChatAssistant
from automation import AutomationController
from interfaces import SimulationEngine
from plant import SolarPlantEngine
from settings import SettingsStore
from web.app import WebServer

# Configure Logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
logger = logging.getLogger("Main")


class SolarPlantSimulator:
    """
    Main orchestrator (only coordinates components).
    """

    def __init__(self,
                 engine: SimulationEngine,
                 automation: AutomationController,
                 web_server: WebServer = None):
        self._engine = engine
        self._automation = automation
        self._web = web_server

    async def initialize(self) -> None:
        """Initialize all components."""
        logger.info("Initializing Solar Plant Simulator...")
        self._engine.start()
        if self._web:
            self._web.start()
        logger.info("Solar Plant Simulator initialized")

    async def run(self) -> None:
        """Idle while the engine and web threads do the work."""
        logger.info("Entering main loop")
        while True:
            await asyncio.sleep(1)

    def stop(self) -> None:
        """Stop all components."""
        logger.info("Stopping Solar Plant Simulator...")
        self._automation.stop()
        if self._web:
            self._web.stop()
        self._engine.stop()
        logger.info("Solar Plant Simulator stopped")


async def main():
    """Application entry point."""
    settings = SettingsStore()
    engine = SolarPlantEngine()
    assistant = ChatAssistant(settings.settings.llm_base_url)
    automation = AutomationController(engine, assistant, settings,
                                      os.environ.get("LOG_EXPORT_DIR", "exports"))
    web = WebServer(engine, host="0.0.0.0", port=int(os.environ.get("WEB_PORT", "8080")),
                    assistant=assistant, settings=settings, automation=automation)

    simulator = SolarPlantSimulator(engine, automation, web)
    try:
        await simulator.initialize()
        await simulator.run()
    finally:
        simulator.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
