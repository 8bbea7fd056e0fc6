"""
Abstract interfaces between the plant core and its collaborators.
The core only depends on these; the web layer, automation tasks and the
chat client plug in behind them.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class SimulationEngine(ABC):
    """Interface for the ticking plant simulation."""

    @abstractmethod
    def start(self) -> None:
        """Start the tick loop."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the tick loop."""
        pass

    @abstractmethod
    def step(self) -> None:
        """Run exactly one tick synchronously."""
        pass


class SnapshotProvider(ABC):
    """Interface for components that expose an immutable view of plant state."""

    @abstractmethod
    def snapshot(self) -> Dict[str, Any]:
        """Return a point-in-time copy of the state as plain data."""
        pass


class StateObserver(ABC):
    """Receives a snapshot after every tick or operator action."""

    @abstractmethod
    def on_state_changed(self, snapshot: Dict[str, Any]) -> None:
        pass


class ChatService(ABC):
    """
    Opaque request/response LLM collaborator.
    Failures are returned as {'error': ...}, never raised.
    """

    @abstractmethod
    def check_availability(self) -> bool:
        """Return True if the backing model server answers."""
        pass

    @abstractmethod
    def send_prompt(self, text: str, system: Optional[str] = None,
                    max_tokens: int = 150) -> Dict[str, str]:
        """Send one user turn; returns {'message': ...} or {'error': ...}."""
        pass
