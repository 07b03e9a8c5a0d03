"""
Possibility Store

The possibility map of one generation request: metadata id → accumulating
PossibilityState.

Single writer per id (the executor streaming that id), many readers. All
mutations are synchronous, so no locking is needed on one event loop.
"""

from collections.abc import Iterable
from typing import Any

from possibility_engine.core.logging.logger import get_logger
from possibility_engine.generation.models import PossibilityMetadata
from possibility_engine.streaming.models import PossibilityState

logger = get_logger(__name__)


class PossibilityStore:
    def __init__(self):
        self._states: dict[str, PossibilityState] = {}
        self._frozen = False

    def initialize(self, metadata_list: Iterable[PossibilityMetadata]) -> list[PossibilityState]:
        """Replace the map with one pending state per metadata entry."""
        self._states = {
            metadata.id: PossibilityState(id=metadata.id, metadata=metadata)
            for metadata in metadata_list
        }
        self._frozen = False
        return self.snapshot()

    def _writable(self, possibility_id: str) -> PossibilityState | None:
        if self._frozen:
            return None
        state = self._states.get(possibility_id)
        if state is None:
            logger.debug("Ignoring update for unknown possibility", possibility_id=possibility_id)
        return state

    def append_token(self, possibility_id: str, token: str) -> PossibilityState | None:
        state = self._writable(possibility_id)
        if state is None or state.is_complete:
            return None
        state.content += token
        return state.model_copy()

    def set_probability(
        self, possibility_id: str, probability: float | None, logprobs: Any = None
    ) -> PossibilityState | None:
        state = self._writable(possibility_id)
        if state is None:
            return None
        state.probability = probability
        if logprobs is not None:
            state.logprobs = logprobs
        return state.model_copy()

    def mark_complete(self, possibility_id: str) -> PossibilityState | None:
        """Mark complete. Returns None when unknown or already complete."""
        state = self._writable(possibility_id)
        if state is None or state.is_complete:
            return None
        state.is_complete = True
        return state.model_copy()

    def mark_error(self, possibility_id: str, message: str) -> PossibilityState | None:
        state = self._writable(possibility_id)
        if state is None:
            return None
        state.error = message
        return state.model_copy()

    def get(self, possibility_id: str) -> PossibilityState | None:
        state = self._states.get(possibility_id)
        return state.model_copy() if state is not None else None

    def snapshot(self) -> list[PossibilityState]:
        return [state.model_copy() for state in self._states.values()]

    def freeze(self) -> None:
        """Reject every further mutation until the next initialize()."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def clear(self) -> None:
        self._states.clear()

    def get_stats(self) -> dict[str, int]:
        total = len(self._states)
        completed = sum(1 for state in self._states.values() if state.is_complete)
        return {"total": total, "completed": completed, "pending": total - completed}

    def __contains__(self, possibility_id: str) -> bool:
        return possibility_id in self._states

    def __len__(self) -> int:
        return len(self._states)
