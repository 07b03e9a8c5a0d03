"""
Streaming Layer

Executes possibilities and consumes the framed `data: <json>` event stream.

- **models.py**: ChatMessage, ExecutionRequest, StreamEvent, ParsedFrame, PossibilityState
- **cancellation.py**: Per-possibility cancellation tokens and their registry
- **event_parser.py**: Line-buffered frame parser
- **possibility_store.py**: The possibility map of one generation
- **executor.py**: Breaker-guarded streaming execution of one possibility
"""

from .cancellation import CancellationRegistry, CancellationToken
from .event_parser import StreamEventParser
from .executor import ExecutionOutcome, PossibilityExecutor, PossibilityResult
from .models import ChatMessage, ExecutionRequest, ParsedFrame, PossibilityState, StreamEvent
from .possibility_store import PossibilityStore

__all__ = [
    "CancellationRegistry",
    "CancellationToken",
    "ChatMessage",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ParsedFrame",
    "PossibilityExecutor",
    "PossibilityResult",
    "PossibilityState",
    "PossibilityStore",
    "StreamEvent",
    "StreamEventParser",
]
