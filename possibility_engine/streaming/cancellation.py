"""
Cancellation Tokens

Each possibility execution carries its own token. Cancelling one token stops
that possibility's read loop only; a request-level cancel goes through the
registry and cancels every active token.
"""

import asyncio

from possibility_engine.core.config.constants import Stage
from possibility_engine.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


class CancellationToken:
    """Cooperative cancellation flag for one possibility."""

    def __init__(self, possibility_id: str):
        self.possibility_id = possibility_id
        self.reason: str | None = None
        self._event = asyncio.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return (
            f"CancellationToken(possibility_id='{self.possibility_id}', "
            f"cancelled={self.is_cancelled})"
        )


class CancellationRegistry:
    """Tracks the active token of every in-flight possibility."""

    def __init__(self):
        self._tokens: dict[str, CancellationToken] = {}

    def create(self, possibility_id: str) -> CancellationToken:
        token = CancellationToken(possibility_id)
        self._tokens[possibility_id] = token
        return token

    def get(self, possibility_id: str) -> CancellationToken | None:
        return self._tokens.get(possibility_id)

    def release(self, token: CancellationToken) -> None:
        """Forget a finished token, unless it was already replaced."""
        if self._tokens.get(token.possibility_id) is token:
            del self._tokens[token.possibility_id]

    def cancel(self, possibility_id: str, reason: str = "cancelled") -> bool:
        token = self._tokens.get(possibility_id)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def cancel_all(self, reason: str = "cancelled") -> int:
        tokens = list(self._tokens.values())
        for token in tokens:
            token.cancel(reason)
        self._tokens.clear()
        if tokens:
            log_stage(logger, Stage.STREAMING, "Cancelled active possibility streams",
                      count=len(tokens), reason=reason)
        return len(tokens)

    @property
    def active_count(self) -> int:
        return len(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)
