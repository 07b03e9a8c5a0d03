"""
Simulated Provider

Backs the execution endpoint without provider credentials: streams the same
event vocabulary a real provider adapter would, with seeded per-permutation
output and configurable latency.
"""

import asyncio
import math
import random
from collections.abc import AsyncGenerator, Sequence

from possibility_engine.core.config.constants import StreamEventType
from possibility_engine.core.exceptions import ProviderError
from possibility_engine.core.logging import get_logger
from possibility_engine.generation.model_catalog import ModelCatalog, default_model_catalog
from possibility_engine.generation.models import Permutation, SystemInstruction
from possibility_engine.streaming.models import ChatMessage, StreamEvent

logger = get_logger(__name__)


def prepare_messages(
    messages: Sequence[ChatMessage],
    system_prompt: str | None = None,
    system_instruction: SystemInstruction | None = None,
) -> list[ChatMessage]:
    """Prepend one system message built from the prompt and the instruction."""
    prepared: list[ChatMessage] = []
    if system_prompt or system_instruction:
        parts = [system_prompt or ""]
        if system_instruction:
            parts.append(f"\n\n{system_instruction.content}")
        prepared.append(ChatMessage(role="system", content="".join(parts)))
    prepared.extend(messages)
    return prepared


def probability_from_logprobs(logprobs: Sequence[float]) -> float:
    """exp(mean logprob), 0 for an empty sequence."""
    if not logprobs:
        return 0.0
    return math.exp(sum(logprobs) / len(logprobs))


class SimulatedProvider:
    """
    A simulated provider for the execution endpoint.
    Streams possibility_start, token, probability and possibility_complete
    events with configurable latency, so the engine can run without
    provider credentials.
    """

    def __init__(
        self,
        catalog: ModelCatalog | None = None,
        min_latency: float = 0.01,
        max_latency: float = 0.03,
        first_token_delay: tuple[float, float] = (0.05, 0.2),
        failure_rate: float = 0.0,
    ):
        self.catalog = catalog or default_model_catalog()
        # Simulation settings
        self.min_latency = min_latency  # Minimum time between tokens
        self.max_latency = max_latency  # Maximum time between tokens
        self.first_token_delay = first_token_delay
        self.failure_rate = failure_rate  # Simulated failure rate (0.0 to 1.0)

    async def stream_possibility(
        self,
        messages: Sequence[ChatMessage],
        permutation: Permutation,
        max_tokens: int,
    ) -> AsyncGenerator[StreamEvent, None]:
        """
        Stream the events of one possibility. Failures are emitted as an
        `error` event for the permutation id, never raised.
        """
        possibility_id = permutation.id
        if self.catalog.lookup(permutation.model) is None:
            yield StreamEvent(
                type=StreamEventType.ERROR,
                data={"id": possibility_id, "message": f"Model {permutation.model} not found"},
            )
            return

        yield StreamEvent(
            type=StreamEventType.POSSIBILITY_START,
            data={
                "id": possibility_id,
                "provider": permutation.provider,
                "model": permutation.model,
                "temperature": permutation.temperature,
                "systemInstruction": (
                    permutation.system_instruction.name if permutation.system_instruction else None
                ),
            },
        )

        # Seeded per permutation so a possibility replays identically
        rng = random.Random(f"{possibility_id}:{permutation.temperature}")
        prepared = prepare_messages(
            messages, permutation.system_prompt, permutation.system_instruction
        )

        try:
            await self._sleep(rng.uniform(*self.first_token_delay))
            logprobs: list[float] = []
            for token in self._tokens(prepared, permutation, rng, max_tokens):
                await self._sleep(rng.uniform(self.min_latency, self.max_latency))
                if self.failure_rate > 0 and rng.random() < self.failure_rate:
                    raise ProviderError(
                        "Simulated provider failure", provider=permutation.provider,
                        status_code=503,
                    )
                logprobs.append(-rng.uniform(0.0, 1.5) * permutation.temperature)
                yield StreamEvent(
                    type=StreamEventType.TOKEN, data={"id": possibility_id, "token": token}
                )
        except ProviderError as e:
            logger.warning("Simulated possibility failed", possibility_id=possibility_id,
                           provider=permutation.provider, error=e.message)
            yield StreamEvent(
                type=StreamEventType.ERROR, data={"id": possibility_id, "message": e.message}
            )
            return

        yield StreamEvent(
            type=StreamEventType.PROBABILITY,
            data={
                "id": possibility_id,
                "probability": probability_from_logprobs(logprobs),
                "logprobs": {"tokens": [{"logprob": value} for value in logprobs]},
            },
        )
        yield StreamEvent(type=StreamEventType.POSSIBILITY_COMPLETE, data={"id": possibility_id})

    async def health_check(self) -> dict[str, object]:
        return {"status": "healthy", "provider": "simulated", "models": len(self.catalog)}

    @staticmethod
    async def _sleep(seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    def _tokens(
        self,
        messages: Sequence[ChatMessage],
        permutation: Permutation,
        rng: random.Random,
        max_tokens: int,
    ) -> list[str]:
        """Word-level tokens, capped at `max_tokens`."""
        prompt = next(
            (m.content for m in reversed(messages) if m.role == "user"), messages[-1].content
        )
        lorem = (
            "Lorem ipsum dolor sit amet, consectetur adipiscing elit. "
            "Sed do eiusmod tempor incididunt ut labore et dolore magna aliqua. "
            "Ut enim ad minim veniam, quis nostrud exercitation ullamco laboris "
            "nisi ut aliquip ex ea commodo consequat."
        ).split()

        # Longer answers for hotter samples
        length = 8 + int(rng.random() * 24 * max(permutation.temperature, 0.1))
        words = [f"[{permutation.model}]", *prompt.split()[:6], "-"]
        words.extend(rng.choice(lorem) for _ in range(length))
        return [word + " " for word in words[:max(max_tokens, 1)]]
