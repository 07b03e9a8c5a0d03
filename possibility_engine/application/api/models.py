"""
API Models
==========

Pydantic request/response models for the HTTP surface.

- PossibilityRequestModel: body of `POST /possibility/{id}`
- GenerateRequestModel: body of `POST /possibilities/stream`
- HealthResponse, CircuitBreakerStats, CircuitBreakerResponse
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from possibility_engine.generation.models import GenerationOptions, Permutation, UserSettings
from possibility_engine.streaming.models import ChatMessage


# ============================================================================
# REQUEST MODELS
# ============================================================================


class PossibilityOptionsModel(BaseModel):
    """`options` of an execution request. Omitted fields fall back to these defaults."""

    max_tokens: int = Field(default=100, alias="maxTokens", ge=1)
    stream: bool = True

    model_config = ConfigDict(populate_by_name=True)


class PossibilityRequestModel(BaseModel):
    """
    Request body for executing one possibility.

    Example:
        {
            "messages": [{"role": "user", "content": "Hello"}],
            "permutation": {"id": "openai_gpt-4o_0.7_default", "provider": "openai",
                            "model": "gpt-4o", "temperature": 0.7,
                            "systemInstruction": null},
            "options": {"maxTokens": 100}
        }
    """

    messages: list[ChatMessage] = Field(..., min_length=1)
    permutation: Permutation
    options: PossibilityOptionsModel = Field(default_factory=PossibilityOptionsModel)

    model_config = ConfigDict(populate_by_name=True)


class GenerateRequestModel(BaseModel):
    """
    Request body for the aggregate endpoint.

    `settings` is the user-settings snapshot (enabledProviders, enabledModels,
    systemInstructions, temperatures, possibilityTokens, reasoningTokens,
    possibilityMultiplier).
    """

    messages: list[ChatMessage] = Field(..., min_length=1)
    settings: UserSettings = Field(default_factory=UserSettings)
    options: GenerationOptions | None = None

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# RESPONSE MODELS
# ============================================================================


class HealthResponse(BaseModel):
    status: str  # "healthy" or "degraded"
    timestamp: str
    version: str
    components: dict[str, Any] | None = None


class CircuitBreakerStats(BaseModel):
    name: str
    state: str
    consecutive_failures: int
    failure_count: int
    success_count: int
    total_attempts: int
    last_failure_time: float | None = None
    last_success_time: float | None = None
    state_changes: int
    time_in_current_state: float
    failure_threshold: int
    recovery_timeout: float


class CircuitBreakerResponse(BaseModel):
    circuit_breakers: dict[str, CircuitBreakerStats]
    unhealthy: list[str] = Field(default_factory=list)
