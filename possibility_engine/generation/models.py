"""
Generation Data Models

Pydantic models for the permutation space: system instructions, permutations,
possibility metadata and the user-settings snapshot the generator consumes.

Wire names are camelCase (aliases) because these models travel inside the
execution request body; Python code uses the snake_case field names.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from possibility_engine.core.config.constants import MAX_POSSIBILITY_MULTIPLIER, Priority


class SystemInstruction(BaseModel):
    """A system prompt variant. Only enabled instructions produce permutations."""

    id: str = Field(..., min_length=1)
    name: str = ""
    content: str = ""
    enabled: bool = True

    model_config = ConfigDict(frozen=True)


class Permutation(BaseModel):
    """
    One concrete (provider, model, temperature, instruction) combination.

    Immutable. `id` is derived deterministically from the combination, see
    `generate_permutation_id`.
    """

    id: str
    provider: str
    model: str
    temperature: float
    system_instruction: SystemInstruction | None = Field(default=None, alias="systemInstruction")
    system_prompt: str | None = Field(default=None, alias="systemPrompt")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class PossibilityMetadata(Permutation):
    """A permutation (or one instance of it) enriched for scheduling."""

    priority: Priority
    estimated_tokens: int = Field(..., alias="estimatedTokens", ge=1)
    order: int = Field(..., ge=0)
    permutation_id: str | None = Field(default=None, alias="permutationId")
    instance_index: int = Field(default=0, alias="instanceIndex", ge=0)


class UserSettings(BaseModel):
    """
    Snapshot of the user's generation settings.

    `enabled_providers` is deliberately loose: a list of provider names, a
    `{provider: bool}` mapping, or a JSON string of either. It is normalized by
    `normalize_enabled_providers` rather than validated here, so that an
    unrecognizable value degrades to "no permutations" instead of an error.
    """

    enabled_providers: Any = Field(default=None, alias="enabledProviders")
    enabled_models: list[str] | None = Field(default=None, alias="enabledModels")
    system_instructions: list[SystemInstruction] = Field(
        default_factory=list, alias="systemInstructions"
    )
    temperatures: list[float] = Field(default_factory=list)
    possibility_tokens: int | None = Field(default=None, alias="possibilityTokens", ge=1)
    reasoning_tokens: int | None = Field(default=None, alias="reasoningTokens", ge=1)
    possibility_multiplier: int = Field(
        default=1, alias="possibilityMultiplier", ge=1, le=MAX_POSSIBILITY_MULTIPLIER
    )
    system_prompt: str | None = Field(default=None, alias="systemPrompt")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("temperatures", mode="before")
    @classmethod
    def unwrap_temperature_options(cls, v):
        """Accept both [0.7, 0.9] and [{"value": 0.7}, {"value": 0.9}]."""
        if v is None:
            return []
        if isinstance(v, (list, tuple)):
            return [item.get("value") if isinstance(item, dict) else item for item in v]
        return v

    @field_validator("system_instructions", mode="before")
    @classmethod
    def default_instructions(cls, v):
        return [] if v is None else v


class GenerationOptions(BaseModel):
    """Per-request overrides."""

    max_tokens: int | None = Field(default=None, alias="maxTokens", ge=1)

    model_config = ConfigDict(populate_by_name=True)
