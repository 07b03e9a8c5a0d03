"""
Model Catalog

The scheduler-facing view of the model catalog: which models a provider
offers, their token ceilings, their catalog priority tag and whether they are
reasoning models. Display metadata (names, descriptions) lives elsewhere.

The catalog is injected into the permutation generator and the metadata
builder; `default_model_catalog()` returns the built-in list.
"""

from collections.abc import Iterable
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from possibility_engine.core.config.constants import Priority


class ModelInfo(BaseModel):
    id: str
    provider: str
    max_tokens: int = Field(default=8192, ge=1)
    priority: Priority = Priority.MEDIUM
    is_reasoning_model: bool = False

    model_config = ConfigDict(frozen=True)


class ModelCatalog(Protocol):
    """Collaborator interface consumed by the generation layer."""

    def lookup(self, model_id: str) -> ModelInfo | None: ...

    def models_for_provider(self, provider: str) -> list[ModelInfo]: ...


class InMemoryModelCatalog:
    """Catalog backed by an ordered list. Provider model order is preserved."""

    def __init__(self, models: Iterable[ModelInfo]):
        self._models: list[ModelInfo] = list(models)
        self._by_id: dict[str, ModelInfo] = {model.id: model for model in self._models}

    def lookup(self, model_id: str) -> ModelInfo | None:
        return self._by_id.get(model_id)

    def models_for_provider(self, provider: str) -> list[ModelInfo]:
        return [model for model in self._models if model.provider == provider]

    @property
    def providers(self) -> list[str]:
        return list(dict.fromkeys(model.provider for model in self._models))

    def __len__(self) -> int:
        return len(self._models)


# (id, provider, max_tokens, priority, is_reasoning_model)
_DEFAULT_MODELS: tuple[tuple[str, str, int, Priority, bool], ...] = (
    # OpenAI
    ("gpt-4", "openai", 8192, Priority.MEDIUM, False),
    ("gpt-4-turbo", "openai", 128000, Priority.MEDIUM, False),
    ("gpt-4o", "openai", 128000, Priority.HIGH, False),
    ("o1-preview", "openai", 32768, Priority.HIGH, True),
    ("o1-mini", "openai", 65536, Priority.MEDIUM, True),
    # Anthropic
    ("claude-3-5-sonnet-20241022", "anthropic", 8192, Priority.HIGH, False),
    ("claude-3-5-haiku-20241022", "anthropic", 8192, Priority.HIGH, False),
    ("claude-3-opus-20240229", "anthropic", 4096, Priority.MEDIUM, False),
    # Google
    ("gemini-2.5-pro-preview-05-06", "google", 8192, Priority.HIGH, True),
    ("gemini-2.5-flash-preview-04-17", "google", 8192, Priority.HIGH, True),
    ("gemini-2.0-flash-exp", "google", 8192, Priority.HIGH, False),
    ("gemini-1.5-pro", "google", 8192, Priority.MEDIUM, True),
    ("gemini-1.5-flash", "google", 8192, Priority.MEDIUM, False),
    # Mistral
    ("mistral-large-latest", "mistral", 8192, Priority.MEDIUM, False),
    ("mistral-small-latest", "mistral", 8192, Priority.LOW, False),
    ("pixtral-12b-2409", "mistral", 8192, Priority.LOW, False),
    # Together
    ("deepseek-ai/DeepSeek-R1", "together", 8192, Priority.HIGH, True),
    ("deepseek-ai/DeepSeek-V3", "together", 8192, Priority.HIGH, False),
    ("google/gemma-2-27b-it", "together", 8192, Priority.HIGH, False),
    ("meta-llama/Meta-Llama-3.1-8B-Instruct-Turbo", "together", 8192, Priority.LOW, False),
    ("meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo", "together", 8192, Priority.MEDIUM, False),
    ("meta-llama/Llama-3.3-70B-Instruct-Turbo", "together", 8192, Priority.HIGH, False),
    ("Qwen/Qwen2.5-72B-Instruct-Turbo", "together", 8192, Priority.LOW, False),
    ("Qwen/Qwen2.5-Coder-32B-Instruct", "together", 8192, Priority.HIGH, False),
    ("Qwen/QwQ-32B-Preview", "together", 8192, Priority.HIGH, True),
)


def default_model_catalog() -> InMemoryModelCatalog:
    """Built-in catalog. Membership and priority tags are configuration."""
    return InMemoryModelCatalog(
        ModelInfo(
            id=model_id,
            provider=provider,
            max_tokens=max_tokens,
            priority=priority,
            is_reasoning_model=is_reasoning,
        )
        for model_id, provider, max_tokens, priority, is_reasoning in _DEFAULT_MODELS
    )
