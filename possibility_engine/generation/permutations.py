"""
Permutation Generator

Enumerates the cartesian space provider × model × temperature × instruction.

STAGE-PG: Permutation Generation
--------------------------------
PG.1: Enabled-provider normalization
PG.2: Instruction selection (default substitution)
PG.3: Cartesian product
PG.4: Count without materialization

The generator never raises for unusable settings: missing or unrecognizable
enabled providers yield an empty list, which callers treat as a valid
"nothing to schedule" outcome.

Author: System Architect
Date: 2025-12-10
"""

import re
from collections.abc import Mapping
from typing import Any

import orjson

from possibility_engine.core.config.constants import (
    DEFAULT_SYSTEM_INSTRUCTION,
    DEFAULT_TEMPERATURES,
    NO_INSTRUCTION_ID,
    Stage,
)
from possibility_engine.core.logging.logger import get_logger, log_stage
from possibility_engine.generation.model_catalog import (
    ModelCatalog,
    ModelInfo,
    default_model_catalog,
)
from possibility_engine.generation.models import Permutation, SystemInstruction, UserSettings

logger = get_logger(__name__)

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def format_temperature(temperature: float) -> str:
    """Shortest round-trip representation, integral values without '.0'."""
    text = repr(float(temperature))
    return text[:-2] if text.endswith(".0") else text


def generate_permutation_id(
    provider: str,
    model: str,
    temperature: float,
    instruction: SystemInstruction | None,
) -> str:
    """
    Deterministic permutation identity.

    Example:
        >>> generate_permutation_id("openai", "gpt-4o", 0.7, None)
        'openai_gpt-4o_temp0.7_no-inst'
    """
    parts = [
        provider,
        _NON_ALNUM.sub("-", model),
        f"temp{format_temperature(temperature)}",
        f"inst-{instruction.id}" if instruction is not None else NO_INSTRUCTION_ID,
    ]
    return "_".join(parts)


def normalize_enabled_providers(value: Any) -> list[str] | None:
    """
    Normalize the enabled-providers setting to an ordered list of names.

    STAGE-PG.1: Enabled-provider normalization

    Accepts a list, a {provider: bool} mapping (only `True` entries kept), or a
    JSON string of either. Returns None when the value is missing or is not
    recognizable; duplicates are dropped keeping first occurrence.
    """
    if value is None:
        return None

    if isinstance(value, (str, bytes)):
        try:
            value = orjson.loads(value)
        except orjson.JSONDecodeError:
            log_stage(logger, "PG.1", "Failed to parse enabled providers", level="warning")
            return None

    if isinstance(value, Mapping):
        providers = [str(name) for name, enabled in value.items() if enabled is True]
    elif isinstance(value, (list, tuple)):
        providers = [name for name in value if isinstance(name, str) and name]
    else:
        return None

    return list(dict.fromkeys(providers))


def resolve_instructions(settings: UserSettings) -> list[SystemInstruction]:
    """
    Enabled instructions, or exactly one default instruction when none are enabled.

    STAGE-PG.2: Instruction selection
    """
    enabled = [instruction for instruction in settings.system_instructions if instruction.enabled]
    if enabled:
        return enabled
    return [SystemInstruction(**DEFAULT_SYSTEM_INSTRUCTION)]


def resolve_temperatures(settings: UserSettings) -> list[float]:
    return list(settings.temperatures) or list(DEFAULT_TEMPERATURES)


class PermutationGenerator:
    """
    Pure permutation enumeration over an injected model catalog.

    Usage:
        generator = PermutationGenerator(catalog)
        permutations = generator.generate_permutations(user_settings)
    """

    def __init__(self, catalog: ModelCatalog | None = None):
        self.catalog = catalog or default_model_catalog()

    @staticmethod
    def _coerce(settings: UserSettings | Mapping[str, Any]) -> UserSettings:
        if isinstance(settings, UserSettings):
            return settings
        return UserSettings.model_validate(dict(settings or {}))

    def models_for_provider(self, provider: str, settings: UserSettings) -> list[ModelInfo]:
        """Catalog models of `provider`, filtered by the allow-list when one is set."""
        models = self.catalog.models_for_provider(provider)
        if settings.enabled_models:
            allowed = set(settings.enabled_models)
            models = [model for model in models if model.id in allowed]
        return models

    def _providers(self, settings: UserSettings, operation: str) -> list[str] | None:
        providers = normalize_enabled_providers(settings.enabled_providers)
        if providers is None:
            log_stage(
                logger,
                Stage.PERMUTATION_GENERATION,
                f"enabled providers is not a valid list in {operation}",
                level="error",
                value_type=type(settings.enabled_providers).__name__,
            )
        return providers

    def generate_permutations(
        self, settings: UserSettings | Mapping[str, Any]
    ) -> list[Permutation]:
        """
        STAGE-PG.3: Cartesian product in provider, model, temperature, instruction order.
        """
        settings = self._coerce(settings)
        providers = self._providers(settings, "generate_permutations")
        if not providers:
            return []

        temperatures = resolve_temperatures(settings)
        instructions = resolve_instructions(settings)
        permutations: list[Permutation] = []

        for provider in providers:
            for model in self.models_for_provider(provider, settings):
                for temperature in temperatures:
                    for instruction in instructions:
                        permutations.append(
                            Permutation(
                                id=generate_permutation_id(
                                    provider, model.id, temperature, instruction
                                ),
                                provider=provider,
                                model=model.id,
                                temperature=temperature,
                                system_instruction=instruction,
                                system_prompt=settings.system_prompt,
                            )
                        )

        log_stage(
            logger,
            Stage.PERMUTATION_GENERATION,
            "Permutations generated",
            level="debug",
            providers=len(providers),
            count=len(permutations),
        )
        return permutations

    def calculate_permutation_count(self, settings: UserSettings | Mapping[str, Any]) -> int:
        """
        STAGE-PG.4: Same filtering rules as generate_permutations, no materialization.
        """
        settings = self._coerce(settings)
        providers = self._providers(settings, "calculate_permutation_count")
        if not providers:
            return 0

        per_model = len(resolve_temperatures(settings)) * len(resolve_instructions(settings))
        return sum(
            len(self.models_for_provider(provider, settings)) * per_model
            for provider in providers
        )
