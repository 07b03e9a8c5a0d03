"""
Priority Metadata Builder

Turns the permutation set into schedulable `PossibilityMetadata`.

STAGE-PM: Priority Metadata
---------------------------
PM.1: Priority classification
PM.2: Token budget
PM.3: Instance multiplication
PM.4: Prioritized ordering
PM.5: Lookup (index, id, range)

Priority only decides submission order to the pool. It never changes what a
possibility computes, and completion order stays indeterminate.

Author: System Architect
Date: 2025-12-10
"""

from collections.abc import Mapping
from typing import Any

from possibility_engine.core.config.constants import (
    DEFAULT_BASE_LATENCY_MS,
    PROVIDER_BASE_LATENCY_MS,
    Priority,
    Stage,
)
from possibility_engine.core.config.settings import Settings, get_settings
from possibility_engine.core.logging.logger import get_logger, log_stage
from possibility_engine.generation.model_catalog import ModelCatalog, default_model_catalog
from possibility_engine.generation.models import (
    GenerationOptions,
    Permutation,
    PossibilityMetadata,
    UserSettings,
)
from possibility_engine.generation.permutations import PermutationGenerator

logger = get_logger(__name__)


def _model_size_multiplier(model_id: str) -> float:
    """Larger models stream slower."""
    if "gpt-4o" in model_id and "mini" not in model_id:
        return 1.5
    if "claude-3-5-sonnet" in model_id:
        return 1.4
    if "gemini-1.5-pro" in model_id:
        return 1.3
    if "mini" in model_id or "flash" in model_id or "haiku" in model_id:
        return 0.8
    return 1.0


def estimate_loading_time_ms(metadata: Permutation) -> int:
    """
    Rough time-to-complete estimate for UI placeholders.

    provider base × model size multiplier × (1 + 0.2·temperature) × 1.2 when
    a system instruction is present.
    """
    base = PROVIDER_BASE_LATENCY_MS.get(metadata.provider, DEFAULT_BASE_LATENCY_MS)
    temperature_multiplier = 1 + metadata.temperature * 0.2
    instruction_multiplier = 1.2 if metadata.system_instruction is not None else 1.0
    return round(
        base * _model_size_multiplier(metadata.model) * temperature_multiplier
        * instruction_multiplier
    )


class PossibilityMetadataBuilder:
    """
    Builds, orders and looks up possibility metadata.

    All lookups derive from `build_metadata` so index, id and range queries
    always agree with each other.

    Args:
        catalog: Injected model catalog (priority tags, reasoning flags)
        generator: Permutation generator (defaults to one over the same catalog)
        settings: Engine settings (thresholds and token ceilings)
    """

    def __init__(
        self,
        catalog: ModelCatalog | None = None,
        generator: PermutationGenerator | None = None,
        settings: Settings | None = None,
    ):
        self.catalog = catalog or default_model_catalog()
        self.generator = generator or PermutationGenerator(self.catalog)
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def is_standard_temperature(self, temperature: float) -> bool:
        generation = self.settings.generation
        return (
            abs(temperature - generation.STANDARD_TEMPERATURE)
            < generation.STANDARD_TEMPERATURE_TOLERANCE
        )

    def calculate_priority(self, permutation: Permutation, index: int) -> Priority:
        """
        STAGE-PM.1: Priority classification

        high:   catalog priority high, OR near-standard temperature, OR among
                the first HIGH_PRIORITY_INDEX_THRESHOLD permutations
        medium: catalog priority medium, OR near-standard temperature
        low:    everything else
        """
        info = self.catalog.lookup(permutation.model)
        catalog_priority = info.priority if info is not None else None
        standard = self.is_standard_temperature(permutation.temperature)

        if (
            catalog_priority == Priority.HIGH
            or standard
            or index < self.settings.generation.HIGH_PRIORITY_INDEX_THRESHOLD
        ):
            return Priority.HIGH
        if catalog_priority == Priority.MEDIUM or standard:
            return Priority.MEDIUM
        return Priority.LOW

    def estimate_tokens(
        self,
        model_id: str,
        user_settings: UserSettings,
        options: GenerationOptions | None = None,
    ) -> int:
        """
        STAGE-PM.2: Token budget

        explicit per-request override > reasoning ceiling (reasoning models)
        > standard possibility ceiling. User settings override the configured
        ceilings.
        """
        if options is not None and options.max_tokens:
            return options.max_tokens

        generation = self.settings.generation
        info = self.catalog.lookup(model_id)
        if info is not None and info.is_reasoning_model:
            return user_settings.reasoning_tokens or generation.REASONING_TOKENS_DEFAULT
        return user_settings.possibility_tokens or generation.POSSIBILITY_TOKENS_DEFAULT

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce(
        user_settings: UserSettings | Mapping[str, Any],
        options: GenerationOptions | Mapping[str, Any] | None,
    ) -> tuple[UserSettings, GenerationOptions]:
        if not isinstance(user_settings, UserSettings):
            user_settings = UserSettings.model_validate(dict(user_settings or {}))
        if options is None:
            options = GenerationOptions()
        elif not isinstance(options, GenerationOptions):
            options = GenerationOptions.model_validate(dict(options))
        return user_settings, options

    def build_metadata(
        self,
        user_settings: UserSettings | Mapping[str, Any],
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> list[PossibilityMetadata]:
        """
        Metadata in generation order.

        STAGE-PM.3: With a multiplier K > 1 each permutation expands into K
        entries `<permutationId>_<i>` with `order = base_index*K + i`.
        """
        user_settings, options = self._coerce(user_settings, options)
        permutations = self.generator.generate_permutations(user_settings)
        multiplier = user_settings.possibility_multiplier

        metadata: list[PossibilityMetadata] = []
        for base_index, permutation in enumerate(permutations):
            priority = self.calculate_priority(permutation, base_index)
            tokens = self.estimate_tokens(permutation.model, user_settings, options)
            base = permutation.model_dump()

            if multiplier <= 1:
                metadata.append(
                    PossibilityMetadata(
                        **base,
                        priority=priority,
                        estimated_tokens=tokens,
                        order=base_index,
                        permutation_id=permutation.id,
                    )
                )
                continue

            for instance in range(multiplier):
                metadata.append(
                    PossibilityMetadata(
                        **{**base, "id": f"{permutation.id}_{instance}"},
                        priority=priority,
                        estimated_tokens=tokens,
                        order=base_index * multiplier + instance,
                        permutation_id=permutation.id,
                        instance_index=instance,
                    )
                )

        log_stage(
            logger,
            Stage.METADATA_BUILD,
            "Possibility metadata built",
            level="debug",
            permutations=len(permutations),
            multiplier=multiplier,
            count=len(metadata),
        )
        return metadata

    def build_prioritized_metadata(
        self,
        user_settings: UserSettings | Mapping[str, Any],
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> list[PossibilityMetadata]:
        """
        STAGE-PM.4: Stable sort by (priority rank, order).
        """
        metadata = self.build_metadata(user_settings, options)
        return sorted(metadata, key=lambda item: (item.priority.rank, item.order))

    # ------------------------------------------------------------------
    # Lookup (STAGE-PM.5)
    # ------------------------------------------------------------------

    def get_metadata_by_index(
        self,
        user_settings: UserSettings | Mapping[str, Any],
        index: int,
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> PossibilityMetadata | None:
        metadata = self.build_metadata(user_settings, options)
        if 0 <= index < len(metadata):
            return metadata[index]
        return None

    def get_metadata_by_id(
        self,
        user_settings: UserSettings | Mapping[str, Any],
        possibility_id: str,
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> PossibilityMetadata | None:
        for item in self.build_metadata(user_settings, options):
            if item.id == possibility_id:
                return item
        return None

    def get_metadata_range(
        self,
        user_settings: UserSettings | Mapping[str, Any],
        start: int,
        count: int,
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> list[PossibilityMetadata]:
        """Contiguous slice of generation order, for lazy loading."""
        if start < 0 or count < 0:
            raise ValueError("start and count must be non-negative")
        return self.build_metadata(user_settings, options)[start:start + count]

    def get_total_count(self, user_settings: UserSettings | Mapping[str, Any]) -> int:
        user_settings, _ = self._coerce(user_settings, None)
        return (
            self.generator.calculate_permutation_count(user_settings)
            * user_settings.possibility_multiplier
        )

    @staticmethod
    def metadata_to_permutation(metadata: PossibilityMetadata) -> Permutation:
        """The permutation sent to the execution endpoint; its id is the metadata id."""
        return Permutation(
            id=metadata.id,
            provider=metadata.provider,
            model=metadata.model,
            temperature=metadata.temperature,
            system_instruction=metadata.system_instruction,
            system_prompt=metadata.system_prompt,
        )

    estimate_loading_time_ms = staticmethod(estimate_loading_time_ms)
