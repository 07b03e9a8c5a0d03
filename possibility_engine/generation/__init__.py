"""
Generation Layer

Enumerates and prioritizes the possibility space.

- **models.py**: SystemInstruction, Permutation, PossibilityMetadata, UserSettings
- **model_catalog.py**: ModelInfo, ModelCatalog protocol, built-in catalog
- **permutations.py**: PermutationGenerator and permutation identity
- **metadata_builder.py**: Priority classification, token budgets, multiplication, lookup
"""

from .metadata_builder import PossibilityMetadataBuilder, estimate_loading_time_ms
from .model_catalog import InMemoryModelCatalog, ModelCatalog, ModelInfo, default_model_catalog
from .models import (
    GenerationOptions,
    Permutation,
    PossibilityMetadata,
    SystemInstruction,
    UserSettings,
)
from .permutations import (
    PermutationGenerator,
    generate_permutation_id,
    normalize_enabled_providers,
)

__all__ = [
    "GenerationOptions",
    "InMemoryModelCatalog",
    "ModelCatalog",
    "ModelInfo",
    "Permutation",
    "PermutationGenerator",
    "PossibilityMetadata",
    "PossibilityMetadataBuilder",
    "SystemInstruction",
    "UserSettings",
    "default_model_catalog",
    "estimate_loading_time_ms",
    "generate_permutation_id",
    "normalize_enabled_providers",
]
