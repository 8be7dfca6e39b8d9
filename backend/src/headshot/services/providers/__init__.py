"""Image generation backends."""

from headshot.services.providers.base import (
    GenerateInput,
    GenerationHandle,
    GenerationProvider,
    GenerationResult,
    GenerationType,
    determine_generation_type,
)
from headshot.services.providers.factory import build_provider

__all__ = [
    "GenerateInput",
    "GenerationHandle",
    "GenerationProvider",
    "GenerationResult",
    "GenerationType",
    "build_provider",
    "determine_generation_type",
]
