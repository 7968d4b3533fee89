"""Layers package initialization."""
from aeo_schema.layers.persistence import (
    InMemoryCreditLedger,
    InMemoryGenerationStore,
    InMemoryUrlLibrary,
    InMemoryUsageTracker,
)
from aeo_schema.layers.pipeline import GenerationPolicy, SchemaPipeline

__all__ = [
    "GenerationPolicy",
    "InMemoryCreditLedger",
    "InMemoryGenerationStore",
    "InMemoryUrlLibrary",
    "InMemoryUsageTracker",
    "SchemaPipeline",
]
