"""Correspondence mapping between base and modified asset versions."""

from .mapper import (
    ENTITY_KINDS,
    CorrespondenceMap,
    CorrespondenceResult,
    RejectedAlias,
    SeedAliases,
    StringPair,
    build_correspondence,
)

__all__ = [
    "ENTITY_KINDS",
    "CorrespondenceMap",
    "CorrespondenceResult",
    "RejectedAlias",
    "SeedAliases",
    "StringPair",
    "build_correspondence",
]
