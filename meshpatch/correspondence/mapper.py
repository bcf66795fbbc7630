"""Name-based correspondence of sub-entities between two asset versions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from meshpatch.error_handling import CorrespondenceError, ErrorContext
from meshpatch.manifest.models import Manifest

logger = logging.getLogger(__name__)

ENTITY_KINDS = ("meshes", "materials", "blendshapes")


@dataclass(frozen=True)
class StringPair:
    from_name: str
    to_name: str

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.from_name, "to": self.to_name}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StringPair":
        return cls(
            from_name=payload.get("from", payload.get("from_name")),
            to_name=payload.get("to", payload.get("to_name")),
        )


@dataclass
class SeedAliases:
    """Author-supplied renames, per entity kind.

    ``bones`` is carried for the host and never resolved here.
    """
    meshes: List[StringPair] = field(default_factory=list)
    materials: List[StringPair] = field(default_factory=list)
    blendshapes: List[StringPair] = field(default_factory=list)
    bones: List[StringPair] = field(default_factory=list)

    def for_kind(self, kind: str) -> List[StringPair]:
        return list(getattr(self, kind))

    def to_dict(self) -> Dict[str, List[Dict[str, str]]]:
        return {
            kind: [pair.to_dict() for pair in getattr(self, kind)]
            for kind in ("meshes", "materials", "blendshapes", "bones")
        }

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "SeedAliases":
        payload = payload or {}
        return cls(**{
            kind: [StringPair.from_dict(item) for item in payload.get(kind, []) or []]
            for kind in ("meshes", "materials", "blendshapes", "bones")
        })


@dataclass
class CorrespondenceMap:
    """Injective base-name to modified-name mapping per entity kind."""
    meshes: Dict[str, str] = field(default_factory=dict)
    materials: Dict[str, str] = field(default_factory=dict)
    blendshapes: Dict[str, str] = field(default_factory=dict)

    def for_kind(self, kind: str) -> Dict[str, str]:
        return getattr(self, kind)

    def inverse(self, kind: str) -> Dict[str, str]:
        return {target: source for source, target in self.for_kind(kind).items()}


@dataclass(frozen=True)
class RejectedAlias:
    kind: str
    pair: StringPair
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, **self.pair.to_dict(), "reason": self.reason}


@dataclass
class CorrespondenceResult:
    map: CorrespondenceMap
    added: Dict[str, List[str]] = field(default_factory=dict)
    removed: Dict[str, List[str]] = field(default_factory=dict)
    rejected_aliases: List[RejectedAlias] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "map": {kind: dict(self.map.for_kind(kind)) for kind in ENTITY_KINDS},
            "added": {kind: list(names) for kind, names in self.added.items()},
            "removed": {kind: list(names) for kind, names in self.removed.items()},
            "rejected_aliases": [alias.to_dict() for alias in self.rejected_aliases],
        }


def _match_kind(
    kind: str,
    base_names: List[str],
    modified_names: List[str],
    aliases: List[StringPair],
) -> tuple:
    base_set = set(base_names)
    modified_set = set(modified_names)
    mapping: Dict[str, str] = {}
    claimed = set()
    rejected: List[RejectedAlias] = []

    for name in base_names:
        if name in modified_set:
            mapping[name] = name
            claimed.add(name)
    by_name = set(mapping)

    for pair in aliases:
        if pair.from_name not in base_set or pair.to_name not in modified_set:
            logger.debug(
                "Alias %s -> %s does not apply to %s; ignoring",
                pair.from_name, pair.to_name, kind,
            )
            continue
        if mapping.get(pair.from_name) == pair.to_name:
            continue
        if pair.from_name in by_name:
            reason = "source matched by name"
        elif pair.from_name in mapping:
            reason = "source already aliased"
        elif pair.to_name in claimed:
            reason = "target already claimed"
        else:
            mapping[pair.from_name] = pair.to_name
            claimed.add(pair.to_name)
            continue
        logger.warning(
            "Rejected %s alias %s -> %s: %s", kind, pair.from_name, pair.to_name, reason
        )
        rejected.append(RejectedAlias(kind=kind, pair=pair, reason=reason))

    removed = [name for name in base_names if name not in mapping]
    added = [name for name in modified_names if name not in claimed]
    return mapping, added, removed, rejected


def build_correspondence(
    base: Manifest,
    modified: Manifest,
    seeds: Optional[SeedAliases] = None,
    *,
    strict: bool = False,
) -> CorrespondenceResult:
    """
    Match meshes, materials and blendshapes of ``base`` to ``modified``.

    Exact names win; seed aliases then resolve base entities left unmatched.
    The result is injective per kind.

    Raises:
        CorrespondenceError: With ``strict``, when an alias was rejected or a
            base mesh has no counterpart.
    """
    seeds = seeds or SeedAliases()
    result = CorrespondenceResult(map=CorrespondenceMap())

    for kind in ENTITY_KINDS:
        mapping, added, removed, rejected = _match_kind(
            kind,
            sorted(base.names_for(kind)),
            sorted(modified.names_for(kind)),
            seeds.for_kind(kind),
        )
        setattr(result.map, kind, mapping)
        result.added[kind] = added
        result.removed[kind] = removed
        result.rejected_aliases.extend(rejected)

    logger.info(
        "Correspondence %s -> %s: %d/%d meshes matched",
        base.manifest_id[:12],
        modified.manifest_id[:12],
        len(result.map.meshes),
        len(base.meshes),
        extra={"manifest_id": base.manifest_id},
    )

    if strict:
        context = ErrorContext(manifest_id=base.manifest_id, step="build_correspondence")
        if result.rejected_aliases:
            first = result.rejected_aliases[0]
            raise CorrespondenceError(
                f"{len(result.rejected_aliases)} seed alias(es) rejected",
                entity_kind=first.kind,
                unmatched=[alias.pair.from_name for alias in result.rejected_aliases],
                context=context,
            )
        if result.removed["meshes"]:
            raise CorrespondenceError(
                f"Base meshes without counterpart: {result.removed['meshes']}",
                entity_kind="meshes",
                unmatched=result.removed["meshes"],
                context=context,
            )

    return result
