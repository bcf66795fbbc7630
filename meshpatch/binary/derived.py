"""DerivedAsset descriptor: everything needed to rebuild a modified asset from its base."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from meshpatch.error_handling import ErrorContext, ValidationError
from meshpatch.structured.package import Policy, UIHints
from meshpatch.utils import write_json_atomic
from meshpatch.validation.schemas import load_and_validate_derived_asset

DESCRIPTOR_SUFFIX = ".derived.json"


@dataclass
class DerivedAsset:
    """Descriptor written beside a binary diff artifact.

    ``diff_artifact_path`` is relative to the descriptor's directory.
    ``embedded_original_metadata`` is the modified asset's descriptor text
    with its identity token replaced by a placeholder.
    """
    base_asset_identity: str
    diff_artifact_path: str
    diff_backend: str = "bsdiff4"
    source_manifest_id: Optional[str] = None
    base_asset_content_hash: Optional[str] = None
    target_content_hash: Optional[str] = None
    target_identity: Optional[str] = None
    policy: Policy = field(default_factory=Policy)
    ui_hints: UIHints = field(default_factory=UIHints)
    embedded_original_metadata: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_manifest_id": self.source_manifest_id,
            "base_asset_identity": self.base_asset_identity,
            "base_asset_content_hash": self.base_asset_content_hash,
            "target_content_hash": self.target_content_hash,
            "target_identity": self.target_identity,
            "diff_artifact_path": self.diff_artifact_path,
            "diff_backend": self.diff_backend,
            "policy": self.policy.to_dict(),
            "ui_hints": self.ui_hints.to_dict(),
            "embedded_original_metadata": self.embedded_original_metadata,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DerivedAsset":
        return cls(
            base_asset_identity=payload["base_asset_identity"],
            diff_artifact_path=payload["diff_artifact_path"],
            diff_backend=payload.get("diff_backend", "bsdiff4"),
            source_manifest_id=payload.get("source_manifest_id"),
            base_asset_content_hash=payload.get("base_asset_content_hash"),
            target_content_hash=payload.get("target_content_hash"),
            target_identity=payload.get("target_identity"),
            policy=Policy.from_dict(payload.get("policy")),
            ui_hints=UIHints.from_dict(payload.get("ui_hints")),
            embedded_original_metadata=payload.get("embedded_original_metadata"),
        )


def save_derived_asset(descriptor: DerivedAsset, path: Union[str, Path]) -> Path:
    path = Path(path)
    write_json_atomic(path, descriptor.to_dict())
    return path


def load_derived_asset(path: Union[str, Path]) -> DerivedAsset:
    """
    Read and validate a ``.derived.json`` descriptor.

    Raises:
        ValidationError: If the file is missing or malformed.
    """
    context = ErrorContext(step="load_derived_asset", additional={"path": str(path)})
    try:
        schema = load_and_validate_derived_asset(path)
    except FileNotFoundError as e:
        raise ValidationError(f"Derived asset descriptor not found: {path}", context=context, cause=e) from e
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise ValidationError(f"Invalid derived asset descriptor: {e}", context=context, cause=e) from e
    return DerivedAsset.from_dict(schema.model_dump(mode="json"))
