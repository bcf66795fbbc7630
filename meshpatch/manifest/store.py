"""Content-addressed, append-only manifest cache."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError as PydanticValidationError

from meshpatch.error_handling import ErrorContext, ValidationError
from meshpatch.utils import write_json_atomic
from meshpatch.validation.schemas import load_and_validate_manifest

from .models import Manifest

logger = logging.getLogger(__name__)


class ManifestStore:
    """Stores manifests as ``<cache_dir>/<manifest_id>.json``.

    Entries are immutable: persisting a manifest whose id already exists is a
    no-op, so concurrent writers of the same content converge on one file.
    """

    def __init__(self, cache_dir: Union[str, Path]) -> None:
        self.cache_dir = Path(cache_dir)

    def path_for(self, manifest_id: str) -> Path:
        return self.cache_dir / f"{manifest_id}.json"

    def exists(self, manifest_id: str) -> bool:
        return self.path_for(manifest_id).exists()

    def persist(self, manifest: Manifest) -> Path:
        path = self.path_for(manifest.manifest_id)
        if path.exists():
            logger.debug("Manifest %s already cached", manifest.manifest_id)
            return path
        write_json_atomic(path, manifest.to_dict(), sort_keys=True)
        logger.info(
            "Persisted manifest %s",
            manifest.manifest_id,
            extra={"manifest_id": manifest.manifest_id, "asset_ref": manifest.asset_ref},
        )
        return path

    def load(self, manifest_id: str) -> Manifest:
        path = self.path_for(manifest_id)
        context = ErrorContext(manifest_id=manifest_id, step="load_manifest")
        try:
            schema = load_and_validate_manifest(path)
        except FileNotFoundError as e:
            raise ValidationError(f"Manifest {manifest_id} not found in cache", context=context, cause=e) from e
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise ValidationError(f"Manifest {manifest_id} is corrupt: {e}", context=context, cause=e) from e
        if schema.manifest_id != manifest_id:
            raise ValidationError(
                f"Manifest file {path.name} holds id {schema.manifest_id}",
                context=context,
            )
        return Manifest.from_dict(schema.model_dump())

    def list_ids(self) -> List[str]:
        if not self.cache_dir.exists():
            return []
        return sorted(path.stem for path in self.cache_dir.glob("*.json"))
