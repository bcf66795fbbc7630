"""Manifest building and the content-addressed manifest cache."""

from meshpatch.host.models import MaterialInfo

from .builder import PREVIEW_CLIP_PREFIX, build_manifest, compute_manifest_id, manifest_from_asset
from .models import Manifest, MeshInfo
from .store import ManifestStore

__all__ = [
    "PREVIEW_CLIP_PREFIX",
    "Manifest",
    "ManifestStore",
    "MaterialInfo",
    "MeshInfo",
    "build_manifest",
    "compute_manifest_id",
    "manifest_from_asset",
]
