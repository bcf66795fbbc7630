"""Host capabilities injected into the engine: asset loading and identity bookkeeping."""

from .identity import (
    PLACEHOLDER_TOKEN,
    IdentityStore,
    InMemoryIdentityStore,
    SidecarIdentityStore,
    extract_identity,
    new_identity_token,
    substitute_identity,
    validate_identity_token,
)
from .loader import AssetLoader, InMemoryAssetLoader, NpzAssetLoader, save_asset_npz
from .models import (
    MAX_UV_CHANNELS,
    BlendshapeFrame,
    LoadedAsset,
    MaterialInfo,
    MeshData,
)

__all__ = [
    "PLACEHOLDER_TOKEN",
    "IdentityStore",
    "InMemoryIdentityStore",
    "SidecarIdentityStore",
    "extract_identity",
    "new_identity_token",
    "substitute_identity",
    "validate_identity_token",
    "AssetLoader",
    "InMemoryAssetLoader",
    "NpzAssetLoader",
    "save_asset_npz",
    "MAX_UV_CHANNELS",
    "BlendshapeFrame",
    "LoadedAsset",
    "MaterialInfo",
    "MeshData",
]
