"""
Shared pytest fixtures for meshpatch tests.

Assets are small synthetic meshes built in memory; tests that need files on
disk write them through ``save_asset_npz`` into ``tmp_path``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Optional

import numpy as np
import pytest

from meshpatch.config import ConfigLoader, EngineConfig
from meshpatch.host import (
    BlendshapeFrame,
    InMemoryAssetLoader,
    LoadedAsset,
    MaterialInfo,
    MeshData,
    save_asset_npz,
)


# ============================================================================
# MESH AND ASSET FACTORIES
# ============================================================================

def build_mesh(
    name: str,
    vertex_count: int = 4,
    *,
    offset: float = 0.0,
    uv_channels: Iterable[int] = (0,),
    blendshapes: Optional[Dict[str, list]] = None,
    with_normals: bool = True,
    with_tangents: bool = True,
) -> MeshData:
    """Deterministic mesh whose positions are shifted by ``offset`` on every axis."""
    vertices = np.arange(vertex_count * 3, dtype=np.float32).reshape(vertex_count, 3) + offset
    normals = np.tile(np.array([0.0, 1.0, 0.0], dtype=np.float32), (vertex_count, 1))
    tangents = np.tile(np.array([1.0, 0.0, 0.0, -1.0], dtype=np.float32), (vertex_count, 1))
    uvs = {
        channel: np.linspace(0.0, 1.0, vertex_count * 2, dtype=np.float32).reshape(vertex_count, 2) + channel
        for channel in uv_channels
    }
    return MeshData(
        name=name,
        vertices=vertices,
        normals=normals if with_normals else None,
        tangents=tangents if with_tangents else None,
        uvs=uvs,
        blendshapes=blendshapes or {},
    )


def build_frame(vertex_count: int, value: float, *, weight: float = 100.0, with_normals: bool = True) -> BlendshapeFrame:
    deltas = np.full((vertex_count, 3), value, dtype=np.float32)
    return BlendshapeFrame(
        weight=weight,
        delta_vertices=deltas,
        delta_normals=deltas * 0.5 if with_normals else None,
    )


@pytest.fixture
def mesh_factory():
    """Return the ``build_mesh`` helper."""
    return build_mesh


@pytest.fixture
def frame_factory():
    """Return the ``build_frame`` helper."""
    return build_frame


@pytest.fixture
def base_asset() -> LoadedAsset:
    """Two meshes, two materials and one visible animation clip."""
    return LoadedAsset(
        asset_ref="base",
        meshes={
            "Body": build_mesh("Body", 4, blendshapes={"Smile": [build_frame(4, 0.1)]}),
            "Hat": build_mesh("Hat", 3, offset=10.0),
        },
        materials=[MaterialInfo("Skin", "Standard"), MaterialInfo("Cloth", "Standard")],
        animation_clip_names=["Idle", "__preview__Take 001"],
    )


@pytest.fixture
def modified_asset() -> LoadedAsset:
    """The base asset with moved Body vertices, a new UV channel and a new blendshape."""
    body = build_mesh(
        "Body",
        4,
        offset=0.5,
        uv_channels=(0, 1),
        blendshapes={
            "Smile": [build_frame(4, 0.1)],
            "Blink": [build_frame(4, 0.25, with_normals=False)],
        },
    )
    return LoadedAsset(
        asset_ref="modified",
        meshes={
            "Body": body,
            "Hat": build_mesh("Hat", 3, offset=10.0),
        },
        materials=[MaterialInfo("Skin", "Standard"), MaterialInfo("Cloth", "Standard")],
        animation_clip_names=["Idle", "__preview__Take 001"],
    )


@pytest.fixture
def retopologized_asset() -> LoadedAsset:
    """The base asset with one extra vertex on Hat."""
    return LoadedAsset(
        asset_ref="retopologized",
        meshes={
            "Body": build_mesh("Body", 4, offset=0.5, blendshapes={"Smile": [build_frame(4, 0.1)]}),
            "Hat": build_mesh("Hat", 5, offset=10.0),
        },
        materials=[MaterialInfo("Skin", "Standard"), MaterialInfo("Cloth", "Standard")],
        animation_clip_names=["Idle"],
    )


@pytest.fixture
def asset_loader(base_asset, modified_asset, retopologized_asset) -> InMemoryAssetLoader:
    return InMemoryAssetLoader({
        asset.asset_ref: asset for asset in (base_asset, modified_asset, retopologized_asset)
    })


@pytest.fixture
def npz_assets(tmp_path: Path, base_asset, modified_asset) -> Dict[str, Path]:
    """Base and modified assets written as ``.npz`` archives."""
    asset_dir = tmp_path / "assets"
    return {
        "base": save_asset_npz(base_asset, asset_dir / "base.npz"),
        "modified": save_asset_npz(modified_asset, asset_dir / "modified.npz"),
    }


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================

@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    """Engine configuration rooted in ``tmp_path`` and isolated from the environment."""
    return ConfigLoader.load(
        overrides={
            "manifest_cache_dir": str(tmp_path / "cache" / "manifests"),
            "staging_dir": str(tmp_path / "cache" / "staging"),
            "output_dir": str(tmp_path / "cache" / "derived"),
        },
        env={},
    )


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
