"""Tests for structured delta building, package staging and patch application."""

from __future__ import annotations

import json

import numpy as np
import pytest

from meshpatch.correspondence import SeedAliases, StringPair
from meshpatch.error_handling import CorrespondenceError, ReconstructionError, ValidationError
from meshpatch.host import LoadedAsset
from meshpatch.structured import (
    BLENDSHAPE,
    MESH_DELTA,
    PACKAGE_FILENAME,
    UV_LAYER,
    BlendshapeFrameAsset,
    BlendshapeOp,
    MeshDeltaAsset,
    MeshDeltaOp,
    PatchPackage,
    Policy,
    UIHints,
    UVLayerAsset,
    UVLayerOp,
    apply_patch_package,
    build_structured_delta,
    compute_mesh_delta,
    dispatch_op,
    load_patch_package,
    save_patch_package,
    synthesize_blendshape_frame,
)


def _ops_by_kind(package: PatchPackage):
    return {kind: package.ops_of_kind(kind) for kind in (MESH_DELTA, UV_LAYER, BLENDSHAPE)}


@pytest.mark.unit
class TestMeshDelta:

    def test_compute_mesh_delta(self, base_asset, modified_asset):
        delta = compute_mesh_delta(base_asset.meshes["Body"], modified_asset.meshes["Body"])
        assert delta.vertex_count == 4
        np.testing.assert_allclose(delta.position_deltas, np.full((4, 3), 0.5))
        np.testing.assert_allclose(delta.normal_deltas, 0.0)
        np.testing.assert_allclose(delta.tangent_deltas, 0.0)
        assert not delta.is_zero()
        assert compute_mesh_delta(base_asset.meshes["Hat"], modified_asset.meshes["Hat"]).is_zero()

    def test_missing_modified_normals_give_zero_deltas(self, mesh_factory):
        base = mesh_factory("Body", 3)
        modified = mesh_factory("Body", 3, offset=1.0, with_normals=False)
        delta = compute_mesh_delta(base, modified)
        assert delta.normal_deltas.shape == (3, 3)
        assert not np.any(delta.normal_deltas)

    def test_missing_base_channels_count_as_zero(self, mesh_factory):
        base = mesh_factory("Body", 3, with_normals=False, with_tangents=False)
        modified = mesh_factory("Body", 3)
        delta = compute_mesh_delta(base, modified)
        np.testing.assert_array_equal(delta.normal_deltas, modified.normals)
        np.testing.assert_array_equal(delta.tangent_deltas, modified.tangents[:, :3])

    def test_vertex_count_mismatch(self, mesh_factory):
        with pytest.raises(ValueError, match="Vertex count mismatch"):
            compute_mesh_delta(mesh_factory("Hat", 3), mesh_factory("Hat", 5))

    def test_delta_asset_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            MeshDeltaAsset("Body", 4, np.zeros((3, 3)), np.zeros((4, 3)), np.zeros((4, 3)))


@pytest.mark.unit
class TestBuildStructuredDelta:

    def test_same_topology_scenario(self, base_asset, modified_asset):
        result = build_structured_delta(base_asset, modified_asset)
        ops = _ops_by_kind(result.package)

        assert [op.target_mesh_name for op in ops[MESH_DELTA]] == ["Body", "Hat"]
        assert [(op.target_mesh_name, op.channel) for op in ops[UV_LAYER]] == [("Body", 1)]
        assert not result.requires_binary_fallback
        assert result.skipped_meshes == []
        assert result.package.source_manifest_id != result.package.modified_manifest_id

    def test_single_vertex_edit(self, mesh_factory):
        base_body = mesh_factory("Body", 500)
        modified_body = mesh_factory("Body", 500)
        modified_body.vertices[10] += np.array([0.0, 0.01, 0.0], dtype=np.float32)
        base = LoadedAsset("base", meshes={"Body": base_body})
        modified = LoadedAsset("mod", meshes={"Body": modified_body})

        result = build_structured_delta(base, modified)
        ops = _ops_by_kind(result.package)
        assert ops[UV_LAYER] == []
        assert ops[BLENDSHAPE] == []
        (op,) = ops[MESH_DELTA]
        deltas = op.mesh_delta.position_deltas

        assert deltas.shape == (500, 3)
        np.testing.assert_allclose(deltas[10], [0.0, 0.01, 0.0], rtol=0, atol=1e-5)
        assert deltas[10, 0] == 0.0
        assert deltas[10, 2] == 0.0
        assert not np.any(np.delete(deltas, 10, axis=0))
        assert not np.any(op.mesh_delta.normal_deltas)
        assert not np.any(op.mesh_delta.tangent_deltas)

        patched = apply_patch_package(base.meshes, result.package)["Body"]
        np.testing.assert_allclose(patched.vertices, modified_body.vertices, atol=1e-6)

    def test_blendshape_ops(self, base_asset, modified_asset):
        result = build_structured_delta(base_asset, modified_asset)
        blendshapes = {op.blendshape_name: op for op in result.package.ops_of_kind(BLENDSHAPE)}

        assert set(blendshapes) == {"Blink", "Smile"}
        smile = blendshapes["Smile"]
        assert smile.is_passthrough
        assert smile.scale == 1.0

        blink = blendshapes["Blink"]
        frame = blink.synthesized_frame
        assert frame.frame_weight == 100.0
        np.testing.assert_allclose(frame.delta_vertices, 0.25)
        assert not np.any(frame.delta_normals)
        assert not np.any(frame.delta_tangents)

    def test_aliased_blendshape_is_passthrough(self, mesh_factory, frame_factory):
        base = LoadedAsset("base", meshes={"Face": mesh_factory("Face", 4, blendshapes={"Smile": [frame_factory(4, 0.1)]})})
        modified = LoadedAsset("mod", meshes={"Face": mesh_factory("Face", 4, blendshapes={"Grin": [frame_factory(4, 0.1)]})})
        seeds = SeedAliases(blendshapes=[StringPair("Smile", "Grin")])

        result = build_structured_delta(base, modified, seeds=seeds)
        (op,) = result.package.ops_of_kind(BLENDSHAPE)
        assert op.is_passthrough
        assert op.blendshape_name == "Smile"

    def test_topology_mismatch_requires_binary_fallback(self, base_asset, retopologized_asset):
        result = build_structured_delta(base_asset, retopologized_asset)

        assert result.requires_binary_fallback
        assert [m.mesh_name for m in result.topology_mismatches] == ["Hat"]
        assert result.topology_mismatches[0].modified_vertex_count == 5
        assert all(op.target_mesh_name != "Hat" for op in result.package.ops)
        assert [op.target_mesh_name for op in result.package.ops_of_kind(MESH_DELTA)] == ["Body"]

    def test_strict_topology_skips_mismatched_mesh(self, base_asset, retopologized_asset):
        result = build_structured_delta(base_asset, retopologized_asset, policy=Policy(strict_topology=True))

        assert not result.requires_binary_fallback
        assert result.skipped_meshes == ["Hat"]
        assert all(op.target_mesh_name != "Hat" for op in result.package.ops)

    def test_strict_correspondence_raises(self, base_asset, mesh_factory):
        modified = LoadedAsset("mod", meshes={"Body": mesh_factory("Body", 4)})
        with pytest.raises(CorrespondenceError):
            build_structured_delta(base_asset, modified, policy=Policy(strict_correspondence=True))

    def test_renamed_mesh_keeps_base_name(self, base_asset, mesh_factory, frame_factory):
        modified = LoadedAsset(
            "mod",
            meshes={
                "Body": mesh_factory("Body", 4, blendshapes={"Smile": [frame_factory(4, 0.1)]}),
                "Cap": mesh_factory("Cap", 3, offset=11.0),
            },
        )
        seeds = SeedAliases(meshes=[StringPair("Hat", "Cap")])
        result = build_structured_delta(base_asset, modified, seeds=seeds)

        hat_ops = [op for op in result.package.ops_of_kind(MESH_DELTA) if op.target_mesh_name == "Hat"]
        assert len(hat_ops) == 1
        np.testing.assert_allclose(hat_ops[0].mesh_delta.position_deltas, 1.0)

    def test_package_id_is_deterministic(self, base_asset, modified_asset):
        first = build_structured_delta(base_asset, modified_asset).package.package_id
        second = build_structured_delta(base_asset, modified_asset).package.package_id
        assert first == second
        assert len(first) == 64

    def test_package_id_depends_on_deltas(self, base_asset, modified_asset, mesh_factory):
        moved_more = LoadedAsset(
            "mod2",
            meshes={**modified_asset.meshes, "Hat": mesh_factory("Hat", 3, offset=12.0)},
            materials=modified_asset.materials,
            animation_clip_names=modified_asset.animation_clip_names,
        )
        first = build_structured_delta(base_asset, modified_asset).package
        second = build_structured_delta(base_asset, moved_more).package
        assert first.modified_manifest_id == second.modified_manifest_id
        assert first.package_id != second.package_id

    def test_package_id_depends_on_hints(self, base_asset, modified_asset):
        plain = build_structured_delta(base_asset, modified_asset).package.package_id
        hinted = build_structured_delta(
            base_asset, modified_asset, ui_hints=UIHints(friendly_name="Red hat")
        ).package.package_id
        assert plain != hinted

    def test_synthesize_requires_frames(self, mesh_factory):
        mesh = mesh_factory("Face", 4, blendshapes={"Empty": []})
        with pytest.raises(ValueError, match="no frames"):
            synthesize_blendshape_frame("Face", "Empty", mesh)


@pytest.mark.unit
class TestPackageStaging:

    def test_save_and_load_round_trip(self, base_asset, modified_asset, tmp_path):
        result = build_structured_delta(base_asset, modified_asset, staging_dir=tmp_path / "staging")

        package_dir = result.package_dir
        assert package_dir == tmp_path / "staging" / result.package.package_id
        assert (package_dir / PACKAGE_FILENAME).exists()
        assert {path.name for path in result.sidecar_paths} == {
            "MeshDelta_Body.npz",
            "MeshDelta_Hat.npz",
            "UVLayer_ch1_Body.npz",
            "Blendshape_Blink_Body.npz",
        }

        loaded = load_patch_package(package_dir)
        assert loaded.package_id == result.package.package_id
        assert [op.kind for op in loaded.ops] == [op.kind for op in result.package.ops]
        body_delta = loaded.ops_of_kind(MESH_DELTA)[0].mesh_delta
        np.testing.assert_allclose(body_delta.position_deltas, 0.5)

    def test_passthrough_ops_have_no_sidecar(self, base_asset, modified_asset, tmp_path):
        result = build_structured_delta(base_asset, modified_asset, staging_dir=tmp_path)
        descriptor = json.loads((result.package_dir / PACKAGE_FILENAME).read_text())
        smile = [op for op in descriptor["ops"] if op.get("blendshape_name") == "Smile"][0]
        assert smile["scale"] == 1.0
        assert smile["synthesized_frame"] is None

    def test_staging_is_append_only(self, base_asset, modified_asset, tmp_path):
        package = build_structured_delta(base_asset, modified_asset).package
        package_dir, _ = save_patch_package(package, tmp_path)
        descriptor = package_dir / PACKAGE_FILENAME
        original = descriptor.read_text()

        again_dir, sidecars = save_patch_package(package, tmp_path)
        assert again_dir == package_dir
        assert descriptor.read_text() == original
        assert len(sidecars) == 4
        assert not [p for p in tmp_path.iterdir() if p.name.endswith(".partial")]

    def test_load_accepts_descriptor_path(self, base_asset, modified_asset, tmp_path):
        result = build_structured_delta(base_asset, modified_asset, staging_dir=tmp_path)
        loaded = load_patch_package(result.package_dir / PACKAGE_FILENAME)
        assert loaded.source_manifest_id == result.package.source_manifest_id

    def test_load_missing_package(self, tmp_path):
        with pytest.raises(ValidationError, match="not found"):
            load_patch_package(tmp_path / "nothing" / PACKAGE_FILENAME)

    def test_load_missing_sidecar(self, base_asset, modified_asset, tmp_path):
        result = build_structured_delta(base_asset, modified_asset, staging_dir=tmp_path)
        (result.package_dir / "MeshDelta_Hat.npz").unlink()
        with pytest.raises(ValidationError, match="side-car"):
            load_patch_package(result.package_dir)

    def test_load_rejects_escaping_sidecar_path(self, base_asset, modified_asset, tmp_path):
        result = build_structured_delta(base_asset, modified_asset, staging_dir=tmp_path)
        descriptor_path = result.package_dir / PACKAGE_FILENAME
        descriptor = json.loads(descriptor_path.read_text())
        descriptor["ops"][0]["mesh_delta"]["path"] = "../outside.npz"
        descriptor_path.write_text(json.dumps(descriptor))
        with pytest.raises(ValidationError, match="Invalid patch package"):
            load_patch_package(result.package_dir)


@pytest.mark.unit
class TestApplyPatchPackage:

    def test_round_trip_reconstructs_modified_meshes(self, base_asset, modified_asset, tmp_path):
        result = build_structured_delta(base_asset, modified_asset, staging_dir=tmp_path)
        patched = apply_patch_package(base_asset.meshes, load_patch_package(result.package_dir))

        for name, expected in modified_asset.meshes.items():
            mesh = patched[name]
            np.testing.assert_allclose(mesh.vertices, expected.vertices, atol=1e-6)
            np.testing.assert_allclose(mesh.normals, expected.normals, atol=1e-6)
            np.testing.assert_allclose(mesh.tangents, expected.tangents, atol=1e-6)
            assert mesh.uv_channels() == expected.uv_channels()

        body = patched["Body"]
        np.testing.assert_allclose(body.uvs[1], modified_asset.meshes["Body"].uvs[1])
        assert sorted(body.blendshapes) == ["Blink", "Smile"]
        assert len(body.blendshapes["Smile"]) == 1
        assert body.blendshapes["Blink"][0].weight == 100.0

    def test_base_meshes_are_not_mutated(self, base_asset, modified_asset):
        before = base_asset.meshes["Body"].vertices.copy()
        package = build_structured_delta(base_asset, modified_asset).package
        apply_patch_package(base_asset.meshes, package)
        np.testing.assert_array_equal(base_asset.meshes["Body"].vertices, before)
        assert 1 not in base_asset.meshes["Body"].uvs

    def test_tangent_handedness_is_preserved(self, mesh_factory):
        base = mesh_factory("Body", 2)
        delta = MeshDeltaAsset("Body", 2, np.zeros((2, 3)), np.zeros((2, 3)), np.full((2, 3), 0.5))
        package = PatchPackage("p" * 64, "a" * 64, "b" * 64, ops=[MeshDeltaOp("Body", delta)])

        patched = apply_patch_package({"Body": base}, package)["Body"]
        np.testing.assert_allclose(patched.tangents[:, :3], [[1.5, 0.5, 0.5]] * 2)
        np.testing.assert_allclose(patched.tangents[:, 3], -1.0)

    def test_normals_created_from_deltas(self, mesh_factory):
        base = mesh_factory("Body", 2, with_normals=False)
        normals = np.tile([0.0, 0.0, 1.0], (2, 1))
        delta = MeshDeltaAsset("Body", 2, np.zeros((2, 3)), normals, np.zeros((2, 3)))
        package = PatchPackage("p" * 64, "a" * 64, "b" * 64, ops=[MeshDeltaOp("Body", delta)])

        patched = apply_patch_package({"Body": base}, package)["Body"]
        np.testing.assert_allclose(patched.normals, normals)

    def test_channels_absent_from_base_are_rebuilt(self, mesh_factory):
        base = LoadedAsset("base", meshes={"Body": mesh_factory("Body", 3, with_normals=False, with_tangents=False)})
        modified = LoadedAsset("mod", meshes={"Body": mesh_factory("Body", 3, offset=2.0)})
        package = build_structured_delta(base, modified).package

        patched = apply_patch_package(base.meshes, package)["Body"]
        expected = modified.meshes["Body"]
        np.testing.assert_allclose(patched.normals, expected.normals)
        np.testing.assert_allclose(patched.tangents[:, :3], expected.tangents[:, :3])
        np.testing.assert_allclose(patched.tangents[:, 3], 1.0)

    def test_existing_uv_channel_is_kept(self, mesh_factory):
        base = mesh_factory("Body", 2, uv_channels=(0,))
        replacement = np.full((2, 2), 9.0)
        op = UVLayerOp("Body", 0, UVLayerAsset("Body", 0, replacement))
        package = PatchPackage("p" * 64, "a" * 64, "b" * 64, ops=[op])

        patched = apply_patch_package({"Body": base}, package)["Body"]
        np.testing.assert_allclose(patched.uvs[0], base.uvs[0])

        op.replace_existing = True
        patched = apply_patch_package({"Body": base}, package)["Body"]
        np.testing.assert_allclose(patched.uvs[0], replacement)

    def test_missing_target_mesh(self, mesh_factory):
        delta = MeshDeltaAsset("Ghost", 2, np.zeros((2, 3)), np.zeros((2, 3)), np.zeros((2, 3)))
        package = PatchPackage("p" * 64, "a" * 64, "b" * 64, ops=[MeshDeltaOp("Ghost", delta)])
        with pytest.raises(ReconstructionError) as exc_info:
            apply_patch_package({"Body": mesh_factory("Body", 2)}, package)
        assert exc_info.value.mesh_name == "Ghost"

    def test_delta_length_mismatch(self, mesh_factory):
        delta = MeshDeltaAsset("Body", 3, np.zeros((3, 3)), np.zeros((3, 3)), np.zeros((3, 3)))
        package = PatchPackage("p" * 64, "a" * 64, "b" * 64, ops=[MeshDeltaOp("Body", delta)])
        with pytest.raises(ReconstructionError, match="targets 3 vertices"):
            apply_patch_package({"Body": mesh_factory("Body", 2)}, package)

    def test_non_finite_result_rejected(self, mesh_factory):
        positions = np.array([[0.0, 0.0, 0.0], [np.inf, 0.0, 0.0]])
        delta = MeshDeltaAsset("Body", 2, positions, np.zeros((2, 3)), np.zeros((2, 3)))
        package = PatchPackage("p" * 64, "a" * 64, "b" * 64, ops=[MeshDeltaOp("Body", delta)])
        with pytest.raises(ReconstructionError, match="vertex 1"):
            apply_patch_package({"Body": mesh_factory("Body", 2)}, package)

    def test_synthesized_frame_length_mismatch(self, mesh_factory):
        frame = BlendshapeFrameAsset("Body", "Blink", 100.0, np.zeros((3, 3)), np.zeros((3, 3)), np.zeros((3, 3)))
        package = PatchPackage("p" * 64, "a" * 64, "b" * 64, ops=[BlendshapeOp.synthesized(frame)])
        with pytest.raises(ReconstructionError):
            apply_patch_package({"Body": mesh_factory("Body", 2)}, package)


@pytest.mark.unit
class TestOps:

    def test_blendshape_op_requires_exactly_one_payload(self):
        with pytest.raises(ValueError):
            BlendshapeOp("Body", "Smile")
        frame = BlendshapeFrameAsset("Body", "Smile", 100.0, np.zeros((1, 3)), np.zeros((1, 3)), np.zeros((1, 3)))
        with pytest.raises(ValueError):
            BlendshapeOp("Body", "Smile", scale=1.0, synthesized_frame=frame)

    def test_uv_channel_range(self):
        with pytest.raises(ValueError):
            UVLayerAsset("Body", 8, np.zeros((1, 2)))

    def test_dispatch_op_calls_matching_visitor(self):
        class Recorder:
            def visit_mesh_delta(self, op):
                return "mesh"

            def visit_uv_layer(self, op):
                return "uv"

            def visit_blendshape(self, op):
                return "blendshape"

        assert dispatch_op(BlendshapeOp.passthrough("Body", "Smile"), Recorder()) == "blendshape"
        op = UVLayerOp("Body", 1, UVLayerAsset("Body", 1, np.zeros((1, 2))))
        assert dispatch_op(op, Recorder()) == "uv"

    def test_dispatch_op_unknown_kind(self):
        op = BlendshapeOp.passthrough("Body", "Smile")
        op.kind = "bogus"
        with pytest.raises(ValueError, match="Unknown op kind"):
            dispatch_op(op, object())
