import math

import pytest

from vatbake.host.loader import AssetFormatError, load_asset_json
from vatbake.host.rig import (
    RigEvaluator,
    build_anims_from_json,
    build_rig_from_nodes,
    mat4_identity,
    transform_point,
)
from vatbake.host.sampler import Keyframe, quat_slerp, sample_quat, sample_vec3
from vatbake.host.scene import Scene
from vatbake.layout import flatten_mat4


S45 = math.sqrt(0.5)


def test_sample_vec3_interpolates_and_clamps():
    keys = [Keyframe(0.0, (0.0, 0.0, 0.0)), Keyframe(10.0, (10.0, 20.0, 0.0))]
    assert sample_vec3(keys, 5.0) == pytest.approx((5.0, 10.0, 0.0))
    assert sample_vec3(keys, -3.0) == (0.0, 0.0, 0.0)
    assert sample_vec3(keys, 99.0) == (10.0, 20.0, 0.0)
    assert sample_vec3([], 1.0, (1.0, 1.0, 1.0)) == (1.0, 1.0, 1.0)


def test_slerp_takes_shortest_arc():
    q = quat_slerp((0.0, 0.0, 0.0, 1.0), (0.0, 0.0, 0.0, -1.0), 0.5)
    assert q == pytest.approx((0.0, 0.0, 0.0, 1.0))


def test_sample_quat_halfway():
    keys = [Keyframe(0.0, (0.0, 0.0, 0.0, 1.0)), Keyframe(4.0, (0.0, 0.0, S45, S45))]
    x, y, z, w = sample_quat(keys, 2.0)
    # 45 degrees about z
    assert z == pytest.approx(math.sin(math.pi / 8))
    assert w == pytest.approx(math.cos(math.pi / 8))


def test_build_rig_orders_ids_and_maps_roots():
    rig = build_rig_from_nodes([
        {"object_id": 5, "parent_id": 2, "name": "hand"},
        {"object_id": 2, "parent_id": -1, "name": "root", "pivot": [1, 2, 3]},
    ])
    assert rig.ids == [2, 5]
    assert rig.parent == {2: None, 5: 2}
    assert rig.pivot[2] == (1.0, 2.0, 3.0)
    assert rig.pivot[5] == (0.0, 0.0, 0.0)
    assert rig.bone_count == 2

    with pytest.raises(ValueError):
        build_rig_from_nodes([{"name": "nameless"}])


def test_evaluator_rotates_about_pivot(two_bone_asset):
    rig = build_rig_from_nodes(two_bone_asset["bones"])
    channels = build_anims_from_json(two_bone_asset["boneanims"])
    mats = RigEvaluator(rig).skinning_matrices(channels, 4.0)

    # root at x=2, arm swung 90 degrees about (0,1,0): the point (1,1,0) lands on (2,2,0)
    assert transform_point(mats[1], (1.0, 1.0, 0.0)) == pytest.approx((2.0, 2.0, 0.0))
    assert transform_point(mats[1], (0.0, 1.0, 0.0)) == pytest.approx((2.0, 1.0, 0.0))


def test_rest_pose_is_identity():
    rig = build_rig_from_nodes([{"object_id": 0, "pivot": [3, 3, 3]}, {"object_id": 1, "parent_id": 0}])
    mats = RigEvaluator(rig).skinning_matrices({}, 0.0)
    for m in mats:
        assert flatten_mat4(m) == pytest.approx(flatten_mat4(mat4_identity()))


def test_parent_cycle_does_not_recurse_forever():
    rig = build_rig_from_nodes([{"object_id": 0, "parent_id": 1}, {"object_id": 1, "parent_id": 0}])
    assert len(RigEvaluator(rig).skinning_matrices({}, 0.0)) == 2


def test_skeleton_reuses_transform_list(two_bone_asset):
    scene = Scene()
    asset = load_asset_json(scene, two_bone_asset)
    skeleton = asset.skeletons[0]
    mesh = asset.meshes[1]

    skeleton.apply_frame(asset.animation_groups[0].channels, 2.0)
    first = skeleton.compute_transforms(mesh)
    assert len(first) == 48
    assert first[12] == pytest.approx(2.0)
    assert first[32:48] == flatten_mat4(mat4_identity())

    skeleton.apply_frame(asset.animation_groups[0].channels, 0.0)
    second = skeleton.compute_transforms(mesh)
    assert second is first
    assert first[12] == pytest.approx(0.0)


def test_loader_builds_groups_in_sequence_order(two_bone_asset):
    asset = load_asset_json(Scene(), two_bone_asset)
    assert [g.name for g in asset.animation_groups] == ["walk", "wave"]
    assert [(g.from_frame, g.to_frame) for g in asset.animation_groups] == [(0.0, 2.0), (3.0, 4.0)]
    assert asset.meshes[0].skeleton is None
    assert asset.meshes[1].skeleton is asset.skeletons[0]


def test_loader_rejects_bad_sequences(two_bone_asset):
    two_bone_asset["sequences"] = {"walk": {"start": "soon"}}
    with pytest.raises(AssetFormatError):
        load_asset_json(Scene(), two_bone_asset)


def test_scene_step_fires_end_after_prepare(two_bone_asset):
    scene = Scene()
    asset = load_asset_json(scene, two_bone_asset)
    group = asset.animation_groups[0]
    skeleton = asset.skeletons[0]
    scene.add_animation_group(group)
    scene.add_skeleton(skeleton)

    seen = []
    group.on_animation_end.add(lambda g: seen.append(skeleton.compute_transforms(asset.meshes[1])[12]))
    group.start(False, 1.0, 1.0, 1.0, False)
    scene.step()
    assert seen == [pytest.approx(1.0)]
    assert not group.is_playing

    scene.dispose()
    with pytest.raises(RuntimeError):
        scene.step()
