import json
import logging

import numpy as np
import pytest

from vatbake import store
from vatbake.baker import BakeSceneSettings, bake_asset, bake_mesh, run_bake
from vatbake.capture import BakePreconditionError, FrameCaptureError
from vatbake.config import config_from_dict
from vatbake.host.scene import Scene
from vatbake.serialization import deserialize_vat
from vatbake.texture import load_texture
from vatbake.types import VatShape



LOGGER = logging.getLogger("vatbake.test")
PER_FRAME = 3 * 16


def _assert_released(host):
    assert all(ctx.is_disposed for ctx in host.contexts)
    assert all(a.is_disposed for a in host.assets)


def test_bake_walk_and_wave(host, two_bone_asset):
    vat = bake_asset(host, two_bone_asset, logger=LOGGER)

    assert vat.shape == VatShape(2, 5)
    assert vat.buffer.size == 240
    assert [(c.name, c.start, c.end) for c in vat.clips] == [("walk", 0, 2), ("wave", 3, 4)]

    buf = vat.buffer
    # walk frame 1: root translated to x=1
    assert buf[PER_FRAME + 12] == pytest.approx(1.0)
    # wave frame 4 (row 4): arm rotated 90 degrees about its pivot, on top of the root at x=2
    arm = 4 * PER_FRAME + 16
    assert buf[arm + 12] == pytest.approx(3.0, abs=1e-5)
    assert buf[arm + 13] == pytest.approx(1.0, abs=1e-5)
    assert buf[arm + 1] == pytest.approx(1.0, abs=1e-5)
    assert buf[arm + 4] == pytest.approx(-1.0, abs=1e-5)
    # last slot of every frame is the mesh world matrix
    world = buf[2 * 16:3 * 16]
    np.testing.assert_allclose(world, np.eye(4, dtype=np.float32).reshape(-1))

    _assert_released(host)


def test_bake_is_deterministic(make_host, two_bone_asset):
    a = bake_mesh(make_host(), two_bone_asset)
    b = bake_mesh(make_host(), two_bone_asset)
    np.testing.assert_array_equal(a, b)


def test_bake_single_clip_length(host, walk_only_asset):
    assert bake_mesh(host, walk_only_asset).size == 144


def test_bake_uses_the_settings_given(host, two_bone_asset):
    settings = BakeSceneSettings(constant_delta_ms=10.0)
    bake_asset(host, two_bone_asset, settings=settings)
    assert host.contexts[0].settings is settings


def test_asset_without_skeleton_is_rejected_and_released(host):
    asset = {"name": "rock", "meshes": [{"name": "rock", "skinned": False}]}
    with pytest.raises(BakePreconditionError):
        bake_asset(host, asset, logger=LOGGER)
    _assert_released(host)


def test_capture_failure_still_releases_everything(host, two_bone_asset):
    with pytest.raises(FrameCaptureError):
        bake_asset(host, two_bone_asset, max_steps_per_frame=0)
    _assert_released(host)
    assert not host.contexts[0].on_before_render.has_observers()


def test_waits_until_context_is_ready(make_host, two_bone_asset):
    class SlowScene(Scene):
        polls = 0

        def is_ready(self):
            SlowScene.polls += 1
            return SlowScene.polls > 3

    host = make_host(scene_cls=SlowScene)
    vat = bake_asset(host, two_bone_asset)
    assert SlowScene.polls == 4
    assert vat.shape.frame_count == 5


def test_before_render_forces_skeleton_prepare(host, two_bone_asset):
    bake_asset(host, two_bone_asset)
    skeleton = host.assets[0].skeletons[0]
    assert skeleton.use_texture_to_store_bone_matrices is False
    # one forced prepare per step, one step per captured frame
    assert skeleton.prepare_count >= 5


@pytest.fixture
def config(tmp_path):
    return config_from_dict({
        "output_dir": str(tmp_path / "out"),
        "log_path": str(tmp_path / "logs" / "bake.log"),
        "db_path": str(tmp_path / "cache.sqlite"),
    })


def test_run_bake_writes_outputs(host, asset_file, config):
    vat = run_bake(host, asset_file, config, logger=LOGGER)

    json_path = config.output_dir / "twobone.vat.json"
    tiff_path = config.output_dir / "twobone.vat.tiff"
    assert json_path.is_file()
    assert tiff_path.is_file()

    loaded = deserialize_vat(json_path.read_text(encoding="utf-8"))
    assert loaded.shape == vat.shape
    assert [c.name for c in loaded.clips] == ["walk", "wave"]
    np.testing.assert_array_equal(loaded.buffer, vat.buffer)

    tex = load_texture(tiff_path)
    np.testing.assert_array_equal(tex.pixels.reshape(-1), vat.buffer)


def test_run_bake_reuses_cache_until_file_changes(host, asset_file, config, two_bone_asset):
    run_bake(host, asset_file, config, logger=LOGGER)
    run_bake(host, asset_file, config, logger=LOGGER)
    assert len(host.contexts) == 1

    run_bake(host, asset_file, config, force=True, logger=LOGGER)
    assert len(host.contexts) == 2

    two_bone_asset["sequences"] = {"walk": {"start": 0, "end": 2}}
    asset_file.write_text(json.dumps(two_bone_asset), encoding="utf-8")
    vat = run_bake(host, asset_file, config, logger=LOGGER)
    assert len(host.contexts) == 3
    assert vat.shape.frame_count == 3

    con = store.connect(config.db_path)
    try:
        rows = store.list_baked_vats(con)
        assert len(rows) == 1
        assert rows[0].frame_count == 3
        assert store.get_clip_rows(con, rows[0].asset_key) == [("walk", 0, 2)]
    finally:
        con.close()


def test_run_bake_without_cache_or_texture(host, two_bone_asset, tmp_path):
    cfg = config_from_dict({
        "output_dir": str(tmp_path / "plain"),
        "log_path": str(tmp_path / "bake.log"),
        "write_texture": "no",
        "encoding": "decimal",
    })
    run_bake(host, two_bone_asset, cfg, logger=LOGGER)

    payload = json.loads((tmp_path / "plain" / "twobone.vat.json").read_text(encoding="utf-8"))
    assert payload["encoding"] == "decimal"
    assert len(payload["vertexData"]) == 240
    assert not (tmp_path / "plain" / "twobone.vat.tiff").exists()
