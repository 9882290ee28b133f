from __future__ import annotations

import copy
import json
import math

import pytest

from vatbake.host.loader import ReferenceHost
from vatbake.host.scene import Scene


S45 = math.sqrt(0.5)

TWO_BONE_ASSET = {
    "name": "twobone",
    "fps": 60,
    "bones": [
        {"object_id": 0, "name": "root", "parent_id": None, "pivot": [0.0, 0.0, 0.0]},
        {"object_id": 1, "name": "arm", "parent_id": 0, "pivot": [0.0, 1.0, 0.0]},
    ],
    "boneanims": [
        {
            "object_id": 0,
            "translation": [
                {"frame": 0, "value": [0.0, 0.0, 0.0]},
                {"frame": 2, "value": [2.0, 0.0, 0.0]},
            ],
        },
        {
            "object_id": 1,
            "rotation": [
                {"frame": 0, "value": [0.0, 0.0, 0.0, 1.0]},
                {"frame": 4, "value": [0.0, 0.0, S45, S45]},
            ],
        },
    ],
    "sequences": {
        "walk": {"start": 0, "end": 2},
        "wave": {"start": 3, "end": 4},
    },
    "meshes": [
        {"name": "prop", "skinned": False},
        {"name": "body", "skinned": True},
    ],
}


class RecordingHost(ReferenceHost):
    """Reference host that keeps every context and asset it hands out."""

    def __init__(self, scene_cls=Scene) -> None:
        self.scene_cls = scene_cls
        self.contexts = []
        self.assets = []

    def create_context(self, settings):
        ctx = self.scene_cls(settings)
        self.contexts.append(ctx)
        return ctx

    def load_asset(self, context, asset_ref):
        asset = super().load_asset(context, asset_ref)
        self.assets.append(asset)
        return asset


@pytest.fixture
def two_bone_asset():
    return copy.deepcopy(TWO_BONE_ASSET)


@pytest.fixture
def walk_only_asset(two_bone_asset):
    two_bone_asset["sequences"] = {"walk": {"start": 0, "end": 2}}
    return two_bone_asset


@pytest.fixture
def host():
    return RecordingHost()


@pytest.fixture
def asset_file(tmp_path, two_bone_asset):
    path = tmp_path / "twobone.json"
    path.write_text(json.dumps(two_bone_asset), encoding="utf-8")
    return path


@pytest.fixture
def make_host():
    return RecordingHost
