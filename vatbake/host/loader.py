from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..baker import AssetRef, BakeSceneSettings
from .rig import build_anims_from_json, build_rig_from_nodes
from .scene import AnimationGroup, AssetContainer, Scene, Skeleton, SkinnedMesh


class AssetFormatError(ValueError):
    pass


def read_asset_json(asset_ref: AssetRef) -> Dict[str, Any]:
    if isinstance(asset_ref, dict):
        return asset_ref
    path = Path(asset_ref)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise AssetFormatError(f"Asset {path} is not valid JSON ({e})") from e
    if not isinstance(data, dict):
        raise AssetFormatError(f"Asset {path} must hold a JSON object")
    return data


def load_asset_json(scene: Scene, asset_ref: AssetRef) -> AssetContainer:
    """
    Build meshes, skeleton and animation groups from an asset JSON:

      {
        "name": "archer",
        "fps": 60,
        "bones": [{"object_id": 0, "name": "root", "parent_id": null, "pivot": [0, 0, 0]}, ...],
        "boneanims": [{"object_id": 0, "rotation": [{"frame": 0, "value": [x, y, z, w]}], ...}],
        "sequences": {"walk": {"start": 0, "end": 24}, ...},
        "meshes": [{"name": "body", "skinned": true}]
      }

    Sequences are ranges on one shared timeline; their order is the bake order.
    Nothing is added to the scene; the caller decides what to add.
    """
    data = read_asset_json(asset_ref)
    asset_name = str(data.get("name") or "asset")

    try:
        bones = data.get("bones") or []
        rig = build_rig_from_nodes(bones)
        channels = build_anims_from_json(data.get("boneanims") or [])
    except (KeyError, TypeError, ValueError) as e:
        raise AssetFormatError(f"Malformed bones/boneanims in asset {asset_name!r} ({e})") from e

    skeleton: Optional[Skeleton] = Skeleton(f"{asset_name}_skeleton", rig) if rig.ids else None

    meshes: List[SkinnedMesh] = []
    mesh_defs = data.get("meshes")
    if mesh_defs is None:
        mesh_defs = [{"name": asset_name, "skinned": True}]
    for md in mesh_defs:
        skinned = bool(md.get("skinned", True))
        meshes.append(SkinnedMesh(str(md.get("name") or asset_name), skeleton if skinned else None))

    groups: List[AnimationGroup] = []
    fps = float(data.get("fps", 60.0))
    if skeleton is not None:
        for name, rng in (data.get("sequences") or {}).items():
            try:
                start = float(rng["start"])
                end = float(rng["end"])
            except (KeyError, TypeError, ValueError) as e:
                raise AssetFormatError(f"Sequence {name!r} needs numeric start/end") from e
            groups.append(AnimationGroup(str(name), skeleton, channels, start, end, fps=fps))

    return AssetContainer(
        scene,
        meshes=meshes,
        skeletons=[skeleton] if skeleton is not None else [],
        animation_groups=groups,
    )


class ReferenceHost:
    """In-process host: Scene contexts and JSON rig assets."""

    def create_context(self, settings: BakeSceneSettings) -> Scene:
        return Scene(settings)

    def load_asset(self, context: Scene, asset_ref: Union[str, Path, dict]) -> AssetContainer:
        return load_asset_json(context, asset_ref)
