# vatbake/host/rig.py
from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..types import Mat4
from .sampler import IDENTITY_QUAT, Keyframe, Quat, Vec3, quat_normalize, sample_quat, sample_vec3


# ---------------------------
# Data structures
# ---------------------------

@dataclass
class AnimChannel:
    translation: List[Keyframe] = field(default_factory=list)
    rotation: List[Keyframe] = field(default_factory=list)
    scaling: List[Keyframe] = field(default_factory=list)


@dataclass
class Rig:
    # parent id per bone id (None for roots)
    parent: Dict[int, Optional[int]]
    pivot: Dict[int, Vec3]
    # bone ids in matrix-slot order
    ids: List[int]
    names: Dict[int, str] = field(default_factory=dict)

    @property
    def bone_count(self) -> int:
        return len(self.ids)


# ---------------------------
# Matrix helpers (row-major, column vectors)
# ---------------------------

def mat4_identity() -> Mat4:
    return [[1.0 if r == c else 0.0 for c in range(4)] for r in range(4)]


def mat4_translate(x: float, y: float, z: float) -> Mat4:
    m = mat4_identity()
    m[0][3], m[1][3], m[2][3] = float(x), float(y), float(z)
    return m


def mat4_scale(x: float, y: float, z: float) -> Mat4:
    m = mat4_identity()
    m[0][0], m[1][1], m[2][2] = float(x), float(y), float(z)
    return m


def mat4_mul(A: Mat4, B: Mat4) -> Mat4:
    cols = list(zip(*B))
    return [[sum(a * b for a, b in zip(row, col)) for col in cols] for row in A]


def mat4_chain(*ms: Mat4) -> Mat4:
    """ms[0] * ms[1] * ... * ms[-1]"""
    return functools.reduce(mat4_mul, ms)


def quat_to_mat4(q: Quat) -> Mat4:
    x, y, z, w = quat_normalize(q)
    m = mat4_identity()
    m[0][:3] = [1.0 - 2.0 * (y * y + z * z), 2.0 * (x * y - w * z), 2.0 * (x * z + w * y)]
    m[1][:3] = [2.0 * (x * y + w * z), 1.0 - 2.0 * (x * x + z * z), 2.0 * (y * z - w * x)]
    m[2][:3] = [2.0 * (x * z - w * y), 2.0 * (y * z + w * x), 1.0 - 2.0 * (x * x + y * y)]
    return m


def transform_point(M: Mat4, v: Vec3) -> Vec3:
    p = (float(v[0]), float(v[1]), float(v[2]), 1.0)
    return tuple(sum(M[r][c] * p[c] for c in range(4)) for r in range(3))


# ---------------------------
# Builders
# ---------------------------

def _field(node: Any, key: str, default: Any = None) -> Any:
    if isinstance(node, dict):
        return node.get(key, default)
    return getattr(node, key, default)


def build_rig_from_nodes(nodes: List[Any]) -> Rig:
    """
    Nodes are dicts or objects with object_id, parent_id (None or -1 for roots),
    name and pivot. Bone slots follow ascending object_id.
    """
    by_id: Dict[int, Any] = {}
    for node in nodes:
        oid = _field(node, "object_id")
        if oid is None:
            raise ValueError(f"Bone entry without object_id: {node!r}")
        by_id[int(oid)] = node

    rig = Rig(parent={}, pivot={}, ids=sorted(by_id))
    for oid in rig.ids:
        node = by_id[oid]
        pid = _field(node, "parent_id")
        rig.parent[oid] = None if pid is None or int(pid) < 0 else int(pid)
        rig.pivot[oid] = tuple(float(c) for c in (_field(node, "pivot") or (0.0, 0.0, 0.0))[:3])
        rig.names[oid] = str(_field(node, "name") or "")
    return rig


def _keys(items: Any, n: int) -> List[Keyframe]:
    keys = []
    for item in items or []:
        value = item["value"]
        if len(value) < n:
            raise ValueError(f"Keyframe value {value!r} needs {n} components")
        frame = item.get("frame", item.get("time", 0))
        keys.append(Keyframe(frame=float(frame), value=tuple(float(x) for x in value[:n])))
    return sorted(keys, key=lambda k: k.frame)


def build_anims_from_json(boneanims: Any) -> Dict[int, AnimChannel]:
    """
    Accepts either {"bones": [...]} or a bare list of
      {"object_id": 0, "translation": [{"frame": 0, "value": [x,y,z]}], "rotation": [...], "scaling": [...]}
    """
    if isinstance(boneanims, dict):
        boneanims = boneanims.get("bones")
    entries = boneanims or []

    anims: Dict[int, AnimChannel] = {}
    for entry in entries:
        ch = AnimChannel(
            translation=_keys(entry.get("translation"), 3),
            rotation=_keys(entry.get("rotation"), 4),
            scaling=_keys(entry.get("scaling"), 3),
        )
        if ch.translation or ch.rotation or ch.scaling:
            anims[int(entry["object_id"])] = ch
    return anims


# ---------------------------
# Evaluation
# ---------------------------

class RigEvaluator:
    def __init__(self, rig: Rig) -> None:
        self.rig = rig
        self._order = self._parent_first_order()

    def _parent_first_order(self) -> List[int]:
        # ids sorted so every bone comes after its parent; cycles and
        # dangling parents are cut and treated as roots
        order: List[int] = []
        placed: Set[int] = set()
        self._roots: Set[int] = set()
        for oid in self.rig.ids:
            chain = []
            seen: Set[int] = set()
            cur: Optional[int] = oid
            while cur is not None and cur not in placed:
                if cur in seen or cur not in self.rig.parent:
                    break
                seen.add(cur)
                chain.append(cur)
                cur = self.rig.parent[cur]
            if chain and (cur is None or cur not in placed):
                self._roots.add(chain[-1])
            for node in reversed(chain):
                order.append(node)
                placed.add(node)
        return order

    def local_matrix(self, nid: int, channels: Dict[int, AnimChannel], frame: float) -> Mat4:
        ch = channels.get(nid) or AnimChannel()
        tr = sample_vec3(ch.translation, frame, (0.0, 0.0, 0.0))
        ro = sample_quat(ch.rotation, frame, IDENTITY_QUAT)
        sc = sample_vec3(ch.scaling, frame, (1.0, 1.0, 1.0))

        px, py, pz = self.rig.pivot.get(nid, (0.0, 0.0, 0.0))
        # T(anim) * T(pivot) * R * S * T(-pivot)
        return mat4_chain(
            mat4_translate(*tr),
            mat4_translate(px, py, pz),
            quat_to_mat4(ro),
            mat4_scale(*sc),
            mat4_translate(-px, -py, -pz),
        )

    def world_matrices(self, channels: Dict[int, AnimChannel], frame: float) -> Dict[int, Mat4]:
        """World = ParentWorld * Local. Rest pose (no channels) is identity everywhere."""
        world: Dict[int, Mat4] = {}
        for oid in self._order:
            local = self.local_matrix(oid, channels, frame)
            pid = self.rig.parent.get(oid)
            world[oid] = local if oid in self._roots or pid is None else mat4_mul(world[pid], local)
        return world

    def skinning_matrices(self, channels: Dict[int, AnimChannel], frame: float) -> List[Mat4]:
        world = self.world_matrices(channels, frame)
        return [world[oid] for oid in self.rig.ids]
