from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np

from .capture import BakePreconditionError, bake_vertex_data
from .layout import VatShapeError, total_frame_count
from .playback import (
    INSTANCE_ATTRIBUTE,
    INSTANCE_STRIDE,
    BakedAnimationManager,
    PlaybackBinding,
    bind_playback,
)
from .serialization import deserialize, serialize
from .texture import VatTexture, buffer_to_texture
from .types import AnimationClip, RenderLoop, SimulationContext, SkinnedMesh, VatShape


class SourceKind(enum.Enum):
    SERIALIZED = "serialized"
    CLIPS = "clips"
    BUFFER = "buffer"
    TEXTURE = "texture"


@dataclass(frozen=True)
class AnimationSource:
    """
    Where the VAT for create_vat() comes from. Build with the from_* constructors;
    only the fields of the chosen kind are set.
    """
    kind: SourceKind
    text: Optional[str] = None
    context: Optional[SimulationContext] = None
    clips: Optional[Sequence[AnimationClip]] = None
    buffer: Optional[np.ndarray] = None
    bone_count: Optional[int] = None
    texture: Optional[VatTexture] = None

    @staticmethod
    def from_json(text: str) -> "AnimationSource":
        return AnimationSource(kind=SourceKind.SERIALIZED, text=text)

    @staticmethod
    def from_clips(context: SimulationContext, clips: Sequence[AnimationClip]) -> "AnimationSource":
        return AnimationSource(kind=SourceKind.CLIPS, context=context, clips=list(clips))

    @staticmethod
    def from_buffer(buffer: np.ndarray, bone_count: Optional[int] = None) -> "AnimationSource":
        return AnimationSource(kind=SourceKind.BUFFER, buffer=buffer, bone_count=bone_count)

    @staticmethod
    def from_texture(texture: VatTexture) -> "AnimationSource":
        return AnimationSource(kind=SourceKind.TEXTURE, texture=texture)


def _mesh_bone_count(mesh: SkinnedMesh) -> int:
    skeleton = getattr(mesh, "skeleton", None)
    if skeleton is None:
        raise BakePreconditionError(
            f"Mesh {getattr(mesh, 'name', '?')!r} has no skeleton; pass bone_count with the buffer"
        )
    return int(skeleton.bone_count)


def shape_for_buffer(buffer: np.ndarray, bone_count: int) -> VatShape:
    n = int(np.asarray(buffer).size)
    per_frame = (int(bone_count) + 1) * 16
    if n % per_frame != 0:
        raise VatShapeError(f"buffer of {n} floats is not a whole number of {per_frame}-float frames")
    return VatShape(int(bone_count), n // per_frame)


def resolve_source(mesh: SkinnedMesh, source: AnimationSource) -> tuple[Optional[VatTexture], Optional[np.ndarray], Optional[VatShape]]:
    """
    Returns (texture, buffer, shape); exactly one of texture or buffer is set.
    """
    kind = source.kind
    if kind is SourceKind.TEXTURE:
        return source.texture, None, None
    if kind is SourceKind.SERIALIZED:
        buffer, shape = deserialize(source.text)
        return None, buffer, shape
    if kind is SourceKind.CLIPS:
        clips = list(source.clips or [])
        buffer = bake_vertex_data(source.context, mesh, clips)
        return None, buffer, VatShape(_mesh_bone_count(mesh), total_frame_count(clips))
    if kind is SourceKind.BUFFER:
        bone_count = source.bone_count if source.bone_count is not None else _mesh_bone_count(mesh)
        buffer = np.asarray(source.buffer, dtype=np.float32).reshape(-1)
        return None, buffer, shape_for_buffer(buffer, bone_count)
    raise ValueError(f"Unknown animation source kind {kind!r}")


def create_vat(
    render_loop: RenderLoop,
    mesh: SkinnedMesh,
    source: AnimationSource,
    *,
    print_json: bool = False,
    logger=None,
) -> PlaybackBinding:
    """
    Give `mesh` a baked animation manager fed from `source` and advance its
    time on every render tick. Dispose the returned binding to stop.
    """
    texture, buffer, shape = resolve_source(mesh, source)

    mesh.register_instanced_buffer(INSTANCE_ATTRIBUTE, INSTANCE_STRIDE)

    if texture is None:
        if print_json and logger:
            logger.info("VAT JSON for %r:\n%s", getattr(mesh, "name", "?"), serialize(buffer, shape))
        texture = buffer_to_texture(buffer, shape.bone_count, shape.frame_count)

    manager = BakedAnimationManager(texture)
    mesh.baked_vertex_animation_manager = manager

    return bind_playback(render_loop, manager)


def vat_buffer_to_json(mesh: SkinnedMesh, buffer: np.ndarray, **kwargs: Any) -> str:
    shape = shape_for_buffer(buffer, _mesh_bone_count(mesh))
    return serialize(buffer, shape, **kwargs)
