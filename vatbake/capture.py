from __future__ import annotations

from typing import List, Sequence

import numpy as np

from .layout import buffer_size_for, clip_frame_range, clip_spans, total_frame_count
from .types import AnimationClip, BakedVat, SimulationContext, SkinnedMesh, VatShape


DEFAULT_MAX_STEPS_PER_FRAME = 16


class BakePreconditionError(RuntimeError):
    pass


class FrameCaptureError(RuntimeError):
    pass


def _capture_frame(
    context: SimulationContext,
    mesh: SkinnedMesh,
    clip: AnimationClip,
    frame: int,
    slot: np.ndarray,
    max_steps: int,
) -> None:
    """
    Play exactly `frame`, step the context until the clip reports it applied,
    and copy the skeleton's matrices into `slot` from inside the end callback
    (before anything else can step the skeleton again).
    """
    skeleton = mesh.skeleton
    captured: List[int] = []

    def on_end(_clip) -> None:
        mats = skeleton.compute_transforms(mesh)
        if len(mats) != slot.size:
            raise FrameCaptureError(
                f"Skeleton returned {len(mats)} floats for frame {frame}, expected {slot.size}"
            )
        slot[:] = mats
        captured.append(frame)

    sub = clip.on_animation_end.add_once(on_end)
    try:
        clip.start(False, 1.0, frame, frame, False)
        steps = 0
        while not captured:
            if steps >= max_steps:
                raise FrameCaptureError(
                    f"Clip {getattr(clip, 'name', '?')!r} did not finish frame {frame} "
                    f"after {max_steps} steps"
                )
            context.step(render_side_effects=False)
            steps += 1
    finally:
        sub.remove()
        clip.stop()


def bake_vertex_data(
    context: SimulationContext,
    mesh: SkinnedMesh,
    clips: Sequence[AnimationClip],
    *,
    max_steps_per_frame: int = DEFAULT_MAX_STEPS_PER_FRAME,
    logger=None,
) -> np.ndarray:
    """
    Capture every frame of every clip, in clip order, into one flat float32 buffer of
    (bone_count + 1) * 16 * total_frames floats.
    """
    skeleton = mesh.skeleton
    if skeleton is None:
        raise BakePreconditionError(f"Mesh {getattr(mesh, 'name', '?')!r} has no skeleton; assign one before baking")

    mesh.compute_bones_using_shaders = False
    mesh.is_visible = False

    bone_count = int(skeleton.bone_count)
    frame_count = total_frame_count(clips)
    vertex_data = np.zeros(buffer_size_for(bone_count, frame_count), dtype=np.float32)
    stride = (bone_count + 1) * 16

    if logger:
        logger.info("Baking %d clip(s), %d frame(s), %d bone(s)", len(clips), frame_count, bone_count)

    frame_slot = 0
    for clip in clips:
        first, last = clip_frame_range(clip)
        clip.reset()
        for frame in range(first, last + 1):
            slot = vertex_data[frame_slot * stride:(frame_slot + 1) * stride]
            _capture_frame(context, mesh, clip, frame, slot, max_steps_per_frame)
            frame_slot += 1
        if logger:
            logger.info("  clip %r: frames %d..%d", getattr(clip, "name", "?"), first, last)

    return vertex_data


def bake_vat_as_buffer(
    context: SimulationContext,
    mesh: SkinnedMesh,
    clips: Sequence[AnimationClip],
    **kwargs,
) -> np.ndarray:
    return bake_vertex_data(context, mesh, clips, **kwargs)


def bake_clips(
    context: SimulationContext,
    mesh: SkinnedMesh,
    clips: Sequence[AnimationClip],
    *,
    max_steps_per_frame: int = DEFAULT_MAX_STEPS_PER_FRAME,
    logger=None,
) -> BakedVat:
    buffer = bake_vertex_data(
        context, mesh, clips, max_steps_per_frame=max_steps_per_frame, logger=logger
    )
    shape = VatShape(int(mesh.skeleton.bone_count), total_frame_count(clips))
    return BakedVat(buffer=buffer, shape=shape, clips=clip_spans(clips))
