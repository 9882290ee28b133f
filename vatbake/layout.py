from __future__ import annotations

import math
from typing import Iterable, List, Sequence

from .types import AnimationClip, ClipSpan, Mat4, VatShape


class VatError(ValueError):
    pass


class VatParseError(VatError):
    pass


class VatShapeError(VatError):
    pass


def buffer_size_for(bone_count: int, frame_count: int) -> int:
    """(bone_count + 1) matrices of 16 floats per frame."""
    b = int(bone_count)
    f = int(frame_count)
    if b < 0 or f < 0:
        raise VatShapeError(f"bone_count and frame_count must be >= 0 (got {b}, {f})")
    return (b + 1) * 16 * f


def round_frame(x: float) -> int:
    # half-up, so 2.5 -> 3 and -0.5 -> 0 (Python's round() is banker's)
    return int(math.floor(float(x) + 0.5))


def clip_frame_range(clip: AnimationClip) -> tuple[int, int]:
    first = round_frame(clip.from_frame)
    last = round_frame(clip.to_frame)
    if last < first:
        raise ValueError(f"Clip {getattr(clip, 'name', '?')!r} has to < from ({last} < {first})")
    return first, last


def clip_frame_count(clip: AnimationClip) -> int:
    first, last = clip_frame_range(clip)
    return last - first + 1


def total_frame_count(clips: Iterable[AnimationClip]) -> int:
    return sum(clip_frame_count(c) for c in clips)


def frame_offset(shape: VatShape, frame_index: int) -> int:
    if not 0 <= int(frame_index) < shape.frame_count:
        raise IndexError(f"frame {frame_index} outside [0, {shape.frame_count})")
    return int(frame_index) * shape.floats_per_frame


def clip_spans(clips: Sequence[AnimationClip]) -> List[ClipSpan]:
    spans: List[ClipSpan] = []
    row = 0
    for c in clips:
        n = clip_frame_count(c)
        spans.append(ClipSpan(name=str(getattr(c, "name", "")), start=row, end=row + n - 1))
        row += n
    return spans


def flatten_mat4(m: Mat4) -> List[float]:
    """
    Row-major nested matrix -> 16 floats in GPU order
    (column-major, translation lands at 12, 13, 14).
    """
    return [float(m[r][c]) for c in range(4) for r in range(4)]
