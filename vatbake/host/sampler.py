from __future__ import annotations

import bisect
import math
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

Vec3 = tuple[float, float, float]
Quat = tuple[float, float, float, float]  # (x,y,z,w)

IDENTITY_QUAT: Quat = (0.0, 0.0, 0.0, 1.0)


@dataclass(frozen=True)
class Keyframe:
    frame: float
    value: Any  # Vec3 or Quat


def _unit(t: float) -> float:
    return min(1.0, max(0.0, t))


def lerp_vec3(a: Vec3, b: Vec3, t: float) -> Vec3:
    t = _unit(t)
    return tuple(x + (y - x) * t for x, y in zip(a, b))


def quat_dot(a: Quat, b: Quat) -> float:
    return sum(x * y for x, y in zip(a, b))


def quat_normalize(q: Quat) -> Quat:
    n = math.sqrt(quat_dot(q, q))
    if n <= 0.0:
        return IDENTITY_QUAT
    return tuple(c / n for c in q)


def quat_slerp(q0: Quat, q1: Quat, t: float) -> Quat:
    """Shortest-arc slerp; falls back to nlerp for nearly equal rotations."""
    t = _unit(t)
    a = quat_normalize(q0)
    b = quat_normalize(q1)

    cos_theta = quat_dot(a, b)
    if cos_theta < 0.0:
        b = tuple(-c for c in b)
        cos_theta = -cos_theta

    if cos_theta > 0.9995:
        return quat_normalize(tuple(x + (y - x) * t for x, y in zip(a, b)))

    theta = math.acos(min(1.0, cos_theta))
    sin_theta = math.sin(theta)
    if sin_theta < 1e-12:
        return a
    wa = math.sin((1.0 - t) * theta) / sin_theta
    wb = math.sin(t * theta) / sin_theta
    return quat_normalize(tuple(x * wa + y * wb for x, y in zip(a, b)))


def _bracket(frames: Sequence[float], f: float) -> tuple[int, int]:
    """
    (i0, i1) with frames[i0] <= f <= frames[i1]; clamped to the first or
    last key outside the keyed range.
    """
    n = len(frames)
    if n == 0 or f <= frames[0]:
        return (0, 0)
    if f >= frames[-1]:
        return (n - 1, n - 1)
    i1 = bisect.bisect_right(frames, f)
    return (i1 - 1, i1)


def _sample(
    keys: List[Keyframe],
    f: float,
    default: tuple,
    mix: Callable[[Any, Any, float], tuple],
    finish: Optional[Callable[[Any], tuple]] = None,
) -> tuple:
    if not keys:
        return default
    finish = finish or tuple
    i0, i1 = _bracket([k.frame for k in keys], f)
    k0, k1 = keys[i0], keys[i1]
    span = float(k1.frame - k0.frame)
    if i0 == i1 or span <= 0.0:
        return finish(k0.value)
    return mix(k0.value, k1.value, (float(f) - k0.frame) / span)


def sample_vec3(keys: List[Keyframe], f: float, default: Vec3 = (0.0, 0.0, 0.0)) -> Vec3:
    return _sample(keys, f, default, lerp_vec3)


def sample_quat(keys: List[Keyframe], f: float, default: Quat = IDENTITY_QUAT) -> Quat:
    return _sample(keys, f, default, quat_slerp, quat_normalize)
