from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from .layout import round_frame
from .observable import Subscription
from .types import ClipSpan, RenderLoop
from .texture import VatTexture


INSTANCE_ATTRIBUTE = "bakedVertexAnimationSettingsInstanced"
INSTANCE_STRIDE = 4


@dataclass(frozen=True)
class PlaybackSettings:
    """
    Per-instance encoding, 4 floats: (start_frame, end_frame, speed, loop).
    Frames are texture rows; speed is frames per second of manager time;
    loop is 1.0 (wrap inside the range) or 0.0 (hold the last frame).
    """
    start_frame: float
    end_frame: float
    speed: float = 30.0
    loop: bool = True

    @staticmethod
    def for_clip(span: ClipSpan, speed: float = 30.0, loop: bool = True) -> "PlaybackSettings":
        return PlaybackSettings(float(span.start), float(span.end), float(speed), bool(loop))

    @staticmethod
    def from_tuple(values) -> "PlaybackSettings":
        s, e, v, l = (float(x) for x in values)
        return PlaybackSettings(s, e, v, l >= 0.5)

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (float(self.start_frame), float(self.end_frame), float(self.speed), 1.0 if self.loop else 0.0)

    def frame_at(self, time: float) -> int:
        """Texture row a renderer should read at manager time `time` (seconds)."""
        start = round_frame(self.start_frame)
        end = round_frame(self.end_frame)
        count = end - start + 1
        if count <= 1:
            return start
        pos = int(math.floor(max(0.0, float(time)) * float(self.speed)))
        if self.loop:
            return start + pos % count
        return start + max(0, min(pos, count - 1))


class InstanceBuffer:
    """Float32 (n, stride) storage for the per-instance settings attribute."""
    def __init__(self, stride: int = INSTANCE_STRIDE, capacity: int = 0) -> None:
        self.stride = int(stride)
        self._data = np.zeros((int(capacity), self.stride), dtype=np.float32)

    def __len__(self) -> int:
        return int(self._data.shape[0])

    @property
    def data(self) -> np.ndarray:
        return self._data

    def _ensure(self, n: int) -> None:
        if n <= len(self):
            return
        grown = np.zeros((n, self.stride), dtype=np.float32)
        grown[: len(self)] = self._data
        self._data = grown

    def set(self, index: int, settings: PlaybackSettings) -> None:
        if index < 0:
            raise IndexError(f"instance index {index} < 0")
        self._ensure(index + 1)
        self._data[index] = settings.as_tuple()

    def get(self, index: int) -> PlaybackSettings:
        return PlaybackSettings.from_tuple(self._data[index])


class BakedAnimationManager:
    """
    Owns one VAT texture and the global playback time every instance shares.
    """
    def __init__(self, texture: Optional[VatTexture] = None) -> None:
        self.texture = texture
        self.time: float = 0.0
        self.is_enabled = True
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def advance(self, elapsed_s: Optional[float]) -> None:
        # render loops call this unconditionally; anything that is not a positive
        # finite number of seconds leaves time untouched
        if elapsed_s is None or self._disposed:
            return
        try:
            dt = float(elapsed_s)
        except (TypeError, ValueError):
            return
        if not math.isfinite(dt) or dt <= 0.0:
            return
        self.time += dt

    def dispose(self, dispose_texture: bool = False) -> None:
        if self._disposed:
            return
        self._disposed = True
        if dispose_texture and self.texture is not None:
            self.texture.dispose()
        self.texture = None


class PlaybackBinding:
    """
    Result of binding a manager to a render loop. dispose() releases the tick
    subscription and the manager once; later calls do nothing.
    """
    def __init__(self, manager: BakedAnimationManager, subscription: Subscription) -> None:
        self.manager = manager
        self._sub = subscription
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self, dispose_texture: bool = False) -> None:
        # the loop may already have dropped the subscription on its own teardown
        if self._disposed:
            return
        self._disposed = True
        self._sub.remove()
        self.manager.dispose(dispose_texture)


def bind_playback(render_loop: RenderLoop, manager: BakedAnimationManager) -> PlaybackBinding:
    def on_tick(_event: Any) -> None:
        dt_ms = getattr(render_loop, "delta_time", None)
        if dt_ms is None:
            return
        manager.advance(dt_ms / 1000.0)

    return PlaybackBinding(manager, render_loop.on_before_render.add(on_tick))


def sample_pose(texture: VatTexture, settings: PlaybackSettings, time: float) -> np.ndarray:
    """(bone_count + 1, 4, 4) matrices an instance with `settings` shows at `time`."""
    return texture.frame_matrices(settings.frame_at(time))
