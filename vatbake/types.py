from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence

import numpy as np

from .observable import Observable


Mat4 = list[list[float]]  # 4x4 row-major, translation in [0][3],[1][3],[2][3]


@dataclass(frozen=True)
class VatShape:
    bone_count: int
    frame_count: int

    @property
    def matrices_per_frame(self) -> int:
        # one extra slot for the mesh world transform
        return self.bone_count + 1

    @property
    def floats_per_frame(self) -> int:
        return self.matrices_per_frame * 16

    @property
    def texture_width(self) -> int:
        return self.matrices_per_frame * 4

    @property
    def texture_height(self) -> int:
        return self.frame_count

    @property
    def size(self) -> int:
        return self.floats_per_frame * self.frame_count


@dataclass(frozen=True)
class ClipSpan:
    """Frame rows a clip occupies inside a baked buffer (inclusive)."""
    name: str
    start: int
    end: int

    @property
    def frame_count(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class BakedVat:
    buffer: np.ndarray
    shape: VatShape
    clips: List[ClipSpan] = field(default_factory=list)


class AnimationClip(Protocol):
    name: str
    from_frame: float
    to_frame: float
    on_animation_end: Observable

    def reset(self) -> None:
        ...

    def start(
        self,
        loop: bool = False,
        speed: float = 1.0,
        from_frame: Optional[float] = None,
        to_frame: Optional[float] = None,
        stop_at_end: bool = False,
    ) -> None:
        ...

    def stop(self) -> None:
        ...


class BoneMatrixSource(Protocol):
    use_texture_to_store_bone_matrices: bool

    @property
    def bone_count(self) -> int:
        ...

    def prepare(self, force: bool = False) -> None:
        ...

    def compute_transforms(self, mesh: Any) -> Sequence[float]:
        ...


class SkinnedMesh(Protocol):
    name: str
    skeleton: Optional[BoneMatrixSource]
    compute_bones_using_shaders: bool
    is_visible: bool
    always_select_as_active_mesh: bool
    baked_vertex_animation_manager: Any

    def register_instanced_buffer(self, name: str, stride: int) -> Any:
        ...


class SimulationContext(Protocol):
    on_before_render: Observable

    def step(self, render_side_effects: bool = False) -> None:
        ...

    def is_ready(self) -> bool:
        ...

    def dispose(self) -> None:
        ...


class RenderLoop(Protocol):
    """Anything with a before-render tick and the last frame time in ms."""
    on_before_render: Observable
    delta_time: Optional[float]
