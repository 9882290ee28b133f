from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..baker import BakeSceneSettings
from ..layout import flatten_mat4
from ..observable import Observable
from ..playback import InstanceBuffer
from ..types import Mat4
from .rig import AnimChannel, Rig, RigEvaluator, mat4_identity


class Skeleton:
    """
    Bone matrix source. The transform array is computed in prepare() and
    overwritten in place on every recompute, like a real engine's cache.
    """
    def __init__(self, name: str, rig: Rig) -> None:
        self.name = name
        self.rig = rig
        self.use_texture_to_store_bone_matrices = True
        self.prepare_count = 0
        self._evaluator = RigEvaluator(rig)
        self._channels: Dict[int, AnimChannel] = {}
        self._frame: float = 0.0
        self._dirty = True
        self._transforms: List[float] = [0.0] * ((rig.bone_count + 1) * 16)

    @property
    def bone_count(self) -> int:
        return self.rig.bone_count

    @property
    def current_frame(self) -> float:
        return self._frame

    def apply_frame(self, channels: Dict[int, AnimChannel], frame: float) -> None:
        self._channels = channels
        self._frame = float(frame)
        self._dirty = True

    def prepare(self, force: bool = False) -> None:
        if not (force or self._dirty):
            return
        mats = self._evaluator.skinning_matrices(self._channels, self._frame)
        for i, m in enumerate(mats):
            self._transforms[i * 16:(i + 1) * 16] = flatten_mat4(m)
        self._dirty = False
        self.prepare_count += 1

    def compute_transforms(self, mesh: Any) -> List[float]:
        """Current skinning matrices plus the mesh world matrix in the last slot."""
        if self._dirty:
            self.prepare()
        world = getattr(mesh, "world_matrix", None) or mat4_identity()
        b = self.bone_count
        self._transforms[b * 16:(b + 1) * 16] = flatten_mat4(world)
        return self._transforms


class SkinnedMesh:
    def __init__(self, name: str, skeleton: Optional[Skeleton] = None) -> None:
        self.name = name
        self.skeleton = skeleton
        self.world_matrix: Mat4 = mat4_identity()
        self.compute_bones_using_shaders = True
        self.is_visible = True
        self.always_select_as_active_mesh = False
        self.baked_vertex_animation_manager = None
        self.instanced_buffers: Dict[str, InstanceBuffer] = {}
        self.is_disposed = False

    def register_instanced_buffer(self, name: str, stride: int) -> InstanceBuffer:
        buf = self.instanced_buffers.get(name)
        if buf is None or buf.stride != int(stride):
            buf = InstanceBuffer(stride=stride)
            self.instanced_buffers[name] = buf
        return buf

    def dispose(self) -> None:
        self.is_disposed = True


class AnimationGroup:
    """
    Clip handle over a frame range of shared bone channels. While playing, each
    scene step poses the skeleton; a non-looping play that has reached its
    target frame stops and fires on_animation_end after the skeleton is prepared.
    """
    def __init__(
        self,
        name: str,
        skeleton: Skeleton,
        channels: Dict[int, AnimChannel],
        from_frame: float,
        to_frame: float,
        fps: float = 60.0,
    ) -> None:
        self.name = name
        self.skeleton = skeleton
        self.channels = channels
        self.from_frame = float(from_frame)
        self.to_frame = float(to_frame)
        self.fps = float(fps)
        self.on_animation_end = Observable()

        self.is_playing = False
        self.loop = False
        self.speed = 1.0
        self.current_frame = self.from_frame
        self._play_from = self.from_frame
        self._play_to = self.to_frame

    def reset(self) -> None:
        self.current_frame = self.from_frame
        self.skeleton.apply_frame(self.channels, self.from_frame)

    def start(
        self,
        loop: bool = False,
        speed: float = 1.0,
        from_frame: Optional[float] = None,
        to_frame: Optional[float] = None,
        stop_at_end: bool = False,
    ) -> None:
        self.loop = bool(loop)
        self.speed = float(speed)
        self._play_from = self.from_frame if from_frame is None else float(from_frame)
        self._play_to = self.to_frame if to_frame is None else float(to_frame)
        self.current_frame = self._play_from
        self.is_playing = True

    def stop(self) -> None:
        self.is_playing = False

    def animate(self, delta_ms: float) -> bool:
        """
        Pose the skeleton for this step and advance. Returns True when a
        non-looping play has just finished.
        """
        if not self.is_playing:
            return False
        self.skeleton.apply_frame(self.channels, self.current_frame)
        if self.current_frame >= self._play_to:
            if self.loop:
                self.current_frame = self._play_from
                return False
            self.is_playing = False
            return True
        step = self.speed * self.fps * float(delta_ms) / 1000.0
        self.current_frame = min(self.current_frame + step, self._play_to)
        return False


class Scene:
    """
    Single-threaded simulation context. step() runs one tick:
    animate -> on_before_render -> skeleton prepare -> end notifications.
    """
    def __init__(self, settings: Optional[BakeSceneSettings] = None) -> None:
        self.settings = settings or BakeSceneSettings()
        self.on_before_render = Observable()
        self.delta_time: Optional[float] = None
        self.animation_groups: List[AnimationGroup] = []
        self._meshes: List[SkinnedMesh] = []
        self.skeletons: List[Skeleton] = []
        self.frames_rendered = 0
        self.step_count = 0
        self.is_disposed = False

    @property
    def meshes(self) -> List[SkinnedMesh]:
        return self._meshes

    def add_animation_group(self, group: AnimationGroup) -> None:
        if group not in self.animation_groups:
            self.animation_groups.append(group)

    def add_mesh(self, mesh: SkinnedMesh) -> None:
        if mesh not in self._meshes:
            self._meshes.append(mesh)

    def add_skeleton(self, skeleton: Skeleton) -> None:
        if skeleton not in self.skeletons:
            self.skeletons.append(skeleton)

    def remove(self, item: Any) -> None:
        for coll in (self.animation_groups, self._meshes, self.skeletons):
            if item in coll:
                coll.remove(item)

    def is_ready(self) -> bool:
        return not self.is_disposed

    def step(self, render_side_effects: bool = False) -> None:
        if self.is_disposed:
            raise RuntimeError("Scene has been disposed")

        # fixed step when configured; the first tick of a free-running scene has no delta
        if self.settings.use_constant_animation_delta_time or self.step_count > 0:
            self.delta_time = float(self.settings.constant_delta_ms)
        self.step_count += 1

        finished = [g for g in list(self.animation_groups) if g.animate(self.delta_time or 0.0)]

        self.on_before_render.notify(self)

        for sk in self.skeletons:
            sk.prepare()

        if render_side_effects:
            self.frames_rendered += 1

        for g in finished:
            g.on_animation_end.notify(g)

    def dispose(self) -> None:
        if self.is_disposed:
            return
        self.is_disposed = True
        for g in self.animation_groups:
            g.stop()
            g.on_animation_end.clear()
        self.on_before_render.clear()
        self.animation_groups.clear()
        self._meshes.clear()
        self.skeletons.clear()


class AssetContainer:
    def __init__(
        self,
        scene: Scene,
        meshes: List[SkinnedMesh],
        skeletons: List[Skeleton],
        animation_groups: List[AnimationGroup],
    ) -> None:
        self.scene = scene
        self.meshes = meshes
        self.skeletons = skeletons
        self.animation_groups = animation_groups
        self.is_disposed = False

    def dispose(self) -> None:
        if self.is_disposed:
            return
        self.is_disposed = True
        for g in self.animation_groups:
            g.stop()
            self.scene.remove(g)
        for m in self.meshes:
            m.dispose()
            self.scene.remove(m)
        for s in self.skeletons:
            self.scene.remove(s)
