from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence, Union

import numpy as np

from . import store
from .capture import DEFAULT_MAX_STEPS_PER_FRAME, BakePreconditionError, bake_clips
from .config import BakeConfig
from .logs import setup_logger
from .serialization import serialize_vat
from .texture import buffer_to_texture, save_texture
from .types import AnimationClip, BakedVat, SimulationContext, SkinnedMesh


AssetRef = Union[str, Path, dict]


@dataclass(frozen=True)
class BakeSceneSettings:
    """
    Flags for the throwaway context a bake runs in: fixed animation step and
    no rendering, culling or physics work, so stepping is cheap and repeatable.
    """
    use_constant_animation_delta_time: bool = True
    constant_delta_ms: float = 1000.0 / 60.0
    aggressive_performance: bool = True
    auto_clear: bool = False
    auto_clear_depth_and_stencil: bool = False
    skip_frustum_clipping: bool = True
    freeze_active_meshes: bool = True
    skip_evaluate_active_meshes: bool = True
    physics_enabled: bool = False
    render_targets_enabled: bool = False
    maintain_state_between_frames: bool = True


class AssetContainer(Protocol):
    meshes: List[SkinnedMesh]
    animation_groups: List[AnimationClip]

    def dispose(self) -> None:
        ...


class BakingContext(SimulationContext, Protocol):
    def add_animation_group(self, group: AnimationClip) -> None:
        ...

    def add_mesh(self, mesh: SkinnedMesh) -> None:
        ...

    def add_skeleton(self, skeleton: Any) -> None:
        ...

    @property
    def meshes(self) -> Sequence[SkinnedMesh]:
        ...


class BakingHost(Protocol):
    def create_context(self, settings: BakeSceneSettings) -> BakingContext:
        ...

    def load_asset(self, context: BakingContext, asset_ref: AssetRef) -> AssetContainer:
        ...


def _find_skinned_mesh(meshes: Sequence[SkinnedMesh]) -> Optional[SkinnedMesh]:
    for m in meshes:
        if getattr(m, "skeleton", None) is not None:
            return m
    return None


def _wait_until_ready(context: BakingContext, poll_s: float) -> None:
    while not context.is_ready():
        time.sleep(poll_s)


def bake_asset(
    host: BakingHost,
    asset_ref: AssetRef,
    *,
    settings: Optional[BakeSceneSettings] = None,
    max_steps_per_frame: int = DEFAULT_MAX_STEPS_PER_FRAME,
    ready_poll_s: float = 0.0,
    logger=None,
) -> BakedVat:
    """
    Bake every animation group of the first skinned mesh in `asset_ref`, inside
    a context created only for this bake. The context, the loaded asset and the
    skeleton subscription are released whether the bake succeeds or not.
    """
    settings = settings or BakeSceneSettings()
    context = host.create_context(settings)
    asset = None
    prepare_sub = None
    try:
        asset = host.load_asset(context, asset_ref)

        anims = list(asset.animation_groups)
        for ag in anims:
            ag.stop()
            ag.reset()
            context.add_animation_group(ag)

        mesh = _find_skinned_mesh(asset.meshes)
        if mesh is None:
            raise BakePreconditionError(f"No mesh with a skeleton in asset {asset_ref!r}")
        skeleton = mesh.skeleton
        context.add_mesh(mesh)
        context.add_skeleton(skeleton)

        for m in context.meshes:
            m.compute_bones_using_shaders = False
            m.is_visible = False
            m.always_select_as_active_mesh = True

        # recompute matrices every tick instead of trusting the cache
        skeleton.use_texture_to_store_bone_matrices = False
        prepare_sub = context.on_before_render.add(lambda _ctx: skeleton.prepare(True))

        _wait_until_ready(context, ready_poll_s)

        if logger:
            logger.info(
                "Baking %r: mesh=%r bones=%d groups=%s",
                asset_ref, getattr(mesh, "name", "?"), skeleton.bone_count, [getattr(a, "name", "?") for a in anims],
            )

        return bake_clips(context, mesh, anims, max_steps_per_frame=max_steps_per_frame, logger=logger)
    except Exception:
        if logger:
            logger.exception("Bake failed for %r", asset_ref)
        raise
    finally:
        if prepare_sub is not None:
            prepare_sub.remove()
        if asset is not None:
            asset.dispose()
        context.dispose()


def bake_mesh(host: BakingHost, asset_ref: AssetRef, **kwargs) -> np.ndarray:
    return bake_asset(host, asset_ref, **kwargs).buffer


def _asset_key(asset_ref: AssetRef) -> Optional[str]:
    if isinstance(asset_ref, (str, Path)):
        return str(Path(asset_ref).resolve())
    return None


def _output_stem(asset_ref: AssetRef) -> str:
    if isinstance(asset_ref, (str, Path)):
        return Path(asset_ref).stem
    name = asset_ref.get("name") if isinstance(asset_ref, dict) else None
    return str(name or "asset")


def run_bake(
    host: BakingHost,
    asset_ref: AssetRef,
    config: BakeConfig,
    *,
    con: Optional[sqlite3.Connection] = None,
    force: bool = False,
    logger=None,
) -> BakedVat:
    """
    Configured bake job: reuse a cached bake when the asset file is unchanged,
    otherwise bake; then write <stem>.vat.json (and <stem>.vat.tiff) to output_dir.
    """
    if logger is None:
        logger = setup_logger(config.log_path)

    own_con = False
    if con is None and config.db_path is not None:
        con = store.connect(config.db_path)
        own_con = True
    try:
        if con is not None:
            store.init_db(con)

        key = _asset_key(asset_ref)
        sha1 = None
        if key is not None and Path(key).is_file():
            sha1 = store.fingerprint_file(Path(key))

        vat = None
        if con is not None and key is not None and sha1 is not None and not force:
            vat = store.get_baked_vat(con, key, asset_sha1=sha1)
            if vat is not None:
                logger.info("Using cached bake for %s (sha1=%s)", key, sha1)

        if vat is None:
            settings = BakeSceneSettings(constant_delta_ms=config.constant_delta_ms)
            vat = bake_asset(
                host,
                asset_ref,
                settings=settings,
                max_steps_per_frame=config.max_steps_per_frame,
                ready_poll_s=config.ready_poll_s,
                logger=logger,
            )
            if con is not None and key is not None:
                store.upsert_baked_vat(con, key, vat, asset_sha1=sha1, encoding=config.encoding)

        text = serialize_vat(vat, encoding=config.encoding)
        if config.print_json:
            logger.info("VAT JSON:\n%s", text)

        out_dir = Path(config.output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        stem = _output_stem(asset_ref)
        json_path = out_dir / f"{stem}.vat.json"
        json_path.write_text(text, encoding="utf-8")
        logger.info("Wrote %s (%d floats)", json_path, vat.shape.size)

        if config.write_texture:
            if vat.shape.frame_count > 0:
                tex = buffer_to_texture(vat.buffer, vat.shape.bone_count, vat.shape.frame_count)
                tiff_path = save_texture(tex, out_dir / f"{stem}.vat.tiff")
                logger.info("Wrote %s (%dx%d)", tiff_path, tex.width, tex.height)
            else:
                logger.warning("No frames baked for %r; skipping texture image", asset_ref)

        return vat
    finally:
        if own_con:
            con.close()
