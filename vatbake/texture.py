from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import numpy as np
from PIL import Image

from .layout import VatShapeError, buffer_size_for, frame_offset
from .types import VatShape


class VatTexture:
    """
    Float RGBA pixel grid: one row per frame, (bone_count + 1) * 4 pixels per row,
    each pixel one 4-float matrix row. Owns its pixels; no link back to the skeleton.
    """
    def __init__(self, pixels: np.ndarray, shape: VatShape) -> None:
        self._pixels: Optional[np.ndarray] = pixels
        self.shape = shape

    @property
    def width(self) -> int:
        return self.shape.texture_width

    @property
    def height(self) -> int:
        return self.shape.texture_height

    @property
    def is_disposed(self) -> bool:
        return self._pixels is None

    @property
    def pixels(self) -> np.ndarray:
        if self._pixels is None:
            raise RuntimeError("VatTexture has been disposed")
        return self._pixels

    def bone_matrix(self, bone_index: int, frame_index: int) -> np.ndarray:
        """4x4 block for (bone, frame); rows are the 4 pixels in texture order."""
        if not 0 <= bone_index < self.shape.matrices_per_frame:
            raise IndexError(f"bone {bone_index} outside [0, {self.shape.matrices_per_frame})")
        if not 0 <= frame_index < self.shape.frame_count:
            raise IndexError(f"frame {frame_index} outside [0, {self.shape.frame_count})")
        x = bone_index * 4
        return self.pixels[frame_index, x:x + 4, :].copy()

    def frame_matrices(self, frame_index: int) -> np.ndarray:
        if not 0 <= frame_index < self.shape.frame_count:
            raise IndexError(f"frame {frame_index} outside [0, {self.shape.frame_count})")
        row = self.pixels[frame_index]
        return row.reshape(self.shape.matrices_per_frame, 4, 4).copy()

    def dispose(self) -> None:
        self._pixels = None


def buffer_to_texture(buffer: np.ndarray, bone_count: int, frame_count: int) -> VatTexture:
    shape = VatShape(int(bone_count), int(frame_count))
    expected = buffer_size_for(shape.bone_count, shape.frame_count)
    data = np.asarray(buffer, dtype=np.float32).reshape(-1)
    if data.size != expected:
        raise VatShapeError(
            f"buffer has {data.size} floats, expected {expected} "
            f"for bone_count={shape.bone_count} frame_count={shape.frame_count}"
        )
    pixels = data.reshape(shape.texture_height, shape.texture_width, 4).copy()
    return VatTexture(pixels, shape)


def texture_to_buffer(texture: VatTexture) -> np.ndarray:
    return texture.pixels.reshape(-1).copy()


def frame_slice(texture: VatTexture, frame_index: int) -> np.ndarray:
    """Flat floats of one frame, same slice bake_vertex_data wrote."""
    flat = texture.pixels.reshape(-1)
    off = frame_offset(texture.shape, frame_index)
    return flat[off:off + texture.shape.floats_per_frame].copy()


# ---------------------------
# Image files (Pillow, 32-bit float "F" mode)
# ---------------------------

def texture_to_image(texture: VatTexture) -> Image.Image:
    """
    One float per image pixel: width = (bone_count + 1) * 16, height = frame_count.
    Pillow has no float RGBA mode, so the 4 channels are laid side by side.
    """
    if texture.shape.frame_count == 0:
        raise VatShapeError("Cannot build an image from a texture with 0 frames")
    plane = texture.pixels.reshape(texture.height, texture.width * 4)
    return Image.fromarray(np.ascontiguousarray(plane, dtype=np.float32))


def texture_from_image(img: Image.Image) -> VatTexture:
    if img.mode != "F":
        raise VatShapeError(f"VAT image must be 32-bit float ('F' mode), got {img.mode!r}")
    w, h = img.size
    if w % 16 != 0 or w < 16:
        raise VatShapeError(f"VAT image width {w} is not a multiple of 16 floats")
    shape = VatShape(bone_count=w // 16 - 1, frame_count=h)
    plane = np.asarray(img, dtype=np.float32)
    pixels = plane.reshape(shape.texture_height, shape.texture_width, 4).copy()
    return VatTexture(pixels, shape)


def save_texture(texture: VatTexture, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    texture_to_image(texture).save(path, format="TIFF")
    return path


def load_texture(path: Union[str, Path]) -> VatTexture:
    with Image.open(Path(path)) as img:
        img.load()
        return texture_from_image(img)
