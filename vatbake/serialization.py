from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Iterable, List, Optional

import numpy as np

from .layout import VatParseError, VatShapeError, buffer_size_for
from .types import BakedVat, ClipSpan, VatShape


FORMAT_VERSION = 1
ENCODINGS = ("base64", "decimal")


def _encode_values(data: np.ndarray, encoding: str) -> Any:
    if encoding == "base64":
        # raw little-endian float32 bytes, bit exact
        return base64.b64encode(data.astype("<f4").tobytes()).decode("ascii")
    if encoding == "decimal":
        # float32 -> float64 is exact and repr() round-trips float64
        return [float(x) for x in data]
    raise ValueError(f"Unknown VAT encoding {encoding!r} (expected one of {ENCODINGS})")


def _decode_values(raw: Any, encoding: str) -> np.ndarray:
    if encoding == "base64":
        if not isinstance(raw, str):
            raise VatParseError("vertexData must be a base64 string")
        try:
            blob = base64.b64decode(raw.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise VatParseError(f"vertexData is not valid base64 ({e})") from e
        if len(blob) % 4 != 0:
            raise VatParseError(f"vertexData byte length {len(blob)} is not a multiple of 4")
        return np.frombuffer(blob, dtype="<f4").astype(np.float32)
    if encoding == "decimal":
        if not isinstance(raw, list):
            raise VatParseError("vertexData must be a list of numbers")
        for i, x in enumerate(raw):
            if isinstance(x, bool) or not isinstance(x, (int, float)):
                raise VatParseError(f"vertexData[{i}] is not a number: {x!r}")
        try:
            with np.errstate(over="raise", invalid="raise"):
                values = np.array(raw, dtype=np.float64).astype(np.float32)
        except (OverflowError, FloatingPointError) as e:
            raise VatParseError(f"vertexData holds a value outside float32 range ({e})") from e
        bad = np.flatnonzero(~np.isfinite(values))
        if bad.size:
            raise VatParseError(f"vertexData[{int(bad[0])}] is not a finite float32 ({raw[int(bad[0])]!r})")
        return values
    raise VatParseError(f"Unknown VAT encoding {encoding!r}")


def _int_field(obj: dict, key: str) -> Optional[int]:
    if key not in obj:
        return None
    v = obj[key]
    if isinstance(v, float) and v.is_integer():
        return int(v)
    if isinstance(v, bool) or not isinstance(v, int):
        raise VatParseError(f"{key} must be an integer (got {v!r})")
    return v


def _parse_clips(raw: Any) -> List[ClipSpan]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise VatParseError("clips must be a list")
    out: List[ClipSpan] = []
    for item in raw:
        try:
            out.append(ClipSpan(name=str(item["name"]), start=int(item["start"]), end=int(item["end"])))
        except (KeyError, TypeError, ValueError) as e:
            raise VatParseError(f"Malformed clip entry {item!r}") from e
    return out


def serialize(
    buffer: np.ndarray,
    shape: VatShape,
    *,
    clips: Optional[Iterable[ClipSpan]] = None,
    encoding: str = "base64",
) -> str:
    data = np.asarray(buffer, dtype=np.float32).reshape(-1)
    expected = buffer_size_for(shape.bone_count, shape.frame_count)
    if data.size != expected:
        raise VatShapeError(
            f"buffer has {data.size} floats but shape {shape.bone_count}x{shape.frame_count} needs {expected}"
        )

    payload: dict[str, Any] = {
        "version": FORMAT_VERSION,
        "boneCount": shape.bone_count,
        "frameCount": shape.frame_count,
        # texture dims in RGBA pixels
        "width": shape.texture_width,
        "height": shape.texture_height,
        "encoding": encoding,
        "vertexData": _encode_values(data, encoding),
    }
    if clips is not None:
        payload["clips"] = [{"name": c.name, "start": c.start, "end": c.end} for c in clips]
    return json.dumps(payload, separators=(",", ":"))


def serialize_vat(vat: BakedVat, *, encoding: str = "base64") -> str:
    return serialize(vat.buffer, vat.shape, clips=vat.clips, encoding=encoding)


def deserialize_vat(text: str) -> BakedVat:
    try:
        obj = json.loads(text)
    except (TypeError, ValueError) as e:
        raise VatParseError(f"VAT payload is not valid JSON ({e})") from e
    if not isinstance(obj, dict):
        raise VatParseError("VAT payload must be a JSON object")
    if "vertexData" not in obj:
        raise VatParseError("VAT payload is missing 'vertexData'")

    encoding = obj.get("encoding", "base64")
    values = _decode_values(obj["vertexData"], encoding)

    bone_count = _int_field(obj, "boneCount")
    frame_count = _int_field(obj, "frameCount")
    width = _int_field(obj, "width")
    height = _int_field(obj, "height")

    # payloads from other bakers may only carry width/height
    if bone_count is None:
        if width is None or width < 4 or width % 4 != 0:
            raise VatParseError("VAT payload needs 'boneCount' or a 'width' that is a multiple of 4")
        bone_count = width // 4 - 1
    if frame_count is None:
        if height is None:
            raise VatParseError("VAT payload needs 'frameCount' or 'height'")
        frame_count = height

    if bone_count < 0 or frame_count < 0:
        raise VatShapeError(f"negative shape (boneCount={bone_count}, frameCount={frame_count})")
    shape = VatShape(bone_count, frame_count)
    if width is not None and width != shape.texture_width:
        raise VatShapeError(f"width {width} does not match boneCount {bone_count}")
    if height is not None and height != shape.texture_height:
        raise VatShapeError(f"height {height} does not match frameCount {frame_count}")
    if values.size != shape.size:
        raise VatShapeError(
            f"vertexData has {values.size} floats, shape {bone_count}x{frame_count} needs {shape.size}"
        )

    clips = _parse_clips(obj.get("clips"))
    for c in clips:
        if c.start < 0 or c.end >= frame_count or c.end < c.start:
            raise VatShapeError(f"clip {c.name!r} rows [{c.start}, {c.end}] outside {frame_count} frames")

    return BakedVat(buffer=values, shape=shape, clips=clips)


def deserialize(text: str) -> tuple[np.ndarray, VatShape]:
    vat = deserialize_vat(text)
    return vat.buffer, vat.shape
