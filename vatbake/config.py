#config.py
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .capture import DEFAULT_MAX_STEPS_PER_FRAME
from .serialization import ENCODINGS


def _as_bool(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(v)


def _as_encoding(v: Any) -> str:
    enc = str(v).lower()
    if enc not in ENCODINGS:
        raise ValueError(f"encoding must be one of {ENCODINGS} (got {v!r})")
    return enc


CONFIG_FIELDS = [
    ("output_dir", Path, lambda: Path("baked")),
    ("log_path", Path, lambda: Path("logs/vatbake.log")),
    ("db_path", Path, None),            # sqlite bake cache; None disables it

    ("encoding", _as_encoding, "base64"),
    ("write_texture", _as_bool, True),  # also write <stem>.vat.tiff
    ("print_json", _as_bool, False),

    # bake scene stepping
    ("constant_delta_ms", float, 1000.0 / 60.0),
    ("max_steps_per_frame", int, DEFAULT_MAX_STEPS_PER_FRAME),
    ("ready_poll_s", float, 0.0),
]


@dataclass(frozen=True)
class BakeConfig:
    output_dir: Path
    log_path: Path
    db_path: Optional[Path]
    encoding: str
    write_texture: bool
    print_json: bool
    constant_delta_ms: float
    max_steps_per_frame: int
    ready_poll_s: float


def config_from_dict(raw: dict) -> BakeConfig:
    values = {}
    for entry in CONFIG_FIELDS:
        key = entry[0]
        cast = entry[1]
        default = entry[2] if len(entry) > 2 else None

        if key in raw:
            value = raw[key]
        else:
            value = default() if callable(default) else default

        if value is not None and cast is not None:
            value = cast(value)

        values[key] = value

    return BakeConfig(**values)


def load_config(config_path: Path) -> BakeConfig:
    raw = json.loads(Path(config_path).read_text(encoding="utf-8"))
    return config_from_dict(raw)
