from __future__ import annotations

import hashlib
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .serialization import deserialize_vat, serialize_vat
from .types import BakedVat


SCHEMA_VERSION = 1


@dataclass(frozen=True)
class VatRow:
    id: int
    asset_key: str
    asset_sha1: Optional[str]
    bone_count: int
    frame_count: int
    encoding: str
    created_at: str


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def fingerprint_file(path: Path) -> str:
    h = hashlib.sha1()
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(1 << 16), b""):
            h.update(chunk)
    return h.hexdigest()


def connect(db_path: Path) -> sqlite3.Connection:
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(str(db_path))
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys = ON;")
    return con


_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS baked_vats (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  asset_key TEXT NOT NULL UNIQUE,
  asset_sha1 TEXT,
  bone_count INTEGER NOT NULL,
  frame_count INTEGER NOT NULL,
  encoding TEXT NOT NULL,
  payload TEXT NOT NULL,
  created_at TEXT NOT NULL
);

-- one row per clip; start_row/end_row index frames inside the baked texture
CREATE TABLE IF NOT EXISTS vat_clips (
  vat_id INTEGER NOT NULL REFERENCES baked_vats(id) ON DELETE CASCADE,
  clip_index INTEGER NOT NULL,
  name TEXT NOT NULL,
  start_row INTEGER NOT NULL,
  end_row INTEGER NOT NULL,
  PRIMARY KEY (vat_id, clip_index)
);
"""


def schema_version(con: sqlite3.Connection) -> int:
    try:
        row = con.execute("SELECT value FROM meta WHERE key = 'schema_version';").fetchone()
    except sqlite3.Error:
        return 0
    return int(row["value"]) if row else 0


def init_db(con: sqlite3.Connection) -> None:
    con.executescript(_SCHEMA)
    if schema_version(con) < SCHEMA_VERSION:
        con.execute(
            "INSERT INTO meta(key, value) VALUES('schema_version', ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value;",
            (str(SCHEMA_VERSION),),
        )
    con.commit()


def upsert_baked_vat(
    con: sqlite3.Connection,
    asset_key: str,
    vat: BakedVat,
    *,
    asset_sha1: Optional[str] = None,
    encoding: str = "base64",
) -> int:
    """
    Insert or replace the bake for asset_key. Returns the baked_vats row id.
    """
    payload = serialize_vat(vat, encoding=encoding)
    cur = con.cursor()
    cur.execute(
        """
        INSERT INTO baked_vats (asset_key, asset_sha1, bone_count, frame_count, encoding, payload, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(asset_key) DO UPDATE SET
          asset_sha1=excluded.asset_sha1,
          bone_count=excluded.bone_count,
          frame_count=excluded.frame_count,
          encoding=excluded.encoding,
          payload=excluded.payload,
          created_at=excluded.created_at
        ;
        """,
        (
            str(asset_key),
            asset_sha1,
            vat.shape.bone_count,
            vat.shape.frame_count,
            encoding,
            payload,
            _iso_now(),
        ),
    )
    row = con.execute("SELECT id FROM baked_vats WHERE asset_key = ?;", (str(asset_key),)).fetchone()
    vat_id = int(row["id"])

    con.execute("DELETE FROM vat_clips WHERE vat_id = ?;", (vat_id,))
    cur.executemany(
        """
        INSERT INTO vat_clips (vat_id, clip_index, name, start_row, end_row)
        VALUES (?, ?, ?, ?, ?);
        """,
        [(vat_id, i, c.name, c.start, c.end) for i, c in enumerate(vat.clips)],
    )
    con.commit()
    return vat_id


def get_baked_vat(
    con: sqlite3.Connection,
    asset_key: str,
    asset_sha1: Optional[str] = None,
) -> Optional[BakedVat]:
    """
    Cached bake for asset_key, or None. With asset_sha1 set, a bake of a
    different file version counts as a miss.
    """
    row = con.execute(
        "SELECT id, asset_sha1, payload FROM baked_vats WHERE asset_key = ?;",
        (str(asset_key),),
    ).fetchone()
    if not row:
        return None
    if asset_sha1 is not None and row["asset_sha1"] != asset_sha1:
        return None
    return deserialize_vat(str(row["payload"]))


def list_baked_vats(con: sqlite3.Connection) -> list[VatRow]:
    cur = con.execute(
        """
        SELECT id, asset_key, asset_sha1, bone_count, frame_count, encoding, created_at
        FROM baked_vats
        ORDER BY asset_key;
        """
    )
    return [
        VatRow(
            id=int(r["id"]),
            asset_key=str(r["asset_key"]),
            asset_sha1=r["asset_sha1"],
            bone_count=int(r["bone_count"]),
            frame_count=int(r["frame_count"]),
            encoding=str(r["encoding"]),
            created_at=str(r["created_at"]),
        )
        for r in cur.fetchall()
    ]


def get_clip_rows(con: sqlite3.Connection, asset_key: str) -> list[tuple[str, int, int]]:
    """
    Returns list of (name, start_row, end_row) in bake order.
    """
    cur = con.execute(
        """
        SELECT c.name, c.start_row, c.end_row
        FROM vat_clips c
        JOIN baked_vats v ON v.id = c.vat_id
        WHERE v.asset_key = ?
        ORDER BY c.clip_index;
        """,
        (str(asset_key),),
    )
    return [(str(r["name"]), int(r["start_row"]), int(r["end_row"])) for r in cur.fetchall()]


def delete_baked_vat(con: sqlite3.Connection, asset_key: str) -> int:
    cur = con.execute("DELETE FROM baked_vats WHERE asset_key = ?;", (str(asset_key),))
    con.commit()
    return cur.rowcount
