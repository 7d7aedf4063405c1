# -*- coding: utf-8 -*-
"""textdb.py

Loaded clinical content library (core.yaml + overrides.yaml) with module-level
exports used by the engine, the report generator and the simulator.

- `RULES`: clinical constants (age brackets, thresholds, multipliers, benchmark).
- `CONTENT`: content blocks by id (findings "F", report phrases "R",
  treatments "T").
- `FACTOR_METADATA`: simulator metadata per factor key.

Helpers for the overrides workflow (upsert/approve/discard) are provided for
an admin screen; they rewrite overrides.yaml and reload the exports.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, List, Optional

from .textdb_store import ContentBlock, TextDB, load_textdb


_BASE = Path(__file__).resolve().parent

CORE_PATH = _BASE / "textdb" / "core.yaml"
OVERRIDES_PATH = _BASE / "textdb" / "overrides.yaml"

_DB: Optional[TextDB] = None

RULES: Dict[str, Any] = {}
CONTENT: Dict[str, ContentBlock] = {}
FACTOR_METADATA: Dict[str, Any] = {}


def safe_get(d: Dict[str, Any], *path: str, default: Any = None) -> Any:
    cur: Any = d
    for p in path:
        if not isinstance(cur, dict) or p not in cur:
            return default
        cur = cur[p]
    return cur


def reload(core_path: Optional[Path] = None, overrides_path: Optional[Path] = None) -> None:
    """Re-load the database from YAML and refresh the module-level exports."""

    global _DB, RULES, CONTENT, FACTOR_METADATA

    _DB = load_textdb(core_path or CORE_PATH, overrides_path or OVERRIDES_PATH)
    RULES = _DB.rules()
    CONTENT = {b.id: b for b in _DB.list_blocks()}
    FACTOR_METADATA = _DB.factor_metadata()


# initial load
reload()


def get_db() -> TextDB:
    if _DB is None:
        raise RuntimeError("TextDB no está cargada.")
    return _DB


def get_content(block_id: str) -> Optional[ContentBlock]:
    return CONTENT.get(block_id)


def list_blocks_by_category(category: str) -> List[ContentBlock]:
    return get_db().list_blocks_by_category(category)


# ---------------------------------------------------------------------------
# Overrides workflow helpers
# ---------------------------------------------------------------------------


def upsert_override_block(block_id: str, data_patch: Dict[str, Any], status: str = "draft") -> None:
    db = get_db()
    db.upsert_override_block(block_id=block_id, data_patch=data_patch, status=status)
    reload(db.core_path, db.overrides_path)


def approve_override_block(block_id: str) -> None:
    db = get_db()
    db.approve_override_block(block_id)
    reload(db.core_path, db.overrides_path)


def discard_override_block(block_id: str) -> None:
    db = get_db()
    db.discard_override_block(block_id)
    reload(db.core_path, db.overrides_path)


def get_override_entry(block_id: str) -> Optional[Dict[str, Any]]:
    """Raw override entry of a block (or None)."""
    db = get_db()
    blocks = safe_get(db.overrides or {}, "overrides", "blocks", default={}) or {}
    entry = blocks.get(block_id)
    if entry is None:
        return None
    return copy.deepcopy(entry)


def list_override_block_ids(status: Optional[str] = None) -> List[str]:
    db = get_db()
    blocks = safe_get(db.overrides or {}, "overrides", "blocks", default={}) or {}
    out: List[str] = []
    for bid, entry in sorted(blocks.items()):
        if status and (entry or {}).get("status") != status:
            continue
        out.append(bid)
    return out
