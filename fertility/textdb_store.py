#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
textdb_store.py

YAML-backed store for the clinical content library and the clinical constants.

Design
------
- core.yaml is read-only (release/versioned): rules, factor metadata, text blocks.
- overrides.yaml holds local edits (draft/approved) and new blocks.
- Rendering never raises on missing placeholders (they stay visible as {name}).

Clinical content must always be reviewed by a clinician before release.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import copy
import datetime
import string

import yaml


SCHEMA_VERSION = 2


# ---------------------------
# Utilities
# ---------------------------

class SafeFormatDict(dict):
    """dict that leaves missing keys as '{key}' instead of raising KeyError."""
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def extract_placeholders(text: str) -> List[str]:
    """Python-format placeholders {name} of a template, unique and sorted."""
    formatter = string.Formatter()
    names: List[str] = []
    for _, field_name, _, _ in formatter.parse(text):
        if not field_name:
            continue
        names.append(field_name)
    return sorted(set(names))


def deep_merge_dict(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursive merge:
    - dict + dict -> merge
    - otherwise the patch wins
    """
    out = copy.deepcopy(base)
    for k, v in patch.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge_dict(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        obj = yaml.safe_load(f) or {}
    return obj


def dump_yaml(obj: Dict[str, Any], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(obj, f, sort_keys=False, allow_unicode=True, width=120)


# ---------------------------
# Data classes
# ---------------------------

@dataclass
class ContentBlock:
    """
    One entry of the clinical content library.

    Finding blocks (category "F") carry an explanation in `template` plus
    recommendations/sources. Report phrase blocks (category "R") are templates
    rendered with the prognosis numbers.
    """
    id: str
    title: str
    category: str
    template: str
    definition: str = ""
    justification: str = ""
    recommendations: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    notes: str = ""
    tags: List[str] = field(default_factory=list)
    inputs_used: List[str] = field(default_factory=list)

    def render(self, data: Optional[Dict[str, Any]] = None) -> str:
        return self.template.format_map(SafeFormatDict(**(data or {})))


@dataclass
class TextDB:
    core_path: Path
    overrides_path: Path
    core: Dict[str, Any] = field(default_factory=dict)
    overrides: Dict[str, Any] = field(default_factory=dict)
    merged: Dict[str, Any] = field(default_factory=dict)

    def load(self) -> "TextDB":
        self.core = load_yaml(self.core_path)
        self.overrides = load_yaml(self.overrides_path)
        self._validate_schema(self.core, "core.yaml")
        if self.overrides:
            self._validate_schema(self.overrides, "overrides.yaml", allow_empty=True)
        self.merged = self._merge(self.core, self.overrides)
        return self

    # ---------- Schema / Merge ----------

    def _validate_schema(self, obj: Dict[str, Any], name: str, allow_empty: bool = False) -> None:
        if allow_empty and not obj:
            return
        ver = obj.get("schema_version")
        if ver != SCHEMA_VERSION:
            raise ValueError(f"{name}: schema_version esperado {SCHEMA_VERSION}, encontrado {ver}")

    def _merge(self, core: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge rules:
        - blocks: core.blocks + approved overrides.blocks
        - rules, factor_metadata: patchable via overrides (deep merge)
        """
        merged = copy.deepcopy(core)

        ovr_root = (overrides or {}).get("overrides", {}) or {}
        ovr_blocks = ovr_root.get("blocks", {}) or {}
        ovr_rules = ovr_root.get("rules", {}) or {}
        ovr_meta = ovr_root.get("factor_metadata", {}) or {}

        merged_blocks = merged.get("blocks", {}) or {}
        for bid, patch in ovr_blocks.items():
            status = (patch or {}).get("status", "approved")
            if status != "approved":
                continue
            data = patch.get("data", patch)
            if bid in merged_blocks:
                merged_blocks[bid] = deep_merge_dict(merged_blocks[bid], data)
            else:
                merged_blocks[bid] = dict(data, id=data.get("id", bid))
        merged["blocks"] = merged_blocks

        if ovr_rules:
            merged["rules"] = deep_merge_dict(merged.get("rules", {}) or {}, ovr_rules)
        if ovr_meta:
            merged["factor_metadata"] = deep_merge_dict(merged.get("factor_metadata", {}) or {}, ovr_meta)

        return merged

    # ---------- Public API ----------

    def get_block(self, block_id: str) -> Optional[ContentBlock]:
        b = (self.merged.get("blocks", {}) or {}).get(block_id)
        if not b:
            return None
        return self._as_block(block_id, b)

    def list_blocks(self) -> List[ContentBlock]:
        blocks = self.merged.get("blocks", {}) or {}
        return [self._as_block(bid, b) for bid, b in sorted(blocks.items(), key=lambda kv: kv[0])]

    def list_blocks_by_category(self, category: str) -> List[ContentBlock]:
        c = (category or "").upper()
        return [b for b in self.list_blocks() if (b.category or "").upper() == c]

    def rules(self) -> Dict[str, Any]:
        return self.merged.get("rules", {}) or {}

    def factor_metadata(self) -> Dict[str, Any]:
        return self.merged.get("factor_metadata", {}) or {}

    # ---------- Overrides workflow ----------

    def _ensure_overrides(self) -> Dict[str, Any]:
        overrides = self.overrides or {"schema_version": SCHEMA_VERSION, "meta": {}, "overrides": {"blocks": {}}}
        overrides.setdefault("schema_version", SCHEMA_VERSION)
        overrides.setdefault("meta", {})
        overrides.setdefault("overrides", {}).setdefault("blocks", {})
        overrides["meta"]["updated_at"] = datetime.date.today().isoformat()
        return overrides

    def upsert_override_block(self, block_id: str, data_patch: Dict[str, Any], status: str = "draft") -> None:
        """
        Creates/updates a block override in overrides.yaml.
        - status: 'draft' or 'approved'
        - data_patch: fields such as template/recommendations/title/notes
        """
        overrides = self._ensure_overrides()
        overrides["overrides"]["blocks"][block_id] = {
            "status": status,
            "data": data_patch,
        }
        self.overrides = overrides
        dump_yaml(self.overrides, self.overrides_path)
        self.load()

    def approve_override_block(self, block_id: str) -> None:
        overrides = self.overrides or {}
        blocks = (overrides.get("overrides", {}) or {}).get("blocks", {}) or {}
        if block_id not in blocks:
            raise KeyError(f"No existe override para {block_id}.")
        blocks[block_id]["status"] = "approved"
        overrides = self._ensure_overrides()
        dump_yaml(overrides, self.overrides_path)
        self.overrides = overrides
        self.load()

    def discard_override_block(self, block_id: str) -> None:
        overrides = self._ensure_overrides()
        blocks = overrides["overrides"]["blocks"]
        if block_id in blocks:
            del blocks[block_id]
        dump_yaml(overrides, self.overrides_path)
        self.overrides = overrides
        self.load()

    # ---------- Internal ----------

    def _as_block(self, block_id: str, b: Dict[str, Any]) -> ContentBlock:
        return ContentBlock(
            id=str(b.get("id", block_id)),
            title=str(b.get("title", "")),
            category=str(b.get("category", "")),
            template=str(b.get("template", "")),
            definition=str(b.get("definition", "") or ""),
            justification=str(b.get("justification", "") or ""),
            recommendations=[str(x) for x in (b.get("recommendations", []) or [])],
            sources=[str(x) for x in (b.get("sources", []) or [])],
            notes=str(b.get("notes", "") or ""),
            tags=list(b.get("tags", []) or []),
            inputs_used=list(b.get("inputs_used", []) or []),
        )


def load_textdb(core_path: Path, overrides_path: Path) -> TextDB:
    return TextDB(core_path=core_path, overrides_path=overrides_path).load()
