#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
validate_textdb.py

Small validator for the clinical content library (fertility/textdb/*.yaml).

Usage:
    python validate_textdb.py

Exit code:
    0 = ok
    1 = errors found
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List
import sys

BASE = Path(__file__).resolve().parent
if str(BASE) not in sys.path:
    sys.path.insert(0, str(BASE))

from fertility.models import FactorKey  # noqa: E402
from fertility.report import finding_keys  # noqa: E402
from fertility.textdb_store import SCHEMA_VERSION, SafeFormatDict, extract_placeholders, load_yaml  # noqa: E402
from fertility.treatment import TREATMENT_KEYS  # noqa: E402


CORE = BASE / "fertility" / "textdb" / "core.yaml"
OVR = BASE / "fertility" / "textdb" / "overrides.yaml"

REQUIRED_METADATA = ("name", "timeframe", "difficulty", "cost", "evidence", "category")


def validate(core: Dict[str, Any], overrides: Dict[str, Any]) -> List[str]:
    blocks = core.get("blocks", {}) or {}
    metadata = core.get("factor_metadata", {}) or {}
    errors: List[str] = []

    # 0) schema
    if core.get("schema_version") != SCHEMA_VERSION:
        errors.append(f"[schema] core.yaml: schema_version {core.get('schema_version')!r} != {SCHEMA_VERSION}")
    if overrides and overrides.get("schema_version") != SCHEMA_VERSION:
        errors.append(f"[schema] overrides.yaml: schema_version {overrides.get('schema_version')!r} != {SCHEMA_VERSION}")

    # 1) id consistency
    for bid, b in blocks.items():
        if str(b.get("id", "")) != bid:
            errors.append(f"[blocks] Key '{bid}' != block.id '{b.get('id')}'")
        if str(b.get("category", "")).upper() not in ("F", "R", "T"):
            errors.append(f"[blocks] {bid}: category must be F, R or T, got {b.get('category')!r}")

    # 2) placeholder consistency + formatting sanity
    for bid, b in blocks.items():
        tpl = str(b.get("template", ""))
        inputs_used = set(b.get("inputs_used", []) or [])
        try:
            ph = set(extract_placeholders(tpl))
            _ = tpl.format_map(SafeFormatDict())
        except (ValueError, IndexError) as e:
            errors.append(f"[format] {bid}: template format error: {e}")
            continue
        if inputs_used != ph:
            errors.append(f"[placeholders] {bid}: inputs_used != extracted placeholders (diff={sorted(inputs_used ^ ph)})")

    # 3) every finding key of the report table has content
    for key in finding_keys():
        b = blocks.get(key)
        if b is None:
            errors.append(f"[findings] missing block '{key}'")
        elif not (b.get("recommendations") or []):
            errors.append(f"[findings] {key}: no recommendations")

    # 3b) every treatment key has content
    for key in TREATMENT_KEYS:
        b = blocks.get(key)
        if b is None:
            errors.append(f"[treatment] missing block '{key}'")
        elif str(b.get("category", "")).upper() != "T":
            errors.append(f"[treatment] {key}: category must be T")

    # 4) simulator metadata per factor
    for key in FactorKey:
        meta = metadata.get(key.value)
        if not isinstance(meta, dict):
            errors.append(f"[factor_metadata] missing entry '{key.value}'")
            continue
        for field_name in REQUIRED_METADATA:
            if not meta.get(field_name):
                errors.append(f"[factor_metadata] {key.value}: missing '{field_name}'")

    # 5) override entries
    ovr_blocks = ((overrides or {}).get("overrides", {}) or {}).get("blocks", {}) or {}
    for bid, entry in ovr_blocks.items():
        status = (entry or {}).get("status", "approved")
        if status not in ("draft", "approved"):
            errors.append(f"[overrides] {bid}: unknown status '{status}'")

    return errors


def main() -> int:
    errors = validate(load_yaml(CORE), load_yaml(OVR))
    if errors:
        print("\n".join(errors))
        return 1

    print("OK: core.yaml validation passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
