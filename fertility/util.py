# -*- coding: utf-8 -*-
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence


NOT_RECORDED = "sin dato"


def to_float(x: Any) -> Optional[float]:
    """Best-effort conversion. Returns None for empty/invalid."""
    if x is None:
        return None
    if isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        v = float(x)
        if math.isnan(v) or math.isinf(v):
            return None
        return v
    s = str(x).strip().replace(",", ".")
    if not s:
        return None
    try:
        v = float(s)
    except ValueError:
        return None
    if math.isnan(v) or math.isinf(v):
        return None
    return v


def to_bool(x: Any) -> Optional[bool]:
    """Accepts bools and the usual yes/no spellings of the input forms."""
    if x is None:
        return None
    if isinstance(x, bool):
        return x
    if isinstance(x, (int, float)):
        return bool(x)
    s = str(x).strip().lower()
    if s in ("true", "1", "si", "sí", "yes", "positivo"):
        return True
    if s in ("false", "0", "no", "negativo"):
        return False
    return None


def is_intish(v: float, tol: float = 1e-6) -> bool:
    return abs(v - round(v)) < tol


def fmt_num(v: Optional[float], decimals: int = 1) -> str:
    if v is None:
        return NOT_RECORDED
    if isinstance(v, float) and (math.isnan(v) or math.isinf(v)):
        return NOT_RECORDED
    if is_intish(v):
        return str(int(round(v)))
    return f"{v:.{decimals}f}"


def fmt_pct(v: Optional[float], decimals: int = 1) -> str:
    if v is None:
        return NOT_RECORDED
    return f"{v:.{decimals}f}%"


def join_nonempty(parts: Sequence[str], sep: str = " ") -> str:
    return sep.join([p for p in parts if p and str(p).strip()])


def clamp(v: Optional[float], lo: float, hi: float) -> Optional[float]:
    if v is None:
        return None
    return max(lo, min(hi, v))


@dataclass(frozen=True)
class ValidationReport:
    missing: List[str]
    warnings: List[str]

    def to_markdown(self) -> str:
        lines: List[str] = []
        if self.missing:
            lines.append("### Datos faltantes")
            for m in self.missing:
                lines.append(f"- {m}")
        if self.warnings:
            lines.append("### Avisos de plausibilidad")
            for w in self.warnings:
                lines.append(f"- {w}")
        if not lines:
            return "—"
        return "\n".join(lines)
