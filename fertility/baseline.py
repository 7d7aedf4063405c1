# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from . import textdb


logger = logging.getLogger(__name__)


_DEFAULT_BRACKETS = (
    (24, 27.5, "Fertilidad excelente"),
    (29, 22.5, "Fertilidad muy buena"),
    (34, 17.5, "Buena fertilidad"),
    (37, 12.5, "Fecundidad en descenso"),
    (40, 7.5, "Reducción significativa"),
    (42, 4.0, "Baja tasa de embarazo"),
    (55, 1.5, "Probabilidad casi nula"),
)


@dataclass(frozen=True)
class AgeBaseline:
    probability: float  # per-cycle percentage
    label: str
    anomalies: Tuple[str, ...] = ()


def _brackets(section: Dict[str, Any]):
    raw = section.get("brackets")
    if not raw:
        return _DEFAULT_BRACKETS
    return tuple((float(b["max_age"]), float(b["probability"]), str(b.get("label", ""))) for b in raw)


def resolve_age_baseline(age: Optional[float], rules: Optional[Dict[str, Any]] = None) -> AgeBaseline:
    """
    Per-cycle baseline probability by female age.

    Ages outside the clinical range (or not a number) get a conservative
    default and an anomaly flag instead of an exception.
    """
    rules = rules if rules is not None else textdb.RULES
    section = (rules or {}).get("age_baseline", {}) or {}
    min_age = float(section.get("min_age", 12))
    max_age = float(section.get("max_age", 55))
    default_p = float(section.get("default_probability", 0.1))
    default_label = str(section.get("default_label", "Edad fuera de rango clínico"))

    valid = age is not None and isinstance(age, (int, float)) and math.isfinite(age)
    if valid and min_age <= age <= max_age:
        for upper, probability, label in _brackets(section):
            if age <= upper:
                return AgeBaseline(probability, label)

    logger.warning("Edad fuera de rango clínico: %r (rango %s-%s)", age, min_age, max_age)
    return AgeBaseline(default_p, default_label, anomalies=(f"Edad fuera de rango clínico: {age!r}",))
