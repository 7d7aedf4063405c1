# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class CalcResult:
    value: Optional[float]
    formula: Optional[str] = None


def calc_bmi(height_cm: Optional[float], weight_kg: Optional[float]) -> CalcResult:
    if height_cm is None or weight_kg is None:
        return CalcResult(None)
    if height_cm <= 0 or weight_kg <= 0:
        return CalcResult(None)
    bmi = weight_kg / ((height_cm / 100.0) ** 2)
    return CalcResult(bmi, formula=f"{weight_kg}/({height_cm}/100)²")


def calc_homa_ir(glucose_mg_dl: Optional[float], insulin_uU_ml: Optional[float]) -> CalcResult:
    # HOMA-IR = glucose (mg/dL) · insulin (µU/mL) / 405
    if glucose_mg_dl is None or insulin_uU_ml is None:
        return CalcResult(None)
    if glucose_mg_dl <= 0 or insulin_uU_ml <= 0:
        return CalcResult(None)
    return CalcResult(glucose_mg_dl * insulin_uU_ml / 405.0, formula=f"{glucose_mg_dl}·{insulin_uU_ml}/405")


def multiplier_from_lr(likelihood_ratio: float, reference: float) -> float:
    """
    Turns an empirical 12-month conception rate for a condition into a multiplier
    relative to the reference group rate (30-34 years). Capped at 1.0.
    """
    if reference <= 0:
        return 1.0
    return min(1.0, likelihood_ratio / reference)


def cumulative_probability(per_cycle_pct: float, cycles: int = 12) -> float:
    """Cumulative % over `cycles` independent cycles: 1 - (1 - p)^n."""
    p = max(0.0, min(100.0, per_cycle_pct)) / 100.0
    return (1.0 - (1.0 - p) ** cycles) * 100.0

