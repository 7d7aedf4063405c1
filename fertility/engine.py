# -*- coding: utf-8 -*-
"""
Calculation engine.

finalPrognosis = base_age_probability × Π(multipliers)

The baseline is a percentage and never part of the product. Each evaluator
contributes one multiplier; a multiplier of exactly 0.0 is an absolute blocker
and keeps the result at 0.
"""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from . import textdb
from .baseline import resolve_age_baseline
from .evaluators import EVALUATORS, effective_bmi, effective_homa
from .models import Diagnostics, EvaluationState, FactorKey, FactorResult, Factors, HsgResult, UserInput
from .report import generate_report
from .textdb_store import ContentBlock
from .util import ValidationReport, clamp, fmt_num


logger = logging.getLogger(__name__)

InputLike = Union[UserInput, Mapping[str, Any]]


def normalize_input(user_input: InputLike) -> UserInput:
    if isinstance(user_input, UserInput):
        return user_input
    if isinstance(user_input, Mapping):
        return UserInput.from_dict(user_input)
    raise TypeError(f"Entrada no soportada: {type(user_input).__name__}")


def _merge(acc: Tuple[Factors, Diagnostics], key: FactorKey, result: FactorResult) -> Tuple[Factors, Diagnostics]:
    factors, diagnostics = acc
    if result.factor is not None:
        factors = factors.with_factor(key, result.factor)
    changes: Dict[str, Any] = dict(result.comments)
    if result.missing:
        changes["missing_data"] = diagnostics.missing_data + tuple(result.missing)
    if result.anomalies:
        changes["anomalies"] = diagnostics.anomalies + tuple(result.anomalies)
    if changes:
        diagnostics = replace(diagnostics, **changes)
    return factors, diagnostics


def evaluate_factors(user_input: UserInput, rules: Optional[Dict[str, Any]] = None) -> Tuple[Factors, Diagnostics]:
    """Baseline plus the fold of every evaluator over a neutral seed, in FactorKey order."""
    rules = rules if rules is not None else textdb.RULES
    baseline = resolve_age_baseline(user_input.age, rules)
    acc = (
        Factors(base_age_probability=baseline.probability),
        Diagnostics(age_potential=baseline.label, anomalies=baseline.anomalies),
    )
    for key in FactorKey:
        acc = _merge(acc, key, EVALUATORS[key](user_input, rules))
    return acc


def compose_prognosis(factors: Factors) -> float:
    """Per-cycle percentage. Multipliers are clamped to [0, 1]."""
    out = float(factors.base_age_probability)
    for value in factors.multipliers().values():
        out *= clamp(value, 0.0, 1.0)
    return out


def calculate_probability(
    user_input: InputLike,
    rules: Optional[Dict[str, Any]] = None,
    content: Optional[Dict[str, ContentBlock]] = None,
) -> EvaluationState:
    inp = normalize_input(user_input)
    rules = rules if rules is not None else textdb.RULES

    factors, diagnostics = evaluate_factors(inp, rules)
    prognosis = compose_prognosis(factors)
    logger.debug(
        "Pronóstico %.3f%% (base %.1f%%, producto %.4f, subóptimos=%s)",
        prognosis,
        factors.base_age_probability,
        factors.product(),
        [k.value for k in factors.suboptimal()],
    )

    report = generate_report(prognosis, diagnostics, inp, factors, rules=rules, content=content)
    return EvaluationState(input=inp, factors=factors, diagnostics=diagnostics, report=report)


# ---------------------------
# Input validation (form hints)
# ---------------------------

_PLAUSIBILITY_DEFAULTS: Dict[str, Tuple[float, float]] = {
    "bmi": (12, 70),
    "cycle_duration": (15, 120),
    "infertility_duration": (0, 30),
    "amh": (0, 30),
    "prolactin": (0, 500),
    "tsh": (0, 100),
    "homa_ir": (0, 50),
    "sperm_concentration": (0, 500),
    "sperm_progressive_motility": (0, 100),
    "sperm_normal_morphology": (0, 100),
}

_LABELS = {
    "bmi": "IMC",
    "cycle_duration": "Duración del ciclo (días)",
    "infertility_duration": "Años de infertilidad",
    "amh": "AMH (ng/mL)",
    "prolactin": "Prolactina (ng/mL)",
    "tsh": "TSH (mUI/L)",
    "homa_ir": "HOMA-IR",
    "sperm_concentration": "Concentración espermática (M/mL)",
    "sperm_progressive_motility": "Motilidad progresiva (%)",
    "sperm_normal_morphology": "Morfología normal (%)",
}


def validate_input(user_input: InputLike, rules: Optional[Dict[str, Any]] = None) -> ValidationReport:
    """Key values that are missing plus plausibility warnings. Never raises on clinical values."""
    inp = normalize_input(user_input)
    rules = rules if rules is not None else textdb.RULES
    ranges = (rules or {}).get("plausibility", {}) or {}

    missing: List[str] = []
    if inp.age is None:
        missing.append("Edad")
    if effective_bmi(inp) is None:
        missing.append("IMC (o talla y peso)")
    if inp.cycle_duration is None:
        missing.append("Duración del ciclo")
    if inp.amh is None:
        missing.append("AMH")
    if inp.hsg_result == HsgResult.UNKNOWN:
        missing.append("Histerosalpingografía (HSG)")
    if inp.sperm_concentration is None and inp.sperm_progressive_motility is None and inp.sperm_normal_morphology is None:
        missing.append("Espermatograma")

    warnings: List[str] = []
    age_cfg = (rules or {}).get("age_baseline", {}) or {}
    min_age = float(age_cfg.get("min_age", 12))
    max_age = float(age_cfg.get("max_age", 55))
    if inp.age is not None and not (min_age <= inp.age <= max_age):
        warnings.append(f"Edad fuera de rango clínico ({fmt_num(min_age)}–{fmt_num(max_age)} años).")

    values = dict(inp.to_dict())
    values["bmi"] = effective_bmi(inp)
    values["homa_ir"] = effective_homa(inp)[0]
    for name, default in _PLAUSIBILITY_DEFAULTS.items():
        v = values.get(name)
        if v is None or not math.isfinite(v):
            continue
        lo, hi = (float(x) for x in ranges.get(name, default))
        if v < 0:
            logger.warning("Valor negativo en %s: %s", name, v)
        if v < lo or v > hi:
            warnings.append(f"{_LABELS[name]} parece inverosímil (fuera de {fmt_num(lo)}–{fmt_num(hi)}).")

    if inp.endometriosis_grade is not None and not (0 <= inp.endometriosis_grade <= 4):
        warnings.append("Grado de endometriosis fuera de 0–4; se acota al rango.")
    if inp.has_otb and inp.hsg_result == HsgResult.NORMAL:
        warnings.append("HSG normal con OTB registrada: revisar la historia.")

    return ValidationReport(missing=missing, warnings=warnings)
