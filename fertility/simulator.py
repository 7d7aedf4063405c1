# -*- coding: utf-8 -*-
"""
What-if simulator: recompute the prognosis as if one factor (or every
suboptimal factor) were optimal. The evaluation state is never modified.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from . import textdb
from .engine import compose_prognosis
from .models import ALL_FACTORS, EvaluationState, FactorKey, Factors, SimulationResult


ALL_EXPLANATION = "todos los factores optimizables"


def impact_level(improvement: float) -> str:
    if improvement >= 0.3:
        return "critical"
    if improvement >= 0.15:
        return "high"
    if improvement >= 0.05:
        return "medium"
    return "low"


def _factor_recommendations(meta: Dict[str, Any], improvement: float) -> List[str]:
    recs = [f"Consultar especialista en {meta.get('category', 'medicina reproductiva')}"]
    if improvement > 0.2:
        recs.append("Prioridad alta - Impacto significativo esperado")
    if meta.get("cost") == "low":
        recs.append("Costo-efectivo - Considerar implementación inmediata")
    return recs


def _result(
    factor: str,
    explanation: str,
    original: float,
    new: float,
    meta: Optional[Dict[str, Any]],
    recommendations: List[str],
) -> SimulationResult:
    improvement = new - original
    meta = meta or {}
    return SimulationResult(
        factor=factor,
        explanation=explanation,
        original_prognosis=original,
        new_prognosis=new,
        improvement=improvement,
        impact_level=impact_level(improvement),
        timeframe=str(meta.get("timeframe", "Variable")),
        difficulty=str(meta.get("difficulty", "moderate")),
        cost=str(meta.get("cost", "medium")),
        evidence=str(meta.get("evidence", "Clinical assessment")),
        recommendations=tuple(recommendations),
    )


def simulate_factor(
    state: EvaluationState,
    factor_key: Union[FactorKey, str],
    explanation: str = "",
    metadata: Optional[Dict[str, Any]] = None,
) -> SimulationResult:
    """Prognosis with `factor_key` set to 1.0. Unknown keys raise ValueError."""
    key = FactorKey.parse(factor_key)
    metadata = metadata if metadata is not None else textdb.FACTOR_METADATA
    meta = (metadata or {}).get(key.value) or {}

    simulated = state.factors.with_factor(key, 1.0)
    original = state.report.numeric_prognosis
    new = compose_prognosis(simulated)
    improvement = new - original
    return _result(
        key.value,
        explanation or str(meta.get("name", key.value)),
        original,
        new,
        meta,
        _factor_recommendations(meta, improvement),
    )


def simulate_all_improvements(state: EvaluationState) -> SimulationResult:
    """Every multiplier below 1.0 (tubal ligation included) set to 1.0."""
    simulated: Factors = state.factors
    for key in state.factors.suboptimal():
        simulated = simulated.with_factor(key, 1.0)
    original = state.report.numeric_prognosis
    return _result(
        ALL_FACTORS,
        ALL_EXPLANATION,
        original,
        compose_prognosis(simulated),
        None,
        ["Plan integral multifactorial", "Implementación por fases según prioridad", "Monitoreo continuo de progreso"],
    )


def rank_improvements(state: EvaluationState, metadata: Optional[Dict[str, Any]] = None) -> List[SimulationResult]:
    """One simulation per suboptimal factor, largest improvement first."""
    results = [simulate_factor(state, key, metadata=metadata) for key in state.factors.suboptimal()]
    return sorted(results, key=lambda r: r.improvement, reverse=True)
