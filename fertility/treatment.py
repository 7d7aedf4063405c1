# -*- coding: utf-8 -*-
"""
Treatment suggestions for a finished evaluation.

Rule tiers are tried in order of clinical priority and the first tier that
yields a suggestion wins:

1. strategic IVF decisions (critical profiles)
2. absolute IVF indications, with ICSI / egg donation add-ons
3. intrauterine insemination (IAC) when indicated and not contraindicated
4. favourable low-complexity profiles plus medical optimization items
5. TRAT_ESTUDIO_ADICIONAL when nothing else applies

Texts come from the content library: treatment blocks have category "T",
optimization items reuse the findings ("F"). Confidence and urgency are
adjusted to the clinical score and risk level of the case.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from . import textdb
from .evaluators import effective_homa
from .models import AdenomyosisType, EvaluationState, Factors, HsgResult, PolypType, TreatmentSuggestion, UserInput
from .report import bmi_finding_key
from .textdb_store import ContentBlock


logger = logging.getLogger(__name__)


HIGH_COMPLEXITY = "Alta Complejidad"
LOW_COMPLEXITY = "Baja Complejidad"
OPTIMIZATION = "Optimización Médica"
FURTHER_STUDY = "Estudio Adicional"

FALLBACK_KEY = "TRAT_ESTUDIO_ADICIONAL"

URGENCY_LEVELS = ("low", "moderate", "high", "critical")
_EVIDENCE_WEIGHT = {"A": 4, "B": 3, "C": 2, "D": 1}

# key prefix -> (category, confidence, urgency, evidence)
_FAMILIES: Tuple[Tuple[str, Tuple[str, int, str, str]], ...] = (
    ("DECISION_FIV_", (HIGH_COMPLEXITY, 92, "high", "A")),
    ("TRAT_FIV_", (HIGH_COMPLEXITY, 95, "high", "A")),
    ("TRAT_ICSI_", (HIGH_COMPLEXITY, 95, "high", "A")),
    ("TRAT_OVODONACION", (HIGH_COMPLEXITY, 95, "high", "A")),
    ("TRAT_IAC_", (LOW_COMPLEXITY, 88, "moderate", "A")),
    ("TRAT_BAJA_", (LOW_COMPLEXITY, 90, "moderate", "A")),
    ("INT_", (LOW_COMPLEXITY, 92, "moderate", "A")),
    (FALLBACK_KEY, (FURTHER_STUDY, 75, "low", "B")),
)
_DEFAULT_FAMILY = (OPTIMIZATION, 75, "low", "B")

# every key the tiers can produce (for the YAML validator)
TREATMENT_KEYS: Tuple[str, ...] = (
    "DECISION_FIV_EDAD_AMH_CRITICO",
    "DECISION_FIV_ENDO_AVANZADA_SEMINAL",
    "DECISION_FIV_SOP_METABOLICO_CRITICO",
    "DECISION_FIV_OTB_BILATERAL",
    "TRAT_FIV_INDICACIONES_ABSOLUTAS",
    "TRAT_ICSI_RECOMENDADO",
    "TRAT_OVODONACION",
    "TRAT_IAC_INDICACIONES",
    "INT_PERFIL_HIERESPONDEDOR_JOVEN_SOP_ESTABLE",
    "INT_ENDO_LEVE_AMH_NORMAL_JOVEN",
    "INT_HSG_UNILATERAL_JOVEN_SEMEN_NORMAL",
    "INT_POLIPO_PEQUENO_JOVEN_FAVORABLE",
    "INT_EDAD_AMH_SOP_HOMA_TSH_OPTIMO",
    "TRAT_BAJA_COMPLEJIDAD_CRITERIOS",
    FALLBACK_KEY,
)


def _lt(value: Optional[float], limit: float) -> bool:
    return value is not None and value < limit


def _le(value: Optional[float], limit: float) -> bool:
    return value is not None and value <= limit


def _gt(value: Optional[float], limit: float) -> bool:
    return value is not None and value > limit


def _ge(value: Optional[float], limit: float) -> bool:
    return value is not None and value >= limit


def _between(value: Optional[float], bounds: Any) -> bool:
    """lo <= value < hi"""
    lo, hi = bounds
    return value is not None and float(lo) <= value < float(hi)


def _section(rules: Dict[str, Any], name: str) -> Dict[str, Any]:
    return (((rules or {}).get("treatment", {}) or {}).get(name, {}) or {})


def _num(s: Dict[str, Any], name: str, default: float) -> float:
    return float(s.get(name, default))


def _mild_endometriosis(inp: UserInput) -> bool:
    return inp.endometriosis_grade in (1, 2)


def _tsh_optimal(inp: UserInput, s: Dict[str, Any]) -> bool:
    return _ge(inp.tsh, _num(s, "tsh_optimal_min", 0.5)) and _le(inp.tsh, _num(s, "tsh_optimal_max", 2.5))


# ---------------------------
# Case context
# ---------------------------

@dataclass(frozen=True)
class CaseContext:
    score: int
    risk: str  # "LOW" | "MEDIUM" | "HIGH" | "CRITICAL"


def clinical_score(inp: UserInput, f: Factors) -> int:
    score = 70
    if _lt(inp.age, 35):
        score += 10
    if _gt(inp.amh, 1.5):
        score += 10
    if f.male == 1.0:
        score += 5
    if f.cycle >= 0.8:
        score += 5
    if _gt(inp.age, 40):
        score -= 15
    if _lt(inp.amh, 1.0):
        score -= 10
    if f.male < 0.7:
        score -= 10
    if _ge(inp.endometriosis_grade, 3):
        score -= 10
    return max(0, min(100, score))


def risk_level(inp: UserInput, f: Factors) -> str:
    if _ge(inp.age, 43) or _lt(inp.amh, 0.5) or f.otb == 0.0 or f.hsg == 0.0:
        return "CRITICAL"
    if _ge(inp.age, 38) or _lt(inp.amh, 1.0) or _ge(inp.endometriosis_grade, 3) or f.male < 0.5:
        return "HIGH"
    if _ge(inp.age, 35) or _lt(inp.amh, 1.5) or inp.has_pcos or _ge(inp.infertility_duration, 2):
        return "MEDIUM"
    return "LOW"


# ---------------------------
# Rule tiers (each returns content keys)
# ---------------------------

def strategic_decisions(inp: UserInput, f: Factors, rules: Dict[str, Any]) -> List[str]:
    s = _section(rules, "strategic")
    if _ge(inp.age, _num(s, "age_ge", 40)) and _lt(inp.amh, _num(s, "amh_lt", 1.0)):
        return ["DECISION_FIV_EDAD_AMH_CRITICO"]
    if _ge(inp.endometriosis_grade, _num(s, "endometriosis_grade_ge", 3)) and f.male < 1.0:
        return ["DECISION_FIV_ENDO_AVANZADA_SEMINAL"]
    homa, _ = effective_homa(inp)
    if (
        inp.has_pcos
        and _ge(homa, _num(s, "pcos_homa_ge", 4.0))
        and _gt(inp.cycle_duration, _num(s, "pcos_cycle_gt", 60))
        and _gt(inp.prolactin, _num(s, "pcos_prolactin_gt", 50))
    ):
        return ["DECISION_FIV_SOP_METABOLICO_CRITICO"]
    if f.otb == 0.0 or f.hsg == 0.0:
        return ["DECISION_FIV_OTB_BILATERAL"]
    return []


def ivf_indicated(inp: UserInput, f: Factors, rules: Dict[str, Any]) -> bool:
    s = _section(rules, "ivf")
    severity = (((rules or {}).get("report", {}) or {}).get("male_severity", {}) or {})
    azoospermia_le = float(severity.get("azoospermia_le", 0.05))
    return (
        f.otb == 0.0
        or f.hsg == 0.0
        or f.male <= azoospermia_le
        or (_lt(inp.amh, _num(s, "poor_reserve_amh_lt", 1.0)) and _gt(inp.age, _num(s, "poor_reserve_age_gt", 35)))
        or (_ge(inp.endometriosis_grade, _num(s, "endometriosis_grade_ge", 3)) and _gt(inp.age, _num(s, "endometriosis_age_gt", 35)))
        or inp.adenomyosis_type == AdenomyosisType.DIFFUSE
        or (_ge(inp.age, _num(s, "donation_age_ge", 43)) and _lt(inp.amh, _num(s, "donation_amh_lt", 0.5)))
    )


def absolute_ivf(inp: UserInput, f: Factors, rules: Dict[str, Any]) -> List[str]:
    if not ivf_indicated(inp, f, rules):
        return []
    s = _section(rules, "ivf")
    keys = ["TRAT_FIV_INDICACIONES_ABSOLUTAS"]
    if _lt(inp.sperm_normal_morphology, _num(s, "icsi_morphology_lt", 2)) or _lt(
        inp.sperm_progressive_motility, _num(s, "icsi_motility_lt", 20)
    ):
        keys.append("TRAT_ICSI_RECOMENDADO")
    if _ge(inp.age, _num(s, "donation_age_ge", 43)) and _lt(inp.amh, _num(s, "donation_amh_lt", 0.5)):
        keys.append("TRAT_OVODONACION")
    return keys


def iui_indicated(state: EvaluationState, rules: Dict[str, Any]) -> bool:
    inp, f = state.input, state.factors
    s = _section(rules, "iui")
    borderline_sperm = _between(inp.sperm_progressive_motility, s.get("borderline_motility", (30, 40))) or _between(
        inp.sperm_concentration, s.get("borderline_concentration", (10, 16))
    )
    if borderline_sperm and f.cycle >= _num(s, "cycle_factor_ge", 0.85):
        return True
    if inp.hsg_result == HsgResult.UNILATERAL:
        return True
    if (
        _mild_endometriosis(inp)
        and _lt(inp.age, _num(s, "endometriosis_age_lt", 35))
        and _ge(inp.amh, _num(s, "endometriosis_amh_ge", 1.5))
    ):
        return True
    if not state.diagnostics.missing_data and _between(state.report.numeric_prognosis, s.get("unexplained_prognosis", (10, 20))):
        return True
    return _between(inp.infertility_duration, s.get("duration_years", (2, 5)))


def iui_contraindicated(inp: UserInput, f: Factors, rules: Dict[str, Any]) -> bool:
    s = _section(rules, "iui")
    return (
        f.hsg == 0.0
        or _lt(inp.sperm_progressive_motility, _num(s, "contra_motility_lt", 30))
        or _lt(inp.sperm_normal_morphology, _num(s, "contra_morphology_lt", 2))
        or _lt(inp.amh, _num(s, "contra_amh_lt", 1.0))
        or _gt(inp.age, _num(s, "contra_age_gt", 38))
        or inp.adenomyosis_type == AdenomyosisType.DIFFUSE
    )


def iui(state: EvaluationState, rules: Dict[str, Any]) -> List[str]:
    if iui_indicated(state, rules) and not iui_contraindicated(state.input, state.factors, rules):
        return ["TRAT_IAC_INDICACIONES"]
    return []


def low_complexity(inp: UserInput, f: Factors, rules: Dict[str, Any]) -> List[str]:
    s = _section(rules, "low_complexity")
    homa, _ = effective_homa(inp)
    keys: List[str] = []
    eligible = (
        _lt(inp.age, _num(s, "age_lt", 35))
        and _ge(inp.amh, _num(s, "amh_ge", 1.0))
        and f.cycle >= _num(s, "factor_ge", 0.85)
        and f.male == 1.0
        and inp.hsg_result in (HsgResult.NORMAL, HsgResult.UNILATERAL)
        and _lt(inp.infertility_duration, _num(s, "duration_lt", 2))
        and f.tsh >= _num(s, "factor_ge", 0.85)
        and f.prolactin >= _num(s, "factor_ge", 0.85)
    )
    if (
        _lt(inp.age, 32)
        and _gt(inp.amh, 4.5)
        and inp.has_pcos
        and _ge(inp.sperm_normal_morphology, 4)
        and _ge(inp.sperm_concentration, 16)
        and _lt(homa, 2.0)
        and _tsh_optimal(inp, s)
    ):
        keys.append("INT_PERFIL_HIERESPONDEDOR_JOVEN_SOP_ESTABLE")
    if _mild_endometriosis(inp) and _ge(inp.amh, 1.5) and _lt(inp.age, 35):
        keys.append("INT_ENDO_LEVE_AMH_NORMAL_JOVEN")
    if (
        inp.hsg_result == HsgResult.UNILATERAL
        and _lt(inp.age, 35)
        and _ge(inp.sperm_concentration, 16)
        and _ge(inp.sperm_progressive_motility, 30)
    ):
        keys.append("INT_HSG_UNILATERAL_JOVEN_SEMEN_NORMAL")
    if (
        _lt(inp.age, 34)
        and inp.polyp_type == PolypType.SMALL
        and _ge(inp.cycle_duration, 24)
        and _le(inp.cycle_duration, 35)
        and _ge(inp.sperm_normal_morphology, 4)
    ):
        keys.append("INT_POLIPO_PEQUENO_JOVEN_FAVORABLE")
    if _lt(inp.age, 30) and _gt(inp.amh, 5) and inp.has_pcos and _lt(homa, 2.0) and _tsh_optimal(inp, s):
        keys.append("INT_EDAD_AMH_SOP_HOMA_TSH_OPTIMO")
    if eligible or keys:
        keys.append("TRAT_BAJA_COMPLEJIDAD_CRITERIOS")
    return keys


def optimization(state: EvaluationState, rules: Dict[str, Any]) -> List[str]:
    inp, f = state.input, state.factors
    keys: List[str] = []
    if f.bmi < 1.0:
        keys.append(bmi_finding_key(state.diagnostics, inp, f, rules))
    if f.homa < 1.0:
        keys.append("HOMA_ALTO")
    if f.prolactin < 1.0:
        keys.append("PRL_ALTA")
    if f.tsh < 1.0:
        keys.append("TSH_ALTA")
    if inp.tpo_ab_positive:
        keys.append("TPOAB_POSITIVO")
    return keys


# ---------------------------
# Suggestions
# ---------------------------

def _family(key: str) -> Tuple[str, int, str, str]:
    for prefix, family in _FAMILIES:
        if key.startswith(prefix):
            return family
    return _DEFAULT_FAMILY


def build_suggestion(key: str, content: Dict[str, ContentBlock], ctx: CaseContext) -> TreatmentSuggestion:
    block = content.get(key)
    if block is None:
        logger.warning("Tratamiento sin contenido clínico: %s", key)
        return TreatmentSuggestion(
            key=key,
            category=FURTHER_STUDY,
            title=f"Tratamiento no definido ({key})",
            details="Detalles no disponibles.",
            confidence=30,
            urgency="low",
            evidence_level="D",
        )

    category, confidence, urgency, evidence = _family(key)
    if ctx.risk in ("HIGH", "CRITICAL"):
        urgency = URGENCY_LEVELS[min(URGENCY_LEVELS.index(urgency) + 1, len(URGENCY_LEVELS) - 1)]
    if ctx.score < 70:
        confidence = max(50, confidence - 15)
    elif ctx.score > 90:
        confidence = min(100, confidence + 10)

    return TreatmentSuggestion(
        key=key,
        category=category,
        title=block.title,
        details=block.definition or block.template,
        confidence=confidence,
        urgency=urgency,
        evidence_level=evidence,
        recommendations=tuple(block.recommendations),
        sources=tuple(block.sources),
    )


def rank_suggestions(suggestions: List[TreatmentSuggestion]) -> List[TreatmentSuggestion]:
    """Urgency, then confidence, then evidence level; ties keep rule order."""
    return sorted(
        suggestions,
        key=lambda s: (-URGENCY_LEVELS.index(s.urgency), -s.confidence, -_EVIDENCE_WEIGHT.get(s.evidence_level, 0)),
    )


def suggestion_keys(state: EvaluationState, rules: Optional[Dict[str, Any]] = None) -> List[str]:
    """Content keys of the winning tier, in rule order and without duplicates."""
    rules = rules if rules is not None else textdb.RULES
    inp, f = state.input, state.factors

    for tier in (strategic_decisions(inp, f, rules), absolute_ivf(inp, f, rules), iui(state, rules)):
        if tier:
            return tier

    keys = low_complexity(inp, f, rules) + optimization(state, rules)
    if not keys:
        keys = [FALLBACK_KEY]
    return list(dict.fromkeys(keys))


def suggest_treatments(
    state: EvaluationState,
    rules: Optional[Dict[str, Any]] = None,
    content: Optional[Dict[str, ContentBlock]] = None,
) -> Tuple[TreatmentSuggestion, ...]:
    rules = rules if rules is not None else textdb.RULES
    content = content if content is not None else textdb.CONTENT
    ctx = CaseContext(score=clinical_score(state.input, state.factors), risk=risk_level(state.input, state.factors))
    suggestions = [build_suggestion(k, content, ctx) for k in suggestion_keys(state, rules)]
    return tuple(rank_suggestions(suggestions))
