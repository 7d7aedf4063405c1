# -*- coding: utf-8 -*-
"""
Report generator: category, prognosis/benchmark phrases and clinical findings.

Findings are looked up in the clinical content library (textdb blocks of
category "F"); phrases are textdb "R" blocks rendered with the numbers.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import textdb
from .calcs import cumulative_probability
from .models import (
    AdenomyosisType,
    ClinicalFinding,
    Diagnostics,
    FactorKey,
    Factors,
    HsgResult,
    MyomaType,
    PolypType,
    Report,
    UserInput,
    unique,
)
from .textdb_store import ContentBlock, SafeFormatDict
from .util import fmt_pct


logger = logging.getLogger(__name__)


DEFAULT_JUSTIFICATION = "Basado en evidencia clínica"

# used when a phrase block is absent from the library
_DEFAULT_PHRASES = {
    "PRONOSTICO_OTB": "El embarazo espontáneo no es posible debido a la ligadura de trompas (OTB).",
    "PRONOSTICO_BUENO": "¡Tu pronóstico es BUENO! {prognosis} por ciclo mensual ({prognosis_12m} en 12 meses).",
    "PRONOSTICO_MODERADO": (
        "Tu pronóstico es MODERADO: {prognosis} por ciclo mensual ({prognosis_12m} en 12 meses). "
        "Hay factores que se pueden optimizar."
    ),
    "PRONOSTICO_BAJO": (
        "Tu pronóstico es BAJO: {prognosis} por ciclo mensual ({prognosis_12m} en 12 meses). "
        "Se recomienda evaluación especializada."
    ),
    "PRONOSTICO_ERROR": "No se pudo calcular el pronóstico con los datos proporcionados.",
    "BENCHMARK": (
        "Tu resultado es **{comparison}** para tu grupo de edad ({age_range} años), "
        "cuyo pronóstico base es del {benchmark}."
    ),
    "BENCHMARK_OTB": "Comparación no aplicable por ligadura de trompas (OTB).",
}

_CATEGORY_EMOJI = {"BUENO": "🟢", "MODERADO": "🟡", "BAJO": "🔴", "ERROR": "⚠️"}

_DEFAULT_BENCHMARK = (
    (30.0, "Menos de 30", 22.5),
    (35.0, "30-34", 17.5),
    (38.0, "35-37", 12.5),
    (41.0, "38-40", 7.5),
    (None, "Más de 40", 3.0),
)


def _phrase(content: Dict[str, ContentBlock], block_id: str, data: Optional[Dict[str, Any]] = None) -> str:
    block = content.get(block_id)
    if block is not None:
        return block.render(data)
    return _DEFAULT_PHRASES[block_id].format_map(SafeFormatDict(**(data or {})))


# ---------------------------
# Category / benchmark
# ---------------------------

def classify_prognosis(numeric_prognosis: float, factors: Factors, rules: Dict[str, Any]) -> Tuple[str, str]:
    """(category, phrase block id)."""
    rep = (rules or {}).get("report", {}) or {}
    cat = rep.get("category", {}) or {}
    if not isinstance(numeric_prognosis, (int, float)) or not math.isfinite(numeric_prognosis) or numeric_prognosis < 0:
        return "ERROR", "PRONOSTICO_ERROR"
    if factors.otb < float(rep.get("otb_blocker_lt", 0.001)):
        return "BAJO", "PRONOSTICO_OTB"
    if numeric_prognosis >= float(cat.get("good_ge", 15.0)):
        return "BUENO", "PRONOSTICO_BUENO"
    if numeric_prognosis >= float(cat.get("moderate_ge", 5.0)):
        return "MODERADO", "PRONOSTICO_MODERADO"
    return "BAJO", "PRONOSTICO_BAJO"


def benchmark_for_age(age: Optional[float], rules: Dict[str, Any]) -> Optional[Tuple[str, float]]:
    """(age range label, benchmark %) for the reference table, or None without age."""
    if age is None or not math.isfinite(age):
        return None
    bench = ((rules or {}).get("report", {}) or {}).get("benchmark", {}) or {}
    raw = bench.get("brackets")
    if raw:
        brackets = [(b.get("lt"), str(b["label"]), float(b["probability"])) for b in raw]
    else:
        brackets = list(_DEFAULT_BENCHMARK)
    for upper, label, probability in brackets:
        if upper is None or age < float(upper):
            return label, probability
    return None


def benchmark_phrase(
    numeric_prognosis: float,
    user_input: UserInput,
    factors: Factors,
    rules: Dict[str, Any],
    content: Dict[str, ContentBlock],
) -> str:
    rep = (rules or {}).get("report", {}) or {}
    if factors.otb < float(rep.get("otb_blocker_lt", 0.001)):
        return _phrase(content, "BENCHMARK_OTB")
    if not math.isfinite(numeric_prognosis):
        return ""
    found = benchmark_for_age(user_input.age, rules)
    if found is None:
        return ""
    age_range, benchmark = found
    tolerance = float((rep.get("benchmark", {}) or {}).get("tolerance", 2.0))
    diff = numeric_prognosis - benchmark
    if diff > tolerance:
        comparison = "notablemente superior al promedio"
    elif diff < -tolerance:
        comparison = "notablemente inferior al promedio"
    else:
        comparison = "similar al promedio"
    return _phrase(content, "BENCHMARK", {
        "comparison": comparison,
        "age_range": age_range,
        "benchmark": fmt_pct(benchmark),
    })


# ---------------------------
# Findings table
# ---------------------------

KeyFn = Callable[[Diagnostics, UserInput, Factors, Dict[str, Any]], Optional[str]]


@dataclass(frozen=True)
class FindingRow:
    factor: FactorKey
    title: str
    key: KeyFn


def bmi_finding_key(d: Diagnostics, i: UserInput, f: Factors, rules: Dict[str, Any]) -> str:
    if d.bmi_comment == "Bajo peso":
        return "IMC_BAJO"
    if d.bmi_comment == "Obesidad":
        return "IMC_OBESIDAD"
    return "IMC_SOBREPESO"


def _amh_key(d: Diagnostics, i: UserInput, f: Factors, rules: Dict[str, Any]) -> str:
    if d.ovarian_reserve == "Alta reserva ovárica":
        return "AMH_ALTA_RESERVA"
    if "muy baja" in d.ovarian_reserve.lower():
        return "AMH_MUY_BAJA"
    return "AMH_BAJA"


def _endometriosis_key(d: Diagnostics, i: UserInput, f: Factors, rules: Dict[str, Any]) -> str:
    return "ENDOMETRIOSIS_SEVERA" if (i.endometriosis_grade or 0) >= 3 else "ENDOMETRIOSIS_LEVE"


_MYOMA_KEYS = {
    MyomaType.SUBMUCOSAL: "MIOMA_SUBMUCOSO",
    MyomaType.INTRAMURAL_LARGE: "MIOMA_INTRAMURAL_GRANDE",
    MyomaType.SUBSEROSAL: "MIOMA_SUBSEROSO",
}
_POLYP_KEYS = {
    PolypType.SMALL: "POLIPO_PEQUENO",
    PolypType.LARGE: "POLIPO_GRANDE",
    PolypType.OSTIUM: "POLIPO_OSTIUM",
}
_HSG_KEYS = {
    HsgResult.UNILATERAL: "HSG_UNILATERAL",
    HsgResult.BILATERAL: "HSG_BILATERAL",
    HsgResult.MALFORMATION: "HSG_MALFORMACION",
}


def _myoma_key(d: Diagnostics, i: UserInput, f: Factors, rules: Dict[str, Any]) -> str:
    return _MYOMA_KEYS.get(i.myoma_type, "MIOMA_AUSENTE")


def _polyp_key(d: Diagnostics, i: UserInput, f: Factors, rules: Dict[str, Any]) -> str:
    return _POLYP_KEYS.get(i.polyp_type, "POLIPO_AUSENTE")


def _adenomyosis_key(d: Diagnostics, i: UserInput, f: Factors, rules: Dict[str, Any]) -> str:
    return "ADENOMIOSIS_DIFUSA" if i.adenomyosis_type == AdenomyosisType.DIFFUSE else "ADENOMIOSIS_FOCAL"


def _hsg_key(d: Diagnostics, i: UserInput, f: Factors, rules: Dict[str, Any]) -> Optional[str]:
    return _HSG_KEYS.get(i.hsg_result)


def _pelvic_surgery_key(d: Diagnostics, i: UserInput, f: Factors, rules: Dict[str, Any]) -> str:
    n = i.pelvic_surgeries_number or 1
    return "CIRUGIA_PELVICA_MULTIPLE" if n >= 2 else "CIRUGIA_PELVICA_UNA"


def _infertility_key(d: Diagnostics, i: UserInput, f: Factors, rules: Dict[str, Any]) -> str:
    prolonged = float(((rules or {}).get("infertility_duration", {}) or {}).get("prolonged_ge", 5))
    return "INFERTILIDAD_PROLONGADA" if (i.infertility_duration or 0) >= prolonged else "INFERTILIDAD_MODERADA"


def _male_key(d: Diagnostics, i: UserInput, f: Factors, rules: Dict[str, Any]) -> str:
    sev = (((rules or {}).get("report", {}) or {}).get("male_severity", {}) or {})
    if f.male <= float(sev.get("azoospermia_le", 0.05)):
        return "FACTOR_MASCULINO_AZOOSPERMIA"
    if f.male <= float(sev.get("severe_le", 0.4)):
        return "FACTOR_MASCULINO_SEVERO"
    if f.male <= float(sev.get("moderate_le", 0.7)):
        return "FACTOR_MASCULINO_MODERADO"
    return "FACTOR_MASCULINO_LEVE"


def _fixed(key: str) -> KeyFn:
    return lambda d, i, f, rules: key


# Output order of the findings
FINDINGS_TABLE: Tuple[FindingRow, ...] = (
    FindingRow(FactorKey.BMI, "Índice de Masa Corporal", bmi_finding_key),
    FindingRow(FactorKey.HOMA, "Resistencia a la Insulina (HOMA-IR)", _fixed("HOMA_ALTO")),
    FindingRow(FactorKey.AMH, "Reserva Ovárica (AMH)", _amh_key),
    FindingRow(FactorKey.CYCLE, "Ciclo Menstrual", _fixed("CICLO_IRREGULAR")),
    FindingRow(FactorKey.TSH, "Función Tiroidea (TSH)", _fixed("TSH_ALTA")),
    FindingRow(FactorKey.TPO, "Autoinmunidad Tiroidea (TPOAb)", _fixed("TPOAB_POSITIVO")),
    FindingRow(FactorKey.PROLACTIN, "Hiperprolactinemia", _fixed("PRL_ALTA")),
    FindingRow(FactorKey.PCOS, "Síndrome de Ovario Poliquístico", _fixed("SOP")),
    FindingRow(FactorKey.ENDOMETRIOSIS, "Endometriosis", _endometriosis_key),
    FindingRow(FactorKey.MYOMA, "Miomas Uterinos", _myoma_key),
    FindingRow(FactorKey.POLYP, "Pólipos Endometriales", _polyp_key),
    FindingRow(FactorKey.ADENOMYOSIS, "Adenomiosis", _adenomyosis_key),
    FindingRow(FactorKey.HSG, "Permeabilidad Tubárica (HSG)", _hsg_key),
    FindingRow(FactorKey.OTB, "Ligadura de Trompas (OTB)", _fixed("OTB_PRESENTE")),
    FindingRow(FactorKey.PELVIC_SURGERY, "Cirugías Pélvicas Previas", _pelvic_surgery_key),
    FindingRow(FactorKey.INFERTILITY_DURATION, "Duración de la Infertilidad", _infertility_key),
    FindingRow(FactorKey.MALE, "Factor Masculino", _male_key),
)

assert len(FINDINGS_TABLE) == len(FactorKey) and {r.factor for r in FINDINGS_TABLE} == set(FactorKey), (
    "findings table must have exactly one row per FactorKey"
)


def finding_keys() -> List[str]:
    """Every content key the findings table can produce (for the YAML validator)."""
    keys = ["HOMA_ALTO", "CICLO_IRREGULAR", "TSH_ALTA", "TPOAB_POSITIVO", "PRL_ALTA", "SOP", "OTB_PRESENTE"]
    keys += ["IMC_BAJO", "IMC_SOBREPESO", "IMC_OBESIDAD"]
    keys += ["AMH_ALTA_RESERVA", "AMH_BAJA", "AMH_MUY_BAJA"]
    keys += ["ENDOMETRIOSIS_LEVE", "ENDOMETRIOSIS_SEVERA"]
    keys += list(_MYOMA_KEYS.values()) + ["MIOMA_AUSENTE"]
    keys += list(_POLYP_KEYS.values()) + ["POLIPO_AUSENTE"]
    keys += ["ADENOMIOSIS_FOCAL", "ADENOMIOSIS_DIFUSA"]
    keys += list(_HSG_KEYS.values())
    keys += ["CIRUGIA_PELVICA_UNA", "CIRUGIA_PELVICA_MULTIPLE"]
    keys += ["INFERTILIDAD_MODERADA", "INFERTILIDAD_PROLONGADA"]
    keys += ["FACTOR_MASCULINO_LEVE", "FACTOR_MASCULINO_MODERADO", "FACTOR_MASCULINO_SEVERO", "FACTOR_MASCULINO_AZOOSPERMIA"]
    return keys


def collect_findings(
    diagnostics: Diagnostics,
    user_input: UserInput,
    factors: Factors,
    rules: Dict[str, Any],
    content: Dict[str, ContentBlock],
) -> List[ClinicalFinding]:
    out: List[ClinicalFinding] = []
    for row in FINDINGS_TABLE:
        if factors.get(row.factor) >= 1.0:
            continue
        key = row.key(diagnostics, user_input, factors, rules)
        if key is None:
            continue
        block = content.get(key)
        if block is None:
            logger.warning("Hallazgo sin contenido clínico: %s (%s)", key, row.factor.value)
            continue
        out.append(ClinicalFinding(
            key=key,
            factor=row.factor.value,
            title=row.title,
            definition=block.definition or block.template,
            justification=block.justification or DEFAULT_JUSTIFICATION,
            recommendations=tuple(block.recommendations),
            sources=tuple(block.sources),
        ))
    return out


def generate_report(
    numeric_prognosis: float,
    diagnostics: Diagnostics,
    user_input: UserInput,
    factors: Factors,
    rules: Optional[Dict[str, Any]] = None,
    content: Optional[Dict[str, ContentBlock]] = None,
) -> Report:
    rules = rules if rules is not None else textdb.RULES
    content = content if content is not None else textdb.CONTENT

    category, phrase_id = classify_prognosis(numeric_prognosis, factors, rules)
    twelve: Optional[float] = None
    if category != "ERROR":
        twelve = cumulative_probability(numeric_prognosis)
    phrase = _phrase(content, phrase_id, {
        "prognosis": fmt_pct(numeric_prognosis) if category != "ERROR" else "",
        "prognosis_12m": fmt_pct(twelve),
    })
    bench = benchmark_phrase(numeric_prognosis, user_input, factors, rules, content) if category != "ERROR" else ""

    insights = collect_findings(diagnostics, user_input, factors, rules, content)
    recommendations = unique(r for f in insights for r in f.recommendations)

    return Report(
        numeric_prognosis=float(numeric_prognosis) if category != "ERROR" else 0.0,
        category=category,
        emoji=_CATEGORY_EMOJI[category],
        prognosis_phrase=phrase,
        benchmark_phrase=bench,
        twelve_month_probability=twelve,
        clinical_insights=tuple(insights),
        recommendations=tuple(recommendations),
        missing_data=tuple(diagnostics.missing_data),
    )
