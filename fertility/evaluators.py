# -*- coding: utf-8 -*-
"""
Clinical factor evaluators.

One pure function per FactorKey: (UserInput, rules) -> FactorResult.
Evaluators never look at each other's output; the engine folds them.

Thresholds and multipliers are read from `rules` (textdb core.yaml) with code
defaults identical to the YAML, so an empty rules dict gives the same result.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .calcs import calc_bmi, calc_homa_ir, multiplier_from_lr
from .models import (
    AdenomyosisType,
    FactorKey,
    FactorResult,
    HsgResult,
    MyomaType,
    OtbMethod,
    PolypType,
    UserInput,
)
from .util import clamp, fmt_num


logger = logging.getLogger(__name__)

Evaluator = Callable[[UserInput, Dict[str, Any]], FactorResult]


def _section(rules: Dict[str, Any], name: str) -> Dict[str, Any]:
    return (rules or {}).get(name, {}) or {}


def _reference(rules: Dict[str, Any]) -> float:
    return float((rules or {}).get("reference_probability", 0.78))


def effective_bmi(inp: UserInput) -> Optional[float]:
    """Recorded BMI, else derived from height/weight."""
    if inp.bmi is not None:
        return inp.bmi
    return calc_bmi(inp.height_cm, inp.weight_kg).value


def effective_homa(inp: UserInput) -> Tuple[Optional[float], Optional[float]]:
    """(HOMA-IR used for grading, value calculated from glucose/insulin or None)."""
    calculated = calc_homa_ir(inp.glucose, inp.insulin).value
    if inp.homa_ir is not None:
        return inp.homa_ir, calculated
    return calculated, calculated


# ---------------------------
# Body / cycle
# ---------------------------

def evaluate_bmi(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "bmi")
    ref = _reference(rules)
    bmi = effective_bmi(inp)
    if bmi is None:
        return FactorResult(missing=("Índice de Masa Corporal (IMC)",))

    if bmi < float(s.get("underweight_lt", 18.5)):
        return FactorResult(multiplier_from_lr(float(s.get("lr_underweight", 0.70)), ref), {"bmi_comment": "Bajo peso"})
    if bmi >= float(s.get("obese_ge", 30.0)):
        return FactorResult(multiplier_from_lr(float(s.get("lr_obese", 0.56)), ref), {"bmi_comment": "Obesidad"})
    if bmi >= float(s.get("overweight_ge", 25.0)):
        return FactorResult(multiplier_from_lr(float(s.get("lr_overweight", 0.69)), ref), {"bmi_comment": "Sobrepeso"})
    return FactorResult(1.0, {"bmi_comment": "Peso normal"})


def evaluate_cycle(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "cycle")
    days = inp.cycle_duration
    if days is None:
        return FactorResult(missing=("Duración del ciclo menstrual",))
    if days <= float(s.get("irregular_le", 24)) or days > float(s.get("irregular_gt", 35)):
        factor = multiplier_from_lr(float(s.get("lr_irregular", 0.39)), _reference(rules))
        return FactorResult(factor, {"cycle_comment": "Ciclo irregular"})
    return FactorResult(1.0, {"cycle_comment": "Ciclo regular"})


def evaluate_pcos(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    """
    PCOS severity from BMI and cycle length (phenotype proxy).
    Without either value the severity is unknown and a moderate penalty applies.
    """
    if not inp.has_pcos:
        return FactorResult(comments={"pcos_severity": "No aplica"})

    s = _section(rules, "pcos")
    bmi = effective_bmi(inp)
    cycle = inp.cycle_duration
    if bmi is None or cycle is None:
        return FactorResult(float(s.get("indeterminate", 0.6)), {"pcos_severity": "Indeterminada"})

    if bmi >= float(s.get("bmi_severe_ge", 30.0)) or cycle > float(s.get("cycle_severe_gt", 45)):
        return FactorResult(float(s.get("severe", 0.4)), {"pcos_severity": "Severo"})
    if bmi >= float(s.get("bmi_moderate_ge", 25.0)) or cycle > float(s.get("cycle_moderate_gt", 35)):
        return FactorResult(float(s.get("moderate", 0.6)), {"pcos_severity": "Moderado"})
    return FactorResult(float(s.get("mild", 0.85)), {"pcos_severity": "Leve"})


# ---------------------------
# Structural findings
# ---------------------------

def evaluate_endometriosis(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    if inp.endometriosis_grade is None:
        return FactorResult()
    grade = int(clamp(inp.endometriosis_grade, 0, 4))
    s = _section(rules, "endometriosis")
    if grade == 0:
        return FactorResult()
    if grade <= 2:
        return FactorResult(float(s.get("mild", 0.85)), {"endometriosis_comment": "Endometriosis leve (Grados I-II)"})
    return FactorResult(float(s.get("severe", 0.6)), {"endometriosis_comment": "Endometriosis severa (Grados III-IV)"})


def evaluate_myoma(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "myoma")
    t = inp.myoma_type
    if t == MyomaType.SUBMUCOSAL:
        return FactorResult(float(s.get("submucosal", 0.30)), {"myoma_comment": "Mioma submucoso"})
    if t == MyomaType.INTRAMURAL_LARGE:
        return FactorResult(float(s.get("intramural_large", 0.60)), {"myoma_comment": "Mioma intramural grande (≥ 4 cm)"})
    if t == MyomaType.SUBSEROSAL:
        factor = multiplier_from_lr(float(s.get("lr_subserosal", 0.70)), _reference(rules))
        return FactorResult(factor, {"myoma_comment": "Mioma subseroso"})
    return FactorResult()


def evaluate_adenomyosis(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "adenomyosis")
    if inp.adenomyosis_type == AdenomyosisType.FOCAL:
        return FactorResult(float(s.get("focal", 0.8)), {"adenomyosis_comment": "Adenomiosis focal"})
    if inp.adenomyosis_type == AdenomyosisType.DIFFUSE:
        return FactorResult(float(s.get("diffuse", 0.5)), {"adenomyosis_comment": "Adenomiosis difusa"})
    return FactorResult()


def evaluate_polyp(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "polyp")
    if inp.polyp_type == PolypType.SMALL:
        return FactorResult(float(s.get("small", 0.85)), {"polyp_comment": "Pólipo endometrial pequeño (< 1 cm)"})
    if inp.polyp_type == PolypType.LARGE:
        return FactorResult(float(s.get("large", 0.70)), {"polyp_comment": "Pólipo grande (≥ 1 cm) o múltiples"})
    if inp.polyp_type == PolypType.OSTIUM:
        return FactorResult(float(s.get("ostium", 0.50)), {"polyp_comment": "Pólipo sobre ostium tubárico"})
    return FactorResult()


def evaluate_hsg(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "hsg")
    r = inp.hsg_result
    if r == HsgResult.NORMAL:
        return FactorResult(1.0, {"hsg_comment": "Ambas trompas permeables"})
    if r == HsgResult.UNILATERAL:
        return FactorResult(float(s.get("unilateral", 0.7)), {"hsg_comment": "Obstrucción tubárica unilateral"})
    if r == HsgResult.BILATERAL:
        return FactorResult(float(s.get("bilateral", 0.0)), {"hsg_comment": "Obstrucción tubárica bilateral"})
    if r == HsgResult.MALFORMATION:
        return FactorResult(float(s.get("malformation", 0.3)), {"hsg_comment": "Alteración de la cavidad uterina"})
    return FactorResult(missing=("Resultado de Histerosalpingografía (HSG)",))


def recanalization_outlook(inp: UserInput, rules: Dict[str, Any]) -> Tuple[float, List[str]]:
    """
    Recanalization outlook after tubal ligation (diagnostic only).
    Score is the product of age, method, remaining length and other factors.
    """
    s = _section(_section(rules, "otb"), "recanalization")
    score = 1.0
    notes: List[str] = []

    age = inp.age
    if age is None:
        notes.append("Edad materna no especificada para evaluación de recanalización.")
    elif age >= float(s.get("age_poor_ge", 40)):
        score *= float(s.get("age_poor", 0.2))
        notes.append("Edad materna ≥ 40 años: baja probabilidad de éxito en recanalización.")
    elif age >= float(s.get("age_moderate_ge", 35)):
        score *= float(s.get("age_moderate", 0.5))
        notes.append("Edad materna 35-39 años: tasas de éxito moderadas en recanalización.")
    else:
        notes.append("Edad materna < 35 años: ideal para recanalización tubárica.")

    method = inp.otb_method
    if method in (OtbMethod.EXTENSIVE_CAUTERIZATION, OtbMethod.PARTIAL_SALPINGECTOMY):
        score *= float(s.get("method_destructive", 0.1))
        notes.append("Método de OTB: cauterización extensa o salpingectomía parcial. Pronóstico muy pobre para recanalización.")
    elif method in (OtbMethod.CLIPS, OtbMethod.RINGS, OtbMethod.LIGATION):
        score *= float(s.get("method_mechanical", 0.8))
        notes.append("Método de OTB: clips, anillos o ligaduras. Mejor pronóstico para recanalización.")
    else:
        notes.append("Método de OTB no especificado para evaluación de recanalización.")

    length = inp.remaining_tubal_length
    min_cm = float(s.get("tubal_length_min_cm", 4.0))
    if length is None:
        notes.append("Longitud tubárica remanente no especificada.")
    elif length < min_cm:
        score *= float(s.get("tubal_length_short", 0.3))
        notes.append(f"Longitud tubárica remanente < {fmt_num(min_cm)} cm. Reduce tasas de embarazo.")
    else:
        notes.append(f"Longitud tubárica remanente ≥ {fmt_num(min_cm)} cm. Favorable para recanalización.")

    other = inp.has_other_infertility_factors
    if other is None:
        notes.append("Información sobre otros factores de infertilidad no especificada.")
    elif other:
        score *= float(s.get("other_factors", 0.5))
        notes.append("Presencia de otros factores de infertilidad. Considerar antes de recanalización.")
    else:
        notes.append("Ausencia de otros factores de infertilidad. Favorable para recanalización.")

    return score, notes


def evaluate_otb(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    if not inp.has_otb:
        return FactorResult()
    score, notes = recanalization_outlook(inp, rules)
    comment = " ".join(["Ligadura de trompas (OTB): embarazo espontáneo no posible."] + notes)
    return FactorResult(
        float(_section(rules, "otb").get("factor", 0.0)),
        {"otb_comment": comment, "otb_recanalization_score": round(score, 4)},
    )


# ---------------------------
# Laboratory
# ---------------------------

def evaluate_amh(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "amh")
    amh = inp.amh
    if amh is None:
        return FactorResult(missing=("Hormona Antimülleriana (AMH)",))
    if amh < 0:
        logger.warning("Valor de AMH negativo: %s", amh)
        return FactorResult(
            float(s.get("invalid", 0.1)),
            {"ovarian_reserve": "Valor de AMH no válido"},
            anomalies=(f"AMH negativa: {fmt_num(amh, 2)} ng/mL",),
        )
    if amh > float(s.get("high_gt", 4.0)):
        return FactorResult(float(s.get("high", 0.9)), {"ovarian_reserve": "Alta reserva ovárica"})
    if amh >= float(s.get("adequate_ge", 2.0)):
        return FactorResult(1.0, {"ovarian_reserve": "Reserva ovárica adecuada"})
    if amh >= float(s.get("mild_ge", 1.0)):
        return FactorResult(float(s.get("mild", 0.85)), {"ovarian_reserve": "Reserva ovárica ligeramente disminuida"})
    if amh >= float(s.get("low_ge", 0.5)):
        return FactorResult(float(s.get("low", 0.6)), {"ovarian_reserve": "Baja reserva ovárica"})
    return FactorResult(float(s.get("very_low", 0.3)), {"ovarian_reserve": "Reserva ovárica muy baja"})


def evaluate_prolactin(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "prolactin")
    prl = inp.prolactin
    if prl is None:
        return FactorResult(missing=("Nivel de Prolactina",))
    if prl < 0:
        logger.warning("Valor de prolactina negativo: %s", prl)
    if prl > float(s.get("severe_gt", 200.0)):
        return FactorResult(float(s.get("severe", 0.3)), {"prolactin_comment": "Hiperprolactinemia severa"})
    if prl >= float(s.get("high_ge", 25.0)):
        return FactorResult(float(s.get("high", 0.7)), {"prolactin_comment": "Hiperprolactinemia"})
    return FactorResult(1.0, {"prolactin_comment": "Prolactina normal"})


def evaluate_tsh(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "tsh")
    tsh = inp.tsh
    if tsh is None:
        return FactorResult(missing=("Nivel de TSH",))
    if tsh < 0:
        logger.warning("Valor de TSH negativo: %s", tsh)
    if tsh > float(s.get("hypothyroid_gt", 10.0)):
        return FactorResult(float(s.get("hypothyroid", 0.4)), {"tsh_comment": "Hipotiroidismo"})
    if tsh > float(s.get("suboptimal_gt", 2.5)):
        return FactorResult(float(s.get("suboptimal", 0.8)), {"tsh_comment": "TSH no óptima para fertilidad"})
    return FactorResult(1.0, {"tsh_comment": "TSH óptima"})


def evaluate_tpo(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    if inp.tpo_ab_positive is None:
        return FactorResult(missing=("Anticuerpos antitiroideos (TPOAb)",))
    if inp.tpo_ab_positive:
        factor = float(_section(rules, "tpo").get("positive", 0.9))
        return FactorResult(factor, {"tpo_comment": "Autoinmunidad tiroidea (TPOAb positivos)"})
    return FactorResult(1.0, {"tpo_comment": "TPOAb negativos"})


def evaluate_homa(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "homa")
    homa, calculated = effective_homa(inp)
    if homa is None:
        return FactorResult(missing=("Índice HOMA",))
    comments: Dict[str, Any] = {"homa_calculated": round(calculated, 2) if calculated is not None else None}
    if homa >= float(s.get("significant_ge", 4.0)):
        comments["homa_comment"] = "Resistencia a la insulina significativa"
        return FactorResult(float(s.get("significant", 0.90)), comments)
    if homa >= float(s.get("mild_ge", 2.5)):
        comments["homa_comment"] = "Resistencia a la insulina leve"
        return FactorResult(float(s.get("mild", 0.95)), comments)
    comments["homa_comment"] = "Sensibilidad a la insulina normal"
    return FactorResult(1.0, comments)


# ---------------------------
# History / male factor
# ---------------------------

def evaluate_infertility_duration(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "infertility_duration")
    years = inp.infertility_duration
    if years is None:
        return FactorResult()
    if years >= float(s.get("prolonged_ge", 5)):
        return FactorResult(float(s.get("prolonged", 0.85)), {"infertility_comment": "Infertilidad de 5 o más años"})
    if years >= float(s.get("moderate_ge", 3)):
        return FactorResult(float(s.get("moderate", 0.93)), {"infertility_comment": "Infertilidad de 3-4 años"})
    return FactorResult(1.0, {"infertility_comment": "Duración de infertilidad menor de 3 años"})


def evaluate_pelvic_surgery(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    s = _section(rules, "pelvic_surgery")
    n = inp.pelvic_surgeries_number
    if n is None and inp.has_pelvic_surgery:
        n = 1
    if not n or n <= 0:
        return FactorResult()
    if n >= 2:
        return FactorResult(float(s.get("multiple", 0.88)), {"pelvic_surgery_comment": f"{n} cirugías pélvicas previas"})
    return FactorResult(float(s.get("one", 0.95)), {"pelvic_surgery_comment": "1 cirugía pélvica previa"})


def evaluate_male(inp: UserInput, rules: Dict[str, Any]) -> FactorResult:
    """
    Semen analysis (WHO 2021 reference limits). Each recorded parameter is graded,
    the lowest multiplier wins and all diagnoses are listed.
    """
    s = _section(rules, "male")
    conc = inp.sperm_concentration
    mot = inp.sperm_progressive_motility
    morph = inp.sperm_normal_morphology
    if conc is None and mot is None and morph is None:
        return FactorResult(missing=("Espermatograma completo",))

    graded: List[Tuple[float, str]] = []
    if conc is not None:
        if conc == 0:
            graded.append((float(s.get("azoospermia", 0.05)), "Azoospermia"))
        elif conc < float(s.get("oligo_severe_lt", 5.0)):
            graded.append((float(s.get("oligo_severe", 0.25)), "Oligozoospermia severa"))
        elif conc < float(s.get("oligo_lt", 16.0)):
            graded.append((float(s.get("oligo", 0.7)), "Oligozoospermia leve-moderada"))
    if mot is not None:
        if mot < float(s.get("astheno_severe_lt", 20.0)):
            graded.append((float(s.get("astheno_severe", 0.4)), "Astenozoospermia severa"))
        elif mot < float(s.get("astheno_lt", 30.0)):
            graded.append((float(s.get("astheno", 0.85)), "Astenozoospermia leve"))
    if morph is not None and morph < float(s.get("terato_lt", 4.0)):
        graded.append((float(s.get("terato", 0.5)), "Teratozoospermia"))

    if not graded:
        return FactorResult(1.0, {"male_factor_detailed": "Parámetros seminales normales"})
    factor = min(f for f, _ in graded)
    return FactorResult(factor, {"male_factor_detailed": ", ".join(d for _, d in graded)})


# ---------------------------
# Registry
# ---------------------------

EVALUATORS: Dict[FactorKey, Evaluator] = {
    FactorKey.BMI: evaluate_bmi,
    FactorKey.CYCLE: evaluate_cycle,
    FactorKey.PCOS: evaluate_pcos,
    FactorKey.ENDOMETRIOSIS: evaluate_endometriosis,
    FactorKey.MYOMA: evaluate_myoma,
    FactorKey.ADENOMYOSIS: evaluate_adenomyosis,
    FactorKey.POLYP: evaluate_polyp,
    FactorKey.HSG: evaluate_hsg,
    FactorKey.OTB: evaluate_otb,
    FactorKey.AMH: evaluate_amh,
    FactorKey.PROLACTIN: evaluate_prolactin,
    FactorKey.TSH: evaluate_tsh,
    FactorKey.TPO: evaluate_tpo,
    FactorKey.HOMA: evaluate_homa,
    FactorKey.MALE: evaluate_male,
    FactorKey.INFERTILITY_DURATION: evaluate_infertility_duration,
    FactorKey.PELVIC_SURGERY: evaluate_pelvic_surgery,
}

assert set(EVALUATORS) == set(FactorKey), "every FactorKey needs an evaluator"
