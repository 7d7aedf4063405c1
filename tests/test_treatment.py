import copy
import sys
from pathlib import Path

# Ensure repo root is on path (for the fertility package in this sandbox)
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fertility import textdb
from fertility.engine import calculate_probability
from fertility.models import TreatmentSuggestion
from fertility.treatment import (
    FALLBACK_KEY,
    FURTHER_STUDY,
    HIGH_COMPLEXITY,
    LOW_COMPLEXITY,
    OPTIMIZATION,
    rank_suggestions,
    suggest_treatments,
    suggestion_keys,
)


def _keys(data, rules=None):
    return suggestion_keys(calculate_probability(data), rules)


def test_strategic_decisions():
    assert _keys({"age": 41, "amh": 0.8}) == ["DECISION_FIV_EDAD_AMH_CRITICO"]
    assert _keys({"age": 30, "endometriosis_grade": 3, "sperm_concentration": 12}) == ["DECISION_FIV_ENDO_AVANZADA_SEMINAL"]
    pcos = {"age": 30, "has_pcos": True, "homa_ir": 4.5, "cycle_duration": 65, "prolactin": 60}
    assert _keys(pcos) == ["DECISION_FIV_SOP_METABOLICO_CRITICO"]
    assert _keys({"age": 30, "has_otb": True}) == ["DECISION_FIV_OTB_BILATERAL"]
    assert _keys({"age": 30, "hsg_result": "bilateral"}) == ["DECISION_FIV_OTB_BILATERAL"]


def test_strategic_decision_is_escalated_for_high_risk():
    (only,) = suggest_treatments(calculate_probability({"age": 41, "amh": 0.8}))
    assert only.category == HIGH_COMPLEXITY
    assert only.urgency == "critical"
    # clinical score 55 lowers the confidence
    assert only.confidence == 77
    assert only.recommendations[0] == "FIV directa como primera opción."


def test_absolute_ivf_with_icsi():
    keys = _keys({"age": 37, "amh": 0.9, "sperm_normal_morphology": 1})
    assert keys == ["TRAT_FIV_INDICACIONES_ABSOLUTAS", "TRAT_ICSI_RECOMENDADO"]
    assert _keys({"age": 30, "adenomyosis_type": "diffuse"}) == ["TRAT_FIV_INDICACIONES_ABSOLUTAS"]


def test_egg_donation_when_strategic_tier_is_relaxed():
    rules = copy.deepcopy(textdb.RULES)
    rules["treatment"]["strategic"]["age_ge"] = 50
    keys = _keys({"age": 44, "amh": 0.3}, rules)
    assert keys == ["TRAT_FIV_INDICACIONES_ABSOLUTAS", "TRAT_OVODONACION"]


def test_iui_indicated():
    assert _keys({"age": 30, "hsg_result": "unilateral", "amh": 2.5}) == ["TRAT_IAC_INDICACIONES"]


def test_iui_contraindicated_falls_through():
    data = {"age": 30, "hsg_result": "unilateral", "amh": 2.5, "sperm_progressive_motility": 25, "sperm_concentration": 20}
    assert _keys(data) == [FALLBACK_KEY]


def test_low_complexity_profile():
    data = {"age": 30, "endometriosis_grade": 2, "amh": 2.0, "sperm_progressive_motility": 25}
    suggestions = suggest_treatments(calculate_probability(data))
    assert [s.key for s in suggestions] == ["INT_ENDO_LEVE_AMH_NORMAL_JOVEN", "TRAT_BAJA_COMPLEJIDAD_CRITERIOS"]
    assert {s.category for s in suggestions} == {LOW_COMPLEXITY}
    assert all(s.confidence == 100 for s in suggestions)


def test_low_complexity_with_optimization():
    data = {
        "age": 30,
        "amh": 2.5,
        "bmi": 27,
        "cycle_duration": 28,
        "hsg_result": "normal",
        "infertility_duration": 1,
        "tsh": 2.0,
        "prolactin": 10,
        "tpo_ab_positive": True,
        "sperm_concentration": 40,
        "sperm_progressive_motility": 50,
        "sperm_normal_morphology": 6,
    }
    suggestions = suggest_treatments(calculate_probability(data))
    assert [s.key for s in suggestions] == ["TRAT_BAJA_COMPLEJIDAD_CRITERIOS", "IMC_SOBREPESO", "TPOAB_POSITIVO"]
    assert [s.category for s in suggestions] == [LOW_COMPLEXITY, OPTIMIZATION, OPTIMIZATION]
    assert suggestions[1].urgency == "low"


def test_fallback_without_indications():
    (only,) = suggest_treatments(calculate_probability({"age": 30}))
    assert only.key == FALLBACK_KEY
    assert only.category == FURTHER_STUDY
    assert (only.urgency, only.confidence, only.evidence_level) == ("low", 75, "B")


def test_missing_content_gives_placeholder():
    (only,) = suggest_treatments(calculate_probability({"age": 30}), content={})
    assert only.title == f"Tratamiento no definido ({FALLBACK_KEY})"
    assert (only.confidence, only.evidence_level) == (30, "D")


def test_ranking_order():
    def s(key, urgency, confidence, evidence="A"):
        return TreatmentSuggestion(key, "", "", "", confidence, urgency, evidence)

    ranked = rank_suggestions([s("a", "low", 99), s("b", "high", 80), s("c", "high", 90), s("d", "high", 90, "B")])
    assert [x.key for x in ranked] == ["c", "d", "b", "a"]


def test_suggestions_are_repeatable():
    state = calculate_probability({"age": 37, "amh": 0.9, "sperm_normal_morphology": 1})
    before = state.to_dict()
    assert suggest_treatments(state) == suggest_treatments(state)
    assert state.to_dict() == before
