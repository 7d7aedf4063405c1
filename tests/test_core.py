import sys
from pathlib import Path

import pytest

# Ensure repo root is on path (for the fertility package in this sandbox)
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fertility.baseline import resolve_age_baseline
from fertility.calcs import calc_bmi, calc_homa_ir, cumulative_probability
from fertility.engine import calculate_probability, compose_prognosis, validate_input
from fertility.evaluators import (
    EVALUATORS,
    evaluate_amh,
    evaluate_bmi,
    evaluate_endometriosis,
    evaluate_homa,
    evaluate_male,
    evaluate_otb,
    evaluate_pcos,
    evaluate_pelvic_surgery,
)
from fertility.models import FactorKey, Factors, OtbMethod, UserInput


SCENARIO_A = {
    "age": 30,
    "bmi": 22,
    "cycle_duration": 28,
    "has_pcos": False,
    "endometriosis_grade": 0,
    "myoma_type": "none",
    "adenomyosis_type": "none",
    "polyp_type": "none",
    "hsg_result": "normal",
    "has_otb": False,
    "amh": 2.5,
    "prolactin": 15,
    "tsh": 2.0,
    "tpo_ab_positive": False,
    "homa_ir": 1.5,
    "sperm_concentration": 40,
    "sperm_progressive_motility": 50,
    "sperm_normal_morphology": 5,
}


def test_calcs():
    assert abs(calc_bmi(170, 70).value - 24.2215) < 1e-3
    assert calc_bmi(None, 70).value is None
    assert abs(calc_homa_ir(90, 9).value - 2.0) < 1e-9
    assert calc_homa_ir(0, 9).value is None
    assert abs(cumulative_probability(17.5) - (1 - 0.825 ** 12) * 100) < 1e-9


def test_every_factor_has_an_evaluator():
    assert set(EVALUATORS) == set(FactorKey)
    assert list(Factors().multipliers()) == list(FactorKey)


def test_age_baseline_brackets():
    assert resolve_age_baseline(24, {}).probability == 27.5
    assert resolve_age_baseline(30, {}).probability == 17.5
    assert resolve_age_baseline(37, {}).probability == 12.5
    assert resolve_age_baseline(42, {}).probability == 4.0
    assert resolve_age_baseline(50, {}).probability == 1.5
    assert resolve_age_baseline(30, {}).anomalies == ()


@pytest.mark.parametrize("age", [None, -3, 5, 60, float("nan")])
def test_age_out_of_range_uses_default(age):
    res = resolve_age_baseline(age, {})
    assert res.probability == 0.1
    assert res.label == "Edad fuera de rango clínico"
    assert res.anomalies


def test_baseline_only_input():
    state = calculate_probability({"age": 30})
    assert state.report.numeric_prognosis == 17.5
    assert state.factors.suboptimal() == []


def test_scenario_a_all_neutral():
    state = calculate_probability(SCENARIO_A)
    assert state.factors.product() == 1.0
    assert state.report.numeric_prognosis == 17.5
    assert state.report.category == "BUENO"
    assert state.report.clinical_insights == ()
    assert state.diagnostics.missing_data == ()


def test_scenario_b_composition():
    factors = Factors(base_age_probability=17.5).with_factor(FactorKey.BMI, 0.85).with_factor(FactorKey.TSH, 0.8)
    assert abs(compose_prognosis(factors) - 11.9) < 1e-9


def test_scenario_c_otb_blocks():
    state = calculate_probability(dict(SCENARIO_A, has_otb=True))
    assert state.factors.otb == 0.0
    assert state.report.numeric_prognosis == 0.0
    assert state.report.category == "BAJO"
    assert state.report.benchmark_phrase == "Comparación no aplicable por ligadura de trompas (OTB)."
    assert "ligadura de trompas" in state.report.prognosis_phrase


def test_multiplicative_composition():
    state = calculate_probability({"age": 36, "bmi": 27, "tsh": 3.0, "amh": 0.7})
    expected = 12.5 * (0.69 / 0.78) * 0.8 * 0.6
    assert state.report.numeric_prognosis == pytest.approx(expected)
    assert state.factors.product() == pytest.approx((0.69 / 0.78) * 0.8 * 0.6)


def test_bilateral_hsg_is_a_blocker():
    state = calculate_probability(dict(SCENARIO_A, hsg_result="bilateral"))
    assert state.report.numeric_prognosis == 0.0
    # only tubal ligation replaces the phrase/benchmark
    assert "ligadura" not in state.report.benchmark_phrase


def test_idempotent():
    assert calculate_probability(SCENARIO_A) == calculate_probability(dict(SCENARIO_A))
    assert calculate_probability(UserInput(age=33, amh=0.4)) == calculate_probability({"age": "33", "amh": "0,4"})


def test_missing_data_in_factor_order():
    state = calculate_probability({"age": 30})
    assert state.diagnostics.missing_data == (
        "Índice de Masa Corporal (IMC)",
        "Duración del ciclo menstrual",
        "Resultado de Histerosalpingografía (HSG)",
        "Hormona Antimülleriana (AMH)",
        "Nivel de Prolactina",
        "Nivel de TSH",
        "Anticuerpos antitiroideos (TPOAb)",
        "Índice HOMA",
        "Espermatograma completo",
    )
    assert state.report.missing_data == state.diagnostics.missing_data


def test_missing_amh_and_hsg_both_reported():
    data = dict(SCENARIO_A)
    del data["amh"]
    del data["hsg_result"]
    missing = calculate_probability(data).diagnostics.missing_data
    assert "Hormona Antimülleriana (AMH)" in missing
    assert "Resultado de Histerosalpingografía (HSG)" in missing


def test_out_of_range_age_records_anomaly():
    state = calculate_probability(dict(SCENARIO_A, age=61))
    assert state.factors.base_age_probability == 0.1
    assert state.diagnostics.age_potential == "Edad fuera de rango clínico"
    assert state.diagnostics.anomalies


def test_empty_rules_match_library_rules():
    data = dict(SCENARIO_A, bmi=31, cycle_duration=40, has_pcos=True, amh=0.8, sperm_progressive_motility=25)
    assert calculate_probability(data, rules={}).factors == calculate_probability(data).factors


def test_bmi_from_height_and_weight():
    res = evaluate_bmi(UserInput(age=30, height_cm=160, weight_kg=80), {})
    assert res.comments["bmi_comment"] == "Obesidad"
    assert res.factor == pytest.approx(0.56 / 0.78)
    assert evaluate_bmi(UserInput(age=30), {}).missing == ("Índice de Masa Corporal (IMC)",)


def test_pcos_severity():
    assert evaluate_pcos(UserInput(age=30), {}).comments["pcos_severity"] == "No aplica"
    assert evaluate_pcos(UserInput(age=30, has_pcos=True), {}).factor == 0.6
    assert evaluate_pcos(UserInput(age=30, has_pcos=True, bmi=31, cycle_duration=30), {}).factor == 0.4
    assert evaluate_pcos(UserInput(age=30, has_pcos=True, bmi=22, cycle_duration=40), {}).factor == 0.6
    res = evaluate_pcos(UserInput(age=30, has_pcos=True, bmi=22, cycle_duration=30), {})
    assert (res.factor, res.comments["pcos_severity"]) == (0.85, "Leve")


def test_endometriosis_grades():
    assert evaluate_endometriosis(UserInput(age=30, endometriosis_grade=0), {}).factor is None
    assert evaluate_endometriosis(UserInput(age=30, endometriosis_grade=2), {}).factor == 0.85
    assert evaluate_endometriosis(UserInput(age=30, endometriosis_grade=7), {}).factor == 0.6


def test_amh_grades():
    assert evaluate_amh(UserInput(age=30, amh=5), {}).factor == 0.9
    assert evaluate_amh(UserInput(age=30, amh=1.2), {}).factor == 0.85
    assert evaluate_amh(UserInput(age=30, amh=0.3), {}).comments["ovarian_reserve"] == "Reserva ovárica muy baja"
    invalid = evaluate_amh(UserInput(age=30, amh=-1), {})
    assert invalid.factor == 0.1
    assert invalid.anomalies


def test_homa_from_glucose_and_insulin():
    res = evaluate_homa(UserInput(age=30, glucose=100, insulin=12), {})
    assert res.factor == 0.95
    assert res.comments["homa_calculated"] == pytest.approx(2.96, abs=0.01)
    assert evaluate_homa(UserInput(age=30, homa_ir=4.2), {}).factor == 0.90


def test_male_factor_worst_wins():
    res = evaluate_male(
        UserInput(age=30, sperm_concentration=10, sperm_progressive_motility=15, sperm_normal_morphology=3), {}
    )
    assert res.factor == 0.4
    assert res.comments["male_factor_detailed"] == "Oligozoospermia leve-moderada, Astenozoospermia severa, Teratozoospermia"
    assert evaluate_male(UserInput(age=30, sperm_concentration=0), {}).factor == 0.05
    assert evaluate_male(UserInput(age=30), {}).missing == ("Espermatograma completo",)


def test_pelvic_surgery_flag_without_count():
    assert evaluate_pelvic_surgery(UserInput(age=30, has_pelvic_surgery=True), {}).factor == 0.95
    assert evaluate_pelvic_surgery(UserInput(age=30, pelvic_surgeries_number=3), {}).factor == 0.88
    assert evaluate_pelvic_surgery(UserInput(age=30), {}).factor is None


def test_otb_recanalization_is_diagnostic_only():
    res = evaluate_otb(UserInput(age=38, has_otb=True, otb_method=OtbMethod.CLIPS, remaining_tubal_length=5,
                                 has_other_infertility_factors=False), {})
    assert res.factor == 0.0
    assert res.comments["otb_recanalization_score"] == pytest.approx(0.4)
    assert "recanalización" in res.comments["otb_comment"]


def test_validate_input():
    rep = validate_input({"age": 30, "bmi": 80, "sperm_progressive_motility": 120})
    assert "AMH" in rep.missing
    assert any("IMC" in w for w in rep.warnings)
    assert any("Motilidad" in w for w in rep.warnings)
    assert "### Datos faltantes" in rep.to_markdown()
    assert validate_input(SCENARIO_A).missing == []


def test_evaluator_comments_are_read_only():
    res = evaluate_bmi(UserInput(age=30, bmi=32), {})
    with pytest.raises(TypeError):
        res.comments["bmi_comment"] = "Peso normal"
    assert res.comments == {"bmi_comment": "Obesidad"}
