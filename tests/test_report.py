import sys
from pathlib import Path

# Ensure repo root is on path (for the fertility package in this sandbox)
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fertility import textdb
from fertility.engine import calculate_probability
from fertility.models import Diagnostics, FactorKey, Factors, UserInput
from fertility.report import (
    DEFAULT_JUSTIFICATION,
    FINDINGS_TABLE,
    benchmark_for_age,
    classify_prognosis,
    finding_keys,
    generate_report,
)


def test_findings_table_is_total():
    assert [row.factor for row in FINDINGS_TABLE][:3] == [FactorKey.BMI, FactorKey.HOMA, FactorKey.AMH]
    assert {row.factor for row in FINDINGS_TABLE} == set(FactorKey)


def test_every_finding_key_has_content():
    for key in finding_keys():
        assert key in textdb.CONTENT, key


def test_category_thresholds():
    f = Factors(base_age_probability=17.5)
    assert classify_prognosis(20.0, f, {})[0] == "BUENO"
    assert classify_prognosis(15.0, f, {})[0] == "BUENO"
    assert classify_prognosis(10.0, f, {})[0] == "MODERADO"
    assert classify_prognosis(2.0, f, {})[0] == "BAJO"
    assert classify_prognosis(float("nan"), f, {})[0] == "ERROR"
    assert classify_prognosis(-1.0, f, {})[0] == "ERROR"
    assert classify_prognosis(20.0, f.with_factor(FactorKey.OTB, 0.0), {}) == ("BAJO", "PRONOSTICO_OTB")


def test_benchmark_brackets():
    assert benchmark_for_age(29.5, {}) == ("Menos de 30", 22.5)
    assert benchmark_for_age(30, {}) == ("30-34", 17.5)
    assert benchmark_for_age(37, {}) == ("35-37", 12.5)
    assert benchmark_for_age(40, {}) == ("38-40", 7.5)
    assert benchmark_for_age(41, {}) == ("Más de 40", 3.0)
    assert benchmark_for_age(None, {}) is None


def test_prognosis_and_benchmark_phrases():
    state = calculate_probability({"age": 30, "bmi": 22, "hsg_result": "normal"})
    r = state.report
    assert r.emoji == "🟢"
    assert r.prognosis_phrase.startswith("¡Tu pronóstico es BUENO! 17.5% por ciclo mensual")
    assert "(90.1% en 12 meses)" in r.prognosis_phrase
    assert r.benchmark_phrase == (
        "Tu resultado es **similar al promedio** para tu grupo de edad (30-34 años), "
        "cuyo pronóstico base es del 17.5%."
    )


def test_benchmark_below_average():
    state = calculate_probability({"age": 28, "amh": 0.3, "tsh": 12})
    assert state.report.category == "BAJO"
    assert "notablemente inferior al promedio" in state.report.benchmark_phrase
    assert "(Menos de 30 años)" in state.report.benchmark_phrase


def test_findings_in_table_order():
    state = calculate_probability({
        "age": 32,
        "bmi": 32,
        "tsh": 4,
        "hsg_result": "unilateral",
        "sperm_concentration": 10,
    })
    keys = [f.key for f in state.report.clinical_insights]
    assert keys == ["IMC_OBESIDAD", "TSH_ALTA", "HSG_UNILATERAL", "FACTOR_MASCULINO_MODERADO"]
    assert [f.factor for f in state.report.clinical_insights] == ["bmi", "tsh", "hsg", "male"]


def test_finding_content_and_fallbacks():
    state = calculate_probability({"age": 30, "bmi": 17, "has_otb": True})
    by_key = {f.key: f for f in state.report.clinical_insights}
    low = by_key["IMC_BAJO"]
    assert low.title == "Índice de Masa Corporal"
    assert low.definition == textdb.CONTENT["IMC_BAJO"].template
    assert low.justification == DEFAULT_JUSTIFICATION
    assert "Evita el ejercicio excesivo." in low.recommendations
    assert by_key["OTB_PRESENTE"].justification != DEFAULT_JUSTIFICATION


def test_recommendations_deduplicated():
    state = calculate_probability({"age": 30, "endometriosis_grade": 4, "hsg_result": "bilateral", "has_pelvic_surgery": True})
    recs = state.report.recommendations
    assert recs
    assert len(recs) == len(set(recs))


def test_male_severity_keys():
    def key_for(**semen):
        state = calculate_probability(dict({"age": 30}, **semen))
        return [f.key for f in state.report.clinical_insights if f.factor == "male"][0]

    assert key_for(sperm_concentration=0) == "FACTOR_MASCULINO_AZOOSPERMIA"
    assert key_for(sperm_concentration=3) == "FACTOR_MASCULINO_SEVERO"
    assert key_for(sperm_normal_morphology=2) == "FACTOR_MASCULINO_MODERADO"
    assert key_for(sperm_progressive_motility=25) == "FACTOR_MASCULINO_LEVE"


def test_missing_content_is_skipped():
    factors = Factors(base_age_probability=17.5).with_factor(FactorKey.TSH, 0.8)
    report = generate_report(14.0, Diagnostics(), UserInput(age=30, tsh=3.0), factors, rules={}, content={})
    assert report.clinical_insights == ()
    assert report.category == "MODERADO"
    assert report.prognosis_phrase.startswith("Tu pronóstico es MODERADO: 14.0% por ciclo mensual")


def test_non_finite_prognosis_is_error():
    report = generate_report(float("inf"), Diagnostics(), UserInput(age=30), Factors(base_age_probability=17.5))
    assert report.category == "ERROR"
    assert report.emoji == "⚠️"
    assert report.twelve_month_probability is None
    assert report.benchmark_phrase == ""
