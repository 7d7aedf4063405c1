# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import os
import tempfile
import traceback
from typing import Any, Dict, List, Optional, Tuple

import gradio as gr

from . import textdb
from .engine import calculate_probability, validate_input
from .migrate import dumps_evaluation, loads_evaluation
from .models import (
    AdenomyosisType,
    EvaluationState,
    FactorKey,
    HsgResult,
    MyomaType,
    OtbMethod,
    PolypType,
    SimulationResult,
    TreatmentSuggestion,
    UserInput,
)
from .simulator import rank_improvements, simulate_all_improvements, simulate_factor
from .treatment import suggest_treatments
from .util import fmt_num, fmt_pct, join_nonempty
from .version import APP_NAME, APP_VERSION


logger = logging.getLogger(__name__)

YES_NO_UNKNOWN = ["sin dato", "sí", "no"]

MYOMA_CHOICES = [
    ("Sin miomas", MyomaType.NONE.value),
    ("Submucoso", MyomaType.SUBMUCOSAL.value),
    ("Intramural ≥ 4 cm", MyomaType.INTRAMURAL_LARGE.value),
    ("Subseroso", MyomaType.SUBSEROSAL.value),
]
ADENOMYOSIS_CHOICES = [
    ("Sin adenomiosis", AdenomyosisType.NONE.value),
    ("Focal", AdenomyosisType.FOCAL.value),
    ("Difusa", AdenomyosisType.DIFFUSE.value),
]
POLYP_CHOICES = [
    ("Sin pólipos", PolypType.NONE.value),
    ("Pequeño (< 1 cm)", PolypType.SMALL.value),
    ("Grande o múltiples", PolypType.LARGE.value),
    ("Sobre ostium tubárico", PolypType.OSTIUM.value),
]
HSG_CHOICES = [
    ("No realizada", HsgResult.UNKNOWN.value),
    ("Normal", HsgResult.NORMAL.value),
    ("Obstrucción unilateral", HsgResult.UNILATERAL.value),
    ("Obstrucción bilateral", HsgResult.BILATERAL.value),
    ("Malformación uterina", HsgResult.MALFORMATION.value),
]
OTB_METHOD_CHOICES = [
    ("No especificado", OtbMethod.UNKNOWN.value),
    ("Clips", OtbMethod.CLIPS.value),
    ("Anillos", OtbMethod.RINGS.value),
    ("Ligadura", OtbMethod.LIGATION.value),
    ("Cauterización extensa", OtbMethod.EXTENSIVE_CAUTERIZATION.value),
    ("Salpingectomía parcial", OtbMethod.PARTIAL_SALPINGECTOMY.value),
]

EXAMPLE_INPUT: Dict[str, Any] = {
    "age": 36,
    "height_cm": 164,
    "weight_kg": 74,
    "cycle_duration": 33,
    "infertility_duration": 2,
    "endometriosis_grade": 2,
    "hsg_result": HsgResult.NORMAL.value,
    "amh": 1.4,
    "prolactin": 14,
    "tsh": 3.1,
    "tpo_ab_positive": "no",
    "glucose": 92,
    "insulin": 11,
    "sperm_concentration": 22,
    "sperm_progressive_motility": 34,
    "sperm_normal_morphology": 5,
}


# ---------------------------
# Markdown rendering
# ---------------------------

def render_prognosis(state: EvaluationState) -> str:
    r = state.report
    lines = [f"## {r.emoji} Pronóstico: {r.category}", "", r.prognosis_phrase]
    if r.category != "ERROR":
        lines.append("")
        lines.append(f"**Por ciclo:** {fmt_pct(r.numeric_prognosis)} · **12 meses:** {fmt_pct(r.twelve_month_probability)}")
    if r.benchmark_phrase:
        lines += ["", r.benchmark_phrase]
    lines += ["", f"_Base por edad: {fmt_pct(state.factors.base_age_probability)} ({state.diagnostics.age_potential})_"]
    return "\n".join(lines)


def render_findings(state: EvaluationState) -> str:
    r = state.report
    if not r.clinical_insights:
        return "Sin factores que reduzcan el pronóstico con los datos disponibles."
    parts: List[str] = []
    for f in r.clinical_insights:
        parts.append(f"### {f.title}")
        parts.append(f.definition)
        parts.append(f"_{f.justification}_")
        for rec in f.recommendations:
            parts.append(f"- {rec}")
        if f.sources:
            parts.append(f"<sub>Fuentes: {join_nonempty(list(f.sources), sep='; ')}</sub>")
        parts.append("")
    return "\n".join(parts).strip()


def render_missing(state: EvaluationState) -> str:
    d = state.diagnostics
    lines: List[str] = []
    if d.missing_data:
        lines.append("### Datos que mejorarían la precisión")
        lines += [f"- {m}" for m in d.missing_data]
    if d.anomalies:
        lines.append("### Valores fuera de rango")
        lines += [f"- {a}" for a in d.anomalies]
    return "\n".join(lines) if lines else "—"


def render_treatments(suggestions: Tuple[TreatmentSuggestion, ...]) -> str:
    if not suggestions:
        return "—"
    parts: List[str] = []
    for s in suggestions:
        parts.append(f"### {s.title}")
        parts.append(f"_{s.category} · urgencia: {s.urgency} · confianza: {s.confidence}% · evidencia {s.evidence_level}_")
        parts.append(s.details)
        parts += [f"- {rec}" for rec in s.recommendations]
        if s.sources:
            parts.append(f"<sub>Fuentes: {join_nonempty(list(s.sources), sep='; ')}</sub>")
        parts.append("")
    return "\n".join(parts).strip()


def render_simulation(results: List[SimulationResult]) -> str:
    if not results:
        return "No hay factores subóptimos que simular."
    lines = ["| Factor | Original | Simulado | Mejora | Impacto | Plazo |", "|---|---|---|---|---|---|"]
    for s in results:
        lines.append(
            f"| {s.explanation} | {fmt_pct(s.original_prognosis, 2)} | {fmt_pct(s.new_prognosis, 2)} "
            f"| +{fmt_num(s.improvement, 2)} | {s.impact_level} | {s.timeframe} |"
        )
    recs = [r for s in results for r in s.recommendations]
    if len(results) == 1 and recs:
        lines.append("")
        lines += [f"- {r}" for r in recs]
    return "\n".join(lines)


def _factor_choices() -> List[Tuple[str, str]]:
    meta = textdb.FACTOR_METADATA
    return [(str((meta.get(k.value) or {}).get("name", k.value)), k.value) for k in FactorKey]


# ---------------------------
# Demo
# ---------------------------

def build_demo() -> gr.Blocks:
    field_components: List[Tuple[str, Any]] = []

    def reg(field_id: str, comp: Any) -> Any:
        field_components.append((field_id, comp))
        return comp

    CSS = """
    .fert-container { max-width: 1100px; margin: 0 auto; }
    .section-card {
        border: 1px solid rgba(0,0,0,0.08);
        border-radius: 12px;
        padding: 12px;
        background: white;
    }
    .small-note { font-size: 12px; opacity: 0.75; }
    """

    with gr.Blocks(css=CSS, title=f"{APP_NAME} v{APP_VERSION}") as demo:
        gr.HTML(
            f"<div class='fert-container'><h2 style='margin-bottom:0'>{APP_NAME} "
            f"<span style='opacity:0.6;font-size:14px'>v{APP_VERSION}</span></h2>"
            "<div class='small-note'>Herramienta orientativa • No sustituye la valoración de un especialista</div></div>"
        )
        state_store = gr.State(None)

        with gr.Row():
            btn_example = gr.Button("Cargar ejemplo", variant="secondary")
            file_load = gr.File(label="Cargar evaluación (JSON)", file_types=[".json"])
            btn_generate = gr.Button("Calcular pronóstico", variant="primary")
            btn_save = gr.Button("Guardar evaluación", variant="secondary")

        error_md = gr.Markdown("", visible=False)

        with gr.Tabs():
            with gr.Tab("Datos generales"):
                with gr.Row():
                    reg("age", gr.Number(label="Edad (años)", precision=0))
                    reg("height_cm", gr.Number(label="Talla (cm)", precision=0))
                    reg("weight_kg", gr.Number(label="Peso (kg)", precision=1))
                    reg("bmi", gr.Number(label="IMC (si no hay talla/peso)"))
                with gr.Row():
                    reg("cycle_duration", gr.Number(label="Duración del ciclo (días)", precision=0))
                    reg("infertility_duration", gr.Number(label="Años buscando embarazo"))

            with gr.Tab("Historia ginecológica"):
                with gr.Row():
                    reg("has_pcos", gr.Checkbox(label="Síndrome de Ovario Poliquístico (SOP)"))
                    reg("endometriosis_grade", gr.Slider(0, 4, step=1, value=0, label="Grado de endometriosis (0 = no)"))
                with gr.Row():
                    reg("myoma_type", gr.Dropdown(MYOMA_CHOICES, value=MyomaType.NONE.value, label="Miomas"))
                    reg("adenomyosis_type", gr.Dropdown(ADENOMYOSIS_CHOICES, value=AdenomyosisType.NONE.value, label="Adenomiosis"))
                    reg("polyp_type", gr.Dropdown(POLYP_CHOICES, value=PolypType.NONE.value, label="Pólipos"))
                with gr.Row():
                    reg("hsg_result", gr.Dropdown(HSG_CHOICES, value=HsgResult.UNKNOWN.value, label="Histerosalpingografía (HSG)"))
                    reg("has_pelvic_surgery", gr.Checkbox(label="Cirugía pélvica previa"))
                    reg("pelvic_surgeries_number", gr.Number(label="Número de cirugías pélvicas", precision=0))
                gr.Markdown("### Ligadura de trompas (OTB)")
                with gr.Row():
                    reg("has_otb", gr.Checkbox(label="OTB realizada"))
                    reg("otb_method", gr.Dropdown(OTB_METHOD_CHOICES, value=OtbMethod.UNKNOWN.value, label="Método"))
                    reg("remaining_tubal_length", gr.Number(label="Longitud tubárica remanente (cm)"))
                    reg("has_other_infertility_factors", gr.Radio(YES_NO_UNKNOWN, value="sin dato", label="Otros factores de infertilidad"))

            with gr.Tab("Laboratorio"):
                with gr.Row():
                    reg("amh", gr.Number(label="AMH (ng/mL)"))
                    reg("prolactin", gr.Number(label="Prolactina (ng/mL)"))
                    reg("tsh", gr.Number(label="TSH (mUI/L)"))
                    reg("tpo_ab_positive", gr.Radio(YES_NO_UNKNOWN, value="sin dato", label="TPOAb positivos"))
                with gr.Row():
                    reg("homa_ir", gr.Number(label="HOMA-IR"))
                    reg("glucose", gr.Number(label="Glucosa basal (mg/dL)"))
                    reg("insulin", gr.Number(label="Insulina basal (µU/mL)"))

            with gr.Tab("Factor masculino"):
                with gr.Row():
                    reg("sperm_concentration", gr.Number(label="Concentración (M/mL)"))
                    reg("sperm_progressive_motility", gr.Number(label="Motilidad progresiva (%)"))
                    reg("sperm_normal_morphology", gr.Number(label="Morfología normal (%)"))

        gr.Markdown("## Resultado")
        with gr.Tabs():
            with gr.Tab("Pronóstico"):
                out_prognosis = gr.Markdown("—", elem_classes=["section-card"])
                out_missing = gr.Markdown("—")
                out_validation = gr.Markdown("—")
            with gr.Tab("Hallazgos clínicos"):
                out_findings = gr.Markdown("—")
            with gr.Tab("Tratamiento sugerido"):
                out_treatment = gr.Markdown("—")
            with gr.Tab("Simulador"):
                with gr.Row():
                    sim_factor = gr.Dropdown(_factor_choices(), value=FactorKey.BMI.value, label="Factor a optimizar")
                    btn_sim_one = gr.Button("Simular factor", variant="secondary")
                    btn_sim_all = gr.Button("Simular todos", variant="secondary")
                out_sim = gr.Markdown("—")
                gr.Markdown("### Mejoras ordenadas por impacto")
                out_ranking = gr.Markdown("—")

        file_download = gr.File(label="Descarga (JSON)")

        input_components = [c for _, c in field_components]
        result_outputs = [out_prognosis, out_findings, out_treatment, out_missing, out_validation, out_ranking, state_store, error_md]

        # --- helpers ---
        def _ui_get_raw(*vals) -> Dict[str, Any]:
            return {fid: v for (fid, _), v in zip(field_components, vals)}

        def _render_all(state: EvaluationState, validation_md: str):
            return (
                render_prognosis(state),
                render_findings(state),
                render_treatments(suggest_treatments(state)),
                render_missing(state),
                validation_md,
                render_simulation(rank_improvements(state)),
                state,
                gr.update(visible=False, value=""),
            )

        def _error(tb: str):
            return ("—", "—", "—", "—", "—", "—", None, gr.update(visible=True, value=f"### Error\n```\n{tb}\n```"))

        def _generate(*vals):
            try:
                inp = UserInput.from_dict(_ui_get_raw(*vals))
                state = calculate_probability(inp)
                return _render_all(state, validate_input(inp).to_markdown())
            except Exception:
                tb = traceback.format_exc()
                logger.exception("Error al calcular el pronóstico")
                return _error(tb)

        def _ui_values(d: Dict[str, Any]) -> List[Any]:
            values = []
            for fid, _ in field_components:
                v = d.get(fid)
                if fid in ("tpo_ab_positive", "has_other_infertility_factors"):
                    v = {True: "sí", False: "no"}.get(v, "sin dato") if not isinstance(v, str) else v
                values.append(v)
            return values

        def _load_example():
            return _ui_values(EXAMPLE_INPUT)

        def _load_evaluation(file_obj):
            if not file_obj:
                return [gr.update() for _ in field_components] + list(_error("Sin archivo."))
            try:
                path = file_obj if isinstance(file_obj, str) else getattr(file_obj, "name", None)
                with open(path, "r", encoding="utf-8") as f:
                    state, msg = loads_evaluation(f.read())
            except (OSError, TypeError, UnicodeDecodeError):
                state, msg = None, "Error al leer el archivo."
            if state is None:
                return [gr.update() for _ in field_components] + list(_error(msg))
            rendered = list(_render_all(state, f"_{msg}_"))
            return _ui_values(state.input.to_dict()) + rendered

        def _save_evaluation(state: Optional[EvaluationState], *vals):
            if state is None:
                state = calculate_probability(UserInput.from_dict(_ui_get_raw(*vals)))
            fd, path = tempfile.mkstemp(prefix="fertility_evaluation_", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(dumps_evaluation(state))
            return path

        def _simulate_one(state: Optional[EvaluationState], factor: str):
            if state is None:
                return "Calcula primero el pronóstico."
            return render_simulation([simulate_factor(state, factor)])

        def _simulate_all(state: Optional[EvaluationState]):
            if state is None:
                return "Calcula primero el pronóstico."
            return render_simulation([simulate_all_improvements(state)])

        # Bind actions
        btn_generate.click(_generate, inputs=input_components, outputs=result_outputs)
        btn_example.click(_load_example, outputs=input_components)
        file_load.change(_load_evaluation, inputs=[file_load], outputs=input_components + result_outputs)
        btn_save.click(_save_evaluation, inputs=[state_store] + input_components, outputs=[file_download])
        btn_sim_one.click(_simulate_one, inputs=[state_store, sim_factor], outputs=[out_sim])
        btn_sim_all.click(_simulate_all, inputs=[state_store], outputs=[out_sim])

    return demo
