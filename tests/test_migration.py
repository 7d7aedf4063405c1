import json
import sys
from datetime import datetime
from pathlib import Path

# Ensure repo root is on path (for the fertility package in this sandbox)
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fertility.engine import calculate_probability
from fertility.migrate import (
    build_saved_evaluation,
    dumps_evaluation,
    loads_evaluation,
    migrate_payload_to_state,
)
from fertility.models import EvaluationState


def _state():
    return calculate_probability({
        "age": 34,
        "bmi": 29,
        "has_pcos": True,
        "cycle_duration": 41,
        "polyp_type": "small",
        "has_otb": False,
        "amh": 0.9,
        "tpo_ab_positive": True,
        "glucose": 95,
        "insulin": 14,
        "sperm_concentration": 12,
    })


def test_state_round_trip():
    state = _state()
    assert state.report.clinical_insights
    assert EvaluationState.from_dict(state.to_dict()) == state


def test_build_saved_evaluation():
    sc = build_saved_evaluation(_state())
    assert sc["schema"] == "fertility_evaluation"
    assert "evaluation" in sc and sc["evaluation"]["input"]["age"] == 34


def test_json_round_trip():
    state = _state()
    text = dumps_evaluation(state)
    assert "NaN" not in text
    loaded, msg = loads_evaluation(text)
    assert loaded == state
    assert "cargado" in msg


def test_migrate_bare_state():
    state = _state()
    loaded, _ = migrate_payload_to_state(json.loads(json.dumps(state.to_dict())))
    assert loaded == state


def test_migrate_legacy_flat():
    loaded, msg = migrate_payload_to_state({"age": 30, "cycleDuration": 28, "hsgResult": "malformacion"})
    assert loaded is not None
    assert loaded.input.cycle_duration == 28
    assert loaded.factors.hsg == 0.3
    assert "recalculado" in msg


def test_migrate_rejects_garbage():
    assert migrate_payload_to_state([1, 2, 3])[0] is None
    state, msg = migrate_payload_to_state({"foo": "bar"})
    assert state is None
    assert msg.startswith("No se pudo cargar el informe")
    assert loads_evaluation("{not json")[0] is None
    broken = {"schema": "fertility_evaluation", "schema_version": 1, "evaluation": {"input": {}}}
    assert migrate_payload_to_state(broken)[0] is None


def test_migrate_rejects_wrongly_typed_records():
    good = _state().to_dict()
    envelope = {"schema": "fertility_evaluation", "schema_version": 1, "evaluation": dict(good, input=[1, 2])}
    state, msg = migrate_payload_to_state(envelope)
    assert state is None
    assert msg.startswith("No se pudo cargar el informe")

    bare = dict(good, report=dict(good["report"], clinical_insights=["x"]))
    assert migrate_payload_to_state(bare)[0] is None
    assert migrate_payload_to_state(dict(good, diagnostics="texto"))[0] is None
    assert loads_evaluation(json.dumps(envelope))[0] is None


def test_saved_at_is_utc():
    saved_at = build_saved_evaluation(_state())["saved_at"]
    assert saved_at.endswith("Z")
    assert datetime.strptime(saved_at, "%Y-%m-%dT%H:%M:%SZ")
