# -*- coding: utf-8 -*-
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .engine import calculate_probability
from .models import EvaluationState, UserInput
from .version import APP_VERSION, SCHEMA_VERSION


logger = logging.getLogger(__name__)

SCHEMA_NAME = "fertility_evaluation"
LOAD_ERROR = "No se pudo cargar el informe (formato no reconocido)."

_STATE_KEYS = ("input", "factors", "diagnostics", "report")
_LEGACY_INPUT_KEYS = ("age", "bmi", "cycleDuration", "cycle_duration", "amh", "hsgResult", "hsg_result")


def is_saved_evaluation(obj: Any) -> bool:
    return isinstance(obj, dict) and obj.get("schema") == SCHEMA_NAME


def build_saved_evaluation(state: EvaluationState) -> Dict[str, Any]:
    return {
        "schema": SCHEMA_NAME,
        "schema_version": SCHEMA_VERSION,
        "app_version": APP_VERSION,
        "saved_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "evaluation": state.to_dict(),
    }


def dumps_evaluation(state: EvaluationState, indent: Optional[int] = 2) -> str:
    return json.dumps(build_saved_evaluation(state), ensure_ascii=False, indent=indent, allow_nan=False)


def loads_evaluation(text: str) -> Tuple[Optional[EvaluationState], str]:
    try:
        payload = json.loads(text)
    except ValueError as e:
        logger.info("JSON no válido al cargar un informe: %s", e)
        return None, LOAD_ERROR
    return migrate_payload_to_state(payload)


def migrate_payload_to_state(payload: Any) -> Tuple[Optional[EvaluationState], str]:
    """
    Accepts:
      - Saved envelope: {"schema":"fertility_evaluation","schema_version":N,"evaluation":{...}}
      - A bare EvaluationState dict ({"input","factors","diagnostics","report"}).
      - A legacy flat input dict (camelCase or snake_case); it is recalculated.
    Returns (state or None, info_message).
    """
    if not isinstance(payload, dict):
        return None, LOAD_ERROR

    if is_saved_evaluation(payload) and isinstance(payload.get("evaluation"), dict):
        ver = payload.get("schema_version", "?")
        state = _state_from_dict(payload["evaluation"])
        if state is None:
            return None, LOAD_ERROR
        return state, f"Informe cargado (esquema v{ver})."

    if all(k in payload for k in _STATE_KEYS):
        state = _state_from_dict(payload)
        if state is None:
            return None, LOAD_ERROR
        return state, "Informe cargado (sin envoltorio)."

    if any(k in payload for k in _LEGACY_INPUT_KEYS):
        state = calculate_probability(UserInput.from_dict(payload))
        return state, "Datos cargados (formato antiguo, recalculado)."

    return None, LOAD_ERROR


def _state_from_dict(d: Dict[str, Any]) -> Optional[EvaluationState]:
    try:
        return EvaluationState.from_dict(d)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.info("Informe guardado no válido: %s", e)
        return None
