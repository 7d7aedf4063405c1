import sys
from pathlib import Path

import pytest

# Ensure repo root is on path (for the fertility package in this sandbox)
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import validate_textdb
from fertility import textdb
from fertility.models import FactorKey
from fertility.textdb_store import ContentBlock, dump_yaml, load_textdb, load_yaml


CORE = {
    "schema_version": 2,
    "meta": {},
    "rules": {"bmi": {"lr_obese": 0.56, "obese_ge": 30.0}},
    "factor_metadata": {"bmi": {"name": "IMC", "cost": "low"}},
    "blocks": {
        "IMC_BAJO": {"id": "IMC_BAJO", "title": "IMC bajo", "category": "F", "template": "Texto original."},
    },
}


def _write(tmp_path, core=None, overrides=None):
    core_path = tmp_path / "core.yaml"
    ovr_path = tmp_path / "overrides.yaml"
    dump_yaml(core if core is not None else CORE, core_path)
    if overrides is not None:
        dump_yaml(overrides, ovr_path)
    return core_path, ovr_path


def test_wrong_schema_rejected(tmp_path):
    core_path, ovr_path = _write(tmp_path, core=dict(CORE, schema_version=1))
    with pytest.raises(ValueError):
        load_textdb(core_path, ovr_path)


def test_only_approved_overrides_merge(tmp_path):
    overrides = {
        "schema_version": 2,
        "meta": {},
        "overrides": {
            "blocks": {
                "IMC_BAJO": {"status": "draft", "data": {"template": "Borrador."}},
                "NUEVO": {"status": "approved", "data": {"title": "Nuevo", "category": "F", "template": "Nuevo texto."}},
            },
            "rules": {"bmi": {"lr_obese": 0.5}},
        },
    }
    core_path, ovr_path = _write(tmp_path, overrides=overrides)
    db = load_textdb(core_path, ovr_path)
    assert db.get_block("IMC_BAJO").template == "Texto original."
    assert db.get_block("NUEVO").id == "NUEVO"
    assert db.rules()["bmi"] == {"lr_obese": 0.5, "obese_ge": 30.0}


def test_override_workflow(tmp_path):
    core_path, ovr_path = _write(tmp_path)
    db = load_textdb(core_path, ovr_path)

    db.upsert_override_block("IMC_BAJO", {"template": "Texto revisado."})
    assert db.get_block("IMC_BAJO").template == "Texto original."
    assert load_yaml(ovr_path)["overrides"]["blocks"]["IMC_BAJO"]["status"] == "draft"

    db.approve_override_block("IMC_BAJO")
    assert db.get_block("IMC_BAJO").template == "Texto revisado."

    db.discard_override_block("IMC_BAJO")
    assert db.get_block("IMC_BAJO").template == "Texto original."

    with pytest.raises(KeyError):
        db.approve_override_block("NO_EXISTE")


def test_module_reload_uses_overrides(tmp_path):
    core_path, ovr_path = _write(tmp_path)
    try:
        textdb.reload(core_path, ovr_path)
        textdb.upsert_override_block("IMC_BAJO", {"title": "Peso bajo"}, status="approved")
        assert textdb.get_content("IMC_BAJO").title == "Peso bajo"
        assert textdb.list_override_block_ids("approved") == ["IMC_BAJO"]
        assert textdb.get_override_entry("IMC_BAJO")["data"] == {"title": "Peso bajo"}
    finally:
        textdb.reload()
    assert textdb.get_content("IMC_BAJO").title == "IMC bajo"


def test_render_keeps_unknown_placeholders():
    block = ContentBlock(id="X", title="", category="R", template="{a} y {b}")
    assert block.render({"a": 1}) == "1 y {b}"


def test_shipped_library_is_consistent():
    errors = validate_textdb.validate(load_yaml(validate_textdb.CORE), load_yaml(validate_textdb.OVR))
    assert errors == []
    assert set(textdb.FACTOR_METADATA) >= {k.value for k in FactorKey}
    assert textdb.RULES["reference_probability"] == 0.78
    assert [b.id for b in textdb.list_blocks_by_category("R")][:2] == ["BENCHMARK", "BENCHMARK_OTB"]


def test_category_listing_follows_approved_overrides(tmp_path):
    core_path, ovr_path = _write(tmp_path)
    try:
        textdb.reload(core_path, ovr_path)
        assert textdb.list_blocks_by_category("R") == []
        textdb.upsert_override_block("FRASE_NUEVA", {"title": "Frase", "category": "R", "template": "Hola."}, status="draft")
        assert textdb.list_blocks_by_category("R") == []
        textdb.approve_override_block("FRASE_NUEVA")
        assert [b.id for b in textdb.list_blocks_by_category("r")] == ["FRASE_NUEVA"]
        assert [b.id for b in textdb.get_db().list_blocks()] == ["FRASE_NUEVA", "IMC_BAJO"]
    finally:
        textdb.reload()
