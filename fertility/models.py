# -*- coding: utf-8 -*-
"""
Data model of the calculation engine.

All records are frozen dataclasses: an evaluation is produced once per request and
never edited afterwards. Optional clinical values are ``None`` when not recorded,
never a sentinel number, so "absent" and "clinically zero" stay distinguishable.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from .util import to_bool, to_float


class FactorKey(str, Enum):
    """Every multiplier of the model. Order = evaluation and product order."""

    BMI = "bmi"
    CYCLE = "cycle"
    PCOS = "pcos"
    ENDOMETRIOSIS = "endometriosis"
    MYOMA = "myoma"
    ADENOMYOSIS = "adenomyosis"
    POLYP = "polyp"
    HSG = "hsg"
    OTB = "otb"
    AMH = "amh"
    PROLACTIN = "prolactin"
    TSH = "tsh"
    TPO = "tpo"
    HOMA = "homa"
    MALE = "male"
    INFERTILITY_DURATION = "infertility_duration"
    PELVIC_SURGERY = "pelvic_surgery"

    @classmethod
    def parse(cls, value: Any) -> "FactorKey":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            raise ValueError(f"Factor desconocido: {value!r}") from None


class MyomaType(str, Enum):
    NONE = "none"
    SUBMUCOSAL = "submucosal"
    INTRAMURAL_LARGE = "intramural_large"
    SUBSEROSAL = "subserosal"


class AdenomyosisType(str, Enum):
    NONE = "none"
    FOCAL = "focal"
    DIFFUSE = "diffuse"


class PolypType(str, Enum):
    NONE = "none"
    SMALL = "small"
    LARGE = "large"
    OSTIUM = "ostium"


class HsgResult(str, Enum):
    UNKNOWN = "unknown"
    NORMAL = "normal"
    UNILATERAL = "unilateral"
    BILATERAL = "bilateral"
    MALFORMATION = "malformation"

    @classmethod
    def _missing_(cls, value: object) -> Optional["HsgResult"]:
        # older saved cases use the Spanish spelling
        if value in ("malformacion", "defecto_uterino"):
            return cls.MALFORMATION
        return None


class OtbMethod(str, Enum):
    UNKNOWN = "unknown"
    CLIPS = "clips"
    RINGS = "rings"
    LIGATION = "ligation"
    EXTENSIVE_CAUTERIZATION = "extensive_cauterization"
    PARTIAL_SALPINGECTOMY = "partial_salpingectomy"


E = TypeVar("E", bound=Enum)


def parse_enum(cls: Type[E], value: Any, default: E) -> E:
    if value is None:
        return default
    if isinstance(value, cls):
        return value
    try:
        return cls(str(value).strip().lower())
    except ValueError:
        return default


def _plain(v: Any) -> Any:
    """JSON-safe primitive view of model values (enums -> value, tuples -> list)."""
    if isinstance(v, Enum):
        return v.value
    if isinstance(v, float):
        return v if math.isfinite(v) else None
    if isinstance(v, (list, tuple)):
        return [_plain(x) for x in v]
    if isinstance(v, dict):
        return {str(k.value if isinstance(k, Enum) else k): _plain(x) for k, x in v.items()}
    if hasattr(v, "to_dict"):
        return v.to_dict()
    return v


def _record_to_dict(obj: Any) -> Dict[str, Any]:
    return {f.name: _plain(getattr(obj, f.name)) for f in fields(obj)}


# ---------------------------
# Input
# ---------------------------

# camelCase keys of older exports -> field names
_INPUT_ALIASES = {
    "cycleDuration": "cycle_duration",
    "infertilityDuration": "infertility_duration",
    "hasPcos": "has_pcos",
    "endometriosisGrade": "endometriosis_grade",
    "myomaType": "myoma_type",
    "adenomyosisType": "adenomyosis_type",
    "polypType": "polyp_type",
    "hsgResult": "hsg_result",
    "hasOtb": "has_otb",
    "otbMethod": "otb_method",
    "remainingTubalLength": "remaining_tubal_length",
    "hasOtherInfertilityFactors": "has_other_infertility_factors",
    "hasPelvicSurgery": "has_pelvic_surgery",
    "pelvicSurgeriesNumber": "pelvic_surgeries_number",
    "tpoAbPositive": "tpo_ab_positive",
    "homaIr": "homa_ir",
    "spermConcentration": "sperm_concentration",
    "spermProgressiveMotility": "sperm_progressive_motility",
    "spermNormalMorphology": "sperm_normal_morphology",
    "heightCm": "height_cm",
    "weightKg": "weight_kg",
}

_FLOAT_FIELDS = (
    "age", "bmi", "height_cm", "weight_kg", "cycle_duration", "infertility_duration",
    "remaining_tubal_length", "amh", "prolactin", "tsh", "homa_ir", "glucose", "insulin",
    "sperm_concentration", "sperm_progressive_motility", "sperm_normal_morphology",
)


@dataclass(frozen=True)
class UserInput:
    age: Optional[float]
    bmi: Optional[float] = None
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None
    cycle_duration: Optional[float] = None
    infertility_duration: Optional[float] = None

    # Gynecological history
    has_pcos: bool = False
    endometriosis_grade: Optional[int] = None
    myoma_type: MyomaType = MyomaType.NONE
    adenomyosis_type: AdenomyosisType = AdenomyosisType.NONE
    polyp_type: PolypType = PolypType.NONE
    hsg_result: HsgResult = HsgResult.UNKNOWN
    has_otb: bool = False
    otb_method: OtbMethod = OtbMethod.UNKNOWN
    remaining_tubal_length: Optional[float] = None
    has_other_infertility_factors: Optional[bool] = None
    has_pelvic_surgery: bool = False
    pelvic_surgeries_number: Optional[int] = None

    # Labs
    amh: Optional[float] = None
    prolactin: Optional[float] = None
    tsh: Optional[float] = None
    tpo_ab_positive: Optional[bool] = None
    homa_ir: Optional[float] = None
    glucose: Optional[float] = None
    insulin: Optional[float] = None

    # Semen analysis
    sperm_concentration: Optional[float] = None
    sperm_progressive_motility: Optional[float] = None
    sperm_normal_morphology: Optional[float] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "UserInput":
        """Tolerant parsing of form/JSON dicts. Unknown keys are ignored."""
        data = {_INPUT_ALIASES.get(k, k): v for k, v in (d or {}).items()}
        kw: Dict[str, Any] = {name: to_float(data.get(name)) for name in _FLOAT_FIELDS}

        grade = to_float(data.get("endometriosis_grade"))
        surgeries = to_float(data.get("pelvic_surgeries_number"))
        kw["endometriosis_grade"] = int(round(grade)) if grade is not None else None
        kw["pelvic_surgeries_number"] = int(round(surgeries)) if surgeries is not None else None

        kw["has_pcos"] = bool(to_bool(data.get("has_pcos")))
        kw["has_otb"] = bool(to_bool(data.get("has_otb")))
        kw["has_pelvic_surgery"] = bool(to_bool(data.get("has_pelvic_surgery")))
        kw["tpo_ab_positive"] = to_bool(data.get("tpo_ab_positive"))
        kw["has_other_infertility_factors"] = to_bool(data.get("has_other_infertility_factors"))

        kw["myoma_type"] = parse_enum(MyomaType, data.get("myoma_type"), MyomaType.NONE)
        kw["adenomyosis_type"] = parse_enum(AdenomyosisType, data.get("adenomyosis_type"), AdenomyosisType.NONE)
        kw["polyp_type"] = parse_enum(PolypType, data.get("polyp_type"), PolypType.NONE)
        kw["hsg_result"] = parse_enum(HsgResult, data.get("hsg_result"), HsgResult.UNKNOWN)
        kw["otb_method"] = parse_enum(OtbMethod, data.get("otb_method"), OtbMethod.UNKNOWN)
        return cls(**kw)

    def to_dict(self) -> Dict[str, Any]:
        return _record_to_dict(self)


# ---------------------------
# Factors / Diagnostics
# ---------------------------

@dataclass(frozen=True)
class Factors:
    """Baseline percentage plus one multiplier per FactorKey (1.0 = neutral)."""

    base_age_probability: float = 0.0
    bmi: float = 1.0
    cycle: float = 1.0
    pcos: float = 1.0
    endometriosis: float = 1.0
    myoma: float = 1.0
    adenomyosis: float = 1.0
    polyp: float = 1.0
    hsg: float = 1.0
    otb: float = 1.0
    amh: float = 1.0
    prolactin: float = 1.0
    tsh: float = 1.0
    tpo: float = 1.0
    homa: float = 1.0
    male: float = 1.0
    infertility_duration: float = 1.0
    pelvic_surgery: float = 1.0

    def get(self, key: FactorKey) -> float:
        return float(getattr(self, FactorKey.parse(key).value))

    def with_factor(self, key: FactorKey, value: float) -> "Factors":
        return replace(self, **{FactorKey.parse(key).value: float(value)})

    def multipliers(self) -> Dict[FactorKey, float]:
        return {k: float(getattr(self, k.value)) for k in FactorKey}

    def product(self) -> float:
        out = 1.0
        for v in self.multipliers().values():
            out *= v
        return out

    def suboptimal(self) -> List[FactorKey]:
        return [k for k, v in self.multipliers().items() if v < 1.0]

    def to_dict(self) -> Dict[str, Any]:
        return _record_to_dict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Factors":
        kw: Dict[str, float] = {}
        for f in fields(cls):
            if f.name in d and d[f.name] is not None:
                kw[f.name] = float(d[f.name])
        return cls(**kw)


@dataclass(frozen=True)
class Diagnostics:
    age_potential: str = ""
    bmi_comment: str = ""
    cycle_comment: str = ""
    pcos_severity: str = "No aplica"
    endometriosis_comment: str = ""
    myoma_comment: str = ""
    adenomyosis_comment: str = ""
    polyp_comment: str = ""
    hsg_comment: str = ""
    otb_comment: str = ""
    ovarian_reserve: str = "Evaluación no realizada"
    prolactin_comment: str = ""
    tsh_comment: str = ""
    tpo_comment: str = ""
    homa_comment: str = ""
    infertility_comment: str = ""
    pelvic_surgery_comment: str = ""
    male_factor_detailed: str = "Normal o sin datos"
    homa_calculated: Optional[float] = None
    otb_recanalization_score: Optional[float] = None
    missing_data: Tuple[str, ...] = ()
    anomalies: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return _record_to_dict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Diagnostics":
        names = {f.name for f in fields(cls)}
        kw = {k: v for k, v in d.items() if k in names}
        kw["missing_data"] = tuple(d.get("missing_data") or ())
        kw["anomalies"] = tuple(d.get("anomalies") or ())
        return cls(**kw)


@dataclass(frozen=True)
class FactorResult:
    """Partial output of one evaluator. factor=None keeps the neutral default."""

    factor: Optional[float] = None
    comments: Mapping[str, Any] = field(default_factory=dict)
    missing: Tuple[str, ...] = ()
    anomalies: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "comments", MappingProxyType(dict(self.comments)))


# ---------------------------
# Report
# ---------------------------

@dataclass(frozen=True)
class ClinicalFinding:
    key: str
    factor: str
    title: str
    definition: str
    justification: str
    recommendations: Tuple[str, ...] = ()
    sources: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return _record_to_dict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ClinicalFinding":
        return cls(
            key=str(d.get("key", "")),
            factor=str(d.get("factor", "")),
            title=str(d.get("title", "")),
            definition=str(d.get("definition", "")),
            justification=str(d.get("justification", "")),
            recommendations=tuple(d.get("recommendations") or ()),
            sources=tuple(d.get("sources") or ()),
        )


@dataclass(frozen=True)
class Report:
    numeric_prognosis: float
    category: str  # "BUENO" | "MODERADO" | "BAJO" | "ERROR"
    emoji: str
    prognosis_phrase: str
    benchmark_phrase: str
    twelve_month_probability: Optional[float] = None
    clinical_insights: Tuple[ClinicalFinding, ...] = ()
    recommendations: Tuple[str, ...] = ()
    missing_data: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return _record_to_dict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Report":
        twelve = d.get("twelve_month_probability")
        return cls(
            numeric_prognosis=float(d.get("numeric_prognosis") or 0.0),
            category=str(d.get("category", "")),
            emoji=str(d.get("emoji", "")),
            prognosis_phrase=str(d.get("prognosis_phrase", "")),
            benchmark_phrase=str(d.get("benchmark_phrase", "")),
            twelve_month_probability=float(twelve) if twelve is not None else None,
            clinical_insights=tuple(ClinicalFinding.from_dict(x) for x in (d.get("clinical_insights") or ())),
            recommendations=tuple(d.get("recommendations") or ()),
            missing_data=tuple(d.get("missing_data") or ()),
        )


@dataclass(frozen=True)
class EvaluationState:
    input: UserInput
    factors: Factors
    diagnostics: Diagnostics
    report: Report

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input": self.input.to_dict(),
            "factors": self.factors.to_dict(),
            "diagnostics": self.diagnostics.to_dict(),
            "report": self.report.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "EvaluationState":
        return cls(
            input=UserInput.from_dict(d["input"]),
            factors=Factors.from_dict(d["factors"]),
            diagnostics=Diagnostics.from_dict(d["diagnostics"]),
            report=Report.from_dict(d["report"]),
        )


ALL_FACTORS = "all"


@dataclass(frozen=True)
class SimulationResult:
    factor: str  # FactorKey value or "all"
    explanation: str
    original_prognosis: float
    new_prognosis: float
    improvement: float
    impact_level: str = "low"
    timeframe: str = "Variable"
    difficulty: str = "moderate"
    cost: str = "medium"
    evidence: str = "Clinical assessment"
    recommendations: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return _record_to_dict(self)


@dataclass(frozen=True)
class TreatmentSuggestion:
    key: str
    category: str  # "Alta Complejidad" | "Baja Complejidad" | "Optimización Médica" | "Estudio Adicional"
    title: str
    details: str
    confidence: int  # 0-100
    urgency: str  # "low" | "moderate" | "high" | "critical"
    evidence_level: str  # "A".."D"
    recommendations: Tuple[str, ...] = ()
    sources: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return _record_to_dict(self)


def unique(items: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for x in items:
        if x in seen:
            continue
        seen.add(x)
        out.append(x)
    return out
