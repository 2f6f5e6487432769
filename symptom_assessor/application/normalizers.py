"""
Coerce raw provider payloads into domain objects.

Each normalizer is pure. Missing optional fields get named defaults; only a
missing or malformed required field raises SchemaViolation, which the
inference client retries on.
"""
import functools
import logging
import math
from typing import Any, Callable, Dict, List, Optional, TypeVar

from pydantic import ValidationError

from symptom_assessor.domain.errors import SchemaViolation
from symptom_assessor.domain.models import (
    AlternativeMedication,
    Alternatives,
    BodyPartFinding,
    ConditionFinding,
    ConditionHypothesis,
    ConditionMatchVerdict,
    DetailedAnalysis,
    DoctorVisit,
    ImageAnalysisResult,
    ImageNecessityDecision,
    MedicalAttention,
    Medication,
    Monitoring,
    Question,
    Recommendation,
    Severity,
    UrgencyAssessment,
    UrgencyLevel,
)


logger = logging.getLogger(__name__)


UNKNOWN = "unknown"
DEFAULT_TIMEFRAME = "monitor at home"
MAX_QUESTIONS = 5
MAX_OPTIONS = 4
MIN_OPTIONS = 3

SEVERITY_ALIASES = {
    "mild": Severity.MILD,
    "low": Severity.MILD,
    "moderate": Severity.MODERATE,
    "medium": Severity.MODERATE,
    "severe": Severity.SEVERE,
    "serious": Severity.SEVERE,
    "high": Severity.SEVERE,
}

URGENCY_ALIASES = {
    "self-care": UrgencyLevel.SELF_CARE,
    "self care": UrgencyLevel.SELF_CARE,
    "routine": UrgencyLevel.SELF_CARE,
    "low": UrgencyLevel.SELF_CARE,
    "see a doctor soon": UrgencyLevel.SEE_DOCTOR_SOON,
    "soon": UrgencyLevel.SEE_DOCTOR_SOON,
    "medium": UrgencyLevel.SEE_DOCTOR_SOON,
    "moderate": UrgencyLevel.SEE_DOCTOR_SOON,
    "emergency": UrgencyLevel.EMERGENCY,
    "urgent": UrgencyLevel.EMERGENCY,
    "high": UrgencyLevel.EMERGENCY,
    "immediate": UrgencyLevel.EMERGENCY,
}

_TRUE = {"true", "yes", "y", "1"}
_FALSE = {"false", "no", "n", "0"}


def _require_object(raw: Any, operation: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise SchemaViolation(f"{operation}: expected a JSON object, got {type(raw).__name__}")
    return raw


def _pick(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _object(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _items(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, (dict, str)):
        return [value]
    return []


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, (list, tuple)):
        value = " ".join(str(v) for v in value if v is not None)
    text = str(value).strip()
    return text or default


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        return [_text(value)] if _text(value) else []
    items = []
    for item in value:
        if isinstance(item, dict):
            item = _pick(item, "name", "text", "description", "value")
        text = _text(item)
        if text:
            items.append(text)
    return items


def _bool(value: Any, field: str, default: Optional[bool] = None) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE:
        return True
    if isinstance(value, str) and value.strip().lower() in _FALSE:
        return False
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if default is None:
        raise SchemaViolation(f"required boolean field '{field}' is missing or invalid: {value!r}")
    return default


def _fraction(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    if number > 1.0 and number <= 100.0:
        number = number / 100.0
    return min(max(number, 0.0), 1.0)


def _severity(value: Any, field: str = "severity") -> Severity:
    key = _text(value).lower()
    if key not in SEVERITY_ALIASES:
        raise SchemaViolation(f"required field '{field}' must be mild, moderate or severe, got {value!r}")
    return SEVERITY_ALIASES[key]


def _urgency(value: Any) -> UrgencyLevel:
    key = _text(value).lower().replace("_", " ")
    if key and key not in URGENCY_ALIASES:
        logger.debug("Unknown urgency %r; defaulting to self-care", value)
    return URGENCY_ALIASES.get(key, UrgencyLevel.SELF_CARE)


def _build(model, operation: str, **fields):
    try:
        return model(**fields)
    except ValidationError as e:
        raise SchemaViolation(f"{operation}: {e}") from e


_N = TypeVar("_N", bound=Callable[..., Any])


def _schema_guard(func: _N) -> _N:
    """Report any nested model that rejects its fields as a SchemaViolation."""
    operation = func.__name__.replace("normalize_", "")

    @functools.wraps(func)
    def wrapper(raw: Any) -> Any:
        try:
            return func(raw)
        except ValidationError as e:
            raise SchemaViolation(f"{operation}: {e}") from e

    return wrapper  # type: ignore[return-value]


@_schema_guard
def normalize_image_necessity(raw: Any) -> ImageNecessityDecision:
    data = _require_object(raw, "image_necessity")
    return _build(
        ImageNecessityDecision,
        "image_necessity",
        requires_image=_bool(
            _pick(data, "requires_image", "requiresImage", "requiresVisualInspection"), "requires_image"
        ),
        reason=_text(_pick(data, "reason", "explanation")),
        requires_immediate_care=_bool(
            _pick(data, "requires_immediate_care", "requiresImmediateMedical"), "requires_immediate_care", False
        ),
        capture_instructions=_string_list(_pick(data, "capture_instructions", "recommendedActions")),
    )


@_schema_guard
def normalize_image_analysis(raw: Any) -> ImageAnalysisResult:
    data = _require_object(raw, "image_analysis")

    body_part_raw = _pick(data, "body_part", "bodyPart", "location")
    if isinstance(body_part_raw, str):
        body_part_raw = {"detected": body_part_raw}
    body_part_raw = _object(body_part_raw)
    side = _text(_pick(body_part_raw, "laterality", "side")).lower()

    condition_raw = _pick(data, "condition")
    if isinstance(condition_raw, str):
        condition_raw = {"type": condition_raw}
    condition_raw = _object(condition_raw)

    hypotheses = []
    for item in _items(_pick(data, "possible_conditions", "possibleConditions", "differential")):
        if isinstance(item, str):
            item = {"name": item}
        item = _object(item)
        name = _text(item.get("name"))
        if name:
            hypotheses.append(ConditionHypothesis(name=name, confidence=_fraction(item.get("confidence"))))

    urgency_raw = _pick(data, "urgency")
    if isinstance(urgency_raw, str):
        urgency_raw = {"level": urgency_raw}
    urgency_raw = _object(urgency_raw)

    return _build(
        ImageAnalysisResult,
        "image_analysis",
        body_part=BodyPartFinding(
            detected=_text(_pick(body_part_raw, "detected", "name"), UNKNOWN),
            laterality=side if side in ("left", "right") else None,
        ),
        condition=ConditionFinding(
            type=_text(_pick(condition_raw, "type", "name"), UNKNOWN),
            characteristics=_string_list(_pick(condition_raw, "characteristics")),
        ),
        possible_conditions=hypotheses,
        confidence=_fraction(_pick(data, "confidence")),
        severity=_severity(_pick(data, "severity")),
        urgency=UrgencyAssessment(
            level=_urgency(_pick(urgency_raw, "level", "tier")),
            timeframe=_text(_pick(urgency_raw, "timeframe"), DEFAULT_TIMEFRAME),
            warning_signs=_string_list(_pick(urgency_raw, "warning_signs", "warningSigns"))
            or _string_list(_pick(data, "warning_signs", "warningSigns")),
        ),
        visual_evidence=_string_list(_pick(data, "visual_evidence", "visualEvidence", "symptoms")),
        complaint_correlation=_text(_pick(data, "complaint_correlation", "correlation")),
    )


@_schema_guard
def normalize_condition_match(raw: Any) -> ConditionMatchVerdict:
    data = _require_object(raw, "condition_match")
    return _build(
        ConditionMatchVerdict,
        "condition_match",
        mismatch=_bool(_pick(data, "mismatch", "isMismatch"), "mismatch"),
        explanation=_text(_pick(data, "explanation", "reason")),
    )


@_schema_guard
def normalize_detailed_analysis(raw: Any) -> DetailedAnalysis:
    data = _require_object(raw, "detailed_analysis")
    # Some models nest everything under "analysis"
    if isinstance(data.get("analysis"), dict):
        data = data["analysis"]
    return _build(
        DetailedAnalysis,
        "detailed_analysis",
        affected_area=_text(_pick(data, "affected_area", "affectedArea")),
        visual_symptoms=_string_list(_pick(data, "visual_symptoms", "visualSymptoms")),
        possible_diagnoses=_string_list(_pick(data, "possible_diagnoses", "possibleDiagnoses")),
        requires_medical_attention=_bool(
            _pick(data, "requires_medical_attention", "requiresMedicalAttention"), "requires_medical_attention", False
        ),
        timeframe=_text(_pick(data, "timeframe"), DEFAULT_TIMEFRAME),
        factors=_string_list(_pick(data, "factors")),
    )


@_schema_guard
def normalize_follow_up_questions(raw: Any) -> List[Question]:
    if isinstance(raw, dict):
        raw = raw.get("questions")
    if not isinstance(raw, list) or not raw:
        raise SchemaViolation("follow_up_questions: 'questions' must be a non-empty array")

    questions: List[Question] = []
    seen_ids = set()
    for item in raw:
        item = _object(item)
        text = _text(_pick(item, "question", "text"))
        options = list(dict.fromkeys(_string_list(item.get("options"))))[:MAX_OPTIONS]
        if not text or len(options) < MIN_OPTIONS:
            logger.debug("Dropping malformed question: %r", item)
            continue
        qid = _text(item.get("id"))
        counter = len(questions) + 1
        while not qid or qid in seen_ids:
            qid = f"q{counter}"
            counter += 1
        seen_ids.add(qid)
        questions.append(Question(id=qid, text=text, options=options))
        if len(questions) == MAX_QUESTIONS:
            break

    if not questions:
        raise SchemaViolation("follow_up_questions: no question had text and 3-4 options")
    return questions


@_schema_guard
def normalize_recommendation(raw: Any) -> Recommendation:
    data = _require_object(raw, "recommendation")

    attention_raw = _object(_pick(data, "medical_attention", "medicalAttention"))
    medications = []
    for item in _items(_pick(data, "medications")):
        if isinstance(item, str):
            item = {"name": item}
        item = _object(item)
        name = _text(item.get("name"))
        if not name:
            continue
        medications.append(
            Medication(
                name=name,
                dosage=_text(item.get("dosage")),
                frequency=_text(item.get("frequency")),
                duration=_text(item.get("duration")),
                warnings=_string_list(item.get("warnings")),
            )
        )

    alternatives_raw = _object(_pick(data, "alternatives"))
    alternative_medications = []
    for item in _items(_pick(alternatives_raw, "alternative_medications", "alternativeMedications")):
        if isinstance(item, str):
            item = {"name": item}
        item = _object(item)
        name = _text(item.get("name"))
        if name:
            alternative_medications.append(
                AlternativeMedication(name=name, description=_text(_pick(item, "description", "context")))
            )

    monitoring_raw = _object(_pick(data, "monitoring"))
    doctor_raw = _pick(data, "doctor_visit", "doctorVisit")
    doctor_visit = None
    if isinstance(doctor_raw, dict) and doctor_raw:
        doctor_visit = DoctorVisit(
            specialist=_text(_pick(doctor_raw, "specialist", "doctorType"), "General Practitioner"),
            timeframe=_text(doctor_raw.get("timeframe")),
            preparation=_string_list(_pick(doctor_raw, "preparation", "preparationInstructions")),
        )

    return _build(
        Recommendation,
        "recommendation",
        severity=_severity(_pick(data, "severity")),
        summary=_text(_pick(data, "summary", "description")),
        medical_attention=MedicalAttention(
            required=_bool(_pick(attention_raw, "required"), "medical_attention.required", False),
            urgency=_urgency(_pick(attention_raw, "urgency", "urgencyLevel")),
            timeframe=_text(_pick(attention_raw, "timeframe"), DEFAULT_TIMEFRAME),
            reasons=_string_list(_pick(attention_raw, "reasons")),
        ),
        medications=medications,
        instructions=_text(_pick(data, "instructions")),
        precautions=_string_list(_pick(data, "precautions")),
        alternatives=Alternatives(
            natural_remedies=_string_list(_pick(alternatives_raw, "natural_remedies", "naturalRemedies")),
            alternative_medications=alternative_medications,
        ),
        lifestyle=_string_list(_pick(data, "lifestyle")),
        monitoring=Monitoring(
            symptoms_to_track=_string_list(_pick(monitoring_raw, "symptoms_to_track", "symptomsToTrack")),
            warning_signs=_string_list(_pick(monitoring_raw, "warning_signs", "warningSigns"))
            or _string_list(_pick(data, "seekHelp", "seek_help")),
        ),
        doctor_visit=doctor_visit,
    )
