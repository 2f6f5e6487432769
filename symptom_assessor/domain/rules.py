import re
from typing import List, Optional, Set

from .models import (
    AssessmentSession,
    ConditionMatchVerdict,
    ImageAnalysisResult,
    MedicalAttention,
    Recommendation,
    Severity,
    SeveritySignal,
    UrgencyLevel,
    UserProfile,
)


SERIOUS_CONDITIONS = {
    "chest pain",
    "difficulty breathing",
    "shortness of breath",
    "severe pain",
    "head injury",
    "stroke",
    "seizure",
    "heart attack",
    "severe allergic reaction",
    "anaphylaxis",
    "severe bleeding",
    "loss of consciousness",
    "suspected fracture",
    "severe burns",
    "poisoning",
    "overdose",
}

# Pain relief can mask these, so it is never suggested for them
PAIN_RELIEF_MASKING = {"head injury", "internal bleeding", "stomach pain", "abdominal pain", "appendicitis"}

ANATOMICAL_GROUPS = {
    "head_and_face": {
        "head", "scalp", "forehead", "temple", "face", "facial", "cheek", "cheeks", "nose", "nostril",
        "lip", "lips", "mouth", "tongue", "jaw", "chin", "ear", "ears", "eye", "eyes", "eyelid", "eyelids",
    },
    "neck": {"neck", "throat"},
    "chest": {"chest", "breast", "breasts", "rib", "ribs"},
    "abdomen": {"abdomen", "abdominal", "stomach", "belly", "navel"},
    "back": {"back", "spine", "shoulder blade"},
    "upper_limb": {
        "arm", "arms", "elbow", "elbows", "forearm", "wrist", "wrists", "shoulder", "shoulders",
        "hand", "hands", "palm", "palms", "finger", "fingers", "thumb", "knuckle", "knuckles", "fingernail",
    },
    "lower_limb": {
        "leg", "legs", "knee", "knees", "thigh", "thighs", "shin", "calf", "calves", "hip", "hips",
        "ankle", "ankles", "foot", "feet", "toe", "toes", "heel", "heels", "sole", "toenail",
    },
    "groin": {"groin", "genital", "genitals", "buttock", "buttocks"},
}

EMERGENCY_GUIDELINES = [
    "Seek immediate emergency care",
    "Call emergency services immediately if the condition worsens",
    "Have someone stay with you until medical help arrives",
]

PAIN_RELIEF_WARNING = (
    "Do NOT take pain medication before you are evaluated; it may mask important symptoms."
)

CHILD_CONSULT_INSTRUCTION = (
    "For children of this age, please consult a healthcare provider for proper evaluation and treatment."
)


def _words(text: str) -> List[str]:
    return re.findall(r"[a-z]+", (text or "").lower())


def anatomical_groups(text: str) -> Set[str]:
    words = _words(text)
    joined = f" {' '.join(words)} "
    found = set()
    for group, keywords in ANATOMICAL_GROUPS.items():
        for keyword in keywords:
            if f" {keyword} " in joined:
                found.add(group)
                break
    return found


def laterality(text: str) -> Optional[str]:
    words = set(_words(text))
    sides = {side for side in ("left", "right") if side in words}
    if len(sides) == 1:
        return sides.pop()
    return None


def _mentions_any(text: str, phrases: Set[str]) -> List[str]:
    lowered = f" {' '.join(_words(text))} "
    return sorted(p for p in phrases if f" {p} " in lowered)


def reconcile_condition_match(
    verdict: ConditionMatchVerdict, complaint: str, analysis: ImageAnalysisResult
) -> ConditionMatchVerdict:
    """Force a mismatch when the complaint and the image name different body areas or sides."""
    if verdict.mismatch:
        return verdict

    detected = " ".join(filter(None, [analysis.body_part.laterality, analysis.body_part.detected]))
    reported_groups = anatomical_groups(complaint)
    detected_groups = anatomical_groups(detected)
    if reported_groups and detected_groups and not reported_groups & detected_groups:
        return ConditionMatchVerdict(
            mismatch=True,
            explanation=(
                f"The reported area ({', '.join(sorted(reported_groups))}) differs from the area shown "
                f"in the image ({', '.join(sorted(detected_groups))}). {verdict.explanation}"
            ).strip(),
        )

    reported_side = laterality(complaint)
    detected_side = laterality(detected)
    if reported_side and detected_side and reported_side != detected_side:
        return ConditionMatchVerdict(
            mismatch=True,
            explanation=(
                f"The complaint mentions the {reported_side} side but the image shows the {detected_side} side. "
                f"{verdict.explanation}"
            ).strip(),
        )
    return verdict


def evaluate_severity_signal(session: AssessmentSession) -> SeveritySignal:
    reasons: List[str] = []

    if session.profile:
        for condition in _mentions_any(session.profile.primary_complaint, SERIOUS_CONDITIONS):
            reasons.append(f"reported complaint suggests {condition}")

    if session.image_decision and session.image_decision.requires_immediate_care:
        reasons.append("initial triage flagged immediate care")

    analysis = session.image_analysis
    if analysis:
        if analysis.severity == Severity.SEVERE:
            reasons.append("image analysis rated the condition severe")
        if analysis.urgency.level == UrgencyLevel.EMERGENCY:
            reasons.append("image analysis rated the condition an emergency")

    if session.detailed_analysis and session.detailed_analysis.requires_medical_attention:
        reasons.append("detailed analysis requires medical attention")

    return SeveritySignal(serious=bool(reasons), reasons=reasons)


def pain_relief_allowed(complaint: str) -> bool:
    return not _mentions_any(complaint, PAIN_RELIEF_MASKING)


def apply_safety_overrides(
    recommendation: Recommendation, profile: UserProfile, signal: SeveritySignal
) -> Recommendation:
    rec = recommendation.model_copy(deep=True)

    if signal.serious:
        rec.medications = []
        rec.severity = Severity.SEVERE
        rec.medical_attention = MedicalAttention(
            required=True,
            urgency=UrgencyLevel.EMERGENCY
            if rec.medical_attention.urgency == UrgencyLevel.EMERGENCY
            else UrgencyLevel.SEE_DOCTOR_SOON,
            timeframe=rec.medical_attention.timeframe
            if rec.medical_attention.required
            else "as soon as possible",
            reasons=list(dict.fromkeys(rec.medical_attention.reasons + signal.reasons)),
        )

    if profile.is_child and rec.severity != Severity.MILD:
        rec.medications = []
        rec.instructions = CHILD_CONSULT_INSTRUCTION
        rec.medical_attention.required = True
        if rec.medical_attention.urgency == UrgencyLevel.SELF_CARE:
            rec.medical_attention.urgency = UrgencyLevel.SEE_DOCTOR_SOON

    if not pain_relief_allowed(profile.primary_complaint) and PAIN_RELIEF_WARNING not in rec.precautions:
        rec.precautions.append(PAIN_RELIEF_WARNING)

    if rec.severity == Severity.SEVERE:
        for guideline in EMERGENCY_GUIDELINES:
            if guideline not in rec.monitoring.warning_signs:
                rec.monitoring.warning_signs.append(guideline)

    return rec
