import json
from typing import List, Optional

from symptom_assessor.application.schemas import Operation, RequestSpec
from symptom_assessor.domain.models import (
    AssessmentSession,
    ImageAnalysisResult,
    SeveritySignal,
    UserProfile,
)


CAREGIVER_FRAMING = (
    "The respondent is the patient's parent or caregiver, not the patient. "
    "Address every question to the parent or caregiver and refer to the patient as 'your child' "
    "(for example: 'Has your child been feeding normally?')."
)


def build_profile_block(profile: UserProfile) -> str:
    lines = [
        f"Age: {profile.age_label}" + (" (CHILD PATIENT)" if profile.is_child else ""),
        f"Gender: {profile.gender or 'unknown'}",
        f"Reported complaint: {profile.primary_complaint}",
    ]
    return "\n".join(lines)


def _image_findings_block(analysis: ImageAnalysisResult) -> str:
    lines = [
        f"Detected body location: {analysis.body_part.detected}"
        + (f" ({analysis.body_part.laterality})" if analysis.body_part.laterality else ""),
        f"Condition type: {analysis.condition.type}",
        "Characteristics: " + (", ".join(analysis.condition.characteristics) or "none listed"),
        f"Severity: {analysis.severity.value}",
        f"Urgency: {analysis.urgency.level.value} ({analysis.urgency.timeframe})",
    ]
    if analysis.possible_conditions:
        lines.append(
            "Possible conditions: "
            + ", ".join(f"{c.name} ({c.confidence:.0%})" for c in analysis.possible_conditions)
        )
    if analysis.visual_evidence:
        lines.append("Visual evidence: " + "; ".join(analysis.visual_evidence))
    return "\n".join(lines)


def build_image_necessity(profile: UserProfile) -> RequestSpec:
    instructions = f"""Decide whether a photo of the affected area would meaningfully improve the assessment of this patient.

PATIENT:
{build_profile_block(profile)}

GUIDELINES:
1. Request an image only when the complaint is visible on the body surface (skin, rash, wound, swelling, eye redness, burns, bites).
2. Weigh the diagnostic value of a photo against the friction of asking for one; internal symptoms (headache, nausea, cough, fever) do NOT need an image.
3. Flag requires_immediate_care when the complaint suggests an emergency (chest pain, difficulty breathing, stroke signs, severe bleeding).
4. If an image is useful, give short capture instructions (lighting, framing, size reference)."""
    schema = (
        "JSON keys: requires_image (boolean), reason (string), requires_immediate_care (boolean), "
        "capture_instructions (array of strings)."
    )
    return RequestSpec(Operation.IMAGE_NECESSITY, instructions, schema)


def build_image_analysis(
    image: bytes, mime_type: str = "image/jpeg", profile: Optional[UserProfile] = None
) -> RequestSpec:
    parts = ["Analyze the attached image of a visible health concern and report structured findings."]
    if profile is not None:
        parts.append("PATIENT:\n" + build_profile_block(profile))
        parts.append(
            "Explicitly correlate the visual findings with the reported complaint and state whether "
            "they describe the same body area and condition in complaint_correlation."
        )
    parts.append(
        "Describe: anatomical location (and side, if visible), visual characteristics, differential "
        "conditions with confidence, overall confidence, severity, urgency tier, timeframe for care, "
        "and warning signs that would require urgent care."
    )
    schema = (
        "JSON keys: body_part (object: detected (string), laterality ('left' | 'right' | null)), "
        "condition (object: type (string), characteristics (array of strings)), "
        "possible_conditions (array of objects: name (string), confidence (float 0-1)), "
        "confidence (float 0-1), severity (one of 'mild', 'moderate', 'severe'), "
        "urgency (object: level (one of 'self-care', 'see a doctor soon', 'emergency'), timeframe (string), "
        "warning_signs (array of strings)), visual_evidence (array of strings), complaint_correlation (string)."
    )
    return RequestSpec(Operation.IMAGE_ANALYSIS, "\n\n".join(parts), schema, image=image, image_mime_type=mime_type)


def build_condition_match(reported_complaint: str, analysis: ImageAnalysisResult) -> RequestSpec:
    instructions = f"""Check whether the patient's reported complaint and the image findings describe the same body area and condition.

REPORTED COMPLAINT:
{reported_complaint}

IMAGE FINDINGS:
{_image_findings_block(analysis)}

RULES:
1. Compare anatomical location first: different body areas (for example hand vs eye) or different sides (left vs right) are a mismatch.
2. Then compare the kind of condition (for example rash vs cut).
3. Be conservative: when in doubt, report mismatch = true. Missing a mismatch sends the patient down an irrelevant treatment path."""
    schema = "JSON keys: mismatch (boolean), explanation (string)."
    return RequestSpec(Operation.CONDITION_MATCH, instructions, schema)


def build_detailed_analysis(analysis: ImageAnalysisResult, profile: UserProfile) -> RequestSpec:
    instructions = f"""Expand the image findings below into a patient-facing explanation.

PATIENT:
{build_profile_block(profile)}

IMAGE FINDINGS:
{_image_findings_block(analysis)}

Describe the affected area, the visible symptoms, the possible diagnoses (never as certainties), whether professional medical attention is required, the timeframe, and the factors behind that urgency."""
    schema = (
        "JSON keys: affected_area (string), visual_symptoms (array of strings), possible_diagnoses "
        "(array of strings), requires_medical_attention (boolean), timeframe (string), factors (array of strings)."
    )
    return RequestSpec(Operation.DETAILED_ANALYSIS, instructions, schema)


def build_follow_up_questions(session: AssessmentSession) -> RequestSpec:
    profile = session.profile
    focus: List[str]
    if profile.is_child:
        focus = [
            "Duration and pattern of symptoms",
            "Impact on eating, drinking and sleep",
            "Associated symptoms",
            "Remedies the parents have already tried",
            "Exposure to sick contacts",
        ]
    else:
        focus = [
            "Pattern and timing of symptoms",
            "Aggravating and relieving factors",
            "Associated symptoms",
            "Impact on daily activities",
            "Previous treatments tried",
        ]

    parts = [
        f"As a {'pediatrician' if profile.is_child else 'general practitioner'}, generate 3 to 5 specific "
        "diagnostic follow-up questions for this patient.",
        "PATIENT:\n" + build_profile_block(profile),
    ]
    if profile.is_child:
        parts.append("IMPORTANT: This is a pediatric assessment. " + CAREGIVER_FRAMING)
    if session.image_analysis is not None:
        parts.append("IMAGE FINDINGS:\n" + _image_findings_block(session.image_analysis))
    parts.append(
        "REQUIREMENTS:\n"
        f"1. Questions must be tailored to: {profile.primary_complaint}\n"
        "2. Each question must be clear and concise\n"
        "3. Each question must have 3 or 4 mutually exclusive options\n"
        "4. Do not ask about anything already known above\n"
        "5. Focus on:\n" + "\n".join(f"   - {item}" for item in focus)
    )
    schema = (
        "JSON keys: questions (array of objects). Each question object MUST have: id (string, e.g. 'q1'), "
        "question (string), options (array of 3-4 strings)."
    )
    return RequestSpec(Operation.FOLLOW_UP_QUESTIONS, "\n\n".join(parts), schema)


def build_recommendation(session: AssessmentSession, signal: SeveritySignal) -> RequestSpec:
    profile = session.profile
    question_text = {q.id: q.text for q in session.questions}
    answers = "\n".join(
        f"- {question_text.get(qid, qid)}: {answer}" for qid, answer in session.answers.items()
    ) or "- none"

    parts = [
        f"As a {'pediatrician' if profile.is_child else 'medical professional'}, provide SAFE, structured "
        "self-care recommendations for this patient.",
        "PATIENT:\n" + build_profile_block(profile),
        "ASSESSMENT RESPONSES:\n" + answers,
    ]
    if session.image_analysis is not None:
        parts.append("IMAGE FINDINGS:\n" + _image_findings_block(session.image_analysis))
    if session.detailed_analysis is not None:
        parts.append("DETAILED ANALYSIS:\n" + json.dumps(session.detailed_analysis.model_dump(), indent=2))

    if signal.serious:
        parts.append(
            "SERIOUS CONDITION SIGNAL:\n"
            + "\n".join(f"- {reason}" for reason in signal.reasons)
            + "\nDo NOT suggest any over-the-counter medication. Return an empty medications array, set "
            "severity to 'severe', set medical_attention.required to true, and explain where to seek care."
        )
    if profile.is_child:
        parts.append(
            "CRITICAL SAFETY NOTICE:\n"
            f"- This is a{'n INFANT' if profile.is_infant else ' CHILD'} patient aged {profile.age_label}\n"
            "- Medications must be explicitly safe for this age with age-appropriate dosing\n"
            "- Many adult medications are NOT safe for children\n"
            "- When in doubt, recommend professional medical care"
        )
    parts.append(
        "SAFETY REQUIREMENTS:\n"
        "- Only over-the-counter medications, never prescription drugs\n"
        "- If symptoms suggest anything beyond mild severity, recommend professional medical care\n"
        "- Be specific about warning signs that require emergency care"
    )
    schema = (
        "JSON keys: severity (one of 'mild', 'moderate', 'severe'), summary (string), "
        "medical_attention (object: required (boolean), urgency (one of 'self-care', 'see a doctor soon', "
        "'emergency'), timeframe (string), reasons (array of strings)), "
        "medications (array of objects: name, dosage, frequency, duration (strings), warnings (array of strings)), "
        "instructions (string), precautions (array of strings), "
        "alternatives (object: natural_remedies (array of strings), alternative_medications "
        "(array of objects: name, description)), lifestyle (array of strings), "
        "monitoring (object: symptoms_to_track (array of strings), warning_signs (array of strings)), "
        "doctor_visit (object or null: specialist (string), timeframe (string), preparation (array of strings))."
    )
    return RequestSpec(Operation.RECOMMENDATION, "\n\n".join(parts), schema)
