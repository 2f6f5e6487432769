from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class AgeUnit(str, Enum):
    YEARS = "years"
    MONTHS = "months"


class Severity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class UrgencyLevel(str, Enum):
    # Ordered from least to most urgent
    SELF_CARE = "self-care"
    SEE_DOCTOR_SOON = "see a doctor soon"
    EMERGENCY = "emergency"


class UserProfile(BaseModel):
    age: int = Field(..., ge=0, le=120)
    age_unit: AgeUnit = AgeUnit.YEARS
    gender: str = Field("Prefer not to say", description="Male/Female/Other/Prefer not to say")
    primary_complaint: str

    @field_validator("primary_complaint")
    @classmethod
    def validate_complaint(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("primary complaint must not be empty")
        return v

    @property
    def is_child(self) -> bool:
        return self.age_unit == AgeUnit.MONTHS or self.age < 12

    @property
    def is_infant(self) -> bool:
        return self.age_unit == AgeUnit.MONTHS and self.age < 24

    @property
    def age_label(self) -> str:
        return f"{self.age} {self.age_unit.value}"

    def with_complaint(self, complaint: str) -> "UserProfile":
        """Copy of this profile whose complaint was corrected from an image finding."""
        return self.model_copy(update={"primary_complaint": complaint.strip()})


class ImageNecessityDecision(BaseModel):
    requires_image: bool
    reason: str = ""
    requires_immediate_care: bool = False
    capture_instructions: List[str] = []


class BodyPartFinding(BaseModel):
    detected: str = "unknown"
    laterality: Optional[str] = None


class ConditionFinding(BaseModel):
    type: str = "unknown"
    characteristics: List[str] = []


class ConditionHypothesis(BaseModel):
    name: str
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class UrgencyAssessment(BaseModel):
    level: UrgencyLevel = UrgencyLevel.SELF_CARE
    timeframe: str = "monitor at home"
    warning_signs: List[str] = []


class ImageAnalysisResult(BaseModel):
    body_part: BodyPartFinding = BodyPartFinding()
    condition: ConditionFinding = ConditionFinding()
    possible_conditions: List[ConditionHypothesis] = []
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    severity: Severity
    urgency: UrgencyAssessment = UrgencyAssessment()
    visual_evidence: List[str] = []
    complaint_correlation: str = ""

    @property
    def condition_label(self) -> str:
        location = self.body_part.detected
        if self.body_part.laterality and self.body_part.laterality.lower() not in location.lower():
            location = f"{self.body_part.laterality} {location}"
        return f"{self.condition.type} on {location}"


class DetailedAnalysis(BaseModel):
    affected_area: str = ""
    visual_symptoms: List[str] = []
    possible_diagnoses: List[str] = []
    requires_medical_attention: bool = False
    timeframe: str = "monitor at home"
    factors: List[str] = []


class ConditionMatchVerdict(BaseModel):
    mismatch: bool
    explanation: str = ""


class Question(BaseModel):
    id: str
    text: str
    options: List[str] = Field(..., min_length=3, max_length=4)


class Medication(BaseModel):
    name: str
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    warnings: List[str] = []


class AlternativeMedication(BaseModel):
    name: str
    description: str = ""


class Alternatives(BaseModel):
    natural_remedies: List[str] = []
    alternative_medications: List[AlternativeMedication] = []


class MedicalAttention(BaseModel):
    required: bool = False
    urgency: UrgencyLevel = UrgencyLevel.SELF_CARE
    timeframe: str = "monitor at home"
    reasons: List[str] = []


class Monitoring(BaseModel):
    symptoms_to_track: List[str] = []
    warning_signs: List[str] = []


class DoctorVisit(BaseModel):
    specialist: str = "General Practitioner"
    timeframe: str = ""
    preparation: List[str] = []


class Recommendation(BaseModel):
    severity: Severity
    summary: str = ""
    medical_attention: MedicalAttention = MedicalAttention()
    medications: List[Medication] = []
    instructions: str = ""
    precautions: List[str] = []
    alternatives: Alternatives = Alternatives()
    lifestyle: List[str] = []
    monitoring: Monitoring = Monitoring()
    doctor_visit: Optional[DoctorVisit] = None


class AssessmentState(str, Enum):
    START = "start"
    AWAITING_IMAGE_DECISION = "awaiting_image_decision"
    AWAITING_IMAGE = "awaiting_image"
    AWAITING_MISMATCH_RESOLUTION = "awaiting_mismatch_resolution"
    AWAITING_QUESTIONS = "awaiting_questions"
    AWAITING_RECOMMENDATION = "awaiting_recommendation"
    COMPLETED = "completed"


class MismatchChoice(str, Enum):
    USE_IMAGE_CONDITION = "use_image_condition"
    COMBINE_CONDITIONS = "combine_conditions"
    KEEP_REPORTED = "keep_reported"
    RETAKE_IMAGE = "retake_image"


class AssessmentSession(BaseModel):
    """Root aggregate for one assessment. Only the orchestrator mutates it."""

    state: AssessmentState = AssessmentState.START
    generation: int = 0
    profile: Optional[UserProfile] = None
    reported_complaint: Optional[str] = None
    image_decision: Optional[ImageNecessityDecision] = None
    image_analysis: Optional[ImageAnalysisResult] = None
    condition_match: Optional[ConditionMatchVerdict] = None
    detailed_analysis: Optional[DetailedAnalysis] = None
    image_skipped: bool = False
    questions: List[Question] = []
    answers: Dict[str, str] = {}
    recommendation: Optional[Recommendation] = None


class SeveritySignal(BaseModel):
    serious: bool = False
    reasons: List[str] = []
