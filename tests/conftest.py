import json

import pytest

from symptom_assessor.application.inference import InferenceClient
from symptom_assessor.application.orchestrator import AssessmentOrchestrator
from symptom_assessor.application.schemas import Operation
from symptom_assessor.domain.models import UserProfile
from symptom_assessor.infrastructure.credentials import CredentialPool


KEYS = ["A" * 32, "B" * 32, "C" * 32]

QUESTIONS = {
    "questions": [
        {"id": "q1", "question": "How long have you had this?", "options": ["Hours", "Days", "Weeks"]},
        {"id": "q2", "question": "How bad is it?", "options": ["Mild", "Moderate", "Severe"]},
        {"id": "q3", "question": "Does light make it worse?", "options": ["Yes", "No", "Not sure"]},
    ]
}

HAND_RASH = {
    "body_part": {"detected": "hand", "laterality": "left"},
    "condition": {"type": "rash", "characteristics": ["red", "raised"]},
    "possible_conditions": [{"name": "Contact dermatitis", "confidence": 0.7}],
    "confidence": 0.8,
    "severity": "mild",
    "urgency": {"level": "self-care", "timeframe": "monitor at home", "warning_signs": ["spreading"]},
    "visual_evidence": ["red patches on the back of the hand"],
    "complaint_correlation": "matches the reported rash",
}

RECOMMENDATION = {
    "severity": "mild",
    "summary": "Likely a tension headache.",
    "medical_attention": {"required": False, "urgency": "self-care", "timeframe": "monitor at home"},
    "medications": [
        {"name": "Paracetamol", "dosage": "500 mg", "frequency": "every 6 hours", "duration": "2 days"}
    ],
    "instructions": "Take with water.",
    "precautions": ["Do not exceed 4 g per day"],
    "alternatives": {"natural_remedies": ["Rest in a dark room"], "alternative_medications": []},
    "lifestyle": ["Stay hydrated"],
    "monitoring": {"symptoms_to_track": ["headache intensity"], "warning_signs": ["sudden severe headache"]},
}

DEFAULT_REPLIES = {
    Operation.IMAGE_NECESSITY: {"requires_image": False, "reason": "Not visible"},
    Operation.IMAGE_ANALYSIS: HAND_RASH,
    Operation.CONDITION_MATCH: {"mismatch": False, "explanation": "Same area"},
    Operation.DETAILED_ANALYSIS: {
        "affected_area": "Back of the left hand",
        "visual_symptoms": ["redness"],
        "possible_diagnoses": ["Contact dermatitis"],
        "requires_medical_attention": False,
    },
    Operation.FOLLOW_UP_QUESTIONS: QUESTIONS,
    Operation.RECOMMENDATION: RECOMMENDATION,
}


class ScriptedLLM:
    """
    In-memory provider. Each operation answers from a script of replies; the
    last reply repeats. A reply may be a dict (sent as JSON), a raw string,
    an exception to raise, or an async callable taking the request.
    """

    def __init__(self):
        self.scripts = {op: [reply] for op, reply in DEFAULT_REPLIES.items()}
        self.calls = []

    def script(self, operation, *replies):
        self.scripts[operation] = list(replies)

    def calls_for(self, operation):
        return [call for call in self.calls if call["request"].operation == operation]

    async def complete(self, api_key, request, *, temperature, max_tokens, vision=False, json_mode=True):
        self.calls.append(
            {"api_key": api_key, "request": request, "temperature": temperature,
             "max_tokens": max_tokens, "vision": vision}
        )
        queue = self.scripts[request.operation]
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = await reply(request)
        return reply if isinstance(reply, str) else json.dumps(reply)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def pool():
    return CredentialPool(KEYS)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def client(llm, pool, sleep):
    return InferenceClient(llm, pool, backoff_seconds=6.0, timeout_seconds=5.0, sleep=sleep)


@pytest.fixture
def orchestrator(client):
    return AssessmentOrchestrator(client)


@pytest.fixture
def adult_profile():
    return UserProfile(age=30, gender="Female", primary_complaint="headache")
