import base64
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


SYSTEM_PROMPT = (
    "You are a careful virtual health assistant. You are not a doctor. "
    "Never claim certainty; use 'possible explanations'. "
    "When anything suggests a serious condition, recommend professional medical care. "
    "Return a strict JSON object matching the schema provided."
)


class Operation(str, Enum):
    IMAGE_NECESSITY = "image_necessity"
    IMAGE_ANALYSIS = "image_analysis"
    CONDITION_MATCH = "condition_match"
    DETAILED_ANALYSIS = "detailed_analysis"
    FOLLOW_UP_QUESTIONS = "follow_up_questions"
    RECOMMENDATION = "recommendation"


@dataclass(frozen=True)
class RequestSpec:
    operation: Operation
    instructions: str
    schema_hint: str
    image: Optional[bytes] = None
    image_mime_type: str = "image/jpeg"

    def schema_instructions(self) -> str:
        return (
            "You MUST return ONLY a valid JSON object. Do NOT include any markdown, code fences, or explanations.\n"
            f"{self.schema_hint}\n"
            "Start your response with { and end with }. Return valid JSON only."
        )

    def image_data_uri(self) -> Optional[str]:
        if self.image is None:
            return None
        encoded = base64.b64encode(self.image).decode("ascii")
        return f"data:{self.image_mime_type};base64,{encoded}"

    def to_messages(self) -> List[dict]:
        task: object = self.instructions
        if self.image is not None:
            task = [
                {"type": "text", "text": self.instructions},
                {"type": "image_url", "image_url": self.image_data_uri()},
            ]
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self.schema_instructions()},
            {"role": "user", "content": task},
        ]
