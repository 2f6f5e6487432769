import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from symptom_assessor.application import normalizers, prompts
from symptom_assessor.application.ports import CredentialSource, LLMPort
from symptom_assessor.application.schemas import Operation
from symptom_assessor.domain.errors import InferenceUnavailable, ProviderError, SchemaViolation


logger = logging.getLogger(__name__)


MAX_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 6.0
REQUEST_TIMEOUT_SECONDS = 30.0

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass(frozen=True)
class OperationSpec:
    builder: Callable[..., Any]
    normalizer: Callable[[Any], Any]
    temperature: float
    max_tokens: int
    vision: bool = False


# Lower temperature for safety-critical classification, higher for free-text generation
OPERATIONS: Dict[Operation, OperationSpec] = {
    Operation.IMAGE_NECESSITY: OperationSpec(
        prompts.build_image_necessity, normalizers.normalize_image_necessity, 0.1, 300
    ),
    Operation.IMAGE_ANALYSIS: OperationSpec(
        prompts.build_image_analysis, normalizers.normalize_image_analysis, 0.1, 1000, vision=True
    ),
    Operation.CONDITION_MATCH: OperationSpec(
        prompts.build_condition_match, normalizers.normalize_condition_match, 0.0, 300
    ),
    Operation.DETAILED_ANALYSIS: OperationSpec(
        prompts.build_detailed_analysis, normalizers.normalize_detailed_analysis, 0.2, 800
    ),
    Operation.FOLLOW_UP_QUESTIONS: OperationSpec(
        prompts.build_follow_up_questions, normalizers.normalize_follow_up_questions, 0.2, 800
    ),
    Operation.RECOMMENDATION: OperationSpec(
        prompts.build_recommendation, normalizers.normalize_recommendation, 0.1, 1500
    ),
}


def parse_json_payload(raw: Optional[str]) -> Any:
    """Reduce a completion to its outermost JSON value, tolerating fences and surrounding prose."""
    if raw is None or not raw.strip():
        raise SchemaViolation("empty completion")
    text = _FENCE.sub("", raw).strip()

    if not text.startswith(("{", "[")):
        starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
        if starts:
            text = text[min(starts):]
    closer = "}" if text.startswith("{") else "]"
    if not text.endswith(closer):
        end_idx = text.rfind(closer)
        if end_idx != -1:
            text = text[:end_idx + 1]

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaViolation(f"completion is not valid JSON: {e}. Raw: {raw[:200]}") from e


def _mask(api_key: str) -> str:
    return "..." + api_key[-4:]


class InferenceClient:
    def __init__(
        self,
        llm: LLMPort,
        credentials: CredentialSource,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.llm = llm
        self.credentials = credentials
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep

    async def invoke(self, operation: Operation, *inputs: Any) -> Any:
        spec = OPERATIONS[operation]
        request = spec.builder(*inputs)
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                await self._sleep(self.backoff_seconds)
            api_key = self.credentials.acquire()
            try:
                raw = await asyncio.wait_for(
                    self.llm.complete(
                        api_key,
                        request,
                        temperature=spec.temperature,
                        max_tokens=spec.max_tokens,
                        vision=spec.vision,
                    ),
                    timeout=self.timeout_seconds,
                )
                return spec.normalizer(parse_json_payload(raw))
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(
                    "%s attempt %d/%d timed out after %.1fs (key %s)",
                    operation.value, attempt, self.max_attempts, self.timeout_seconds, _mask(api_key),
                )
            except (ProviderError, SchemaViolation) as e:
                last_error = e
                logger.warning(
                    "%s attempt %d/%d failed (key %s): %s",
                    operation.value, attempt, self.max_attempts, _mask(api_key), e,
                )

        logger.error("%s unavailable after %d attempts: %s", operation.value, self.max_attempts, last_error)
        raise InferenceUnavailable(operation.value, self.max_attempts, last_error)
