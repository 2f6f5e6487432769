import asyncio
import hashlib
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError

from symptom_assessor.application.inference import InferenceClient
from symptom_assessor.application.schemas import Operation
from symptom_assessor.domain.errors import (
    InferenceUnavailable,
    InvalidTransition,
    SessionBusy,
    StaleResultDiscarded,
)
from symptom_assessor.domain.models import (
    AssessmentSession,
    AssessmentState,
    MismatchChoice,
    UserProfile,
)
from symptom_assessor.domain.rules import (
    apply_safety_overrides,
    evaluate_severity_signal,
    reconcile_condition_match,
)


logger = logging.getLogger(__name__)


Step = Callable[[int, AssessmentSession], Awaitable[None]]


def _fingerprint(inputs: Tuple[Any, ...]) -> str:
    def encode(value: Any) -> Any:
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json")
        if isinstance(value, (bytes, bytearray)):
            return hashlib.sha256(value).hexdigest()
        if isinstance(value, Enum):
            return value.value
        return value

    payload = json.dumps([encode(v) for v in inputs], sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class AssessmentOrchestrator:
    """
    Drives one assessment session through its states.

    Every transition works on a copy of the session and commits it only when
    all of its inference calls succeed, so a failure leaves the session where
    it was. At most one transition may wait on the provider at a time; reset()
    is always accepted and cancels the in-flight call, and any result that
    still arrives from it is discarded as stale.
    """

    def __init__(self, client: InferenceClient, run_detailed_analysis: bool = True):
        self.client = client
        self.run_detailed_analysis = run_detailed_analysis
        self.session = AssessmentSession()
        self._in_flight: Optional[Tuple[str, Optional[AssessmentState]]] = None
        self._task: Optional[asyncio.Task] = None
        # Results that already succeeded inside a failed transition, reused on retry
        self._partial: Dict[str, Any] = {}

    @property
    def state(self) -> AssessmentState:
        return self.session.state

    @property
    def busy(self) -> bool:
        return self._in_flight is not None

    @property
    def pending_state(self) -> Optional[AssessmentState]:
        return self._in_flight[1] if self._in_flight else None

    def snapshot(self) -> AssessmentSession:
        return self.session.model_copy(deep=True)

    # -- user actions -------------------------------------------------------

    async def submit_profile(self, profile: Union[UserProfile, Mapping[str, Any]]) -> AssessmentSession:
        self._require("submit_profile", AssessmentState.START)
        if not isinstance(profile, UserProfile):
            try:
                profile = UserProfile.model_validate(dict(profile))
            except ValidationError as e:
                raise InvalidTransition(f"submit_profile: invalid profile: {e}") from e

        async def step(generation: int, draft: AssessmentSession) -> None:
            draft.profile = profile
            draft.reported_complaint = profile.primary_complaint
            decision = await self._invoke(generation, Operation.IMAGE_NECESSITY, profile)
            draft.image_decision = decision
            if decision.requires_image:
                draft.state = AssessmentState.AWAITING_IMAGE
            else:
                await self._load_questions(generation, draft)

        return await self._run("submit_profile", step, AssessmentState.AWAITING_IMAGE_DECISION)

    async def submit_image(self, image: bytes, mime_type: str = "image/jpeg") -> AssessmentSession:
        self._require("submit_image", AssessmentState.AWAITING_IMAGE)
        if not image:
            raise InvalidTransition("submit_image: image is empty")

        async def step(generation: int, draft: AssessmentSession) -> None:
            analysis = await self._invoke(generation, Operation.IMAGE_ANALYSIS, image, mime_type, draft.profile)
            draft.image_analysis = analysis
            draft.image_skipped = False
            draft.detailed_analysis = None

            complaint = draft.profile.primary_complaint
            verdict = await self._invoke(generation, Operation.CONDITION_MATCH, complaint, analysis)
            draft.condition_match = reconcile_condition_match(verdict, complaint, analysis)
            if draft.condition_match.mismatch:
                logger.info("Image shows %s, reported %r", analysis.condition_label, complaint)
                draft.state = AssessmentState.AWAITING_MISMATCH_RESOLUTION
            else:
                await self._accept_image(generation, draft)

        return await self._run("submit_image", step)

    async def skip_image(self) -> AssessmentSession:
        if self._in_flight and self._in_flight[0] == "submit_image":
            # Visual assessment is advisory; skipping supersedes a pending analysis
            logger.info("Skipping image while analysis is in flight; cancelling it")
            self._supersede()
        self._require("skip_image", AssessmentState.AWAITING_IMAGE)

        async def step(generation: int, draft: AssessmentSession) -> None:
            draft.image_analysis = None
            draft.condition_match = None
            draft.detailed_analysis = None
            draft.image_skipped = True
            await self._load_questions(generation, draft)

        return await self._run("skip_image", step)

    async def resolve_mismatch(self, choice: Union[MismatchChoice, str]) -> AssessmentSession:
        self._require("resolve_mismatch", AssessmentState.AWAITING_MISMATCH_RESOLUTION)
        try:
            choice = MismatchChoice(choice)
        except ValueError as e:
            raise InvalidTransition(f"resolve_mismatch: unknown choice {choice!r}") from e

        async def step(generation: int, draft: AssessmentSession) -> None:
            label = draft.image_analysis.condition_label
            if choice == MismatchChoice.USE_IMAGE_CONDITION:
                draft.profile = draft.profile.with_complaint(label)
                await self._accept_image(generation, draft)
            elif choice == MismatchChoice.COMBINE_CONDITIONS:
                draft.profile = draft.profile.with_complaint(
                    f"{draft.reported_complaint}; image also shows {label}"
                )
                await self._accept_image(generation, draft)
            else:
                draft.image_analysis = None
                draft.condition_match = None
                draft.detailed_analysis = None
                if choice == MismatchChoice.RETAKE_IMAGE:
                    draft.state = AssessmentState.AWAITING_IMAGE
                else:
                    await self._load_questions(generation, draft)

        return await self._run("resolve_mismatch", step)

    async def submit_answers(self, answers: Mapping[str, str]) -> AssessmentSession:
        self._require("submit_answers", AssessmentState.AWAITING_QUESTIONS)
        if not self.session.questions:
            raise InvalidTransition("submit_answers: no questions have been generated")
        known = {q.id for q in self.session.questions}
        by_text = {q.text: q.id for q in self.session.questions}
        answers = {key if key in known else by_text.get(key, key): value for key, value in answers.items()}
        unknown = set(answers) - known
        missing = known - set(answers)
        if unknown or missing:
            raise InvalidTransition(
                f"submit_answers: unknown question ids {sorted(unknown)}, unanswered {sorted(missing)}"
            )

        async def step(generation: int, draft: AssessmentSession) -> None:
            draft.answers = dict(answers)
            signal = evaluate_severity_signal(draft)
            if signal.serious:
                logger.info("Serious condition signal: %s", "; ".join(signal.reasons))
            recommendation = await self._invoke(generation, Operation.RECOMMENDATION, draft, signal)
            draft.recommendation = apply_safety_overrides(recommendation, draft.profile, signal)
            draft.state = AssessmentState.COMPLETED

        return await self._run("submit_answers", step, AssessmentState.AWAITING_RECOMMENDATION)

    def revise_answers(self) -> AssessmentSession:
        """Go back to the questions; the next submission replaces the recommendation."""
        self._require("revise_answers", AssessmentState.COMPLETED)
        self.session.recommendation = None
        self.session.state = AssessmentState.AWAITING_QUESTIONS
        return self.snapshot()

    def reset(self) -> AssessmentSession:
        if self._in_flight:
            logger.info("Reset while %s is in flight; its result will be discarded", self._in_flight[0])
        self._supersede()
        self.session = AssessmentSession(generation=self.session.generation)
        return self.snapshot()

    # -- internals ----------------------------------------------------------

    def _require(self, action: str, *states: AssessmentState) -> None:
        if self._in_flight is not None:
            raise SessionBusy(f"{action}: '{self._in_flight[0]}' is still waiting on the provider")
        if self.session.state not in states:
            raise InvalidTransition(f"{action} is not allowed in state '{self.session.state.value}'")

    def _supersede(self) -> None:
        task, self._task = self._task, None
        self.session.generation += 1
        self._in_flight = None
        self._partial.clear()
        if task is not None and not task.done():
            task.cancel()

    async def _run(
        self, action: str, step: Step, pending_state: Optional[AssessmentState] = None
    ) -> AssessmentSession:
        generation = self.session.generation
        draft = self.session.model_copy(deep=True)
        self._in_flight = (action, pending_state)
        self._task = asyncio.current_task()
        try:
            await step(generation, draft)
            self._commit(generation, draft)
        except StaleResultDiscarded:
            logger.info("Discarded %s result from superseded session generation %d", action, generation)
        except InferenceUnavailable:
            if self.session.generation != generation:
                logger.info("Ignoring %s failure from superseded session generation %d", action, generation)
            else:
                raise
        except asyncio.CancelledError:
            if self.session.generation == generation:
                raise
            logger.info("Cancelled %s for superseded session generation %d", action, generation)
            task = asyncio.current_task()
            if task is not None and hasattr(task, "uncancel"):
                task.uncancel()
        finally:
            if self.session.generation == generation:
                self._in_flight = None
                self._task = None
        return self.snapshot()

    def _commit(self, generation: int, draft: AssessmentSession) -> None:
        if self.session.generation != generation:
            raise StaleResultDiscarded()
        self.session = draft
        self._partial.clear()

    async def _invoke(self, generation: int, operation: Operation, *inputs: Any) -> Any:
        key = f"{generation}:{operation.value}:{_fingerprint(inputs)}"
        if key in self._partial:
            logger.debug("Reusing %s result from an earlier attempt", operation.value)
            return self._partial[key]
        result = await self.client.invoke(operation, *inputs)
        if self.session.generation != generation:
            raise StaleResultDiscarded()
        self._partial[key] = result
        return result

    async def _load_questions(self, generation: int, draft: AssessmentSession) -> None:
        draft.questions = await self._invoke(generation, Operation.FOLLOW_UP_QUESTIONS, draft)
        draft.answers = {}
        draft.state = AssessmentState.AWAITING_QUESTIONS

    async def _accept_image(self, generation: int, draft: AssessmentSession) -> None:
        if self.run_detailed_analysis:
            draft.detailed_analysis = await self._invoke(
                generation, Operation.DETAILED_ANALYSIS, draft.image_analysis, draft.profile
            )
        await self._load_questions(generation, draft)
