import asyncio
import logging
import os

import streamlit as st

from symptom_assessor.application.inference import InferenceClient
from symptom_assessor.application.orchestrator import AssessmentOrchestrator
from symptom_assessor.domain.errors import ConfigurationError, InferenceUnavailable, InvalidTransition
from symptom_assessor.domain.models import (
    AgeUnit,
    AssessmentSession,
    AssessmentState,
    MismatchChoice,
    Recommendation,
    Severity,
    UrgencyLevel,
)
from symptom_assessor.infrastructure.config import Settings
from symptom_assessor.infrastructure.credentials import load_credential_pool
from symptom_assessor.infrastructure.llm.mistral_client import MistralLLMAdapter


logger = logging.getLogger(__name__)


DISCLAIMER = (
    "⚕️ **DISCLAIMER:** This is NOT medical advice and NOT a diagnosis. "
    "This assistant is for educational purposes only. "
    "If you experience emergency symptoms, seek immediate care (call local emergency number)."
)

GENDERS = ["Male", "Female", "Other", "Prefer not to say"]


def build_orchestrator(settings: Settings) -> AssessmentOrchestrator:
    pool = load_credential_pool(settings)
    client = InferenceClient(
        llm=MistralLLMAdapter(settings=settings),
        credentials=pool,
        max_attempts=settings.inference_max_attempts,
        backoff_seconds=settings.inference_retry_backoff_seconds,
        timeout_seconds=settings.inference_timeout_seconds,
    )
    return AssessmentOrchestrator(client)


def _init_session_state(settings: Settings) -> bool:
    if "orchestrator" not in st.session_state:
        try:
            st.session_state.orchestrator = build_orchestrator(settings)
        except ConfigurationError as e:
            st.error(
                "❌ **Mistral API Key Missing**\n\n"
                f"{e}\n\n"
                "Add `MISTRAL_API_KEYS` to `.streamlit/secrets.toml` or as an environment variable."
            )
            return False
    return True


def _run_step(label: str, action) -> None:
    """Runs one orchestrator transition and reports recoverable errors."""
    with st.spinner(label):
        try:
            asyncio.run(action)
        except InferenceUnavailable as e:
            logger.warning("Step failed: %s", e)
            st.error("❌ The assessment service is temporarily unavailable. Please try again.")
            return
        except InvalidTransition as e:
            logger.error("Invalid transition: %s", e)
            st.warning("That step is no longer available. Please continue from the current step.")
            return
    st.rerun()


def _render_sidebar(settings: Settings, orchestrator: AssessmentOrchestrator):
    st.sidebar.title("⚙️ Settings")
    st.sidebar.caption(f"**Model:** {settings.mistral_model}")
    st.sidebar.caption(f"**Vision model:** {settings.mistral_vision_model}")
    st.sidebar.caption(f"**Step:** {orchestrator.state.value.replace('_', ' ')}")
    st.sidebar.divider()

    if st.sidebar.button("🔄 New Assessment", use_container_width=True):
        orchestrator.reset()
        st.rerun()


def _render_profile_form(orchestrator: AssessmentOrchestrator):
    with st.form("profile"):
        col1, col2 = st.columns(2)
        age = col1.number_input("Age", min_value=0, max_value=120, value=30, step=1)
        age_unit = col2.selectbox("Unit", [u.value for u in AgeUnit])
        gender = st.radio("Gender", GENDERS, horizontal=True)
        complaint = st.text_area("What's bothering you today?", placeholder="Describe your main symptom...")
        submitted = st.form_submit_button("Continue")

    if submitted:
        if not complaint.strip():
            st.warning("Please describe your main symptom.")
            return
        profile = {"age": int(age), "age_unit": age_unit, "gender": gender, "primary_complaint": complaint}
        _run_step("🔬 Reviewing your symptoms...", orchestrator.submit_profile(profile))


def _render_image_step(orchestrator: AssessmentOrchestrator, session: AssessmentSession):
    st.subheader("📷 Show Us Your Concern")
    decision = session.image_decision
    if decision and decision.requires_immediate_care:
        st.error("⚠️ Your symptoms may need immediate medical attention. Consider seeking care now.")
    if decision and decision.reason:
        st.caption(decision.reason)
    for tip in (decision.capture_instructions if decision else []):
        st.markdown(f"- {tip}")

    upload = st.file_uploader("Upload an image", type=["jpg", "jpeg", "png", "webp"])
    col1, col2 = st.columns(2)
    if col1.button("Analyze image", disabled=upload is None):
        _run_step("🔬 Analyzing image...", orchestrator.submit_image(upload.getvalue(), upload.type or "image/jpeg"))
    if col2.button("Continue without image"):
        _run_step("⏳ Preparing questions...", orchestrator.skip_image())
    st.caption("Visual assessment helps provide more accurate recommendations, but it is optional.")


def _render_mismatch_step(orchestrator: AssessmentOrchestrator, session: AssessmentSession):
    analysis = session.image_analysis
    st.subheader("⚠️ Different Location Detected")
    st.markdown(
        f"You reported **{session.reported_complaint}**, but the image shows "
        f"**{analysis.condition_label}**."
    )
    if session.condition_match and session.condition_match.explanation:
        st.caption(session.condition_match.explanation)
    if analysis.condition.characteristics:
        st.markdown("Characteristics: " + ", ".join(analysis.condition.characteristics))

    choices = [
        (MismatchChoice.USE_IMAGE_CONDITION, f"Get help for the condition in the image ({analysis.condition_label})"),
        (MismatchChoice.COMBINE_CONDITIONS, "I have both conditions"),
        (MismatchChoice.KEEP_REPORTED, f"Continue with what I reported ({session.reported_complaint})"),
        (MismatchChoice.RETAKE_IMAGE, "Upload a new image for the reported condition"),
    ]
    for choice, label in choices:
        if st.button(label, key=choice.value, use_container_width=True):
            _run_step("⏳ Updating assessment...", orchestrator.resolve_mismatch(choice))


def _render_questions_step(orchestrator: AssessmentOrchestrator, session: AssessmentSession):
    if session.detailed_analysis:
        detail = session.detailed_analysis
        with st.expander("🔍 What we found in the image", expanded=False):
            if detail.affected_area:
                st.markdown(detail.affected_area)
            for symptom in detail.visual_symptoms:
                st.markdown(f"- {symptom}")
            if detail.requires_medical_attention:
                st.warning(f"Medical attention recommended: {detail.timeframe}")

    st.subheader("📝 A Few Questions")
    with st.form("questions"):
        answers = {}
        for question in session.questions:
            previous = session.answers.get(question.id)
            index = question.options.index(previous) if previous in question.options else 0
            answers[question.id] = st.radio(question.text, question.options, index=index, key=question.id)
        submitted = st.form_submit_button("Get recommendation")

    if submitted:
        _run_step("🔬 Preparing your recommendation...", orchestrator.submit_answers(answers))


def _render_completed_step(orchestrator: AssessmentOrchestrator, session: AssessmentSession):
    st.markdown(_format_recommendation(session.recommendation))
    if st.button("✏️ Change my answers"):
        orchestrator.revise_answers()
        st.rerun()


def main():
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))

    st.set_page_config(
        page_title="Symptom Assessor",
        page_icon="⚕️",
        layout="centered",
        initial_sidebar_state="expanded",
    )

    settings = Settings()
    if not _init_session_state(settings):
        st.stop()

    orchestrator: AssessmentOrchestrator = st.session_state.orchestrator
    _render_sidebar(settings, orchestrator)

    st.markdown("# 🏥 Symptom Assessor")
    st.info(DISCLAIMER)

    session = orchestrator.snapshot()
    if session.state == AssessmentState.START:
        _render_profile_form(orchestrator)
    elif session.state == AssessmentState.AWAITING_IMAGE:
        _render_image_step(orchestrator, session)
    elif session.state == AssessmentState.AWAITING_MISMATCH_RESOLUTION:
        _render_mismatch_step(orchestrator, session)
    elif session.state == AssessmentState.AWAITING_QUESTIONS:
        _render_questions_step(orchestrator, session)
    elif session.state == AssessmentState.COMPLETED:
        _render_completed_step(orchestrator, session)


def _format_recommendation(rec: Recommendation) -> str:
    """Format a recommendation as markdown."""
    lines = ["# 📋 Your Recommendation\n"]

    if rec.summary:
        lines.append(f"**Summary:** {rec.summary}\n")

    if rec.severity == Severity.SEVERE or rec.medical_attention.urgency == UrgencyLevel.EMERGENCY:
        lines.append("## ⚠️ Seek Medical Care")
        lines.append("**Your symptoms need professional evaluation. Do not rely on self-care alone.**\n")
    elif rec.medical_attention.required or rec.severity == Severity.MODERATE:
        lines.append("## ⏰ See a Doctor Soon")
        lines.append("Schedule an appointment with a healthcare professional soon.\n")
    else:
        lines.append("## ✅ Self-Care Likely Appropriate")
        lines.append("Monitor your symptoms. Home care may be sufficient.\n")

    if rec.medical_attention.required:
        lines.append(f"**When:** {rec.medical_attention.timeframe}")
        for reason in rec.medical_attention.reasons:
            lines.append(f"- {reason}")
        lines.append("")

    lines.append("## 💊 Medications")
    if rec.medications:
        for med in rec.medications:
            details = ", ".join(filter(None, [med.dosage, med.frequency, med.duration]))
            lines.append(f"**{med.name}**" + (f" ({details})" if details else ""))
            for warning in med.warnings:
                lines.append(f"- ⚠️ {warning}")
    else:
        lines.append("- No over-the-counter medication suggested")
    if rec.instructions:
        lines.append(f"\n{rec.instructions}")
    lines.append("")

    if rec.precautions:
        lines.append("## 🛡️ Precautions")
        lines.extend(f"- {p}" for p in rec.precautions)
        lines.append("")

    if rec.alternatives.natural_remedies or rec.alternatives.alternative_medications:
        lines.append("## 🌿 Alternatives")
        lines.extend(f"- {r}" for r in rec.alternatives.natural_remedies)
        for alt in rec.alternatives.alternative_medications:
            lines.append(f"- **{alt.name}**" + (f": {alt.description}" if alt.description else ""))
        lines.append("")

    if rec.lifestyle:
        lines.append("## 🏃 Lifestyle")
        lines.extend(f"- {item}" for item in rec.lifestyle)
        lines.append("")

    if rec.monitoring.symptoms_to_track or rec.monitoring.warning_signs:
        lines.append("## 🚨 What to Watch")
        lines.extend(f"- {s}" for s in rec.monitoring.symptoms_to_track)
        lines.extend(f"- ⚠️ {s}" for s in rec.monitoring.warning_signs)
        lines.append("")

    if rec.doctor_visit:
        lines.append("## 👨‍⚕️ Doctor Visit")
        lines.append(f"**Specialist:** {rec.doctor_visit.specialist}")
        if rec.doctor_visit.timeframe:
            lines.append(f"**When:** {rec.doctor_visit.timeframe}")
        lines.extend(f"- {p}" for p in rec.doctor_visit.preparation)
        lines.append("")

    lines.append("---")
    lines.append("⚠️ **Reminder:** This is NOT medical advice. Always consult a licensed healthcare professional.")

    return "\n".join(lines)


if __name__ == "__main__":
    main()
