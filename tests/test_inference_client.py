import asyncio

import pytest

from symptom_assessor.application.inference import OPERATIONS, InferenceClient, parse_json_payload
from symptom_assessor.application.schemas import Operation
from symptom_assessor.domain.errors import ConfigurationError, InferenceUnavailable, ProviderError, SchemaViolation
from symptom_assessor.domain.models import ImageNecessityDecision, Severity


class TestParseJsonPayload:
    def test_strips_code_fences_and_prose(self):
        raw = 'Sure! Here it is:\n```json\n{"requires_image": true}\n```\nHope that helps.'
        assert parse_json_payload(raw) == {"requires_image": True}

    def test_accepts_top_level_array(self):
        assert parse_json_payload('[{"id": "q1"}]') == [{"id": "q1"}]

    @pytest.mark.parametrize("raw", ["", "   ", None, "not json at all", '{"broken": '])
    def test_unparsable_completion_is_schema_violation(self, raw):
        with pytest.raises(SchemaViolation):
            parse_json_payload(raw)


class TestInferenceClient:
    def test_invoke_returns_normalized_result(self, client, llm, adult_profile):
        result = asyncio.run(client.invoke(Operation.IMAGE_NECESSITY, adult_profile))
        assert isinstance(result, ImageNecessityDecision)
        assert result.requires_image is False

    def test_operation_settings_are_applied(self, client, llm, adult_profile):
        asyncio.run(client.invoke(Operation.IMAGE_NECESSITY, adult_profile))
        call = llm.calls[0]
        assert call["temperature"] == OPERATIONS[Operation.IMAGE_NECESSITY].temperature
        assert call["max_tokens"] == OPERATIONS[Operation.IMAGE_NECESSITY].max_tokens
        assert call["vision"] is False

    def test_image_analysis_uses_vision_and_inline_image(self, client, llm, adult_profile):
        result = asyncio.run(client.invoke(Operation.IMAGE_ANALYSIS, b"\x89PNG", "image/png", adult_profile))
        assert result.severity == Severity.MILD
        call = llm.calls[0]
        assert call["vision"] is True
        task = call["request"].to_messages()[-1]["content"]
        assert task[1]["image_url"].startswith("data:image/png;base64,")

    def test_retries_with_fresh_credential_and_backoff(self, client, llm, sleep, adult_profile):
        llm.script(
            Operation.IMAGE_NECESSITY,
            ProviderError("503 Service Unavailable"),
            "this is not json",
            {"requires_image": True},
        )
        result = asyncio.run(client.invoke(Operation.IMAGE_NECESSITY, adult_profile))
        assert result.requires_image is True
        assert len(llm.calls) == 3
        assert sleep.delays == [6.0, 6.0]

    def test_schema_violation_is_retried(self, client, llm, adult_profile):
        llm.script(Operation.IMAGE_NECESSITY, {"reason": "missing discriminator"}, {"requires_image": False})
        result = asyncio.run(client.invoke(Operation.IMAGE_NECESSITY, adult_profile))
        assert result.requires_image is False
        assert len(llm.calls) == 2

    def test_missing_optional_fields_do_not_fail(self, client, llm, adult_profile):
        llm.script(Operation.IMAGE_NECESSITY, {"requires_image": "yes"})
        result = asyncio.run(client.invoke(Operation.IMAGE_NECESSITY, adult_profile))
        assert result.requires_image is True
        assert result.capture_instructions == []
        assert len(llm.calls) == 1

    def test_exhausted_retries_raise_inference_unavailable(self, client, llm, sleep, adult_profile):
        error = ProviderError("connection reset")
        llm.script(Operation.IMAGE_NECESSITY, error)
        with pytest.raises(InferenceUnavailable) as excinfo:
            asyncio.run(client.invoke(Operation.IMAGE_NECESSITY, adult_profile))
        assert excinfo.value.attempts == 3
        assert excinfo.value.last_error is error
        assert excinfo.value.operation == "image_necessity"
        assert len(llm.calls) == 3
        # No wait after the final attempt
        assert sleep.delays == [6.0, 6.0]

    def test_timeout_counts_as_transport_failure(self, llm, pool, sleep, adult_profile):
        async def hang(request):
            await asyncio.sleep(10)

        llm.script(Operation.IMAGE_NECESSITY, hang, {"requires_image": False})
        client = InferenceClient(llm, pool, timeout_seconds=0.05, sleep=sleep)
        result = asyncio.run(client.invoke(Operation.IMAGE_NECESSITY, adult_profile))
        assert result.requires_image is False
        assert len(llm.calls) == 2

    def test_each_attempt_acquires_a_credential(self, llm, sleep, adult_profile):
        class CountingPool:
            def __init__(self):
                self.acquired = 0

            def acquire(self):
                self.acquired += 1
                return f"key-{self.acquired}"

        pool = CountingPool()
        llm.script(Operation.IMAGE_NECESSITY, ProviderError("boom"), ProviderError("boom"), {"requires_image": True})
        client = InferenceClient(llm, pool, sleep=sleep)
        asyncio.run(client.invoke(Operation.IMAGE_NECESSITY, adult_profile))
        assert pool.acquired == 3
        assert [c["api_key"] for c in llm.calls] == ["key-1", "key-2", "key-3"]

    def test_configuration_error_is_not_retried(self, llm, sleep, adult_profile):
        class EmptyPool:
            def acquire(self):
                raise ConfigurationError("no credentials")

        client = InferenceClient(llm, EmptyPool(), sleep=sleep)
        with pytest.raises(ConfigurationError):
            asyncio.run(client.invoke(Operation.IMAGE_NECESSITY, adult_profile))
        assert llm.calls == []
