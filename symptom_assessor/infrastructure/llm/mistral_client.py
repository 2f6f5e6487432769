import logging

from mistralai import Mistral

from symptom_assessor.application.ports import LLMPort
from symptom_assessor.application.schemas import RequestSpec
from symptom_assessor.domain.errors import ProviderError
from symptom_assessor.infrastructure.config import Settings


logger = logging.getLogger(__name__)


def _completion_text(content) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    # Some models answer with a list of content chunks
    parts = []
    for chunk in content:
        text = getattr(chunk, "text", None)
        if text is None and isinstance(chunk, dict):
            text = chunk.get("text")
        if text:
            parts.append(text)
    return "".join(parts)


class MistralLLMAdapter(LLMPort):
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or Settings()
        self._model = self.settings.mistral_model
        self._vision_model = self.settings.mistral_vision_model

    async def complete(
        self,
        api_key: str,
        request: RequestSpec,
        *,
        temperature: float,
        max_tokens: int,
        vision: bool = False,
        json_mode: bool = True,
    ) -> str:
        model = self._vision_model if vision else self._model
        kwargs = {
            "model": model,
            "messages": request.to_messages(),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            # A fresh client per call; the Streamlit driver runs each step in its own event loop
            async with Mistral(api_key=api_key) as client:
                response = await client.chat.complete_async(**kwargs)
        except Exception as e:
            logger.exception("Mistral %s call failed (%s): %s", request.operation.value, model, e)
            raise ProviderError(f"Mistral call failed: {e}") from e

        choices = getattr(response, "choices", None) if response is not None else None
        if not choices:
            raise ProviderError("Mistral returned no choices")
        content = _completion_text(choices[0].message.content)
        if not content.strip():
            raise ProviderError("Mistral returned an empty completion")
        return content
