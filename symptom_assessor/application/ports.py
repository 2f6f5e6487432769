from typing import Protocol

from symptom_assessor.application.schemas import RequestSpec


class CredentialSource(Protocol):
    def acquire(self) -> str:
        ...


class LLMPort(Protocol):
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
        """
        Sends one request with the given credential and returns the raw completion text.
        Transport failures and empty completions raise ProviderError.
        """
        ...
