import os
import logging
import re
from typing import List

try:
    import streamlit as st  # type: ignore
    _HAS_STREAMLIT = True
except Exception:
    _HAS_STREAMLIT = False

from symptom_assessor.domain.errors import ConfigurationError


logger = logging.getLogger(__name__)


# Mistral keys are 32 ASCII letters and digits
CREDENTIAL_PATTERN = re.compile(r"^[A-Za-z0-9]{32}$")
NUMBERED_KEY_SLOTS = 9


def get_secret(name: str, default: str | None = None) -> str | None:
    # Prefer Streamlit secrets if available
    if _HAS_STREAMLIT:
        try:
            if name in st.secrets:
                return str(st.secrets.get(name))
        except Exception:
            # No secrets.toml outside a Streamlit deployment
            pass
    # Fallback to environment variables
    return os.environ.get(name, default)


def _number(name: str, default: float) -> float:
    raw = get_secret(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r; using %s", name, raw, default)
        return default


def is_valid_credential(value: str) -> bool:
    return bool(CREDENTIAL_PATTERN.match(value or ""))


class Settings:
    @property
    def mistral_api_keys(self) -> List[str]:
        """All configured keys, de-duplicated in order. Not yet validated."""
        candidates: List[str] = []
        combined = get_secret("MISTRAL_API_KEYS") or ""
        candidates.extend(part.strip() for part in combined.split(","))
        for slot in range(1, NUMBERED_KEY_SLOTS + 1):
            candidates.append((get_secret(f"MISTRAL_API_KEY_{slot}") or "").strip())
        candidates.append((get_secret("MISTRAL_API_KEY") or "").strip())
        return list(dict.fromkeys(c for c in candidates if c))

    @property
    def mistral_model(self) -> str:
        return get_secret("MISTRAL_MODEL", "mistral-large-latest") or "mistral-large-latest"

    @property
    def mistral_vision_model(self) -> str:
        return get_secret("MISTRAL_VISION_MODEL", "pixtral-large-latest") or "pixtral-large-latest"

    @property
    def credential_usage_limit(self) -> int:
        return max(1, int(_number("CREDENTIAL_USAGE_LIMIT", 3)))

    @property
    def credential_cooldown_seconds(self) -> float:
        return _number("CREDENTIAL_COOLDOWN_SECONDS", 6.0)

    @property
    def inference_max_attempts(self) -> int:
        return max(1, int(_number("INFERENCE_MAX_ATTEMPTS", 3)))

    @property
    def inference_retry_backoff_seconds(self) -> float:
        return _number("INFERENCE_RETRY_BACKOFF_SECONDS", 6.0)

    @property
    def inference_timeout_seconds(self) -> float:
        return _number("INFERENCE_TIMEOUT_SECONDS", 30.0)

    def valid_credentials(self) -> List[str]:
        valid = []
        for key in self.mistral_api_keys:
            if is_valid_credential(key):
                valid.append(key)
            else:
                logger.error("Ignoring malformed Mistral API key ending in %r", key[-4:])
        if not valid:
            raise ConfigurationError(
                "No valid Mistral API key configured. Set MISTRAL_API_KEYS or MISTRAL_API_KEY_1..N."
            )
        return valid
