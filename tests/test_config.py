import pytest

from symptom_assessor.domain.errors import ConfigurationError
from symptom_assessor.infrastructure.config import NUMBERED_KEY_SLOTS, Settings, is_valid_credential
from symptom_assessor.infrastructure.credentials import load_credential_pool


VALID_A = "a1" * 16
VALID_B = "B2" * 16

CONFIG_VARS = [
    "MISTRAL_API_KEYS",
    "MISTRAL_API_KEY",
    "MISTRAL_MODEL",
    "MISTRAL_VISION_MODEL",
    "CREDENTIAL_USAGE_LIMIT",
    "CREDENTIAL_COOLDOWN_SECONDS",
    "INFERENCE_MAX_ATTEMPTS",
    "INFERENCE_RETRY_BACKOFF_SECONDS",
    "INFERENCE_TIMEOUT_SECONDS",
] + [f"MISTRAL_API_KEY_{n}" for n in range(1, NUMBERED_KEY_SLOTS + 1)]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in CONFIG_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_credential_format():
    assert is_valid_credential(VALID_A)
    assert not is_valid_credential("short")
    assert not is_valid_credential("x" * 31 + "-")
    assert not is_valid_credential("")


def test_keys_collected_from_all_sources_without_duplicates(clean_env):
    clean_env.setenv("MISTRAL_API_KEYS", f"{VALID_A}, {VALID_B},")
    clean_env.setenv("MISTRAL_API_KEY_1", VALID_B)
    clean_env.setenv("MISTRAL_API_KEY", "C" * 32)
    assert Settings().mistral_api_keys == [VALID_A, VALID_B, "C" * 32]


def test_malformed_keys_are_skipped(clean_env):
    clean_env.setenv("MISTRAL_API_KEY_1", "not-a-key")
    clean_env.setenv("MISTRAL_API_KEY_2", VALID_A)
    assert Settings().valid_credentials() == [VALID_A]


def test_no_valid_key_is_a_configuration_error(clean_env):
    clean_env.setenv("MISTRAL_API_KEY", "not-a-key")
    with pytest.raises(ConfigurationError):
        Settings().valid_credentials()


def test_defaults():
    settings = Settings()
    assert settings.mistral_api_keys == []
    assert settings.mistral_model == "mistral-large-latest"
    assert settings.mistral_vision_model == "pixtral-large-latest"
    assert settings.credential_usage_limit == 3
    assert settings.credential_cooldown_seconds == 6.0
    assert settings.inference_max_attempts == 3
    assert settings.inference_timeout_seconds == 30.0


def test_malformed_numbers_fall_back_to_defaults(clean_env):
    clean_env.setenv("INFERENCE_TIMEOUT_SECONDS", "soon")
    clean_env.setenv("CREDENTIAL_USAGE_LIMIT", "0")
    settings = Settings()
    assert settings.inference_timeout_seconds == 30.0
    assert settings.credential_usage_limit == 1


def test_load_credential_pool_uses_settings(clean_env):
    clean_env.setenv("MISTRAL_API_KEYS", f"{VALID_A},{VALID_B}")
    clean_env.setenv("CREDENTIAL_USAGE_LIMIT", "2")
    pool = load_credential_pool()
    assert len(pool) == 2
    assert [pool.acquire() for _ in range(3)] == [VALID_A, VALID_A, VALID_B]


def test_load_credential_pool_without_keys_fails():
    with pytest.raises(ConfigurationError):
        load_credential_pool()
