import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from symptom_assessor.domain.errors import ConfigurationError
from symptom_assessor.infrastructure.config import Settings


logger = logging.getLogger(__name__)


USAGE_LIMIT = 3
COOLDOWN_SECONDS = 6.0


@dataclass
class CredentialUsage:
    use_count: int = 0
    last_used_at: Optional[float] = None


class CredentialPool:
    """
    Rotates provider credentials under a per-credential usage limit.

    A credential serves up to ``usage_limit`` consecutive requests before the
    rotation pointer moves on. Its counter resets once ``cooldown_seconds``
    have passed since its last use. When every credential is at its limit the
    least recently used one is handed out anyway, so acquire() never blocks;
    callers still see provider-side throttling as a normal retryable failure.

    The pool is process-wide state shared by every session, so all reads and
    writes of the usage table happen under one lock.
    """

    def __init__(
        self,
        credentials: Sequence[str],
        usage_limit: int = USAGE_LIMIT,
        cooldown_seconds: float = COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._credentials: List[str] = list(dict.fromkeys(credentials))
        if not self._credentials:
            raise ConfigurationError("Credential pool is empty")
        self.usage_limit = usage_limit
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._usage = [CredentialUsage() for _ in self._credentials]
        self._cursor = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._credentials)

    def usage(self, credential: str) -> CredentialUsage:
        with self._lock:
            record = self._usage[self._credentials.index(credential)]
            return CredentialUsage(record.use_count, record.last_used_at)

    def acquire(self) -> str:
        with self._lock:
            if not self._credentials:
                raise ConfigurationError("Credential pool is empty")
            now = self._clock()
            count = len(self._credentials)

            for offset in range(count):
                index = (self._cursor + offset) % count
                record = self._usage[index]
                if record.last_used_at is not None and now - record.last_used_at >= self.cooldown_seconds:
                    record.use_count = 0
                if record.use_count < self.usage_limit:
                    return self._take(index, now)

            # Everything is over its limit: fall back to the least recently used
            index = min(range(count), key=lambda i: self._usage[i].last_used_at or 0.0)
            logger.warning("All %d credentials at their usage limit; reusing the least recently used", count)
            self._usage[index].use_count = 0
            return self._take(index, now)

    def _take(self, index: int, now: float) -> str:
        record = self._usage[index]
        record.use_count += 1
        record.last_used_at = now
        if record.use_count >= self.usage_limit:
            self._cursor = (index + 1) % len(self._credentials)
        else:
            self._cursor = index
        return self._credentials[index]


def load_credential_pool(settings: Settings | None = None) -> CredentialPool:
    settings = settings or Settings()
    credentials = settings.valid_credentials()
    logger.info("Loaded %d provider credential(s)", len(credentials))
    return CredentialPool(
        credentials,
        usage_limit=settings.credential_usage_limit,
        cooldown_seconds=settings.credential_cooldown_seconds,
    )
