"""
Versioned whole-document storage with optimistic concurrency.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

from shared.errors import WriteConflictError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, calculate_delay


Transform = Callable[[Any], Any]


@dataclass(frozen=True)
class VersionedDocument:
    """A document value and the version token it was read at.

    ``version`` is ``None`` when the document does not exist.
    """
    value: Any
    version: Optional[int]

    @property
    def exists(self) -> bool:
        return self.version is not None


class DocumentStore(ABC):
    """JSON documents addressed by path, written with compare-and-set."""

    def __init__(self, retry_config: Optional[RetryConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        # Unbounded by default: conflicts are retried until the write lands
        self.retry_config = retry_config or RetryConfig(
            max_attempts=None, base_delay=0.01, max_delay=0.5
        )
        self.metrics = metrics
        self.logger = get_logger("licensing.storage")

    @abstractmethod
    async def read(self, path: str) -> VersionedDocument:
        """Read a document and its current version."""

    @abstractmethod
    async def compare_and_set(self, path: str, value: Any, expected_version: Optional[int]) -> bool:
        """Write ``value`` only if the stored version is still ``expected_version``.

        ``expected_version=None`` means the document must not exist yet.
        Returns False on a version mismatch.
        """

    @abstractmethod
    async def put(self, path: str, value: Any) -> None:
        """Unconditional write."""

    async def close(self) -> None:
        return None

    async def read_value(self, path: str, default: Any = None) -> Any:
        document = await self.read(path)
        return document.value if document.exists else default

    async def optimistic_update(self, path: str, transform: Transform, default: Any) -> Any:
        """Read, transform, conditionally write; retry the whole cycle on conflict.

        ``transform`` receives a private deep copy of the current value (or of
        ``default`` when the document is absent) and must be a pure function of
        it, since it may run several times. When the result equals the input
        nothing is written. Returns the value that is now stored.
        """
        attempt = 0
        while True:
            attempt += 1
            current = await self.read(path)
            base = current.value if current.exists else default
            updated = transform(copy.deepcopy(base))

            if updated == base:
                return updated

            if await self.compare_and_set(path, updated, current.version):
                if attempt > 1:
                    self.logger.debug("Optimistic update committed after conflicts",
                                      path=path, attempt=attempt)
                return updated

            if self.metrics:
                self.metrics.record_write_conflict(path)

            if not self.retry_config.allows(attempt):
                self.logger.error("Optimistic update gave up", path=path, attempts=attempt)
                raise WriteConflictError(path, attempt)

            delay = calculate_delay(attempt, self.retry_config)
            self.logger.debug("Write conflict, retrying", path=path, attempt=attempt, delay=delay)
            await asyncio.sleep(delay)

    async def append(self, path: str, entry: Any) -> None:
        """Append ``entry`` to the JSON array stored at ``path``."""
        await self.optimistic_update(path, lambda current: [*(current or []), entry], [])
