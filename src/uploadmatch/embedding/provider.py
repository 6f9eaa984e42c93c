"""Dense embedding and vision provider contracts plus call policy."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, TypeVar

import numpy as np

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[int, int], None]


class EmbeddingProvider(Protocol):
    def embed(self, text: str) -> np.ndarray: ...

    def embed_many(self, texts: Sequence[str]) -> np.ndarray: ...


class VisionDescriber(Protocol):
    def describe(self, image: bytes, context_text: str) -> str: ...


class ProviderError(RuntimeError):
    """A provider call failed after exhausting its retries."""


@dataclass(slots=True)
class EmbeddingPolicy:
    timeout: float = 30.0
    retries: int = 1
    retry_delay: float = 0.5
    batch_size: int = 10
    concurrency: int = 4
    batch_interval: float = 0.2


def call_with_policy(func: Callable[[], T], policy: EmbeddingPolicy, *, label: str = "provider") -> T:
    """Run ``func`` with a timeout, retrying on failure.

    Raises ProviderError once every attempt has failed or timed out.
    """
    attempts = max(policy.retries, 0) + 1
    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(func)
        try:
            return future.result(timeout=policy.timeout)
        except FutureTimeoutError:
            last_error = TimeoutError(f"{label} timed out after {policy.timeout}s")
            LOGGER.warning("%s attempt %d/%d timed out", label, attempt, attempts)
            future.cancel()
        except Exception as exc:
            last_error = exc
            LOGGER.warning("%s attempt %d/%d failed: %s", label, attempt, attempts, exc)
        finally:
            executor.shutdown(wait=False)
        if attempt < attempts and policy.retry_delay > 0:
            time.sleep(policy.retry_delay)
    raise ProviderError(f"{label} failed after {attempts} attempt(s): {last_error}") from last_error


def batch_embed(
    provider: EmbeddingProvider,
    texts: Sequence[str],
    policy: EmbeddingPolicy | None = None,
    progress: ProgressCallback | None = None,
    cancel: threading.Event | None = None,
) -> List[Optional[np.ndarray]]:
    """Embed ``texts`` in batches, at most ``policy.concurrency`` in flight.

    Batches are dispatched in windows with ``policy.batch_interval`` seconds
    between windows. A failed batch yields ``None`` for each of its texts;
    the other batches are unaffected. Once ``cancel`` is set no further
    window is dispatched and the remaining texts stay ``None``.
    """
    policy = policy or EmbeddingPolicy()
    size = max(policy.batch_size, 1)
    window = max(policy.concurrency, 1)
    batches = [list(range(start, min(start + size, len(texts)))) for start in range(0, len(texts), size)]
    results: List[Optional[np.ndarray]] = [None] * len(texts)
    done = 0

    def run(indices: List[int]) -> np.ndarray:
        chunk = [texts[i] for i in indices]
        return call_with_policy(lambda: provider.embed_many(chunk), policy, label="embed batch")

    with ThreadPoolExecutor(max_workers=window) as executor:
        for offset in range(0, len(batches), window):
            if offset and policy.batch_interval > 0:
                if cancel is not None:
                    cancel.wait(policy.batch_interval)
                else:
                    time.sleep(policy.batch_interval)
            if cancel is not None and cancel.is_set():
                LOGGER.info("Embedding cancelled after %d of %d text(s)", done, len(texts))
                break
            current = batches[offset : offset + window]
            futures = [(indices, executor.submit(run, indices)) for indices in current]
            for indices, future in futures:
                try:
                    vectors = np.asarray(future.result(), dtype="float32")
                except (ProviderError, ValueError) as exc:
                    LOGGER.error("Embedding batch of %d text(s) failed: %s", len(indices), exc)
                else:
                    if vectors.ndim != 2 or vectors.shape[0] != len(indices):
                        LOGGER.error(
                            "Embedding batch returned shape %s for %d text(s)",
                            vectors.shape,
                            len(indices),
                        )
                    else:
                        for index, vector in zip(indices, vectors):
                            results[index] = vector
                done += len(indices)
                if progress is not None:
                    progress(done, len(texts))
    return results
