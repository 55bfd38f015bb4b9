"""HTTP client and batching helpers for the embedding service."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence
from urllib.parse import urljoin

import numpy as np
import requests

from .errors import DimensionMismatchError, EmbeddingError
from .matching import CanonicalIndex
from .models import CanonicalIntent

LOGGER = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_MODEL = "text-embedding-3-small"


class EmbeddingProvider(Protocol):
    def embed(self, texts: List[str]) -> List[Sequence[float]]:
        ...


class EmbeddingClient:
    """Client for an OpenAI-compatible ``/v1/embeddings`` endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str = DEFAULT_MODEL,
        dimensions: Optional[int] = None,
        verify_ssl: bool = True,
        timeout: int = 60,
        rate_limit_per_minute: Optional[int] = None,
    ) -> None:
        self.base_url = self._normalise_base_url(base_url)
        if self.base_url.rstrip("/") != base_url.rstrip("/"):
            LOGGER.debug("Normalised embedding base URL from %s to %s", base_url, self.base_url)
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        self.model = model
        self.dimensions = dimensions
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.rate_limit_per_minute = rate_limit_per_minute
        self._sleep_between_requests = (
            60.0 / rate_limit_per_minute if rate_limit_per_minute else 0.0
        )
        self._last_request_time: float | None = None

    # -- Low level request helpers -------------------------------------------------
    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = self._build_url(path)
        if self._sleep_between_requests and self._last_request_time is not None:
            elapsed = time.monotonic() - self._last_request_time
            remaining = self._sleep_between_requests - elapsed
            if remaining > 0:
                LOGGER.debug("Sleeping %.2fs before %s %s to respect rate limits", remaining, method, url)
                time.sleep(remaining)
        LOGGER.debug("HTTP %s %s", method, url)
        try:
            response = self.session.request(
                method,
                url,
                timeout=self.timeout,
                verify=self.verify_ssl,
                **kwargs,
            )
            self._last_request_time = time.monotonic()
            LOGGER.debug("Response status=%s", response.status_code)
            response.raise_for_status()
            return response.json() if response.content else {}
        except requests.RequestException as exc:
            raise EmbeddingError(f"Embedding request to {url} failed: {exc}") from exc
        except ValueError as exc:
            raise EmbeddingError(f"Embedding service returned invalid JSON: {exc}") from exc

    def _normalise_base_url(self, base_url: str) -> str:
        """Trim a trailing ``/v1`` so paths can be joined consistently."""

        cleaned = base_url.strip().rstrip("/")
        if cleaned.lower().endswith("/v1"):
            cleaned = cleaned[: -len("/v1")]
        cleaned = cleaned.rstrip("/")
        return cleaned or base_url.rstrip("/")

    def _build_url(self, path: str) -> str:
        normalised_path = path.lstrip("/")
        base = self.base_url.rstrip("/") + "/"
        return urljoin(base, normalised_path)

    # -- Public API ----------------------------------------------------------------
    def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed ``texts`` and return vectors in input order."""
        if not texts:
            return []
        payload: Dict[str, Any] = {"model": self.model, "input": list(texts)}
        if self.dimensions:
            payload["dimensions"] = self.dimensions
        body = self._request("POST", "/v1/embeddings", json=payload)
        items = body.get("data") if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise EmbeddingError("Embedding response did not contain a 'data' list")
        if not all(isinstance(item, dict) for item in items):
            raise EmbeddingError("Embedding response items must be objects")
        try:
            ordered = sorted(items, key=lambda item: int(item.get("index", 0)))
            vectors = [[float(value) for value in item["embedding"]] for item in ordered]
        except (KeyError, TypeError, ValueError) as exc:
            raise EmbeddingError(f"Malformed embedding item: {exc}") from exc
        if len(vectors) != len(texts):
            raise EmbeddingError(f"Requested {len(texts)} embeddings but received {len(vectors)}")
        return vectors


@dataclass
class EmbeddingBatchResult:
    """Vectors keyed by input position plus failure bookkeeping."""

    vectors: Dict[int, np.ndarray] = field(default_factory=dict)
    failed_batches: int = 0
    errors: List[str] = field(default_factory=list)
    dimension: Optional[int] = None
    cancelled: bool = False

    @property
    def embedded_count(self) -> int:
        return len(self.vectors)

    def positions(self) -> List[int]:
        return sorted(self.vectors)


def embed_in_batches(
    provider: EmbeddingProvider,
    texts: Sequence[str],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_batch: Optional[Callable[[int, int], None]] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    expected_dimension: Optional[int] = None,
) -> EmbeddingBatchResult:
    """Embed ``texts`` sequentially in chunks of ``batch_size``.

    A batch that fails with :class:`EmbeddingError` is logged and counted and
    the remaining batches still run. Vectors whose length differs from the
    first vector seen (or ``expected_dimension``) raise
    :class:`DimensionMismatchError`.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    result = EmbeddingBatchResult(dimension=expected_dimension)
    total_batches = (len(texts) + batch_size - 1) // batch_size
    for batch_number, start in enumerate(range(0, len(texts), batch_size), start=1):
        if should_cancel and should_cancel():
            LOGGER.info("Embedding cancelled before batch %s of %s", batch_number, total_batches)
            result.cancelled = True
            break
        chunk = list(texts[start:start + batch_size])
        try:
            vectors = provider.embed(chunk)
            if len(vectors) != len(chunk):
                raise EmbeddingError(f"Expected {len(chunk)} vectors, received {len(vectors)}")
        except EmbeddingError as exc:
            result.failed_batches += 1
            result.errors.append(f"batch {batch_number}: {exc}")
            LOGGER.warning("Embedding batch %s of %s failed: %s", batch_number, total_batches, exc)
        else:
            for offset, vector in enumerate(vectors):
                array = np.asarray(vector, dtype=np.float64)
                if result.dimension is None:
                    result.dimension = int(array.shape[0])
                elif array.shape[0] != result.dimension:
                    raise DimensionMismatchError(
                        result.dimension, int(array.shape[0]), context=f"text {start + offset}"
                    )
                result.vectors[start + offset] = array
            LOGGER.debug("Embedded batch %s of %s (%s texts)", batch_number, total_batches, len(chunk))
        if on_batch:
            on_batch(min(start + batch_size, len(texts)), len(texts))
    LOGGER.info(
        "Embedded %s of %s texts (%s failed batches)",
        result.embedded_count,
        len(texts),
        result.failed_batches,
    )
    return result


def build_canonical_index(
    intents: Sequence[CanonicalIntent],
    provider: EmbeddingProvider,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> CanonicalIndex:
    """Embed every canonical intent once and freeze the result for the run.

    Failed batches are recorded on ``CanonicalIndex.failed_batches`` so callers
    can report them alongside their own embedding errors.
    """
    if not intents:
        return CanonicalIndex.empty()
    batch = embed_in_batches(provider, [intent.embedding_text() for intent in intents], batch_size=batch_size)
    vectors = [batch.vectors.get(position) for position in range(len(intents))]
    index = CanonicalIndex.from_vectors(intents, vectors, failed_batches=batch.failed_batches)
    if batch.failed_batches:
        embedded = set(index.intent_ids)
        missing = [intent.intent_id for intent in intents if intent.intent_id not in embedded]
        LOGGER.warning(
            "%s canonical embedding batch(es) failed; missing intents: %s",
            batch.failed_batches,
            ", ".join(missing),
        )
    return index
