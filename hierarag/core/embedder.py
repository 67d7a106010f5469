"""
Embedding providers.

Everything that maps text to a vector goes through :class:`Embedder`.
Storage and ranking only ever see the returned list of floats, so a real
model can replace the hash stand-in without touching them.  The one
requirement is determinism: the same text with the same provider and
configuration must produce the same vector, since index-time and
query-time vectors are compared directly.

Providers
---------
``hash``   — :class:`HashEmbedder`, sha256-seeded random unit vectors.
             Identical text gives identical vectors; different text gives
             near-orthogonal ones.  No semantics; a placeholder.
``openai`` — :class:`OpenAIEmbedder` (``pip install 'hierarag[semantic]'``).
``ollama`` — :class:`OllamaEmbedder`, local ``/api/embed`` endpoint.

Retries with back-off live in the network providers.  The indexer and the
query engine wrap every call in :func:`embed_with_timeout`.
"""

from __future__ import annotations

import hashlib
import logging
import math
import os
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import TYPE_CHECKING, Optional

import numpy as np
import requests

from ..errors import EmbeddingError, ValidationError

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMBED_MODEL = "text-embedding-3-small"
EMBED_DIMENSIONS = 1536
MAX_RETRIES = 3


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class Embedder(ABC):
    """Maps text to a fixed-length vector."""

    dimensions: int = EMBED_DIMENSIONS

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Return the embedding of *text* (length :attr:`dimensions`)."""


# ---------------------------------------------------------------------------
# Hash placeholder
# ---------------------------------------------------------------------------

class HashEmbedder(Embedder):
    """Deterministic hash-based embedding for tests and offline use.

    The sha256 digest of the text seeds a numpy generator that draws a
    Gaussian vector, normalised to unit length.
    """

    def __init__(self, dimensions: int = EMBED_DIMENSIONS) -> None:
        if dimensions <= 0:
            raise ValidationError("dimensions must be positive")
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8", errors="replace")).digest()
        rng = np.random.default_rng(np.frombuffer(digest, dtype=np.uint32))
        vec = rng.standard_normal(self.dimensions)
        return (vec / np.linalg.norm(vec)).tolist()


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

def _get_openai_client(api_key: str = ""):
    """Return an openai.OpenAI client, raising EmbeddingError if unusable."""
    try:
        import openai  # type: ignore
    except ImportError as exc:
        raise EmbeddingError(
            "openai package is required for the openai provider. "
            "Install it with: pip install 'hierarag[semantic]'"
        ) from exc
    api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
    if not api_key:
        raise EmbeddingError("OPENAI_API_KEY environment variable is not set.")
    return openai.OpenAI(api_key=api_key)


class OpenAIEmbedder(Embedder):
    """OpenAI Embeddings API provider.

    Parameters
    ----------
    model:
        Embedding model name.
    dimensions:
        Requested vector length (text-embedding-3 models can shorten).
    max_retries:
        Attempts per call; waits ``retry_delay * 2**(attempt-1)`` between them.
    """

    def __init__(
        self,
        model: str = EMBED_MODEL,
        dimensions: int = EMBED_DIMENSIONS,
        api_key: str = "",
        max_retries: int = MAX_RETRIES,
        retry_delay: float = 2.0,
        client=None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._client = client if client is not None else _get_openai_client(api_key)

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed a batch of texts, retrying with exponential back-off.

        Raises
        ------
        EmbeddingError
            If all retries are exhausted.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self._client.embeddings.create(
                    model=self.model,
                    input=texts,
                    dimensions=self.dimensions,
                )
                return [item.embedding for item in response.data]
            except Exception as exc:
                if attempt < self.max_retries:
                    wait = self.retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "Embedding API error (attempt %d/%d): %s, retrying in %.1fs",
                        attempt, self.max_retries, exc, wait,
                    )
                    time.sleep(wait)
                else:
                    raise EmbeddingError(
                        f"Embedding API failed after {self.max_retries} attempts: {exc}"
                    ) from exc
        return []  # unreachable


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------

class OllamaEmbedder(Embedder):
    """Local Ollama ``/api/embed`` provider."""

    def __init__(
        self,
        model: str,
        dimensions: int,
        base_url: str = "http://localhost:11434",
        max_retries: int = MAX_RETRIES,
        retry_delay: float = 2.0,
        timeout: float = 30.0,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._url = f"{base_url.rstrip('/')}/api/embed"

    def embed(self, text: str) -> list[float]:
        payload = {"model": self.model, "input": text}
        for attempt in range(1, self.max_retries + 1):
            try:
                response = requests.post(self._url, json=payload, timeout=(10, self.timeout))
                response.raise_for_status()
                embeddings = response.json().get("embeddings") or [[]]
                return embeddings[0]
            except (requests.exceptions.RequestException, ValueError) as exc:
                if attempt < self.max_retries:
                    wait = self.retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "[Ollama] Embedding error (attempt %d/%d): %s, retrying in %.1fs",
                        attempt, self.max_retries, exc, wait,
                    )
                    time.sleep(wait)
                else:
                    raise EmbeddingError(
                        f"Ollama embedding failed after {self.max_retries} attempts: {exc}"
                    ) from exc
        return []  # unreachable


# ---------------------------------------------------------------------------
# Factory and call wrapper
# ---------------------------------------------------------------------------

def create_embedder(config: "Config") -> Embedder:
    """Build the provider selected by ``config.EMBEDDING_PROVIDER``."""
    provider = config.EMBEDDING_PROVIDER
    if provider == "hash":
        return HashEmbedder(config.EMBEDDING_DIMENSIONS)
    if provider == "openai":
        return OpenAIEmbedder(
            model=config.EMBEDDING_MODEL,
            dimensions=config.EMBEDDING_DIMENSIONS,
            api_key=config.OPENAI_API_KEY,
            max_retries=config.EMBEDDING_MAX_RETRIES,
            retry_delay=config.EMBEDDING_RETRY_DELAY,
        )
    if provider == "ollama":
        return OllamaEmbedder(
            model=config.EMBEDDING_MODEL,
            dimensions=config.EMBEDDING_DIMENSIONS,
            base_url=config.OLLAMA_BASE_URL,
            max_retries=config.EMBEDDING_MAX_RETRIES,
            retry_delay=config.EMBEDDING_RETRY_DELAY,
            timeout=config.EMBEDDING_TIMEOUT,
        )
    raise ValidationError(f"Unknown embedding provider {provider!r}")


def _check_vector(vec, dimensions: int) -> list[float]:
    if vec is None or len(vec) != dimensions:
        got = 0 if vec is None else len(vec)
        raise EmbeddingError(f"Provider returned {got} dimensions, expected {dimensions}")
    out = [float(v) for v in vec]
    if not all(math.isfinite(v) for v in out):
        raise EmbeddingError("Provider returned a non-finite vector")
    return out


def embed_with_timeout(
    embedder: Embedder,
    text: str,
    timeout: Optional[float] = None,
) -> list[float]:
    """
    Call ``embedder.embed(text)`` with an upper bound on wall-clock time.

    Parameters
    ----------
    embedder:
        Any :class:`Embedder`.
    text:
        Text to embed.
    timeout:
        Seconds to wait; ``None`` or ``<= 0`` waits indefinitely.

    Returns
    -------
    list[float]
        The validated vector (length ``embedder.dimensions``).

    Raises
    ------
    EmbeddingError
        On timeout, provider failure, or a malformed vector.
    """
    if not timeout or timeout <= 0:
        try:
            vec = embedder.embed(text)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding provider failed: {exc}") from exc
        return _check_vector(vec, embedder.dimensions)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hierarag-embed")
    try:
        future = executor.submit(embedder.embed, text)
        try:
            vec = future.result(timeout=timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise EmbeddingError(f"Embedding timed out after {timeout:.1f}s") from exc
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding provider failed: {exc}") from exc
    finally:
        executor.shutdown(wait=False)
    return _check_vector(vec, embedder.dimensions)
