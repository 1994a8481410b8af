# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Embedding client: provider call -> classified error -> bounded retry.

Provider failures are classified once, where the provider is called:
network-class failures become TransientProviderError and are retried with
exponential backoff (1s, 2s, 4s, ...); everything else becomes
PermanentProviderError and propagates on the first attempt.
"""
import socket
import sys
import time
from typing import Callable, Sequence, TypeVar
from urllib.error import URLError

import httpx
import openai
from chromadb.utils import embedding_functions

from .config import Config

T = TypeVar("T")

EmbeddingFunction = Callable[[list[str]], Sequence[Sequence[float]]]

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    socket.gaierror,
    URLError,
    httpx.TransportError,
    openai.APIConnectionError,
)


class EmbeddingProviderError(Exception):
    pass


class TransientProviderError(EmbeddingProviderError):
    """Network-class failure: connection refused, DNS, timeout."""


class PermanentProviderError(EmbeddingProviderError):
    """Auth, bad request, malformed response – retrying will not help."""


def classify_provider_error(exc: BaseException) -> EmbeddingProviderError:
    if isinstance(exc, EmbeddingProviderError):
        return exc
    message = f"{type(exc).__name__}: {exc}"
    if isinstance(exc, _TRANSIENT_ERRORS):
        return TransientProviderError(message)
    return PermanentProviderError(message)


def with_retry(
    fn: Callable[[], T],
    max_retries: int = 3,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call fn, retrying transient provider errors up to max_retries
    attempts in total. Attempt n waits 2 ** (n - 1) seconds before the
    next one; the last error propagates."""
    attempts = max(1, max_retries)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except TransientProviderError as e:
            if attempt == attempts:
                raise
            delay = 2 ** (attempt - 1)
            print(f"Warning: embedding call failed ({e}), retry {attempt}/{attempts - 1} in {delay}s", file=sys.stderr)
            sleep(delay)
    raise RuntimeError("unreachable")


def make_embedding_function(config: Config) -> EmbeddingFunction:
    if config.embedding_provider == "openai":
        return embedding_functions.OpenAIEmbeddingFunction(
            api_key=config.openai_api_key,
            model_name=config.openai_embedding_model,
        )
    if config.embedding_provider == "huggingface":
        return embedding_functions.HuggingFaceEmbeddingFunction(
            api_key=config.huggingface_api_key,
            model_name=config.embedding_model,
        )
    return embedding_functions.SentenceTransformerEmbeddingFunction(
        model_name=config.embedding_model
    )


class EmbeddingClient:
    """Batches texts and sends each batch through with_retry."""

    def __init__(
        self,
        embedding_fn: EmbeddingFunction,
        batch_size: int = 64,
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._ef = embedding_fn
        self.batch_size = max(1, batch_size)
        self.max_retries = max_retries
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Config, embedding_fn: EmbeddingFunction | None = None) -> "EmbeddingClient":
        return cls(
            embedding_fn or make_embedding_function(config),
            batch_size=config.embedding_batch_size,
            max_retries=config.embedding_max_retries,
        )

    def _call_provider(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = self._ef(texts)
        except EmbeddingProviderError:
            raise
        except Exception as e:
            raise classify_provider_error(e) from e
        if vectors is None or len(vectors) != len(texts):
            got = 0 if vectors is None else len(vectors)
            raise PermanentProviderError(
                f"Provider returned {got} vectors for {len(texts)} texts"
            )
        return [[float(x) for x in v] for v in vectors]

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = list(texts[i : i + self.batch_size])
            vectors.extend(with_retry(
                lambda batch=batch: self._call_provider(batch),
                max_retries=self.max_retries,
                sleep=self._sleep,
            ))
        return vectors

    def embed_query(self, text: str) -> list[float]:
        return self.embed([text])[0]
