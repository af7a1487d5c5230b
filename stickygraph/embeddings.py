"""Embedding generation for the semantic index.

Embeddings come from LiteLLM (text-embedding-3-small by default). Without a
configured API key no embedder is built and semantic search stays inert.
"""

import asyncio
from collections import OrderedDict
from typing import Protocol

from stickygraph.config import Config
from stickygraph.exceptions import EmbeddingError
from stickygraph.log_config import get_logger, log_timing

log = get_logger("embeddings")


class Embedder(Protocol):
    """Anything that turns text into a fixed-size vector."""

    dimension: int

    async def embed(self, text: str) -> list[float]: ...


class LiteLLMEmbedder:
    """Async LiteLLM embedder with a small LRU cache keyed by text.

    Args:
        model: LiteLLM model name
        api_key: Provider API key
        dimension: Vector size requested from the provider
        timeout: Seconds before a provider call is abandoned
        cache_size: Number of embeddings kept in memory
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        dimension: int = 1536,
        timeout: float = 30.0,
        cache_size: int = 1000,
    ):
        self.model = model
        self.api_key = api_key
        self.dimension = dimension
        self.timeout = timeout
        self.cache_size = cache_size
        self._cache: OrderedDict[str, list[float]] = OrderedDict()

    async def embed(self, text: str) -> list[float]:
        cached = self._cache.get(text)
        if cached is not None:
            self._cache.move_to_end(text)
            return cached

        from litellm import aembedding

        try:
            with log_timing(f"Embedding {len(text)} chars via {self.model}", log):
                response = await asyncio.wait_for(
                    aembedding(
                        model=self.model,
                        input=[text],
                        api_key=self.api_key,
                        dimensions=self.dimension,
                        timeout=self.timeout,
                    ),
                    timeout=self.timeout,
                )
        except asyncio.TimeoutError as e:
            raise EmbeddingError(f"Embedding timed out after {self.timeout}s") from e
        except Exception as e:
            raise EmbeddingError(f"Embedding failed: {e}") from e

        vector = list(response.data[0]["embedding"])
        if len(vector) != self.dimension:
            raise EmbeddingError(f"Expected {self.dimension}-dim embedding, got {len(vector)}")

        self._cache[text] = vector
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return vector


def create_embedder(config: Config) -> LiteLLMEmbedder | None:
    """Build the configured embedder, or None when no API key is set."""
    if not config.embedding_api_key:
        log.info("No embedding API key configured, semantic search disabled")
        return None
    log.info(f"Embeddings via {config.embedding_model} ({config.embedding_dim} dims)")
    return LiteLLMEmbedder(
        model=config.embedding_model,
        api_key=config.embedding_api_key,
        dimension=config.embedding_dim,
        timeout=config.embedding_timeout,
        cache_size=config.embedding_cache_size,
    )
