from __future__ import annotations

import logging
from typing import Any

import httpx

from relay_workers.core.errors import DataQualityError, EmbeddingConfigurationError
from relay_workers.services.ai_client import post_json

logger = logging.getLogger(__name__)

DIMENSION_CHECK_TEXT = "embedding dimension check"


class EmbeddingClient:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        model: str,
        dimension: int,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.dimension = dimension
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in one request; every vector must have the configured dimension."""
        if not texts:
            return []

        body = await post_json(
            url=f"{self.base_url}/embeddings",
            payload={"model": self.model, "input": texts},
            headers={"Authorization": f"Bearer {self.api_key}"} if self.api_key else {},
            timeout_seconds=self.timeout_seconds,
            client=self._client,
        )
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list) or len(data) != len(texts):
            raise DataQualityError("embedding response does not contain one vector per input")

        ordered = sorted(data, key=lambda item: item.get("index", 0) if isinstance(item, dict) else 0)
        return [self._validate_vector(item) for item in ordered]

    async def verify_dimension(self) -> None:
        try:
            vectors = await self.embed([DIMENSION_CHECK_TEXT])
        except DataQualityError as exc:
            raise EmbeddingConfigurationError(
                f"embedding model {self.model} does not produce {self.dimension}-dimensional vectors: {exc}"
            ) from exc
        logger.info("embedding model %s verified at dimension %s", self.model, len(vectors[0]))

    def _validate_vector(self, item: Any) -> list[float]:
        vector = item.get("embedding") if isinstance(item, dict) else None
        if not isinstance(vector, list):
            raise DataQualityError("embedding item has no vector")
        if len(vector) != self.dimension:
            raise DataQualityError(f"embedding dimension mismatch: expected {self.dimension}, got {len(vector)}")
        try:
            return [float(value) for value in vector]
        except (TypeError, ValueError) as exc:
            raise DataQualityError("embedding vector contains non-numeric values") from exc
