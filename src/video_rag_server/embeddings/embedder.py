"""
Embedding Client

This module implements the embedding capability used by the service. It
talks to the OpenAI embeddings API (or any compatible provider) and is
responsible for:

- Efficient batching of text inputs
- Network and transport error isolation
- Strict response validation
- Requesting vectors of the configured dimension

The class holds no per-request state and is safe to share across requests.
Vector sanitation is not done here; see ``EmbeddingGateway``.
"""

from __future__ import annotations

from typing import List, Sequence, Optional
import logging
import httpx

from ..config import settings
from ..core.errors import EmbeddingFailure

logger = logging.getLogger("rag.embedder")


class Embedder:
    """
    Asynchronous embedding generator for single texts and batches.

    This class performs no caching and no retries; failures surface as
    ``EmbeddingFailure``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize an Embedder.

        Parameters
        ----------
        api_key : Optional[str]
            Optional override for the API key. Defaults to settings.openai_api_key.

        model : Optional[str]
            Optional override for embedding model. Defaults to settings.embedding_model.

        dimension : Optional[int]
            Requested vector size. Defaults to settings.embedding_dimension.

        base_url : Optional[str]
            Base URL of the OpenAI-compatible API.

        timeout : float
            HTTP timeout for each request.

        transport : Optional[httpx.AsyncBaseTransport]
            Custom transport, used by tests to stub the provider.
        """
        self.api_key = api_key or settings.openai_api_key.get_secret_value()
        self.model = model or settings.embedding_model
        self.dimension = dimension or settings.embedding_dimension
        self.url = f"{(base_url or settings.openai_base_url).rstrip('/')}/embeddings"
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        vectors = await self.embed_batch([text])
        if len(vectors) != 1:
            raise EmbeddingFailure(
                f"Expected 1 embedding, provider returned {len(vectors)}"
            )
        return vectors[0]

    async def embed_batch(
        self,
        texts: Sequence[str],
        batch_size: Optional[int] = None,
    ) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Parameters
        ----------
        texts : Sequence[str]
            List or sequence of input text strings.

        batch_size : Optional[int]
            Maximum batch size per request. Defaults to
            settings.embedding_batch_size.

        Returns
        -------
        List[List[float]]
            One embedding per input text, in input order.

        Raises
        ------
        EmbeddingFailure
            If any batch fails or the response is malformed.
        """
        if not texts:
            return []

        size = batch_size or settings.embedding_batch_size
        all_embeddings: List[List[float]] = []
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            for start in range(0, len(texts), size):
                batch = list(texts[start : start + size])
                payload = {
                    "model": self.model,
                    "input": batch,
                    "dimensions": self.dimension,
                }

                try:
                    response = await client.post(
                        self.url,
                        json=payload,
                        headers=headers,
                    )
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.error(
                        "Embedding request failed (%s): batch size=%d, error=%s",
                        type(exc).__name__,
                        len(batch),
                        str(exc),
                    )
                    raise EmbeddingFailure(
                        f"Embedding generation failed: {type(exc).__name__}"
                    ) from exc

                embeddings = self._extract_embeddings(response.json())
                if len(embeddings) != len(batch):
                    raise EmbeddingFailure(
                        f"Provider returned {len(embeddings)} embeddings "
                        f"for {len(batch)} inputs"
                    )
                all_embeddings.extend(embeddings)

        return all_embeddings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_embeddings(data: dict) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"index": 0, "embedding": [...]}, ... ] }

        Records are reordered by ``index`` when present.

        Raises
        ------
        EmbeddingFailure
            If the API returns unexpected structure.
        """
        if "data" not in data:
            raise EmbeddingFailure("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise EmbeddingFailure("'data' field must be a list.")

        if all(isinstance(r, dict) and "index" in r for r in records):
            records = sorted(records, key=lambda r: r["index"])

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise EmbeddingFailure(
                    f"Malformed embedding record at index {index}"
                )

            emb = record["embedding"]
            if not isinstance(emb, list) or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise EmbeddingFailure(
                    f"Invalid embedding vector at index {index}: must be float list."
                )

            embeddings.append([float(x) for x in emb])

        return embeddings
