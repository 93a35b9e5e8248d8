from typing import List
from urllib.parse import urlparse
import asyncio
import logging
import re

import numpy as np

from app.modules.docchat.services.embeddings import Embedder
from app.modules.docchat.services.errors import InvalidInput, NoContent
from app.modules.docchat.services.ingestion.chunker import DocumentChunk, chunk_text
from app.modules.docchat.services.ingestion.fetcher import DocumentFetcher
from app.modules.docchat.services.upstream import bounded
from app.modules.docchat.services.vector_store import RecordKind, SemanticRecord, VectorIndex, require_scope
from core.utils.perf import profile_stage

logger = logging.getLogger(__name__)

_HTTPS_URL = re.compile(r"^https://\S+$")


def is_https_url(value: str | None) -> bool:
    """Absolute https URL with a host and no whitespace."""
    if not value or not _HTTPS_URL.match(value.strip()):
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme == "https" and bool(parsed.hostname)


def require_https_url(value: str | None) -> str:
    if not is_https_url(value):
        raise InvalidInput("Prompt must be an absolute https:// URL")
    return value.strip()


class Ingestor:
    """Fetch a document, split it into overlapping chunks and index every chunk for one conversation."""

    def __init__(
        self,
        fetcher: DocumentFetcher,
        embedder: Embedder,
        index: VectorIndex,
        chunk_size: int = 500,
        chunk_overlap: int = 50,
        concurrency: int = 4,
        embed_timeout: float = 20.0,
    ):
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        self.fetcher = fetcher
        self.embedder = embedder
        self.index = index
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.concurrency = max(1, concurrency)
        self.embed_timeout = embed_timeout

    async def _embed_chunks(self, chunks: List[DocumentChunk]) -> List[List[float]]:
        # Chunks are independent, so embedding order across calls does not matter
        gate = asyncio.Semaphore(self.concurrency)

        async def _one(chunk: DocumentChunk) -> List[float]:
            async with gate:
                return await bounded(
                    self.embedder.embed(chunk.text),
                    timeout=self.embed_timeout,
                    operation=f"embed.chunk[{chunk.index}]",
                )

        vectors = await asyncio.gather(*(_one(c) for c in chunks))
        matrix = np.asarray(vectors, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[0] != len(chunks):
            raise ValueError(f"Embedder returned shape {matrix.shape} for {len(chunks)} chunks")
        return matrix.tolist()

    @profile_stage("ingest")
    async def ingest(self, conversation_id: str, url: str) -> str:
        url = require_https_url(url)
        conversation_id = require_scope(conversation_id)

        text = await self.fetcher.fetch_clean_text(url)
        if not text or not text.strip():
            logger.warning(f"[ingestor] {conversation_id}: no content at {url}")
            raise NoContent(f"No content could be extracted from {url}")

        chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)
        vectors = await self._embed_chunks(chunks)
        records = [
            SemanticRecord.build(
                conversation_id,
                RecordKind.DOCUMENT_CHUNK,
                chunk.text,
                vector,
                source_url=url,
                chunk_index=chunk.index,
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        stored = await self.index.upsert(records)
        logger.info(f"[ingestor] {conversation_id}: {url} -> {len(text)} chars, {stored} chunks indexed")
        return text
