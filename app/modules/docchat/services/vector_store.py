from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence
from uuid import uuid4
import logging

from qdrant_client import QdrantClient
from qdrant_client.http import models as qmodels
from starlette.concurrency import run_in_threadpool

from app.modules.docchat.services.errors import InvalidInput
from app.modules.docchat.services.upstream import bounded

logger = logging.getLogger("qdrant.client")

SCOPE_KEY = "conversation_id"


class RecordKind(str, Enum):
    DOCUMENT_CHUNK = "document_chunk"
    USER_PROMPT = "user_prompt"
    ASSISTANT_RESPONSE = "assistant_response"


@dataclass
class SemanticRecord:
    vector: List[float]
    payload: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid4()))

    @classmethod
    def build(
        cls,
        scope_id: str,
        kind: RecordKind,
        text: str,
        vector: List[float],
        **extra: Any,
    ) -> "SemanticRecord":
        payload: Dict[str, Any] = {
            SCOPE_KEY: scope_id,
            "kind": kind.value,
            "text": text,
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        payload.update(extra)
        return cls(vector=list(vector), payload=payload)


@dataclass
class ScoredRecord:
    payload: Dict[str, Any]
    score: float

    @property
    def text(self) -> str:
        return self.payload.get("text", "")


class VectorIndex(Protocol):
    async def upsert(self, records: Sequence[SemanticRecord]) -> int: ...

    async def search(self, vector: Sequence[float], top_k: int, scope_id: str) -> List[ScoredRecord]: ...

    async def delete_scope(self, scope_id: str) -> None: ...

    async def reset(self) -> None: ...


def require_scope(scope_id: Optional[str]) -> str:
    """Reject absent or blank scope ids before they reach the index."""
    if not scope_id or not str(scope_id).strip():
        raise InvalidInput("conversation id is required for semantic index operations")
    return str(scope_id)


def _scope_filter(scope_id: str) -> qmodels.Filter:
    return qmodels.Filter(
        must=[
            qmodels.FieldCondition(
                key=SCOPE_KEY,
                match=qmodels.MatchValue(value=scope_id),
            )
        ]
    )


class QdrantVectorIndex:
    """Semantic index bound to one Qdrant collection.

    The client is synchronous, so every round trip runs in the threadpool under a deadline.
    """

    def __init__(self, client: QdrantClient, collection: str, dim: int, timeout: float = 10.0):
        self.client = client
        self.collection = collection
        self.dim = dim
        self.timeout = timeout

    def ensure_collection(self) -> None:
        if not self.client.collection_exists(self.collection):
            logger.info(f"Creating collection: {self.collection}")
            self.client.create_collection(
                collection_name=self.collection,
                vectors_config=qmodels.VectorParams(size=self.dim, distance=qmodels.Distance.COSINE),
            )
        # Keyword index keeps scoped filtering fast on large collections
        try:
            self.client.create_payload_index(
                collection_name=self.collection,
                field_name=SCOPE_KEY,
                field_schema=qmodels.PayloadSchemaType.KEYWORD,
                wait=True,
            )
        except Exception as exc:
            logger.debug(f"Payload index for {SCOPE_KEY} already exists or skipped: {exc}")

    async def _run(self, operation: str, func, *args, **kwargs):
        return await bounded(
            run_in_threadpool(func, *args, **kwargs),
            timeout=self.timeout,
            operation=f"qdrant.{operation}",
        )

    async def upsert(self, records: Sequence[SemanticRecord]) -> int:
        if not records:
            return 0
        for record in records:
            require_scope(record.payload.get(SCOPE_KEY))
            if len(record.vector) != self.dim:
                raise ValueError(f"Vector has {len(record.vector)} dims, expected {self.dim}")

        points = [
            qmodels.PointStruct(id=r.id, vector=r.vector, payload=r.payload) for r in records
        ]
        await self._run(
            "upsert",
            self.client.upsert,
            collection_name=self.collection,
            points=points,
            wait=True,
        )
        logger.info(f"qdrant.upsert points={len(points)} collection={self.collection}")
        return len(points)

    async def search(self, vector: Sequence[float], top_k: int, scope_id: str) -> List[ScoredRecord]:
        scope_id = require_scope(scope_id)
        if top_k <= 0:
            return []
        response = await self._run(
            "search",
            self.client.query_points,
            collection_name=self.collection,
            query=list(vector),
            query_filter=_scope_filter(scope_id),
            limit=top_k,
            with_payload=True,
            with_vectors=False,
        )
        return [ScoredRecord(payload=p.payload or {}, score=p.score) for p in response.points]

    async def delete_scope(self, scope_id: str) -> None:
        scope_id = require_scope(scope_id)
        await self._run(
            "delete",
            self.client.delete,
            collection_name=self.collection,
            points_selector=qmodels.FilterSelector(filter=_scope_filter(scope_id)),
            wait=True,
        )
        logger.info(f"qdrant.delete scope={scope_id} collection={self.collection}")

    async def count(self, scope_id: str) -> int:
        scope_id = require_scope(scope_id)
        result = await self._run(
            "count",
            self.client.count,
            collection_name=self.collection,
            count_filter=_scope_filter(scope_id),
            exact=True,
        )
        return result.count

    async def reset(self) -> None:
        """Drop and recreate the whole collection. Administrative use only."""
        await self._run("delete_collection", self.client.delete_collection, self.collection)
        await run_in_threadpool(self.ensure_collection)
        logger.warning(f"qdrant.reset collection={self.collection}")
