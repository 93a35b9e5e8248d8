from typing import List, Sequence
import logging

from app.modules.docchat.services.embeddings import Embedder
from app.modules.docchat.services.upstream import bounded
from app.modules.docchat.services.vector_store import VectorIndex, require_scope
from core.utils.perf import profile_stage

logger = logging.getLogger(__name__)


def build_context(texts: Sequence[str]) -> str:
    """Join retrieved texts into one context block, order preserved."""
    return "\n\n".join(t for t in texts if t)


class Retriever:
    """Scoped similarity search over one conversation's semantic memory."""

    def __init__(self, embedder: Embedder, index: VectorIndex, embed_timeout: float = 20.0):
        self.embedder = embedder
        self.index = index
        self.embed_timeout = embed_timeout

    @profile_stage("retrieve")
    async def retrieve(self, conversation_id: str, question: str, top_k: int = 5) -> List[str]:
        conversation_id = require_scope(conversation_id)
        vector = await bounded(self.embedder.embed(question), timeout=self.embed_timeout, operation="embed.query")
        hits = await self.index.search(vector, top_k=top_k, scope_id=conversation_id)
        texts = [h.text for h in hits[:top_k]]
        logger.info(f"[retriever] {conversation_id}: {len(texts)} hits (top_k={top_k})")
        return texts
