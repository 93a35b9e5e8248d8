"""Dual write of a finished exchange to conversation history and the semantic index.

Ordering invariant: the history write completes before any semantic record is
written. A reader that finds a SemanticRecord can therefore assume its Turn
exists; the reverse does not hold. The two stores are eventually, not
atomically, consistent:

* history write fails  -> UpstreamUnavailable is raised, nothing is indexed;
* index write fails    -> the turn stays recorded, the failure is logged and
                          reported through ``RecordedTurn.indexed``. It is not
                          retried here; re-ingesting restores retrieval quality.
"""

from dataclasses import dataclass
from typing import List
import asyncio
import logging

from app.modules.docchat.services.embeddings import Embedder
from app.modules.docchat.services.errors import InvalidInput, UpstreamUnavailable
from app.modules.docchat.services.upstream import bounded
from app.modules.docchat.services.vector_store import (
    RecordKind,
    SemanticRecord,
    VectorIndex,
    require_scope,
)
from app.services.memory.store import ConversationStore
from core.utils.perf import profile_stage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedTurn:
    conversation_id: str
    user_turn_id: str
    assistant_turn_id: str
    indexed: bool


class PersistenceCoordinator:
    def __init__(
        self,
        store: ConversationStore,
        embedder: Embedder,
        index: VectorIndex,
        embed_timeout: float = 20.0,
    ):
        self.store = store
        self.embedder = embedder
        self.index = index
        self.embed_timeout = embed_timeout

    @profile_stage("finalize")
    async def finalize(self, conversation_id: str, user_text: str, assistant_text: str) -> RecordedTurn:
        conversation_id = require_scope(conversation_id)
        if not user_text or not assistant_text:
            raise InvalidInput("Both user and assistant text are required to record a turn")

        # 1. history, both turns and the append in one transaction
        user_turn_id, assistant_turn_id = await self.store.record_exchange(
            conversation_id, user_text, assistant_text
        )
        logger.info(f"[persistence] {conversation_id}: recorded turns {user_turn_id}, {assistant_turn_id}")

        # 2. semantic index, only after history is durable
        indexed = await self._index_exchange(conversation_id, user_text, assistant_text)
        return RecordedTurn(conversation_id, user_turn_id, assistant_turn_id, indexed)

    async def _index_exchange(self, conversation_id: str, user_text: str, assistant_text: str) -> bool:
        try:
            user_vec, assistant_vec = await asyncio.gather(
                bounded(self.embedder.embed(user_text), timeout=self.embed_timeout, operation="embed.user_prompt"),
                bounded(
                    self.embedder.embed(assistant_text),
                    timeout=self.embed_timeout,
                    operation="embed.assistant_response",
                ),
            )
            records: List[SemanticRecord] = [
                SemanticRecord.build(conversation_id, RecordKind.USER_PROMPT, user_text, user_vec),
                SemanticRecord.build(conversation_id, RecordKind.ASSISTANT_RESPONSE, assistant_text, assistant_vec),
            ]
            await self.index.upsert(records)
            return True
        except (UpstreamUnavailable, ValueError) as e:
            logger.warning(
                f"[persistence] {conversation_id}: semantic index write failed after history write "
                f"(turn kept, retrieval degraded): {e}"
            )
            return False

    async def forget(self, conversation_id: str) -> bool:
        """Delete a conversation's semantic records, then its history.

        Index first, so no record ever outlives its conversation. If the index
        delete fails the conversation is left intact and the error propagates.
        """
        conversation_id = require_scope(conversation_id)
        await self.index.delete_scope(conversation_id)
        deleted = await self.store.delete_conversation(conversation_id)
        logger.info(f"[persistence] {conversation_id}: forgotten (history_deleted={deleted})")
        return deleted

    async def reset_all(self) -> None:
        """Administrative wipe of both stores."""
        await self.index.reset()
        await self.store.delete_everything()
        logger.warning("[persistence] all conversations and semantic records deleted")
