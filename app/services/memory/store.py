from typing import Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.modules.docchat.services.errors import ConversationNotFound, InvalidInput
from app.modules.docchat.services.upstream import bounded

from . import repo
from .models import ChatMessage, Conversation

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant")


class ConversationStore:
    """Conversation history store. Each operation runs in its own committed transaction."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession], timeout: float = 10.0):
        self.sessions = sessions
        self.timeout = timeout

    async def _run(self, operation: str, fn, *args):
        async def _tx():
            async with self.sessions() as db:
                result = await fn(db, *args)
                await db.commit()
                return result

        return await bounded(_tx(), timeout=self.timeout, operation=f"store.{operation}")

    async def create_conversation(self, user_id: Optional[str], title: Optional[str] = None) -> Conversation:
        if not user_id or not user_id.strip():
            raise InvalidInput("A conversation requires an owner")
        conv = await self._run("create_conversation", repo.create_conversation, user_id.strip(), title)
        logger.info(f"[memory] Created conversation {conv.id} for user {conv.user_id}")
        return conv

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return await self._run("get_conversation", repo.get_conversation, conversation_id)

    async def require_conversation(self, conversation_id: Optional[str]) -> Conversation:
        if not conversation_id or not conversation_id.strip():
            raise InvalidInput("conversation_id is required")
        conv = await self.get_conversation(conversation_id)
        if conv is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        return conv

    async def list_conversations(self, user_id: str, limit: int = 50) -> List[Conversation]:
        return await self._run("list_conversations", repo.list_conversations, user_id, limit)

    async def rename_conversation(self, conversation_id: str, title: str) -> Conversation:
        if not title or not title.strip():
            raise InvalidInput("Title is required")

        async def _rename(db: AsyncSession) -> Optional[Conversation]:
            conv = await repo.get_conversation(db, conversation_id)
            if conv is not None:
                conv.title = title.strip()
            return conv

        conv = await self._run("rename_conversation", _rename)
        if conv is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        return conv

    async def delete_conversation(self, conversation_id: str) -> bool:
        return await self._run("delete_conversation", repo.delete_conversation, conversation_id)

    async def delete_everything(self) -> None:
        await self._run("delete_everything", repo.delete_everything)

    async def create_turn(self, role: str, text: str) -> str:
        """Create an unattached turn and return its id."""
        if role not in ROLES:
            raise InvalidInput(f"Unknown role: {role}")
        msg = await self._run("create_turn", repo.add_message, role, text)
        return msg.id

    async def append_turns(self, conversation_id: str, turn_ids: Sequence[str]) -> None:
        async def _append(db: AsyncSession) -> bool:
            conv = await repo.get_conversation(db, conversation_id, for_update=True)
            if conv is None:
                return False
            await repo.attach_messages(db, conv, list(turn_ids))
            return True

        if not await self._run("append_turns", _append):
            raise ConversationNotFound(f"Conversation {conversation_id} not found")

    async def record_exchange(self, conversation_id: str, user_text: str, assistant_text: str) -> Tuple[str, str]:
        """Create and append a user/assistant pair atomically; returns both turn ids.

        Nothing is written if the conversation is missing or any step fails.
        """
        ids = await self._run("record_exchange", repo.record_exchange, conversation_id, user_text, assistant_text)
        if ids is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        return ids

    async def messages(self, conversation_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        return await self._run("messages", repo.last_messages, conversation_id, limit)

    async def recent_turns(self, conversation_id: str, limit: int = 15) -> List[Dict[str, str]]:
        """Most recent turns, oldest first, as role/content dicts."""
        rows = await self.messages(conversation_id, limit)
        return [{"role": m.role, "content": m.content} for m in rows]
