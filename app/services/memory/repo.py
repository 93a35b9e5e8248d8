from typing import List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ChatMessage, Conversation


async def create_conversation(db: AsyncSession, user_id: str, title: Optional[str] = None) -> Conversation:
    conv = Conversation(user_id=user_id, title=title or "New chat", message_ids=[])
    db.add(conv)
    await db.flush()
    return conv


async def get_conversation(
    db: AsyncSession, conversation_id: str, for_update: bool = False
) -> Optional[Conversation]:
    # Row lock on server databases; SQLite relies on BEGIN IMMEDIATE instead
    return await db.get(Conversation, conversation_id, with_for_update=for_update)


async def list_conversations(db: AsyncSession, user_id: str, limit: int = 50) -> List[Conversation]:
    q = (
        select(Conversation)
        .where(Conversation.user_id == user_id)
        .order_by(Conversation.created_at.desc())
        .limit(limit)
    )
    res = await db.execute(q)
    return list(res.scalars().all())


async def add_message(db: AsyncSession, role: str, content: str, conversation_id: Optional[str] = None) -> ChatMessage:
    msg = ChatMessage(conversation_id=conversation_id, role=role, content=content)
    db.add(msg)
    await db.flush()
    return msg


async def attach_messages(db: AsyncSession, conv: Conversation, message_ids: Sequence[str]) -> None:
    """Append ids to the conversation's ordered list and set each message's back-reference."""
    rows = await db.execute(select(ChatMessage).where(ChatMessage.id.in_(list(message_ids))))
    messages = {m.id: m for m in rows.scalars().all()}
    missing = [mid for mid in message_ids if mid not in messages]
    if missing:
        raise LookupError(f"Unknown message ids: {missing}")
    for mid in message_ids:
        messages[mid].conversation_id = conv.id
    # Reassign so the JSON column is marked dirty
    conv.message_ids = [*(conv.message_ids or []), *message_ids]
    await db.flush()


async def record_exchange(
    db: AsyncSession, conversation_id: str, user_text: str, assistant_text: str
) -> Optional[tuple[str, str]]:
    """Create a user/assistant pair and append it to the conversation in the caller's transaction."""
    conv = await get_conversation(db, conversation_id, for_update=True)
    if conv is None:
        return None
    user_msg = await add_message(db, "user", user_text)
    assistant_msg = await add_message(db, "assistant", assistant_text)
    await attach_messages(db, conv, [user_msg.id, assistant_msg.id])
    return user_msg.id, assistant_msg.id


async def last_messages(db: AsyncSession, conversation_id: str, limit: Optional[int] = 15) -> List[ChatMessage]:
    conv = await db.get(Conversation, conversation_id)
    if conv is None:
        return []
    wanted = list(conv.message_ids or [])[-limit:] if limit else list(conv.message_ids or [])
    if not wanted:
        return []
    rows = await db.execute(select(ChatMessage).where(ChatMessage.id.in_(wanted)))
    by_id = {m.id: m for m in rows.scalars().all()}
    # Turn order comes from the conversation's list, not from timestamps
    return [by_id[mid] for mid in wanted if mid in by_id]


async def delete_conversation(db: AsyncSession, conversation_id: str) -> bool:
    await db.execute(delete(ChatMessage).where(ChatMessage.conversation_id == conversation_id))
    res = await db.execute(delete(Conversation).where(Conversation.id == conversation_id))
    return (res.rowcount or 0) > 0


async def delete_everything(db: AsyncSession) -> None:
    await db.execute(delete(ChatMessage))
    await db.execute(delete(Conversation))
