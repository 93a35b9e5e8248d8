from typing import List, Optional

from pydantic import BaseModel


class PromptRequest(BaseModel):
    # Optional so a missing prompt is reported by the pipeline's own 400, not a 422
    prompt: Optional[str] = None


class NewConversationRequest(BaseModel):
    user_id: Optional[str] = None
    title: Optional[str] = None


class RenameConversationRequest(BaseModel):
    title: Optional[str] = None


class ConversationResponse(BaseModel):
    conversation_id: str
    title: str


class ConversationListItem(BaseModel):
    id: str
    title: str
    created_at: str


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    created_at: str


class ConversationListResponse(BaseModel):
    success: bool = True
    conversations: List[ConversationListItem]


class MessagesResponse(BaseModel):
    success: bool = True
    messages: List[MessageResponse]
