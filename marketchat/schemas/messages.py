from pydantic import BaseModel, ConfigDict, field_validator
from typing import Literal, Optional, List
from datetime import datetime
import uuid

from ..clock import as_utc
from .users import UserSummaryOut, ApartmentPreviewOut


class MessageIn(BaseModel):
    content: str
    # SYSTEM messages are only written by the service itself
    message_type: Literal['TEXT', 'IMAGE'] = 'TEXT'


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    content: str
    message_type: str
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime
    sender: Optional[UserSummaryOut] = None

    @field_validator('read_at', 'created_at')
    @classmethod
    def _utc(cls, v):
        return as_utc(v)

    @field_validator('message_type', mode='before')
    @classmethod
    def _enum_value(cls, v):
        return getattr(v, 'value', v)


class ConversationHeaderOut(BaseModel):
    id: uuid.UUID
    apartment: Optional[ApartmentPreviewOut] = None
    other_user: Optional[UserSummaryOut] = None


class MessagePageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class MessagePageOut(BaseModel):
    conversation: ConversationHeaderOut
    items: List[MessageOut]
    meta: MessagePageMeta


class MarkReadIn(BaseModel):
    up_to_message_id: Optional[uuid.UUID] = None


class MarkReadOut(BaseModel):
    marked: int


class UnreadCountOut(BaseModel):
    unread_count: int
