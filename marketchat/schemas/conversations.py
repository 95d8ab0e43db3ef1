from pydantic import BaseModel, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime
import uuid

from ..clock import as_utc
from .messages import MessageOut
from .users import UserSummaryOut, ApartmentPreviewOut


class StartConversationIn(BaseModel):
    apartment_id: uuid.UUID
    message: str


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    apartment_id: uuid.UUID
    participant_a_id: uuid.UUID
    participant_b_id: uuid.UUID
    last_message_at: Optional[datetime] = None
    created_at: datetime

    @field_validator('last_message_at', 'created_at')
    @classmethod
    def _utc(cls, v):
        return as_utc(v)


class StartConversationOut(BaseModel):
    conversation: ConversationOut
    message: MessageOut
    created: bool


class ConversationSummaryOut(BaseModel):
    id: uuid.UUID
    apartment: Optional[ApartmentPreviewOut] = None
    other_user: Optional[UserSummaryOut] = None
    last_message: Optional[MessageOut] = None
    unread_count: int
    last_message_at: Optional[datetime] = None
    created_at: datetime

    @field_validator('last_message_at', 'created_at')
    @classmethod
    def _utc(cls, v):
        return as_utc(v)


class ListMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ConversationListOut(BaseModel):
    items: List[ConversationSummaryOut]
    meta: ListMeta
