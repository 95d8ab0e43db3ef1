import enum
import uuid
from sqlalchemy import Column, Boolean, CheckConstraint, Text, DateTime, Enum, ForeignKey, Index, Uuid
from . import Base


class MessageType(str, enum.Enum):
    TEXT = 'TEXT'
    IMAGE = 'IMAGE'
    SYSTEM = 'SYSTEM'


class Message(Base):
    __tablename__ = 'messages'
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)
    sender_id = Column(Uuid, ForeignKey('users.id', ondelete='RESTRICT'), index=True, nullable=False)
    content = Column(Text, nullable=False)
    # non-native so adding a member does not need a type migration
    message_type = Column(Enum(MessageType, native_enum=False, length=20, name='message_type'),
                          nullable=False, default=MessageType.TEXT)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    __table_args__ = (
        Index('ix_messages_conversation_created', 'conversation_id', 'created_at'),
        Index('ix_messages_conversation_unread', 'conversation_id', 'is_read'),
        CheckConstraint('is_read = (read_at IS NOT NULL)', name='ck_messages_read_state'),
    )
