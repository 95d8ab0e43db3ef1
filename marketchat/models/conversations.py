import uuid
from sqlalchemy import Column, DateTime, ForeignKey, UniqueConstraint, Uuid
from . import Base

PAIR_CONSTRAINT = 'uix_conversation_apartment_pair'


def canonical_pair(user_a, user_b):
    """Return the two participant ids in the order used by the uniqueness constraint."""
    low, high = sorted([user_a, user_b])
    return low, high


class Conversation(Base):
    __tablename__ = 'conversations'
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    apartment_id = Column(Uuid, ForeignKey('apartments.id', ondelete='RESTRICT'), nullable=False)
    # roles as fixed at creation: A is the lister, B is whoever wrote first
    participant_a_id = Column(Uuid, ForeignKey('users.id', ondelete='RESTRICT'), nullable=False)
    participant_b_id = Column(Uuid, ForeignKey('users.id', ondelete='RESTRICT'), nullable=False)
    user_low_id = Column(Uuid, index=True, nullable=False)
    user_high_id = Column(Uuid, index=True, nullable=False)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    __table_args__ = (
        UniqueConstraint('apartment_id', 'user_low_id', 'user_high_id', name=PAIR_CONSTRAINT),
    )

    def has_participant(self, user_id) -> bool:
        return user_id in (self.participant_a_id, self.participant_b_id)

    def other_participant(self, user_id):
        if user_id == self.participant_a_id:
            return self.participant_b_id
        if user_id == self.participant_b_id:
            return self.participant_a_id
        return None
