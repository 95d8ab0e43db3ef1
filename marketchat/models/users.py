import uuid
from sqlalchemy import Column, String, DateTime, Uuid, func
from . import Base

# Owned by the accounts service; messaging only reads profile fields.
class User(Base):
    __tablename__ = 'users'
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(150), nullable=False)
    role = Column(String(20), nullable=False, default='USER')
    avatar_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
