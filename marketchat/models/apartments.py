import uuid
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Uuid, func
from . import Base

# Owned by the listings service; messaging only needs the lister and a preview.
class Apartment(Base):
    __tablename__ = 'apartments'
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lister_id = Column(Uuid, ForeignKey('users.id', ondelete='RESTRICT'), index=True, nullable=False)
    unit_name = Column(String(255), nullable=False)
    unit_number = Column(String(50), nullable=True)
    price_egp = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default='AVAILABLE')
    created_at = Column(DateTime(timezone=True), server_default=func.now())
