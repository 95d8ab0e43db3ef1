from pydantic import BaseModel
from typing import Optional
import uuid


class UserSummaryOut(BaseModel):
    id: uuid.UUID
    name: str
    avatar_url: Optional[str] = None
    role: Optional[str] = None


class ApartmentPreviewOut(BaseModel):
    id: uuid.UUID
    unit_name: str
    unit_number: Optional[str] = None
    price_egp: Optional[int] = None
    status: Optional[str] = None
