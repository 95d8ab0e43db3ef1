from fastapi import APIRouter
from .conversations import router as conversations_router
from .messages import router as messages_router

router = APIRouter()
router.include_router(conversations_router, prefix='/conversations', tags=['conversations'])
router.include_router(messages_router, prefix='/messages', tags=['messages'])
