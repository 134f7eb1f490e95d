from fastapi import APIRouter

from telecare.api import conversations
from telecare.api import sessions

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


# Include sessions, conversations routers
router.include_router(sessions.router)
router.include_router(conversations.router)
