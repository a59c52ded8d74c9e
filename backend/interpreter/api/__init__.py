from fastapi import APIRouter

from interpreter.api import conversations

router = APIRouter()

# Include conversation control and health routes
router.include_router(conversations.router)
