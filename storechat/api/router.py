from fastapi import APIRouter
from storechat.api.chat import router as chat_router
from storechat.api.products import router as products_router
from storechat.api.sessions import router as sessions_router

router = APIRouter()
router.include_router(chat_router)
router.include_router(sessions_router)
router.include_router(products_router)
