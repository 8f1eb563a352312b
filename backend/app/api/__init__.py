from fastapi import APIRouter
from .ws import router as ws_router

api_router = APIRouter()
api_router.include_router(ws_router)
