"""V1 API router aggregation."""

from fastapi import APIRouter

from chatmeter.api.v1.chats import router as chats_router
from chatmeter.api.v1.invoices import router as invoices_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(chats_router)
v1_router.include_router(invoices_router)
