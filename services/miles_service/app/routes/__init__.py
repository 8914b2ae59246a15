from fastapi import APIRouter, FastAPI

from . import system
from .billing import router as billing_router
from .delivery_requests import router as requests_router
from .wallet import router as wallet_router


def register_routes(app: FastAPI) -> None:
    router = APIRouter(prefix="/api/v1")
    router.include_router(billing_router, prefix="/billing", tags=["billing"])
    router.include_router(requests_router, prefix="/requests", tags=["requests"])
    router.include_router(wallet_router, prefix="/wallet", tags=["wallet"])
    router.include_router(system.router, tags=["system"])
    app.include_router(router)
