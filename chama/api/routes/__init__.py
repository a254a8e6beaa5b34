"""Top level API router registration."""
from fastapi import APIRouter, FastAPI

from chama.api.routes import auth, chamas, health, members, transactions


def register_routes(application: FastAPI) -> None:
    """Register all API routers with the FastAPI application."""
    api_router = APIRouter(prefix="/api")

    api_router.include_router(health.router, tags=["health"])
    api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
    api_router.include_router(chamas.router, prefix="/chamas", tags=["chamas"])
    api_router.include_router(members.router, prefix="/chama-members", tags=["members"])
    api_router.include_router(transactions.router, tags=["transactions"])

    application.include_router(api_router)


__all__ = ["register_routes"]
