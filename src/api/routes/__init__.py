"""API routes."""

from src.api.routes.agent import router as agent_router
from src.api.routes.health import router as health_router
from src.api.routes.webhooks import router as webhooks_router

__all__ = ["agent_router", "health_router", "webhooks_router"]
