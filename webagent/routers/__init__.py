from webagent.routers.webhooks import router as webhooks_router
from webagent.routers.scrapes import router as scrapes_router

__all__ = ["webhooks_router", "scrapes_router"]
