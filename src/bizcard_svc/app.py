import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import PlainTextResponse

from bizcard_svc.config import get_settings
from bizcard_svc.models.base import DatastoreNotConfigured
from bizcard_svc.routers import stripe_router

logger = logging.getLogger(__name__)


async def datastore_not_configured_handler(request: Request, exc: DatastoreNotConfigured) -> PlainTextResponse:
    logger.error(exc)
    return PlainTextResponse("Datastore not configured", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="bizcard_svc")
    app.add_exception_handler(DatastoreNotConfigured, datastore_not_configured_handler)

    # Include the Stripe router under the '/api/stripe' prefix
    app.include_router(stripe_router.router, prefix="/api/stripe")
    return app


app = create_app()
