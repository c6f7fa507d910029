import logging

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.payments import router as payments_router
from app.api.security_deposits import router as security_deposits_router
from app.api.subscriptions import router as subscriptions_router
from app.db import SessionLocal
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware
from app.services.subscriptions import Plans

app = FastAPI(title="marketplace_billing API")
logger = logging.getLogger(__name__)

configure_logging()
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(payments_router)
_include_api_router(security_deposits_router)
_include_api_router(subscriptions_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
def _seed_plan_catalog():
    db = SessionLocal()
    try:
        Plans.seed(db)
    finally:
        db.close()
