"""Gateway callback HTTP orchestration.

Builds a CallbackPayload from whichever shape the provider delivers (query
string redirect, form post or JSON envelope) and maps reconciliation results
to bare acknowledgments. Providers never see internal error detail.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qsl

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.services.billing.reconciler import WebhookReconciler
from app.services.errors import AuthenticationError, ValidationError
from app.services.gateways import CallbackPayload

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


async def read_callback(request: Request) -> CallbackPayload:
    raw_body = await request.body()
    params = dict(request.query_params)
    content_type = (request.headers.get("content-type") or "").lower()
    # JSON envelopes stay unparsed until the adapter has verified them
    if raw_body and content_type.startswith(FORM_CONTENT_TYPE):
        params.update(parse_qsl(raw_body.decode("utf-8", errors="replace"), keep_blank_values=True))
    headers = {key.lower(): value for key, value in request.headers.items()}
    return CallbackPayload(params=params, raw_body=raw_body, headers=headers)


def process_callback(
    *,
    db: Session,
    reconciler: WebhookReconciler,
    gateway: str,
    payload: CallbackPayload,
) -> JSONResponse:
    try:
        result = reconciler.handle(db, gateway, payload)
    except AuthenticationError:
        return JSONResponse({"status": "invalid signature"}, status_code=401)
    except ValidationError:
        logger.warning("webhook_unknown_gateway gateway=%s", gateway)
        return JSONResponse({"status": "unknown gateway"}, status_code=404)
    logger.info("webhook_acknowledged gateway=%s result=%s", gateway, result.value)
    return JSONResponse({"status": "ok"}, status_code=200)
