from __future__ import annotations

import json
import logging

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from vanplane.apps.api.deps import get_sync_controller
from vanplane.services.sync import protocol
from vanplane.services.sync.handlers import SyncController


logger = logging.getLogger(__name__)


async def sync_endpoint(
    request: Request,
    controller: SyncController = Depends(get_sync_controller),
) -> JSONResponse:
    # The protocol response is its own envelope; it is returned as-is.
    try:
        body = json.loads(await request.body())
    except ValueError:
        logger.warning("Sync message from %s is not JSON", request.client.host if request.client else "-")
        payload = protocol.failure(400, "Protocol message must be JSON")
    else:
        payload = await controller.handle(body)
    return JSONResponse(content=payload, status_code=int(payload["statusCode"]))
