from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vanplane.apps.api.deps import get_db
from vanplane.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from vanplane.apps.api.response import SuccessEnvelope, success_response
from vanplane.domain.models import ApplicationNetwork, CertificateRequest
from vanplane.persistence.db import pool_stats
from vanplane.services.telemetry import counters_snapshot, request_count


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ops", tags=["ops"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/metrics", response_model=SuccessEnvelope[dict[str, Any]])
async def ops_metrics(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    # Pipeline backlog straight from the store; worker counters from this process.
    try:
        pending = await db.scalar(
            select(func.count()).select_from(CertificateRequest).where(CertificateRequest.processing.is_(False))
        )
        in_flight = await db.scalar(
            select(func.count()).select_from(CertificateRequest).where(CertificateRequest.processing.is_(True))
        )
        rows = await db.execute(
            select(ApplicationNetwork.oper_status, func.count()).group_by(ApplicationNetwork.oper_status)
        )
    except SQLAlchemyError as exc:
        logger.error("Metrics query failed: %s", exc)
        raise HTTPException(
            status_code=503,
            detail={"code": "DB_UNAVAILABLE", "message": "Database error while aggregating metrics"},
        ) from exc
    networks = {status.value: int(count) for status, count in rows.all()}
    payload = {
        "certificate_requests": {"pending": int(pending or 0), "in_flight": int(in_flight or 0)},
        "networks_by_status": networks,
        "counters": counters_snapshot(),
        "requests_last_5m": request_count(300),
        "db_pool": pool_stats(),
    }
    return success_response(request=request, data=payload)
