from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vanplane.core.config import get_settings
from vanplane.domain.models import ApplicationNetwork, CertificateRequest
from vanplane.domain.types import CertificateRequestType, NetworkStatus, add_years, as_utc
from vanplane.services.certs.issuer import CertificateIssuer, get_certificate_issuer
from vanplane.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


class PassOutcome(str, enum.Enum):
    PROCESSED = "processed"
    IDLE = "idle"
    FAILED = "failed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _default_session_factory() -> SessionFactory:
    # Imported lazily so callers that inject a factory never build the global engine.
    from vanplane.persistence.db import SessionLocal

    return SessionLocal


def compute_network_ca_expiration(network: ApplicationNetwork, default_years: int) -> datetime:
    """Expiration for a network's CA.

    Bounded networks keep their CA until ``end_time + delete_delay``; open-ended
    networks get ``start_time`` plus ``default_years`` calendar years.
    """
    end_time = as_utc(network.end_time)
    if end_time is not None:
        return end_time + (network.delete_delay or timedelta(0))
    return add_years(as_utc(network.start_time), default_years)


async def _select_new_network(session: AsyncSession) -> ApplicationNetwork | None:
    result = await session.execute(
        select(ApplicationNetwork)
        .where(ApplicationNetwork.oper_status == NetworkStatus.NEW)
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    return result.scalar_one_or_none()


async def _insert_network_ca_request(
    session: AsyncSession,
    network: ApplicationNetwork,
    *,
    now: datetime,
    default_years: int,
) -> CertificateRequest:
    # Not actionable before the network is meant to start.
    request = CertificateRequest(
        request_type=CertificateRequestType.VAN_CA,
        created_time=now,
        request_time=as_utc(network.start_time),
        expire_time=compute_network_ca_expiration(network, default_years),
        application_network_id=network.id,
    )
    session.add(request)
    await session.flush()
    return request


async def _advance_network_status(session: AsyncSession, network: ApplicationNetwork) -> None:
    network.oper_status = NetworkStatus.CERT_REQUEST_CREATED
    await session.flush()


async def promote_new_network(
    session: AsyncSession,
    *,
    now: datetime,
    default_years: int,
) -> CertificateRequest | None:
    # Runs inside the caller's transaction; returns None when no network is waiting.
    network = await _select_new_network(session)
    if network is None:
        return None
    logger.info("New application network: %s", network.name)
    request = await _insert_network_ca_request(session, network, now=now, default_years=default_years)
    await _advance_network_status(session, network)
    return request


async def release_stale_leases(session: AsyncSession, *, now: datetime, lease: timedelta) -> int:
    # A worker that died mid-request leaves processing set; reopen those rows after the lease.
    result = await session.execute(
        update(CertificateRequest)
        .where(
            CertificateRequest.processing.is_(True),
            or_(
                CertificateRequest.processing_started_at.is_(None),
                CertificateRequest.processing_started_at <= now - lease,
            ),
        )
        .values(processing=False, processing_started_at=None)
        .execution_options(synchronize_session=False)
    )
    released = int(result.rowcount or 0)
    if released:
        logger.warning("Released %d certificate request(s) with expired processing leases", released)
        increment_counter("ca.requests.lease_released", released)
    return released


async def claim_certificate_request(session: AsyncSession, request_id: UUID, *, now: datetime) -> bool:
    """Flip ``processing`` from false to true; only one concurrent caller can win."""
    result = await session.execute(
        update(CertificateRequest)
        .where(CertificateRequest.id == request_id, CertificateRequest.processing.is_(False))
        .values(processing=True, processing_started_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def claim_next_certificate_request(session: AsyncSession, *, now: datetime) -> UUID | None:
    # Oldest eligible request first; future-dated and in-flight rows are skipped.
    result = await session.execute(
        select(CertificateRequest.id)
        .where(
            or_(CertificateRequest.request_time.is_(None), CertificateRequest.request_time <= now),
            CertificateRequest.processing.is_(False),
        )
        .order_by(CertificateRequest.created_time.asc(), CertificateRequest.id.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    request_id = result.scalar_one_or_none()
    if request_id is None:
        return None
    if not await claim_certificate_request(session, request_id, now=now):
        return None
    return request_id


async def run_network_intake_pass(
    *,
    session_factory: SessionFactory | None = None,
    now: datetime | None = None,
) -> PassOutcome:
    """One unit of work for the network intake worker."""
    factory = session_factory or _default_session_factory()
    settings = get_settings()
    current = now or _utc_now()
    try:
        async with factory() as session:
            async with session.begin():
                request = await promote_new_network(
                    session,
                    now=current,
                    default_years=settings.default_ca_expiration_years,
                )
    except Exception:  # noqa: BLE001 - the pass is rolled back and retried after the backoff.
        logger.exception("Rolling back new-network transaction")
        increment_counter("ca.network_intake.failed")
        return PassOutcome.FAILED
    if request is None:
        return PassOutcome.IDLE
    increment_counter("ca.network_intake.processed")
    return PassOutcome.PROCESSED


async def run_certificate_request_pass(
    *,
    session_factory: SessionFactory | None = None,
    issuer: CertificateIssuer | None = None,
    now: datetime | None = None,
) -> PassOutcome:
    """One unit of work for the request fulfilment worker.

    The claim commits on its own so the ``processing`` flag is visible to
    every other worker while the certificate is generated. Fulfilment runs in
    a second transaction; on failure its mutations roll back but the claim
    stays in place, so younger requests go ahead and the lease reaper reopens
    the failed one once ``cert_request_lease_s`` has passed.
    """
    factory = session_factory or _default_session_factory()
    settings = get_settings()
    current = now or _utc_now()
    request_id: UUID | None = None
    try:
        async with factory() as session:
            async with session.begin():
                await release_stale_leases(
                    session,
                    now=current,
                    lease=timedelta(seconds=settings.cert_request_lease_s),
                )
                request_id = await claim_next_certificate_request(session, now=current)
        if request_id is None:
            return PassOutcome.IDLE

        active_issuer = issuer or get_certificate_issuer()
        async with factory() as session:
            async with session.begin():
                request = await session.get(CertificateRequest, request_id)
                if request is None:
                    logger.info("Certificate request %s disappeared after claim", request_id)
                    return PassOutcome.PROCESSED
                logger.info("Processing certificate request: %s (%s)", request.id, request.request_type.value)
                await active_issuer.fulfil(session, request, now=current)
    except Exception:  # noqa: BLE001 - the pass is rolled back and retried after the backoff.
        logger.exception("Rolling back cert-request transaction")
        increment_counter("ca.requests.failed")
        if request_id is not None:
            logger.warning("Certificate request %s stays claimed until its lease expires", request_id)
        return PassOutcome.FAILED
    increment_counter("ca.requests.fulfilled")
    return PassOutcome.PROCESSED
