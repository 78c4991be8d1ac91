from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, AsyncIterator, Callable
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vanplane.core.errors import (
    InvitationExpiredError,
    InvitationLimitError,
    NotFoundError,
    ProtocolError,
    StoreError,
    VanError,
)
from vanplane.domain.models import ApplicationNetwork, MemberInvitation, MemberSite
from vanplane.domain.types import as_utc
from vanplane.services.certs.issuer import VAN_ID_ANNOTATION, CertificateIssuer, get_certificate_issuer
from vanplane.services.certs.pipeline import SessionFactory
from vanplane.services.certs.signer import CA_CERT_KEY, TLS_CERT_KEY, TLS_PRIVATE_KEY
from vanplane.services.sync import protocol
from vanplane.services.sync.catalog import site_objects
from vanplane.services.sync.objects import stale_objects
from vanplane.services.telemetry import increment_counter
from vanplane.services.topology.backbone import invitation_attach_links


logger = logging.getLogger(__name__)

CLAIM_ANNOTATION = "vanplane.io/claim"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _default_session_factory() -> SessionFactory:
    from vanplane.persistence.db import SessionLocal

    return SessionLocal


@dataclass
class SyncController:
    """Controller side of the site synchronization protocol.

    Each handler is one transactional unit; ``handle`` is the boundary that
    turns every error into a failure response.
    """

    session_factory: SessionFactory | None = None
    issuer: CertificateIssuer | None = None
    clock: Callable[[], datetime] = field(default=_utc_now)

    def _factory(self) -> SessionFactory:
        return self.session_factory or _default_session_factory()

    def _issuer(self) -> CertificateIssuer:
        if self.issuer is None:
            self.issuer = get_certificate_issuer()
        return self.issuer

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._factory()() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            logger.exception("Store error while handling sync message")
            raise StoreError("Store unavailable, retry later") from exc

    async def handle(self, body: Any) -> dict[str, Any]:
        try:
            return await protocol.dispatch(body, self)
        except ProtocolError as exc:
            logger.warning("Rejected sync message: %s", exc)
            increment_counter("sync.protocol_errors")
            return protocol.failure(exc.status_code, str(exc))
        except VanError as exc:
            logger.warning("Sync request failed: %s", exc)
            return protocol.failure(exc.status_code, str(exc))
        except Exception:  # noqa: BLE001 - one bad message must not take down the transport.
            logger.exception("Unexpected error while handling sync message")
            return protocol.failure(500, "Internal error")

    async def on_heartbeat(self, message: protocol.HeartbeatMessage) -> dict[str, Any]:
        now = self.clock()
        async with self._transaction() as session:
            objects = await site_objects(session, message.site)
            stale = stale_objects(message.hashset, {name: item.hash for name, item in objects.items()})
            member = await _member_site(session, message.site)
            if member is not None:
                member.last_heartbeat_at = now
                if message.address:
                    member.last_address = message.address
        if stale:
            logger.debug("Site %s has stale objects: %s", message.site, ", ".join(stale))
        increment_counter("sync.heartbeats")
        return protocol.heartbeat_ack(stale)

    async def on_get(self, message: protocol.GetObjectMessage) -> dict[str, Any]:
        async with self._transaction() as session:
            objects = await site_objects(session, message.site)
        item = objects.get(message.objectname)
        if item is None:
            raise NotFoundError(f"Object {message.objectname} not found for site {message.site}")
        return protocol.get_object_success(item.name, item.hash, item.data)

    async def on_claim(self, message: protocol.ClaimMessage) -> dict[str, Any]:
        """Admit a new member site through an invitation.

        The instance count is bumped with a conditional update so concurrent
        claims cannot overshoot ``instance_limit``. Any later failure rolls the
        bump back together with the new site.
        """
        claim_id = _parse_uuid(message.claim)
        now = self.clock()
        issuer = self._issuer()
        async with self._transaction() as session:
            invitation = await session.get(MemberInvitation, claim_id)
            if invitation is None:
                raise NotFoundError(f"Invitation {message.claim} not found")
            deadline = as_utc(invitation.join_deadline)
            if deadline is not None and now > deadline:
                raise InvitationExpiredError(f"Invitation {message.claim} expired at {deadline.isoformat()}")
            result = await session.execute(
                update(MemberInvitation)
                .where(
                    MemberInvitation.id == claim_id,
                    MemberInvitation.instance_count < MemberInvitation.instance_limit,
                )
                .values(instance_count=MemberInvitation.instance_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvitationLimitError(f"Invitation {message.claim} has reached its instance limit")

            network = await session.get(ApplicationNetwork, invitation.member_of_id)
            if network is None:
                raise NotFoundError(f"Application network {invitation.member_of_id} not found")
            links = await invitation_attach_links(session, claim_id)
            site = MemberSite(
                member_of_id=network.id,
                invitation_id=invitation.id,
                label=message.name or None,
                site_class_id=invitation.member_class_id,
                active_access_point_id=links[0].name if links else None,
                created_at=now,
            )
            session.add(site)
            await session.flush()

            authority = await issuer.network_authority(session, network.id)
            object_name = f"van-site-{site.id.hex}"
            certificate = await issuer.issue(
                session,
                object_name=object_name,
                common_name=str(site.id),
                is_ca=False,
                issuer=authority,
                expiration=None,
                now=now,
                default_lifetime=timedelta(days=issuer.settings.default_cert_expiration_days),
                annotations={VAN_ID_ANNOTATION: network.van_id, CLAIM_ANNOTATION: str(invitation.id)},
            )
            site.certificate_id = certificate.id
            await session.flush()

        secret = await asyncio.to_thread(issuer.store.load_secret, object_name)
        logger.info("Invitation %s claimed by new member site %s (%s)", claim_id, site.id, message.name)
        increment_counter("sync.claims")
        site_client = {
            "siteId": str(site.id),
            "vanId": network.van_id,
            "secretName": object_name,
            TLS_CERT_KEY: secret.key_material[TLS_CERT_KEY],
            TLS_PRIVATE_KEY: secret.key_material[TLS_PRIVATE_KEY],
            CA_CERT_KEY: secret.key_material[CA_CERT_KEY],
        }
        return protocol.claim_success([link.as_dict() for link in links], site_client)


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ProtocolError(f"Malformed claim id: {value}") from exc


async def _member_site(session: AsyncSession, site_id: str) -> MemberSite | None:
    try:
        member_id = UUID(site_id)
    except ValueError:
        return None
    return await session.get(MemberSite, member_id)
