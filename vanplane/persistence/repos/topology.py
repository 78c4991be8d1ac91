from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from vanplane.core.errors import AuthorityNotReadyError, NotFoundError
from vanplane.domain.models import (
    ApplicationNetwork,
    Backbone,
    BackboneAccessPoint,
    EdgeLink,
    InteriorSite,
    InterRouterLink,
    MemberInvitation,
    MemberSite,
    TlsCertificate,
)


async def certificate_secret_name(session: AsyncSession, certificate_id: UUID | None, subject: str) -> str:
    if certificate_id is None:
        raise AuthorityNotReadyError(f"No certificate issued yet for {subject}")
    certificate = await session.get(TlsCertificate, certificate_id)
    if certificate is None:
        raise NotFoundError(f"Certificate {certificate_id} for {subject} not found")
    return certificate.object_name


async def invitation_secret_name(session: AsyncSession, invitation_id: UUID) -> str:
    invitation = await session.get(MemberInvitation, invitation_id)
    if invitation is None:
        raise NotFoundError(f"Invitation {invitation_id} not found")
    return await certificate_secret_name(session, invitation.claim_certificate_id, f"invitation {invitation_id}")


async def member_site_secret_name(session: AsyncSession, site_id: UUID) -> str:
    site = await session.get(MemberSite, site_id)
    if site is None:
        raise NotFoundError(f"Member site {site_id} not found")
    return await certificate_secret_name(session, site.certificate_id, f"member site {site_id}")


async def interior_site_secret_name(session: AsyncSession, site_id: str) -> str:
    site = await session.get(InteriorSite, site_id)
    if site is None:
        raise NotFoundError(f"Backbone site {site_id} not found")
    return await certificate_secret_name(session, site.certificate_id, f"backbone site {site_id}")


async def network_secret_name(session: AsyncSession, network_id: UUID) -> str:
    network = await session.get(ApplicationNetwork, network_id)
    if network is None:
        raise NotFoundError(f"Application network {network_id} not found")
    return await certificate_secret_name(session, network.certificate_authority_id, f"network {network.name}")


async def get_van_id(session: AsyncSession, network_id: UUID) -> str:
    network = await session.get(ApplicationNetwork, network_id)
    if network is None:
        raise NotFoundError(f"Application network {network_id} not found")
    return network.van_id


async def fetch_outgoing_link_rows(session: AsyncSession, site_id: str) -> list[dict[str, Any]]:
    # Links where ``site_id`` connects out, joined with the listener's peer access point.
    listener = aliased(InteriorSite)
    connector = aliased(InteriorSite)
    result = await session.execute(
        select(
            InterRouterLink.listening_site_id,
            InterRouterLink.cost,
            listener.backbone_id.label("listener_backbone_id"),
            connector.backbone_id.label("connector_backbone_id"),
            BackboneAccessPoint.hostname,
            BackboneAccessPoint.port,
        )
        .join(listener, listener.id == InterRouterLink.listening_site_id)
        .join(connector, connector.id == InterRouterLink.connecting_site_id)
        .outerjoin(BackboneAccessPoint, BackboneAccessPoint.id == listener.peer_access_id)
        .where(InterRouterLink.connecting_site_id == site_id)
        .order_by(InterRouterLink.listening_site_id)
    )
    return [dict(row._mapping) for row in result]


async def fetch_edge_link_rows(session: AsyncSession, invitation_id: UUID) -> list[dict[str, Any]]:
    # Backbone attach points for an invitation, with each site's member access point.
    result = await session.execute(
        select(
            EdgeLink.interior_site_id,
            EdgeLink.priority,
            BackboneAccessPoint.hostname,
            BackboneAccessPoint.port,
        )
        .join(InteriorSite, InteriorSite.id == EdgeLink.interior_site_id)
        .outerjoin(BackboneAccessPoint, BackboneAccessPoint.id == InteriorSite.member_access_id)
        .where(EdgeLink.invitation_id == invitation_id)
        .order_by(EdgeLink.priority, EdgeLink.interior_site_id)
    )
    return [dict(row._mapping) for row in result]


async def list_backbones_by_id(session: AsyncSession, backbone_ids: set[UUID]) -> dict[UUID, Backbone]:
    if not backbone_ids:
        return {}
    result = await session.execute(select(Backbone).where(Backbone.id.in_(backbone_ids)))
    return {row.id: row for row in result.scalars().all()}


async def get_access_point(session: AsyncSession, access_point_id: UUID | None) -> BackboneAccessPoint | None:
    if access_point_id is None:
        return None
    return await session.get(BackboneAccessPoint, access_point_id)


async def list_invitations(session: AsyncSession) -> list[MemberInvitation]:
    result = await session.execute(select(MemberInvitation).order_by(MemberInvitation.label))
    return list(result.scalars().all())


async def list_backbones(session: AsyncSession) -> list[Backbone]:
    result = await session.execute(select(Backbone).order_by(Backbone.name))
    return list(result.scalars().all())


async def list_backbone_sites(session: AsyncSession, backbone_id: UUID) -> list[InteriorSite]:
    result = await session.execute(
        select(InteriorSite).where(InteriorSite.backbone_id == backbone_id).order_by(InteriorSite.id)
    )
    return list(result.scalars().all())
