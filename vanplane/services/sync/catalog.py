from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from vanplane.core.errors import NotFoundError
from vanplane.domain.models import ApplicationNetwork, InteriorSite, MemberSite
from vanplane.persistence.repos import topology as topology_repo
from vanplane.services.sync.objects import SyncObject
from vanplane.services.topology.backbone import incoming_access, invitation_attach_links, outgoing_links


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except ValueError:
        return None


async def _member_site_objects(session: AsyncSession, site: MemberSite) -> list[SyncObject]:
    network = await session.get(ApplicationNetwork, site.member_of_id)
    if network is None:
        raise NotFoundError(f"Application network {site.member_of_id} not found")
    links = []
    if site.invitation_id is not None:
        links = [link.as_dict() for link in await invitation_attach_links(session, site.invitation_id)]
    objects = [
        SyncObject(
            "site-config",
            {
                "siteId": str(site.id),
                "label": site.label,
                "network": network.name,
                "vanId": network.van_id,
                "siteClass": str(site.site_class_id) if site.site_class_id else None,
            },
        ),
        SyncObject("links", {"outgoingLinks": links}),
    ]
    if site.certificate_id is not None:
        secret_name = await topology_repo.member_site_secret_name(session, site.id)
        objects.append(SyncObject("tls-client", {"secretName": secret_name}))
    return objects


async def _interior_site_objects(session: AsyncSession, site: InteriorSite) -> list[SyncObject]:
    objects = [
        SyncObject(
            "site-config",
            {
                "siteId": site.id,
                "name": site.name,
                "backbone": str(site.backbone_id) if site.backbone_id else None,
            },
        ),
        SyncObject(
            "links",
            {"outgoingLinks": [link.as_dict() for link in await outgoing_links(session, site.id)]},
        ),
        SyncObject(
            "access",
            {"incoming": [access.as_dict() for access in await incoming_access(session, site.id)]},
        ),
    ]
    if site.certificate_id is not None:
        secret_name = await topology_repo.interior_site_secret_name(session, site.id)
        objects.append(SyncObject("tls-server", {"secretName": secret_name}))
    return objects


async def site_objects(session: AsyncSession, site_id: str) -> dict[str, SyncObject]:
    """Authoritative configuration objects for a member or backbone site, keyed by name."""
    member_id = _as_uuid(site_id)
    member = await session.get(MemberSite, member_id) if member_id is not None else None
    if member is not None:
        objects = await _member_site_objects(session, member)
    else:
        interior = await session.get(InteriorSite, site_id)
        if interior is None:
            raise NotFoundError(f"Site {site_id} not found")
        objects = await _interior_site_objects(session, interior)
    return {item.name: item for item in objects}
