from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from vanplane.core.errors import AccessPointConfiguredError, NotFoundError, TopologyError, VanError
from vanplane.domain.models import Backbone, InteriorSite
from vanplane.domain.types import AccessPointLifecycle
from vanplane.persistence.repos import topology as topology_repo


logger = logging.getLogger(__name__)

# Ingress keys reported by backbone sites, mapped to the access point they configure.
INGRESS_ACCESS_COLUMNS: dict[str, str] = {
    "skx-manage": "management_access_id",
    "skx-member": "member_access_id",
    "skx-peer": "peer_access_id",
}


@dataclass(frozen=True)
class LinkSpec:
    name: str
    host: str
    port: str
    role: str
    cost: str
    profile: str

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class IncomingAccess:
    profile: str
    port: str
    role: str
    host: str | None
    secret_name: str | None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


# Listener profiles exposed by every backbone site: (column, profile, port, role).
_INCOMING_WORKLIST: tuple[tuple[str, str, str, str], ...] = (
    ("peer_access_id", "peer_access", "55671", "inter-router"),
    ("member_access_id", "member_access", "45671", "edge"),
    ("management_access_id", "manage_access", "45670", "normal"),
)


def backbones_compatible(left: Backbone | None, right: Backbone | None) -> bool:
    """Two sites may link when they share a backbone or their backbones share a federation."""
    if left is None or right is None:
        return False
    if left.id == right.id:
        return True
    return left.federation is not None and left.federation == right.federation


async def outgoing_links(session: AsyncSession, site_id: str) -> list[LinkSpec]:
    # Only advertise links whose two endpoints exist and sit on compatible backbones.
    site = await session.get(InteriorSite, site_id)
    if site is None:
        raise NotFoundError(f"Backbone site {site_id} not found")
    rows = await topology_repo.fetch_outgoing_link_rows(session, site_id)
    backbone_ids = {
        backbone_id
        for row in rows
        for backbone_id in (row["listener_backbone_id"], row["connector_backbone_id"])
        if backbone_id is not None
    }
    backbones = await topology_repo.list_backbones_by_id(session, backbone_ids)
    links: list[LinkSpec] = []
    for row in rows:
        listener = backbones.get(row["listener_backbone_id"])
        connector = backbones.get(row["connector_backbone_id"])
        if not backbones_compatible(listener, connector):
            logger.warning(
                "Not advertising link %s -> %s: backbones are not federated",
                site_id,
                row["listening_site_id"],
            )
            continue
        if not row["hostname"]:
            logger.debug("Listener %s has no peer hostname yet", row["listening_site_id"])
            continue
        links.append(
            LinkSpec(
                name=row["listening_site_id"],
                host=row["hostname"],
                port=str(row["port"]),
                role="inter-router",
                cost=str(row["cost"]),
                profile="backbone-client",
            )
        )
    return links


async def incoming_access(session: AsyncSession, site_id: str) -> list[IncomingAccess]:
    site = await session.get(InteriorSite, site_id)
    if site is None:
        raise NotFoundError(f"Backbone site {site_id} not found")
    incoming: list[IncomingAccess] = []
    for column, profile, port, role in _INCOMING_WORKLIST:
        access_point = await topology_repo.get_access_point(session, getattr(site, column))
        if access_point is None:
            continue
        secret_name = None
        if access_point.certificate_id is not None:
            secret_name = await topology_repo.certificate_secret_name(
                session, access_point.certificate_id, f"access point {access_point.id}"
            )
        incoming.append(
            IncomingAccess(
                profile=profile,
                port=port,
                role=role,
                host=access_point.hostname,
                secret_name=secret_name,
            )
        )
    return incoming


async def invitation_attach_links(session: AsyncSession, invitation_id: UUID) -> list[LinkSpec]:
    # Edge links a site joining through this invitation should open, best priority first.
    rows = await topology_repo.fetch_edge_link_rows(session, invitation_id)
    return [
        LinkSpec(
            name=row["interior_site_id"],
            host=row["hostname"],
            port=str(row["port"]),
            role="edge",
            cost=str(row["priority"]),
            profile="member-client",
        )
        for row in rows
        if row["hostname"]
    ]


async def add_host_to_access_point(
    session: AsyncSession,
    *,
    site_id: str,
    key: str,
    hostname: str,
    port: str,
) -> None:
    """Record the externally reachable host for one of a backbone site's access points."""
    column = INGRESS_ACCESS_COLUMNS.get(key)
    if column is None:
        raise TopologyError(f"Invalid ingress key: {key}")
    site = await session.get(InteriorSite, site_id)
    if site is None:
        raise NotFoundError(f"Backbone site {site_id} not found")
    access_point = await topology_repo.get_access_point(session, getattr(site, column))
    if access_point is None:
        raise NotFoundError(f"Access point not found for site {site_id} ({key})")
    if access_point.hostname:
        raise AccessPointConfiguredError(f"Referenced access ({access_point.id}) already has a hostname")
    if access_point.lifecycle is not AccessPointLifecycle.PARTIAL:
        raise AccessPointConfiguredError(
            f"Referenced access ({access_point.id}) has lifecycle {access_point.lifecycle.value}, expected partial"
        )
    access_point.hostname = hostname
    access_point.port = str(port)
    access_point.lifecycle = AccessPointLifecycle.NEW
    await session.flush()


async def record_backbone_ingresses(
    session_factory: Callable[[], AsyncSession],
    *,
    site_id: str,
    ingresses: dict[str, dict[str, Any]],
) -> int:
    # Each ingress is its own unit of work; one bad entry does not block the others.
    processed = 0
    for key, ingress in ingresses.items():
        try:
            async with session_factory() as session:
                async with session.begin():
                    await add_host_to_access_point(
                        session,
                        site_id=site_id,
                        key=key,
                        hostname=str(ingress.get("host") or ""),
                        port=str(ingress.get("port") or ""),
                    )
        except VanError as exc:
            logger.warning("Host add to access point failed: %s", exc)
            continue
        processed += 1
    return processed
