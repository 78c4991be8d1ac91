from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import random
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vanplane.core.errors import NotFoundError, TopologyError
from vanplane.domain.models import OfferedService, ServiceLink
from vanplane.domain.types import (
    AddressScopeType,
    DistributionType,
    StickyMechanismType,
    parse_enum,
)


@dataclass(frozen=True, order=True)
class ServiceInstance:
    site_id: str
    instance_id: str
    image_id: UUID | None = field(default=None, compare=False)


@dataclass(frozen=True)
class AddressPolicy:
    distribution: DistributionType
    scope: AddressScopeType
    sticky: StickyMechanismType
    # Cookie affinity needs the address terminated at one proxy that tracks sessions.
    affinity_proxy: bool


@dataclass(frozen=True)
class ServiceAddress:
    address: str
    site_id: str | None = None
    instance_id: str | None = None


def validate_service_link(link: ServiceLink, offers: Sequence[OfferedService]) -> AddressPolicy:
    """Check a service link's scope and distribution against the images offering it."""
    distribution = parse_enum(DistributionType, link.distribution)
    scope = parse_enum(AddressScopeType, link.scope)
    mechanisms = {parse_enum(StickyMechanismType, offer.sticky_mechanism) for offer in offers}
    if distribution is DistributionType.FORBIDDEN:
        return AddressPolicy(distribution, scope, StickyMechanismType.NONE, affinity_proxy=False)
    if not offers:
        raise TopologyError(f"Service link {link.van_address} has no offering image")
    if len(mechanisms) > 1:
        names = ", ".join(sorted(mechanism.value for mechanism in mechanisms))
        raise TopologyError(f"Service link {link.van_address} mixes sticky mechanisms: {names}")
    sticky = mechanisms.pop()
    if distribution is DistributionType.MULTICAST and sticky is not StickyMechanismType.NONE:
        raise TopologyError(f"Multicast service link {link.van_address} cannot use {sticky.value} stickiness")
    affinity_proxy = distribution is DistributionType.ANYCAST and sticky is StickyMechanismType.COOKIE
    if affinity_proxy and scope is AddressScopeType.INSTANCE:
        raise TopologyError(
            f"Cookie stickiness on {link.van_address} needs a shared address; instance scope has none"
        )
    return AddressPolicy(distribution, scope, sticky, affinity_proxy)


async def load_address_policy(session: AsyncSession, link_id: UUID) -> AddressPolicy:
    link = await session.get(ServiceLink, link_id)
    if link is None:
        raise NotFoundError(f"Service link {link_id} not found")
    result = await session.execute(select(OfferedService).where(OfferedService.service_id == link.service_id))
    return validate_service_link(link, list(result.scalars().all()))


def service_addresses(
    link: ServiceLink,
    policy: AddressPolicy,
    instances: Iterable[ServiceInstance],
) -> list[ServiceAddress]:
    # Forbidden links never get an address.
    if policy.distribution is DistributionType.FORBIDDEN:
        return []
    if policy.scope is AddressScopeType.VAN:
        return [ServiceAddress(address=link.van_address)]
    ordered = sorted(set(instances))
    if policy.scope is AddressScopeType.SITE:
        sites = sorted({instance.site_id for instance in ordered})
        return [ServiceAddress(address=f"{link.van_address}/{site}", site_id=site) for site in sites]
    return [
        ServiceAddress(
            address=f"{link.van_address}/{instance.site_id}/{instance.instance_id}",
            site_id=instance.site_id,
            instance_id=instance.instance_id,
        )
        for instance in ordered
    ]


def _sticky_index(key: str, count: int) -> int:
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % count


def compute_delivery_set(
    policy: AddressPolicy,
    instances: Iterable[ServiceInstance],
    *,
    address: ServiceAddress | None = None,
    sticky_key: str | None = None,
    rng: random.Random | None = None,
) -> list[ServiceInstance]:
    """Instances that receive one payload sent to ``address``.

    ``sticky_key`` is the client source address or session cookie; with a
    sticky mechanism the same key always lands on the same instance while
    the instance set is unchanged.
    """
    if policy.distribution is DistributionType.FORBIDDEN:
        return []
    candidates = sorted(set(instances))
    if address is not None:
        if address.site_id is not None:
            candidates = [instance for instance in candidates if instance.site_id == address.site_id]
        if address.instance_id is not None:
            candidates = [instance for instance in candidates if instance.instance_id == address.instance_id]
    if not candidates:
        return []
    if policy.distribution is DistributionType.MULTICAST:
        return candidates
    if sticky_key and policy.sticky is not StickyMechanismType.NONE:
        return [candidates[_sticky_index(sticky_key, len(candidates))]]
    return [(rng or random).choice(candidates)]
