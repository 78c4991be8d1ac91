from __future__ import annotations

import random
from uuid import uuid4

import pytest

from vanplane.core.errors import TopologyError
from vanplane.domain.models import OfferedService, ServiceLink
from vanplane.domain.types import AddressScopeType, DistributionType, StickyMechanismType
from vanplane.services.topology.delivery import (
    ServiceAddress,
    ServiceInstance,
    compute_delivery_set,
    service_addresses,
    validate_service_link,
)


INSTANCES = [
    ServiceInstance(site_id="site-b", instance_id="i-2"),
    ServiceInstance(site_id="site-a", instance_id="i-1"),
    ServiceInstance(site_id="site-a", instance_id="i-3"),
]


def _link(distribution: DistributionType, scope: AddressScopeType = AddressScopeType.VAN) -> ServiceLink:
    return ServiceLink(
        id=uuid4(),
        member_of_id=uuid4(),
        service_id="web",
        van_address="web",
        distribution=distribution,
        scope=scope,
    )


def _offers(*mechanisms: StickyMechanismType) -> list[OfferedService]:
    return [OfferedService(image_id=uuid4(), service_id="web", sticky_mechanism=mechanism) for mechanism in mechanisms]


@pytest.mark.parametrize("scope", list(AddressScopeType))
def test_forbidden_link_never_delivers(scope) -> None:
    link = _link(DistributionType.FORBIDDEN, scope)
    policy = validate_service_link(link, _offers(StickyMechanismType.NONE))
    assert compute_delivery_set(policy, INSTANCES) == []
    assert compute_delivery_set(policy, INSTANCES, sticky_key="10.0.0.1") == []
    assert service_addresses(link, policy, INSTANCES) == []


def test_forbidden_link_without_offers_is_valid() -> None:
    policy = validate_service_link(_link(DistributionType.FORBIDDEN), [])
    assert compute_delivery_set(policy, INSTANCES) == []


def test_multicast_delivers_to_every_instance() -> None:
    policy = validate_service_link(_link(DistributionType.MULTICAST), _offers(StickyMechanismType.NONE))
    assert compute_delivery_set(policy, INSTANCES) == sorted(INSTANCES)


def test_anycast_delivers_to_exactly_one_instance() -> None:
    policy = validate_service_link(_link(DistributionType.ANYCAST), _offers(StickyMechanismType.NONE))
    chosen = compute_delivery_set(policy, INSTANCES, rng=random.Random(7))
    assert len(chosen) == 1
    assert chosen[0] in INSTANCES


def test_source_address_stickiness_is_stable() -> None:
    policy = validate_service_link(
        _link(DistributionType.ANYCAST),
        _offers(StickyMechanismType.SOURCE_ADDRESS, StickyMechanismType.SOURCE_ADDRESS),
    )
    first = compute_delivery_set(policy, INSTANCES, sticky_key="192.0.2.10")
    for _ in range(5):
        assert compute_delivery_set(policy, list(reversed(INSTANCES)), sticky_key="192.0.2.10") == first


def test_cookie_stickiness_uses_affinity_proxy() -> None:
    policy = validate_service_link(_link(DistributionType.ANYCAST), _offers(StickyMechanismType.COOKIE))
    assert policy.affinity_proxy is True


def test_scope_narrows_addresses_and_delivery() -> None:
    link = _link(DistributionType.MULTICAST, AddressScopeType.SITE)
    policy = validate_service_link(link, _offers(StickyMechanismType.NONE))
    addresses = service_addresses(link, policy, INSTANCES)
    assert addresses == [
        ServiceAddress(address="web/site-a", site_id="site-a"),
        ServiceAddress(address="web/site-b", site_id="site-b"),
    ]
    delivered = compute_delivery_set(policy, INSTANCES, address=addresses[0])
    assert {instance.instance_id for instance in delivered} == {"i-1", "i-3"}


def test_instance_scope_addresses_each_instance() -> None:
    link = _link(DistributionType.ANYCAST, AddressScopeType.INSTANCE)
    policy = validate_service_link(link, _offers(StickyMechanismType.NONE))
    addresses = service_addresses(link, policy, INSTANCES)
    assert [address.address for address in addresses] == ["web/site-a/i-1", "web/site-a/i-3", "web/site-b/i-2"]
    assert compute_delivery_set(policy, INSTANCES, address=addresses[2]) == [
        ServiceInstance(site_id="site-b", instance_id="i-2")
    ]


def test_invalid_links_are_rejected() -> None:
    with pytest.raises(TopologyError, match="no offering image"):
        validate_service_link(_link(DistributionType.ANYCAST), [])
    with pytest.raises(TopologyError, match="mixes sticky mechanisms"):
        validate_service_link(
            _link(DistributionType.ANYCAST),
            _offers(StickyMechanismType.COOKIE, StickyMechanismType.SOURCE_ADDRESS),
        )
    with pytest.raises(TopologyError, match="Multicast"):
        validate_service_link(_link(DistributionType.MULTICAST), _offers(StickyMechanismType.SOURCE_ADDRESS))
    with pytest.raises(TopologyError, match="instance scope"):
        validate_service_link(
            _link(DistributionType.ANYCAST, AddressScopeType.INSTANCE),
            _offers(StickyMechanismType.COOKIE),
        )
