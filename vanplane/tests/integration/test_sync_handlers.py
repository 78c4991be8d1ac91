from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
from cryptography import x509
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from vanplane.domain.models import Backbone, MemberInvitation, MemberSite, TlsCertificate
from vanplane.domain.types import as_utc
from vanplane.services.sync import handlers, protocol
from vanplane.services.sync.handlers import SyncController
from vanplane.services.sync.objects import content_hash
from vanplane.tests.utils.topology import (
    create_backbone_site,
    create_invitation,
    create_network,
    create_ready_network,
)


NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _controller(session_factory, issuer, now: datetime = NOW) -> SyncController:
    return SyncController(session_factory=session_factory, issuer=issuer, clock=lambda: now)


async def _invitation_setup(session_factory, issuer, *, instance_limit: int = 1, ready: bool = True):
    async with session_factory() as session:
        async with session.begin():
            backbone = Backbone(name="bb")
            session.add(backbone)
            await session.flush()
            await create_backbone_site(session, site_id="bb-1", backbone=backbone, member_host="bb1.example.com")
            await create_backbone_site(session, site_id="bb-2", backbone=backbone, member_host="bb2.example.com")
            if ready:
                network = await create_ready_network(session, issuer, now=NOW - timedelta(days=1))
            else:
                network = await create_network(session)
            invitation = await create_invitation(
                session,
                network,
                join_deadline=NOW + timedelta(days=1),
                instance_limit=instance_limit,
                attach_to=[("bb-2", 2), ("bb-1", 1)],
            )
    return network, invitation


async def _instance_count(session_factory, invitation_id: UUID) -> int:
    async with session_factory() as session:
        invitation = await session.get(MemberInvitation, invitation_id)
        return invitation.instance_count


@pytest.mark.asyncio
async def test_claim_admits_site_and_issues_credential(session_factory, issuer) -> None:
    network, invitation = await _invitation_setup(session_factory, issuer)
    controller = _controller(session_factory, issuer)

    response = await controller.handle(protocol.assert_claim(str(invitation.id), "edge-1"))

    assert response["statusCode"] == 200
    assert [link["name"] for link in response["outgoingLinks"]] == ["bb-1", "bb-2"]
    assert response["outgoingLinks"][0] == {
        "name": "bb-1",
        "host": "bb1.example.com",
        "port": "45671",
        "role": "edge",
        "cost": "1",
        "profile": "member-client",
    }
    client = response["siteClient"]
    assert client["vanId"] == network.van_id
    cert = x509.load_pem_x509_certificate(client["tls.crt"].encode("ascii"))
    assert cert.subject.rfc4514_string() == f"CN={client['siteId']}"
    assert "PRIVATE KEY" in client["tls.key"]

    assert await _instance_count(session_factory, invitation.id) == 1
    async with session_factory() as session:
        site = await session.get(MemberSite, UUID(client["siteId"]))
        certificate = await session.get(TlsCertificate, site.certificate_id)
    assert site.label == "edge-1"
    assert site.invitation_id == invitation.id
    assert site.active_access_point_id == "bb-1"
    assert certificate.signed_by_id == network.certificate_authority_id


@pytest.mark.asyncio
async def test_claim_fails_once_limit_is_reached(session_factory, issuer) -> None:
    _network, invitation = await _invitation_setup(session_factory, issuer, instance_limit=1)
    controller = _controller(session_factory, issuer)

    first = await controller.handle(protocol.assert_claim(str(invitation.id), "edge-1"))
    second = await controller.handle(protocol.assert_claim(str(invitation.id), "edge-2"))

    assert first["statusCode"] == 200
    assert second == {
        "statusCode": 409,
        "statusDescription": f"Invitation {invitation.id} has reached its instance limit",
    }
    assert await _instance_count(session_factory, invitation.id) == 1
    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(MemberSite)) == 1


@pytest.mark.asyncio
async def test_claim_after_deadline_is_rejected(session_factory, issuer) -> None:
    _network, invitation = await _invitation_setup(session_factory, issuer)
    controller = _controller(session_factory, issuer, now=NOW + timedelta(days=2))

    response = await controller.handle(protocol.assert_claim(str(invitation.id), "late"))

    assert response["statusCode"] == 410
    assert set(response) == {"statusCode", "statusDescription"}
    assert await _instance_count(session_factory, invitation.id) == 0


@pytest.mark.asyncio
async def test_claim_exactly_at_deadline_is_admitted(session_factory, issuer) -> None:
    _network, invitation = await _invitation_setup(session_factory, issuer)
    deadline = as_utc(invitation.join_deadline)
    controller = _controller(session_factory, issuer, now=deadline)

    response = await controller.handle(protocol.assert_claim(str(invitation.id), "on-time"))
    assert response["statusCode"] == 200


@pytest.mark.asyncio
async def test_claim_unknown_or_malformed_id(session_factory, issuer) -> None:
    controller = _controller(session_factory, issuer)

    missing = await controller.handle(protocol.assert_claim(str(uuid4()), "edge"))
    malformed = await controller.handle(protocol.assert_claim("not-a-uuid", "edge"))

    assert missing["statusCode"] == 404
    assert malformed["statusCode"] == 400


@pytest.mark.asyncio
async def test_claim_rolls_back_when_network_ca_is_missing(session_factory, issuer) -> None:
    _network, invitation = await _invitation_setup(session_factory, issuer, ready=False)
    controller = _controller(session_factory, issuer)

    response = await controller.handle(protocol.assert_claim(str(invitation.id), "edge"))

    assert response["statusCode"] == 503
    assert await _instance_count(session_factory, invitation.id) == 0
    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(MemberSite)) == 0


@pytest.mark.asyncio
async def test_concurrent_claims_respect_instance_limit(session_factory, issuer) -> None:
    _network, invitation = await _invitation_setup(session_factory, issuer, instance_limit=2)
    controller = _controller(session_factory, issuer)

    responses = await asyncio.gather(
        *(controller.handle(protocol.assert_claim(str(invitation.id), f"edge-{index}")) for index in range(4))
    )

    codes = sorted(response["statusCode"] for response in responses)
    assert codes == [200, 200, 409, 409]
    assert await _instance_count(session_factory, invitation.id) == 2


@pytest.mark.asyncio
async def test_heartbeat_reports_stale_objects_and_records_liveness(session_factory, issuer) -> None:
    _network, invitation = await _invitation_setup(session_factory, issuer)
    controller = _controller(session_factory, issuer)
    claim = await controller.handle(protocol.assert_claim(str(invitation.id), "edge-1"))
    site_id = claim["siteClient"]["siteId"]

    first = await controller.handle(protocol.heartbeat(site_id, {}, "198.51.100.7"))
    assert first["statusCode"] == 200
    assert first["staleObjects"] == ["links", "site-config", "tls-client"]

    links = await controller.handle(protocol.get_object(site_id, "links"))
    assert links["objectName"] == "links"
    assert links["hash"] == content_hash(links["data"])
    assert [link["name"] for link in links["data"]["outgoingLinks"]] == ["bb-1", "bb-2"]

    second = await controller.handle(protocol.heartbeat(site_id, {"links": links["hash"]}))
    assert second["staleObjects"] == ["site-config", "tls-client"]

    async with session_factory() as session:
        site = await session.get(MemberSite, UUID(site_id))
    assert as_utc(site.last_heartbeat_at) == NOW
    assert site.last_address == "198.51.100.7"


@pytest.mark.asyncio
async def test_get_unknown_object_or_site(session_factory, issuer) -> None:
    _network, invitation = await _invitation_setup(session_factory, issuer)
    controller = _controller(session_factory, issuer)
    claim = await controller.handle(protocol.assert_claim(str(invitation.id), "edge-1"))
    site_id = claim["siteClient"]["siteId"]

    unknown_object = await controller.handle(protocol.get_object(site_id, "nope"))
    unknown_site = await controller.handle(protocol.get_object(str(uuid4()), "links"))

    assert unknown_object["statusCode"] == 404
    assert unknown_site["statusCode"] == 404


@pytest.mark.asyncio
async def test_backbone_site_objects(session_factory, issuer) -> None:
    await _invitation_setup(session_factory, issuer)
    controller = _controller(session_factory, issuer)

    response = await controller.handle(protocol.get_object("bb-1", "access"))

    assert response["statusCode"] == 200
    profiles = [entry["profile"] for entry in response["data"]["incoming"]]
    assert profiles == ["peer_access", "member_access", "manage_access"]


@pytest.mark.asyncio
async def test_protocol_errors_become_failure_responses(session_factory, issuer) -> None:
    controller = _controller(session_factory, issuer)

    wrong_version = await controller.handle({"version": 2, "op": "HB", "site": "x", "hashset": {}})
    unknown_op = await controller.handle({"version": 1, "op": "SOLICIT"})

    assert wrong_version["statusCode"] == 400
    assert "version" in wrong_version["statusDescription"]
    assert unknown_op["statusCode"] == 400


@pytest.mark.asyncio
async def test_store_failure_becomes_retryable_failure(session_factory, issuer, monkeypatch) -> None:
    async def _broken(session, site_id):
        raise OperationalError("SELECT 1", {}, Exception("connection reset"))

    monkeypatch.setattr(handlers, "site_objects", _broken)
    controller = _controller(session_factory, issuer)

    response = await controller.handle(protocol.heartbeat("bb-1", {}))

    assert response == {"statusCode": 503, "statusDescription": "Store unavailable, retry later"}
