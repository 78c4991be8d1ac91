from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import httpx
from httpx import ASGITransport

from vanplane.apps.api.deps import get_sync_controller
from vanplane.apps.api.main import create_app
from vanplane.core.errors import ProtocolError
from vanplane.domain.models import Backbone
from vanplane.services.sync import protocol
from vanplane.services.sync.client import SiteSyncClient, SyncRequestError
from vanplane.services.sync.handlers import SyncController
from vanplane.tests.utils.topology import create_backbone_site, create_invitation, create_ready_network


@pytest.fixture
def transport(session_factory, issuer) -> ASGITransport:
    app = create_app()
    controller = SyncController(session_factory=session_factory, issuer=issuer)
    app.dependency_overrides[get_sync_controller] = lambda: controller
    return ASGITransport(app=app)


async def _invitation(session_factory, issuer, *, instance_limit: int = 1):
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        async with session.begin():
            backbone = Backbone(name="bb")
            session.add(backbone)
            await session.flush()
            await create_backbone_site(session, site_id="bb-1", backbone=backbone, member_host="bb1.example.com")
            network = await create_ready_network(session, issuer, now=now)
            return await create_invitation(
                session,
                network,
                join_deadline=now + timedelta(hours=1),
                instance_limit=instance_limit,
                attach_to=[("bb-1", 1)],
            )


@pytest.mark.asyncio
async def test_claim_then_synchronize(transport, session_factory, issuer) -> None:
    invitation = await _invitation(session_factory, issuer)
    async with SiteSyncClient("http://test", transport=transport, max_retries=0) as client:
        claim = await client.claim(str(invitation.id), "edge-1")
        assert client.site_id == claim["siteClient"]["siteId"]

        fetched = await client.synchronize(address="203.0.113.5")
        assert fetched == ["links", "site-config", "tls-client"]
        assert client.objects["links"]["outgoingLinks"][0]["host"] == "bb1.example.com"

        # Everything is current now.
        assert await client.heartbeat() == []


@pytest.mark.asyncio
async def test_failure_responses_raise(transport, session_factory, issuer) -> None:
    invitation = await _invitation(session_factory, issuer, instance_limit=1)
    async with SiteSyncClient("http://test", transport=transport, max_retries=0) as client:
        await client.claim(str(invitation.id), "edge-1")
        with pytest.raises(SyncRequestError) as excinfo:
            await client.claim(str(invitation.id), "edge-2")
    assert excinfo.value.status_code == 409


@pytest.mark.asyncio
async def test_heartbeat_needs_a_site_id(transport) -> None:
    async with SiteSyncClient("http://test", transport=transport, max_retries=0) as client:
        with pytest.raises(ProtocolError):
            await client.heartbeat()


def _gateway_then(answers: list[tuple[int, dict]]) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    # The last answer repeats once the list runs out.
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        status, content = answers[min(len(seen), len(answers)) - 1]
        return httpx.Response(status, **content)

    return httpx.MockTransport(handler), seen


@pytest.mark.asyncio
async def test_html_gateway_error_is_retried() -> None:
    transport, seen = _gateway_then(
        [
            (502, {"text": "<html><body>Bad Gateway</body></html>"}),
            (200, {"json": protocol.heartbeat_ack(["links"])}),
        ]
    )
    async with SiteSyncClient(
        "http://test", site_id="site-1", transport=transport, max_retries=1, backoff_ms=0
    ) as client:
        assert await client.heartbeat() == ["links"]
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_html_gateway_error_surfaces_when_retries_run_out() -> None:
    transport, seen = _gateway_then([(503, {"text": "<html>Service Unavailable</html>"})])
    async with SiteSyncClient(
        "http://test", site_id="site-1", transport=transport, max_retries=2, backoff_ms=0
    ) as client:
        with pytest.raises(SyncRequestError) as excinfo:
            await client.heartbeat()
    assert excinfo.value.status_code == 503
    assert len(seen) == 3


@pytest.mark.asyncio
async def test_non_json_client_error_is_not_retried() -> None:
    transport, seen = _gateway_then([(404, {"text": "not here"})])
    async with SiteSyncClient(
        "http://test", site_id="site-1", transport=transport, max_retries=2, backoff_ms=0
    ) as client:
        with pytest.raises(SyncRequestError) as excinfo:
            await client.heartbeat()
    assert excinfo.value.status_code == 404
    assert len(seen) == 1
