from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import sys

from sqlalchemy import select

from vanplane.domain.models import (
    ApplicationNetwork,
    Backbone,
    BackboneAccessPoint,
    CertificateRequest,
    EdgeLink,
    InteriorSite,
    InterRouterLink,
    MemberInvitation,
)
from vanplane.domain.types import AccessPointKind, CertificateRequestType
from vanplane.persistence.db import SessionLocal


DEMO_BACKBONE_NAME = "demo-backbone"
DEMO_SITES = ("bb-east", "bb-west")
DEMO_NETWORK_NAME = "demo-van"


def _access_points() -> dict[str, BackboneAccessPoint]:
    return {
        "peer_access": BackboneAccessPoint(kind=AccessPointKind.PEER),
        "member_access": BackboneAccessPoint(kind=AccessPointKind.MEMBER),
        "management_access": BackboneAccessPoint(kind=AccessPointKind.MANAGE),
    }


async def seed_demo() -> int:
    now = datetime.now(timezone.utc)
    async with SessionLocal() as session:
        async with session.begin():
            existing = await session.execute(select(Backbone.id).where(Backbone.name == DEMO_BACKBONE_NAME))
            if existing.scalar_one_or_none() is not None:
                print("Demo topology already seeded; skipping.")
                return 0

            backbone = Backbone(name=DEMO_BACKBONE_NAME)
            session.add(backbone)
            await session.flush()
            for site_id in DEMO_SITES:
                access = _access_points()
                session.add_all(access.values())
                await session.flush()
                session.add(
                    InteriorSite(
                        id=site_id,
                        name=site_id,
                        backbone_id=backbone.id,
                        peer_access_id=access["peer_access"].id,
                        member_access_id=access["member_access"].id,
                        management_access_id=access["management_access"].id,
                    )
                )
            await session.flush()
            # Each backbone router needs its inter-router identity.
            for site_id in DEMO_SITES:
                session.add(
                    CertificateRequest(
                        request_type=CertificateRequestType.INTERIOR_ROUTER,
                        created_time=now,
                        request_time=now,
                        interior_router_id=site_id,
                    )
                )
            session.add(InterRouterLink(listening_site_id=DEMO_SITES[0], connecting_site_id=DEMO_SITES[1], cost=1))

            # The intake worker picks the network up and requests its CA.
            network = ApplicationNetwork(name=DEMO_NETWORK_NAME, start_time=now)
            session.add(network)
            await session.flush()
            invitation = MemberInvitation(
                label="demo-invitation",
                member_of_id=network.id,
                join_deadline=now + timedelta(days=7),
                instance_limit=3,
            )
            session.add(invitation)
            await session.flush()
            session.add(EdgeLink(interior_site_id=DEMO_SITES[0], invitation_id=invitation.id, priority=1))

        print(f"Seeded backbone {DEMO_BACKBONE_NAME} and network {DEMO_NETWORK_NAME}; claim id {invitation.id}.")
        return 0


def main() -> int:
    # Exit non-zero so dev scripts can detect failures.
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
