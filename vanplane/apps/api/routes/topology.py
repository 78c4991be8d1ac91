from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vanplane.apps.api.deps import get_db, get_session_factory
from vanplane.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from vanplane.apps.api.response import SuccessEnvelope, success_response
from vanplane.domain.models import Backbone
from vanplane.persistence.repos import topology as topology_repo
from vanplane.services.certs.pipeline import SessionFactory
from vanplane.services.topology.backbone import incoming_access, outgoing_links, record_backbone_ingresses


logger = logging.getLogger(__name__)

router = APIRouter(tags=["topology"], responses=DEFAULT_ERROR_RESPONSES)


class InvitationResponse(BaseModel):
    id: str
    label: str | None
    member_of_id: str
    join_deadline: str | None
    instance_limit: int
    instance_count: int
    interactive_claim: bool


class BackboneResponse(BaseModel):
    id: str
    name: str
    federation: str | None


class BackboneSiteResponse(BaseModel):
    id: str
    name: str | None
    backbone_id: str | None


class LinkResponse(BaseModel):
    name: str
    host: str
    port: str
    role: str
    cost: str
    profile: str


class IncomingAccessResponse(BaseModel):
    profile: str
    port: str
    role: str
    host: str | None
    secret_name: str | None


class IngressEntry(BaseModel):
    host: str = Field(min_length=1)
    port: str | int


class BackboneIngressRequest(BaseModel):
    # Keyed by ingress name: skx-peer, skx-member or skx-manage.
    ingresses: dict[str, IngressEntry] = Field(default_factory=dict)


class IngressResult(BaseModel):
    processed: int


class NetworkTrustResponse(BaseModel):
    network_id: str
    van_id: str
    ca_secret_name: str


class ClaimSecretResponse(BaseModel):
    invitation_id: str
    secret_name: str


def _store_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.error("Topology query failed: %s", exc)
    return HTTPException(
        status_code=503,
        detail={"code": "DB_UNAVAILABLE", "message": "Database unavailable"},
    )


@router.get("/invitations", response_model=SuccessEnvelope[list[InvitationResponse]])
async def list_invitations(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        invitations = await topology_repo.list_invitations(db)
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc) from exc
    payload = [
        InvitationResponse(
            id=str(invitation.id),
            label=invitation.label,
            member_of_id=str(invitation.member_of_id),
            join_deadline=invitation.join_deadline.isoformat() if invitation.join_deadline else None,
            instance_limit=invitation.instance_limit,
            instance_count=invitation.instance_count,
            interactive_claim=invitation.interactive_claim,
        )
        for invitation in invitations
    ]
    return success_response(request=request, data=payload)


@router.get("/invitations/{invitation_id}/claim-secret", response_model=SuccessEnvelope[ClaimSecretResponse])
async def get_invitation_claim_secret(
    invitation_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Secret backing the invitation's claim credential; 503 until it has been issued.
    try:
        secret_name = await topology_repo.invitation_secret_name(db, invitation_id)
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc) from exc
    return success_response(
        request=request,
        data=ClaimSecretResponse(invitation_id=str(invitation_id), secret_name=secret_name),
    )


@router.get("/networks/{network_id}/trust", response_model=SuccessEnvelope[NetworkTrustResponse])
async def get_network_trust(network_id: UUID, request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        van_id = await topology_repo.get_van_id(db, network_id)
        ca_secret_name = await topology_repo.network_secret_name(db, network_id)
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc) from exc
    return success_response(
        request=request,
        data=NetworkTrustResponse(network_id=str(network_id), van_id=van_id, ca_secret_name=ca_secret_name),
    )


def _backbone_response(backbone: Backbone) -> BackboneResponse:
    return BackboneResponse(id=str(backbone.id), name=backbone.name, federation=backbone.federation)


@router.get("/backbones", response_model=SuccessEnvelope[list[BackboneResponse]])
async def list_backbones(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        backbones = await topology_repo.list_backbones(db)
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc) from exc
    return success_response(request=request, data=[_backbone_response(backbone) for backbone in backbones])


@router.get("/backbones/{backbone_id}/sites", response_model=SuccessEnvelope[list[BackboneSiteResponse]])
async def list_backbone_sites(
    backbone_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        sites = await topology_repo.list_backbone_sites(db, backbone_id)
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc) from exc
    payload = [
        BackboneSiteResponse(
            id=site.id,
            name=site.name,
            backbone_id=str(site.backbone_id) if site.backbone_id else None,
        )
        for site in sites
    ]
    return success_response(request=request, data=payload)


@router.get("/backbone-sites/{site_id}/links/outgoing", response_model=SuccessEnvelope[list[LinkResponse]])
async def list_outgoing_links(site_id: str, request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    # NotFoundError propagates to the domain error handler.
    try:
        links = await outgoing_links(db, site_id)
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc) from exc
    return success_response(request=request, data=[LinkResponse(**link.as_dict()) for link in links])


@router.get(
    "/backbone-sites/{site_id}/links/incoming",
    response_model=SuccessEnvelope[list[IncomingAccessResponse]],
)
async def list_incoming_access(site_id: str, request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        incoming = await incoming_access(db, site_id)
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc) from exc
    return success_response(
        request=request,
        data=[IncomingAccessResponse(**access.as_dict()) for access in incoming],
    )


@router.post("/backbone-ingress/{site_id}", response_model=SuccessEnvelope[IngressResult])
async def post_backbone_ingress(
    site_id: str,
    payload: BackboneIngressRequest,
    request: Request,
    session_factory: SessionFactory = Depends(get_session_factory),
) -> dict:
    logger.info("Backbone site ingress data for site %s", site_id)
    processed = await record_backbone_ingresses(
        session_factory,
        site_id=site_id,
        ingresses={key: entry.model_dump() for key, entry in payload.ingresses.items()},
    )
    return success_response(request=request, data=IngressResult(processed=processed))
