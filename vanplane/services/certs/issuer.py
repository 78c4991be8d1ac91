from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vanplane.core.config import Settings, get_settings
from vanplane.core.errors import (
    AuthorityNotReadyError,
    ConfigurationError,
    NotFoundError,
    SigningPolicyError,
)
from vanplane.domain.models import (
    ApplicationNetwork,
    CertificateRequest,
    InteriorSite,
    MemberInvitation,
    MemberSite,
    TlsCertificate,
)
from vanplane.domain.types import (
    REQUEST_SUBJECT_COLUMNS,
    CertificateRequestType,
    NetworkStatus,
    add_years,
    as_utc,
    parse_enum,
)
from vanplane.services.certs.signer import CertificateSigner, X509Signer
from vanplane.services.secrets.store import SecretStore, get_secret_store


logger = logging.getLogger(__name__)

VAN_ID_ANNOTATION = "vanplane.io/van-id"
REQUEST_ANNOTATION = "vanplane.io/certificate-request"

_OBJECT_PREFIXES: dict[CertificateRequestType, str] = {
    CertificateRequestType.INTERIOR_ROUTER: "interior-router",
    CertificateRequestType.VAN_CA: "van-ca",
    CertificateRequestType.MEMBER_CLAIM: "member-claim",
    CertificateRequestType.VAN_SITE: "van-site",
}


def request_subject(request: CertificateRequest) -> Any:
    """Return the subject id selected by the request type.

    Exactly the column that matches ``request_type`` must be populated; any
    other combination is a programming error in whoever created the request.
    """
    request_type = parse_enum(CertificateRequestType, request.request_type)
    expected = REQUEST_SUBJECT_COLUMNS[request_type]
    populated = [column for column in REQUEST_SUBJECT_COLUMNS.values() if getattr(request, column) is not None]
    if populated != [expected]:
        raise ConfigurationError(
            f"Certificate request {request.id} ({request_type.value}) must reference only {expected}, "
            f"found {populated or 'none'}"
        )
    return getattr(request, expected)


def bounded_expiration(
    *,
    requested: datetime | None,
    issuer: TlsCertificate | None,
    now: datetime,
    default_lifetime: timedelta,
) -> datetime:
    # A certificate never outlives the certificate that signed it.
    expiration = as_utc(requested) or now + default_lifetime
    if issuer is not None:
        if not issuer.is_ca:
            raise SigningPolicyError(f"Issuer {issuer.object_name} is not a certificate authority")
        issuer_expiration = as_utc(issuer.expiration)
        if issuer_expiration <= now:
            raise SigningPolicyError(f"Issuer {issuer.object_name} expired at {issuer_expiration.isoformat()}")
        if expiration > issuer_expiration:
            logger.info(
                "Clamping expiration %s to issuer %s expiration %s",
                expiration.isoformat(),
                issuer.object_name,
                issuer_expiration.isoformat(),
            )
            expiration = issuer_expiration
    if expiration <= now:
        raise SigningPolicyError(f"Requested expiration {expiration.isoformat()} is not in the future")
    return expiration


async def _authority_by_name(session: AsyncSession, object_name: str) -> TlsCertificate | None:
    result = await session.execute(select(TlsCertificate).where(TlsCertificate.object_name == object_name))
    return result.scalar_one_or_none()


async def _network_authority(session: AsyncSession, network_id: UUID) -> TlsCertificate:
    network = await session.get(ApplicationNetwork, network_id)
    if network is None:
        raise NotFoundError(f"Application network {network_id} not found")
    if network.certificate_authority_id is None:
        raise AuthorityNotReadyError(f"Application network {network.name} has no certificate authority yet")
    authority = await session.get(TlsCertificate, network.certificate_authority_id)
    if authority is None:
        raise AuthorityNotReadyError(f"Certificate authority for network {network.name} is missing")
    return authority


@dataclass
class CertificateIssuer:
    """Turns certificate requests into signed certificates.

    Key material goes to the secret store; the database only keeps the
    certificate's position in the signing forest and the secret's name.
    """

    store: SecretStore
    signer: CertificateSigner
    settings: Settings

    async def issue(
        self,
        session: AsyncSession,
        *,
        object_name: str,
        common_name: str,
        is_ca: bool,
        issuer: TlsCertificate | None,
        expiration: datetime | None,
        now: datetime,
        default_lifetime: timedelta,
        annotations: dict[str, str] | None = None,
        is_service_root: bool = False,
    ) -> TlsCertificate:
        not_after = bounded_expiration(
            requested=expiration,
            issuer=issuer,
            now=now,
            default_lifetime=default_lifetime,
        )
        # Key generation and secret-store file I/O stay off the event loop.
        issuer_secret = (
            await asyncio.to_thread(self.store.load_secret, issuer.object_name) if issuer is not None else None
        )
        key_material = await asyncio.to_thread(
            self.signer.sign,
            common_name=common_name,
            is_ca=is_ca,
            not_before=now,
            not_after=not_after,
            issuer=issuer_secret,
        )
        await asyncio.to_thread(self.store.store_secret, object_name, key_material, dict(annotations or {}))
        certificate = TlsCertificate(
            is_service_root=is_service_root,
            is_ca=is_ca,
            object_name=object_name,
            signed_by_id=issuer.id if issuer is not None else None,
            expiration=not_after,
        )
        session.add(certificate)
        await session.flush()
        return certificate

    async def ensure_service_authorities(self, session: AsyncSession, *, now: datetime) -> TlsCertificate:
        # Bootstrap the self-signed root and the interior CA it signs; existing ones are kept.
        lifetime = timedelta(days=self.settings.root_ca_expiration_days)
        root = await _authority_by_name(session, self.settings.root_ca_secret_name)
        if root is None:
            logger.info("Creating service root certificate authority")
            root = await self.issue(
                session,
                object_name=self.settings.root_ca_secret_name,
                common_name=self.settings.root_ca_secret_name,
                is_ca=True,
                issuer=None,
                expiration=None,
                now=now,
                default_lifetime=lifetime,
                is_service_root=True,
            )
        if await _authority_by_name(session, self.settings.interior_ca_secret_name) is None:
            logger.info("Creating interior certificate authority")
            await self.issue(
                session,
                object_name=self.settings.interior_ca_secret_name,
                common_name=self.settings.interior_ca_secret_name,
                is_ca=True,
                issuer=root,
                expiration=None,
                now=now,
                default_lifetime=lifetime,
            )
        return root

    async def network_authority(self, session: AsyncSession, network_id: UUID) -> TlsCertificate:
        return await _network_authority(session, network_id)

    async def resolve_authority(
        self,
        session: AsyncSession,
        request_type: CertificateRequestType,
        subject: Any,
    ) -> TlsCertificate:
        if request_type is CertificateRequestType.VAN_CA:
            authority = await _authority_by_name(session, self.settings.root_ca_secret_name)
            if authority is None or not authority.is_service_root:
                raise AuthorityNotReadyError("Service root certificate authority is not provisioned")
            return authority
        if request_type is CertificateRequestType.INTERIOR_ROUTER:
            authority = await _authority_by_name(session, self.settings.interior_ca_secret_name)
            if authority is None:
                raise AuthorityNotReadyError("Interior certificate authority is not provisioned")
            return authority
        if request_type is CertificateRequestType.MEMBER_CLAIM:
            invitation = await session.get(MemberInvitation, subject)
            if invitation is None:
                raise NotFoundError(f"Invitation {subject} not found")
            return await _network_authority(session, invitation.member_of_id)
        if request_type is CertificateRequestType.VAN_SITE:
            site = await session.get(MemberSite, subject)
            if site is None:
                raise NotFoundError(f"Member site {subject} not found")
            return await _network_authority(session, site.member_of_id)
        raise ConfigurationError(f"Unsupported certificate request type: {request_type!r}")

    async def fulfil(self, session: AsyncSession, request: CertificateRequest, *, now: datetime) -> TlsCertificate:
        """Generate the certificate for ``request``, attach it to the subject and delete the request."""
        request_type = parse_enum(CertificateRequestType, request.request_type)
        subject = request_subject(request)
        authority = await self.resolve_authority(session, request_type, subject)
        object_name = f"{_OBJECT_PREFIXES[request_type]}-{request.id.hex}"
        annotations = {REQUEST_ANNOTATION: str(request.id)}
        default_lifetime = timedelta(days=self.settings.default_cert_expiration_days)

        if request_type is CertificateRequestType.VAN_CA:
            network = await session.get(ApplicationNetwork, subject)
            if network is None:
                raise NotFoundError(f"Application network {subject} not found")
            annotations[VAN_ID_ANNOTATION] = network.van_id
            certificate = await self.issue(
                session,
                object_name=object_name,
                common_name=object_name,
                is_ca=True,
                issuer=authority,
                expiration=request.expire_time,
                now=now,
                default_lifetime=add_years(now, self.settings.default_ca_expiration_years) - now,
                annotations=annotations,
            )
            network.certificate_authority_id = certificate.id
            network.oper_status = NetworkStatus.READY
        elif request_type is CertificateRequestType.INTERIOR_ROUTER:
            site = await session.get(InteriorSite, subject)
            if site is None:
                raise NotFoundError(f"Interior site {subject} not found")
            certificate = await self.issue(
                session,
                object_name=object_name,
                common_name=site.id,
                is_ca=False,
                issuer=authority,
                expiration=request.expire_time,
                now=now,
                default_lifetime=default_lifetime,
                annotations=annotations,
            )
            site.certificate_id = certificate.id
        elif request_type is CertificateRequestType.MEMBER_CLAIM:
            invitation = await session.get(MemberInvitation, subject)
            network = await session.get(ApplicationNetwork, invitation.member_of_id)
            annotations[VAN_ID_ANNOTATION] = network.van_id
            certificate = await self.issue(
                session,
                object_name=object_name,
                common_name=object_name,
                is_ca=False,
                issuer=authority,
                expiration=request.expire_time or as_utc(invitation.join_deadline),
                now=now,
                default_lifetime=default_lifetime,
                annotations=annotations,
            )
            invitation.claim_certificate_id = certificate.id
        else:
            site = await session.get(MemberSite, subject)
            network = await session.get(ApplicationNetwork, site.member_of_id)
            annotations[VAN_ID_ANNOTATION] = network.van_id
            certificate = await self.issue(
                session,
                object_name=object_name,
                common_name=str(site.id),
                is_ca=False,
                issuer=authority,
                expiration=request.expire_time,
                now=now,
                default_lifetime=default_lifetime,
                annotations=annotations,
            )
            site.certificate_id = certificate.id

        await session.delete(request)
        await session.flush()
        logger.info(
            "Fulfilled certificate request %s (%s) as %s",
            request.id,
            request_type.value,
            certificate.object_name,
        )
        return certificate


def get_certificate_issuer() -> CertificateIssuer:
    return CertificateIssuer(store=get_secret_store(), signer=X509Signer(), settings=get_settings())
