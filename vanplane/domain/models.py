from __future__ import annotations

import enum
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Interval,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from vanplane.domain.types import (
    AccessPointKind,
    AccessPointLifecycle,
    AddressScopeType,
    CertificateRequestType,
    DistributionType,
    EndpointKind,
    NetworkStatus,
    StickyMechanismType,
)


def _enum_type(enum_cls: type[enum.Enum], name: str) -> Enum:
    # Persist enum values (not member names) and reject unknown strings on bind.
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)


class TlsCertificate(Base):
    __tablename__ = "tls_certificates"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    # Marks the service-wide root that anchors every network CA.
    is_service_root: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_ca: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Name of the secret holding the key material.
    object_name: Mapped[str] = mapped_column(String, unique=True)
    # NULL means self-signed.
    signed_by_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("tls_certificates.id"), nullable=True
    )
    expiration: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Backbone(Base):
    __tablename__ = "backbones"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String)
    # Backbones sharing a federation group may advertise links to each other.
    federation: Mapped[str | None] = mapped_column(String, nullable=True)


class BackboneAccessPoint(Base):
    __tablename__ = "backbone_access_points"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    kind: Mapped[AccessPointKind] = mapped_column(_enum_type(AccessPointKind, "accesspointkind"))
    lifecycle: Mapped[AccessPointLifecycle] = mapped_column(
        _enum_type(AccessPointLifecycle, "accesspointlifecycle"),
        default=AccessPointLifecycle.PARTIAL,
        nullable=False,
    )
    hostname: Mapped[str | None] = mapped_column(String, nullable=True)
    port: Mapped[str | None] = mapped_column(String, nullable=True)
    certificate_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("tls_certificates.id"), nullable=True
    )


class InteriorSite(Base):
    __tablename__ = "interior_sites"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    backbone_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("backbones.id", ondelete="CASCADE"), nullable=True, index=True
    )
    # Inter-router identity, populated when its interiorRouter request is fulfilled.
    certificate_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("tls_certificates.id"), nullable=True
    )
    peer_access_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("backbone_access_points.id"), nullable=True
    )
    member_access_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("backbone_access_points.id"), nullable=True
    )
    management_access_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("backbone_access_points.id"), nullable=True
    )


class InterRouterLink(Base):
    __tablename__ = "inter_router_links"

    # Directed, weighted backbone edge; removed with either endpoint.
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    listening_site_id: Mapped[str] = mapped_column(
        String, ForeignKey("interior_sites.id", ondelete="CASCADE"), index=True
    )
    connecting_site_id: Mapped[str] = mapped_column(
        String, ForeignKey("interior_sites.id", ondelete="CASCADE"), index=True
    )
    cost: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class Image(Base):
    __tablename__ = "images"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String)
    image_name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class Service(Base):
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    protocol: Mapped[str | None] = mapped_column(String, nullable=True)
    default_port: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class OfferedService(Base):
    __tablename__ = "offered_services"

    image_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("images.id"), primary_key=True)
    service_id: Mapped[str] = mapped_column(String, ForeignKey("services.id"), primary_key=True)
    actual_port: Mapped[str | None] = mapped_column(String, nullable=True)
    sticky_mechanism: Mapped[StickyMechanismType] = mapped_column(
        _enum_type(StickyMechanismType, "stickymechanismtype"),
        default=StickyMechanismType.NONE,
        nullable=False,
    )


class RequiredService(Base):
    __tablename__ = "required_services"

    image_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("images.id"), primary_key=True)
    service_id: Mapped[str] = mapped_column(String, ForeignKey("services.id"), primary_key=True)


class ApplicationNetwork(Base):
    __tablename__ = "application_networks"
    __table_args__ = (
        Index("ix_application_networks_oper_status", "oper_status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String)
    owner_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    # Network CA; set once the vanCA request is fulfilled.
    certificate_authority_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("tls_certificates.id"), nullable=True
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Grace period after end_time before the network's trust material lapses.
    delete_delay: Mapped[timedelta] = mapped_column(Interval, default=timedelta(0), nullable=False)
    oper_status: Mapped[NetworkStatus] = mapped_column(
        _enum_type(NetworkStatus, "networkstatus"),
        default=NetworkStatus.NEW,
        nullable=False,
    )
    # Stable network identifier handed to member sites.
    van_id: Mapped[str] = mapped_column(String, default=lambda: uuid4().hex, unique=True)


class SiteClass(Base):
    __tablename__ = "site_classes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    member_of_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("application_networks.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class MemberInvitation(Base):
    __tablename__ = "member_invitations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    label: Mapped[str | None] = mapped_column(String, nullable=True)
    join_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    member_class_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("site_classes.id"), nullable=True
    )
    member_of_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("application_networks.id", ondelete="CASCADE"), index=True
    )
    claim_certificate_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("tls_certificates.id"), nullable=True
    )
    instance_limit: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    instance_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    interactive_claim: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class EdgeLink(Base):
    __tablename__ = "edge_links"

    # Backbone attach points offered to sites joining through an invitation.
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    interior_site_id: Mapped[str] = mapped_column(
        String, ForeignKey("interior_sites.id", ondelete="CASCADE"), index=True
    )
    invitation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("member_invitations.id", ondelete="CASCADE"), index=True
    )
    priority: Mapped[int] = mapped_column(Integer, default=4, nullable=False)


class MemberSite(Base):
    __tablename__ = "member_sites"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    member_of_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("application_networks.id", ondelete="CASCADE"), index=True
    )
    invitation_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("member_invitations.id", ondelete="SET NULL"), nullable=True
    )
    label: Mapped[str | None] = mapped_column(String, nullable=True)
    site_class_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("site_classes.id"), nullable=True
    )
    active_access_point_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("interior_sites.id"), nullable=True
    )
    certificate_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("tls_certificates.id"), nullable=True
    )
    last_heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_address: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ServiceLink(Base):
    __tablename__ = "service_links"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    member_of_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("application_networks.id", ondelete="CASCADE"), index=True
    )
    service_id: Mapped[str] = mapped_column(String, ForeignKey("services.id"))
    van_address: Mapped[str] = mapped_column(String)
    distribution: Mapped[DistributionType] = mapped_column(
        _enum_type(DistributionType, "distributiontype"),
        default=DistributionType.ANYCAST,
        nullable=False,
    )
    scope: Mapped[AddressScopeType] = mapped_column(
        _enum_type(AddressScopeType, "addressscopetype"),
        default=AddressScopeType.VAN,
        nullable=False,
    )


class Endpoint(Base):
    __tablename__ = "endpoints"
    __table_args__ = (
        # An endpoint is placed by site class or pinned to one member site, never both.
        CheckConstraint(
            "(site_class_id IS NULL) <> (site_id IS NULL)",
            name="ck_endpoints_single_placement",
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    member_of_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("application_networks.id", ondelete="CASCADE"), index=True
    )
    site_class_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("site_classes.id"), nullable=True
    )
    site_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("member_sites.id"), nullable=True
    )
    kind: Mapped[EndpointKind] = mapped_column(_enum_type(EndpointKind, "endpointkind"))

    __mapper_args__ = {"polymorphic_on": "kind"}


class Process(Endpoint):
    image_id: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("images.id"), nullable=True)
    image_tag: Mapped[str | None] = mapped_column(String, default="latest", nullable=True)

    __mapper_args__ = {"polymorphic_identity": EndpointKind.PROCESS}


class Ingress(Endpoint):
    name: Mapped[str | None] = mapped_column(String, nullable=True, use_existing_column=True)

    __mapper_args__ = {"polymorphic_identity": EndpointKind.INGRESS}


class Egress(Endpoint):
    name: Mapped[str | None] = mapped_column(String, nullable=True, use_existing_column=True)

    __mapper_args__ = {"polymorphic_identity": EndpointKind.EGRESS}


class CertificateRequest(Base):
    __tablename__ = "certificate_requests"
    __table_args__ = (
        Index("ix_certificate_requests_eligible", "processing", "request_time", "created_time"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    request_type: Mapped[CertificateRequestType] = mapped_column(
        _enum_type(CertificateRequestType, "certificaterequesttype")
    )
    # First-created, first-processed among eligible rows.
    created_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    # Not eligible before this time.
    request_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Desired expiration of the issued certificate; a default applies when absent.
    expire_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    interior_router_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("interior_sites.id", ondelete="CASCADE"), nullable=True
    )
    application_network_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("application_networks.id", ondelete="CASCADE"), nullable=True
    )
    invitation_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("member_invitations.id", ondelete="CASCADE"), nullable=True
    )
    site_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("member_sites.id", ondelete="CASCADE"), nullable=True
    )
    processing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Lease start for the in-flight claim; stale leases are reclaimed.
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
