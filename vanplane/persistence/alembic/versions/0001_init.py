"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


access_point_kind = sa.Enum("peer", "member", "manage", name="accesspointkind")
access_point_lifecycle = sa.Enum("partial", "new", "ready", name="accesspointlifecycle")
sticky_mechanism = sa.Enum("none", "sourceAddress", "cookie", name="stickymechanismtype")
distribution_type = sa.Enum("anycast", "multicast", "forbidden", name="distributiontype")
address_scope = sa.Enum("van", "site", "instance", name="addressscopetype")
network_status = sa.Enum("new", "cert_request_created", "ready", name="networkstatus")
endpoint_kind = sa.Enum("process", "ingress", "egress", name="endpointkind")
certificate_request_type = sa.Enum(
    "interiorRouter", "vanCA", "memberClaim", "vanSite", name="certificaterequesttype"
)

_ENUMS = (
    access_point_kind,
    access_point_lifecycle,
    sticky_mechanism,
    distribution_type,
    address_scope,
    network_status,
    endpoint_kind,
    certificate_request_type,
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
    )

    op.create_table(
        "tls_certificates",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("is_service_root", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_ca", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("object_name", sa.String(), nullable=False, unique=True),
        sa.Column("signed_by_id", sa.Uuid(), sa.ForeignKey("tls_certificates.id"), nullable=True),
        sa.Column("expiration", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "backbones",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("federation", sa.String(), nullable=True),
    )

    op.create_table(
        "backbone_access_points",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("kind", access_point_kind, nullable=False),
        sa.Column("lifecycle", access_point_lifecycle, nullable=False, server_default="partial"),
        sa.Column("hostname", sa.String(), nullable=True),
        sa.Column("port", sa.String(), nullable=True),
        sa.Column("certificate_id", sa.Uuid(), sa.ForeignKey("tls_certificates.id"), nullable=True),
    )

    op.create_table(
        "interior_sites",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("backbone_id", sa.Uuid(), sa.ForeignKey("backbones.id", ondelete="CASCADE"), nullable=True),
        sa.Column("certificate_id", sa.Uuid(), sa.ForeignKey("tls_certificates.id"), nullable=True),
        sa.Column("peer_access_id", sa.Uuid(), sa.ForeignKey("backbone_access_points.id"), nullable=True),
        sa.Column("member_access_id", sa.Uuid(), sa.ForeignKey("backbone_access_points.id"), nullable=True),
        sa.Column("management_access_id", sa.Uuid(), sa.ForeignKey("backbone_access_points.id"), nullable=True),
    )
    op.create_index("ix_interior_sites_backbone_id", "interior_sites", ["backbone_id"])

    op.create_table(
        "inter_router_links",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "listening_site_id",
            sa.String(),
            sa.ForeignKey("interior_sites.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "connecting_site_id",
            sa.String(),
            sa.ForeignKey("interior_sites.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("cost", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_inter_router_links_listening_site_id", "inter_router_links", ["listening_site_id"])
    op.create_index("ix_inter_router_links_connecting_site_id", "inter_router_links", ["connecting_site_id"])

    op.create_table(
        "images",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("image_name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
    )

    op.create_table(
        "services",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("protocol", sa.String(), nullable=True),
        sa.Column("default_port", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
    )

    op.create_table(
        "offered_services",
        sa.Column("image_id", sa.Uuid(), sa.ForeignKey("images.id"), primary_key=True),
        sa.Column("service_id", sa.String(), sa.ForeignKey("services.id"), primary_key=True),
        sa.Column("actual_port", sa.String(), nullable=True),
        sa.Column("sticky_mechanism", sticky_mechanism, nullable=False, server_default="none"),
    )

    op.create_table(
        "required_services",
        sa.Column("image_id", sa.Uuid(), sa.ForeignKey("images.id"), primary_key=True),
        sa.Column("service_id", sa.String(), sa.ForeignKey("services.id"), primary_key=True),
    )

    op.create_table(
        "application_networks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("certificate_authority_id", sa.Uuid(), sa.ForeignKey("tls_certificates.id"), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delete_delay", sa.Interval(), nullable=False, server_default=sa.text("'0 seconds'")),
        sa.Column("oper_status", network_status, nullable=False, server_default="new"),
        sa.Column("van_id", sa.String(), nullable=False, unique=True),
    )
    op.create_index("ix_application_networks_oper_status", "application_networks", ["oper_status"])

    op.create_table(
        "site_classes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "member_of_id",
            sa.Uuid(),
            sa.ForeignKey("application_networks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
    )
    op.create_index("ix_site_classes_member_of_id", "site_classes", ["member_of_id"])

    op.create_table(
        "member_invitations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("label", sa.String(), nullable=True),
        sa.Column("join_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("member_class_id", sa.Uuid(), sa.ForeignKey("site_classes.id"), nullable=True),
        sa.Column(
            "member_of_id",
            sa.Uuid(),
            sa.ForeignKey("application_networks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("claim_certificate_id", sa.Uuid(), sa.ForeignKey("tls_certificates.id"), nullable=True),
        sa.Column("instance_limit", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("instance_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("interactive_claim", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_member_invitations_member_of_id", "member_invitations", ["member_of_id"])

    op.create_table(
        "edge_links",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "interior_site_id",
            sa.String(),
            sa.ForeignKey("interior_sites.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "invitation_id",
            sa.Uuid(),
            sa.ForeignKey("member_invitations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="4"),
    )
    op.create_index("ix_edge_links_interior_site_id", "edge_links", ["interior_site_id"])
    op.create_index("ix_edge_links_invitation_id", "edge_links", ["invitation_id"])

    op.create_table(
        "member_sites",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "member_of_id",
            sa.Uuid(),
            sa.ForeignKey("application_networks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "invitation_id",
            sa.Uuid(),
            sa.ForeignKey("member_invitations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("label", sa.String(), nullable=True),
        sa.Column("site_class_id", sa.Uuid(), sa.ForeignKey("site_classes.id"), nullable=True),
        sa.Column("active_access_point_id", sa.String(), sa.ForeignKey("interior_sites.id"), nullable=True),
        sa.Column("certificate_id", sa.Uuid(), sa.ForeignKey("tls_certificates.id"), nullable=True),
        sa.Column("last_heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_address", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_member_sites_member_of_id", "member_sites", ["member_of_id"])

    op.create_table(
        "service_links",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "member_of_id",
            sa.Uuid(),
            sa.ForeignKey("application_networks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("service_id", sa.String(), sa.ForeignKey("services.id"), nullable=False),
        sa.Column("van_address", sa.String(), nullable=False),
        sa.Column("distribution", distribution_type, nullable=False, server_default="anycast"),
        sa.Column("scope", address_scope, nullable=False, server_default="van"),
    )
    op.create_index("ix_service_links_member_of_id", "service_links", ["member_of_id"])

    op.create_table(
        "endpoints",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "member_of_id",
            sa.Uuid(),
            sa.ForeignKey("application_networks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("site_class_id", sa.Uuid(), sa.ForeignKey("site_classes.id"), nullable=True),
        sa.Column("site_id", sa.Uuid(), sa.ForeignKey("member_sites.id"), nullable=True),
        sa.Column("kind", endpoint_kind, nullable=False),
        sa.Column("image_id", sa.Uuid(), sa.ForeignKey("images.id"), nullable=True),
        sa.Column("image_tag", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.CheckConstraint(
            "(site_class_id IS NULL) <> (site_id IS NULL)",
            name="ck_endpoints_single_placement",
        ),
    )
    op.create_index("ix_endpoints_member_of_id", "endpoints", ["member_of_id"])

    op.create_table(
        "certificate_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("request_type", certificate_request_type, nullable=False),
        sa.Column("created_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("request_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expire_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "interior_router_id",
            sa.String(),
            sa.ForeignKey("interior_sites.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "application_network_id",
            sa.Uuid(),
            sa.ForeignKey("application_networks.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "invitation_id",
            sa.Uuid(),
            sa.ForeignKey("member_invitations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("site_id", sa.Uuid(), sa.ForeignKey("member_sites.id", ondelete="CASCADE"), nullable=True),
        sa.Column("processing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_certificate_requests_eligible",
        "certificate_requests",
        ["processing", "request_time", "created_time"],
    )


def downgrade() -> None:
    op.drop_index("ix_certificate_requests_eligible", table_name="certificate_requests")
    op.drop_table("certificate_requests")
    op.drop_index("ix_endpoints_member_of_id", table_name="endpoints")
    op.drop_table("endpoints")
    op.drop_index("ix_service_links_member_of_id", table_name="service_links")
    op.drop_table("service_links")
    op.drop_index("ix_member_sites_member_of_id", table_name="member_sites")
    op.drop_table("member_sites")
    op.drop_index("ix_edge_links_invitation_id", table_name="edge_links")
    op.drop_index("ix_edge_links_interior_site_id", table_name="edge_links")
    op.drop_table("edge_links")
    op.drop_index("ix_member_invitations_member_of_id", table_name="member_invitations")
    op.drop_table("member_invitations")
    op.drop_index("ix_site_classes_member_of_id", table_name="site_classes")
    op.drop_table("site_classes")
    op.drop_index("ix_application_networks_oper_status", table_name="application_networks")
    op.drop_table("application_networks")
    op.drop_table("required_services")
    op.drop_table("offered_services")
    op.drop_table("services")
    op.drop_table("images")
    op.drop_index("ix_inter_router_links_connecting_site_id", table_name="inter_router_links")
    op.drop_index("ix_inter_router_links_listening_site_id", table_name="inter_router_links")
    op.drop_table("inter_router_links")
    op.drop_index("ix_interior_sites_backbone_id", table_name="interior_sites")
    op.drop_table("interior_sites")
    op.drop_table("backbone_access_points")
    op.drop_table("backbones")
    op.drop_table("tls_certificates")
    op.drop_table("users")
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.drop(bind, checkfirst=True)
