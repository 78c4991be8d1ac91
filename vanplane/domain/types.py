from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import TypeVar

from vanplane.core.errors import ConfigurationError


class AddressScopeType(str, enum.Enum):
    # One address for the whole network, one per site, or one per instance.
    VAN = "van"
    SITE = "site"
    INSTANCE = "instance"


class StickyMechanismType(str, enum.Enum):
    NONE = "none"
    SOURCE_ADDRESS = "sourceAddress"
    COOKIE = "cookie"


class DistributionType(str, enum.Enum):
    # anycast: exactly one instance; multicast: every instance; forbidden: none.
    ANYCAST = "anycast"
    MULTICAST = "multicast"
    FORBIDDEN = "forbidden"


class CertificateRequestType(str, enum.Enum):
    INTERIOR_ROUTER = "interiorRouter"
    VAN_CA = "vanCA"
    MEMBER_CLAIM = "memberClaim"
    VAN_SITE = "vanSite"


class NetworkStatus(str, enum.Enum):
    NEW = "new"
    CERT_REQUEST_CREATED = "cert_request_created"
    READY = "ready"


class AccessPointLifecycle(str, enum.Enum):
    # partial: awaiting a hostname from the site's ingress; new: host known.
    PARTIAL = "partial"
    NEW = "new"
    READY = "ready"


class AccessPointKind(str, enum.Enum):
    PEER = "peer"
    MEMBER = "member"
    MANAGE = "manage"


class EndpointKind(str, enum.Enum):
    PROCESS = "process"
    INGRESS = "ingress"
    EGRESS = "egress"


# Each request type populates exactly one subject column.
REQUEST_SUBJECT_COLUMNS: dict[CertificateRequestType, str] = {
    CertificateRequestType.INTERIOR_ROUTER: "interior_router_id",
    CertificateRequestType.VAN_CA: "application_network_id",
    CertificateRequestType.MEMBER_CLAIM: "invitation_id",
    CertificateRequestType.VAN_SITE: "site_id",
}

E = TypeVar("E", bound=enum.Enum)


def parse_enum(enum_cls: type[E], value: object) -> E:
    # Closed sets: an unrecognized value is an error, never a default.
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(str(member.value) for member in enum_cls)
        raise ConfigurationError(
            f"Invalid {enum_cls.__name__} value {value!r} (expected one of: {allowed})"
        ) from exc


def as_utc(value: datetime | None) -> datetime | None:
    # Backends without timezone support return naive values stored as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_years(value: datetime, years: int) -> datetime:
    # Calendar years, not 365-day blocks; Feb 29 falls back to Feb 28.
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return value.replace(year=value.year + years, day=28)
