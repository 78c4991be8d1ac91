from vanplane.services.topology.backbone import (
    IncomingAccess,
    LinkSpec,
    add_host_to_access_point,
    backbones_compatible,
    incoming_access,
    invitation_attach_links,
    outgoing_links,
    record_backbone_ingresses,
)
from vanplane.services.topology.delivery import (
    AddressPolicy,
    ServiceAddress,
    ServiceInstance,
    compute_delivery_set,
    load_address_policy,
    service_addresses,
    validate_service_link,
)

__all__ = [
    "AddressPolicy",
    "IncomingAccess",
    "LinkSpec",
    "ServiceAddress",
    "ServiceInstance",
    "add_host_to_access_point",
    "backbones_compatible",
    "compute_delivery_set",
    "incoming_access",
    "invitation_attach_links",
    "load_address_policy",
    "outgoing_links",
    "record_backbone_ingresses",
    "service_addresses",
    "validate_service_link",
]
