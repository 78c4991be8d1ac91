from vanplane.services.certs.issuer import CertificateIssuer, get_certificate_issuer
from vanplane.services.certs.pipeline import (
    PassOutcome,
    claim_certificate_request,
    compute_network_ca_expiration,
    run_certificate_request_pass,
    run_network_intake_pass,
)
from vanplane.services.certs.worker import ReschedulingWorker, start_certificate_workers

__all__ = [
    "CertificateIssuer",
    "PassOutcome",
    "ReschedulingWorker",
    "claim_certificate_request",
    "compute_network_ca_expiration",
    "get_certificate_issuer",
    "run_certificate_request_pass",
    "run_network_intake_pass",
    "start_certificate_workers",
]
