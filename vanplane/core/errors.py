from __future__ import annotations


class VanError(Exception):
    """Base error for vanplane."""

    status_code = 500


class ConfigurationError(VanError):
    """Missing reference or invalid enumerated value; never defaulted silently."""


class StoreError(VanError):
    """Transient store failure; the unit of work is rolled back and retried later."""

    status_code = 503


class ProtocolError(VanError):
    """Malformed synchronization message, unsupported version or unknown op."""

    status_code = 400


class NotFoundError(VanError):
    """Referenced record does not exist."""

    status_code = 404


class InvitationExpiredError(VanError):
    """Invitation join deadline has passed."""

    status_code = 410


class InvitationLimitError(VanError):
    """Invitation instance limit already reached."""

    status_code = 409


class AccessPointConfiguredError(VanError):
    """Backbone access point already carries a hostname or is not awaiting one."""

    status_code = 409


class AuthorityNotReadyError(VanError):
    """The issuing certificate authority has not been provisioned yet."""

    status_code = 503


class SigningPolicyError(VanError):
    """Certificate signing would violate the signing-chain invariants."""

    status_code = 500


class TopologyError(VanError):
    """Backbone or service topology violates an application-level invariant."""

    status_code = 422
