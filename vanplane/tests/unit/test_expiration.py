from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from vanplane.core.errors import SigningPolicyError
from vanplane.domain.models import ApplicationNetwork, TlsCertificate
from vanplane.domain.types import add_years
from vanplane.services.certs.issuer import bounded_expiration
from vanplane.services.certs.pipeline import compute_network_ca_expiration


def _utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


def test_open_ended_network_uses_default_lifetime() -> None:
    network = ApplicationNetwork(name="n", start_time=_utc(2024, 1, 1), end_time=None, delete_delay=timedelta(0))
    assert compute_network_ca_expiration(network, 1) == _utc(2025, 1, 1)


def test_bounded_network_adds_delete_delay() -> None:
    network = ApplicationNetwork(
        name="n",
        start_time=_utc(2024, 1, 1),
        end_time=_utc(2024, 6, 1),
        delete_delay=timedelta(days=30),
    )
    assert compute_network_ca_expiration(network, 1) == _utc(2024, 7, 1)


def test_naive_timestamps_are_treated_as_utc() -> None:
    network = ApplicationNetwork(name="n", start_time=datetime(2024, 1, 1), end_time=None, delete_delay=None)
    assert compute_network_ca_expiration(network, 1) == _utc(2025, 1, 1)


def test_default_lifetime_counts_calendar_years() -> None:
    # 2024 is a leap year; one year from Jan 1 is still Jan 1.
    assert add_years(_utc(2024, 1, 1), 1) == _utc(2025, 1, 1)
    assert add_years(_utc(2024, 2, 29), 1) == _utc(2025, 2, 28)
    assert add_years(_utc(2023, 3, 1), 1) == _utc(2024, 3, 1)


def _authority(expiration: datetime, *, is_ca: bool = True) -> TlsCertificate:
    return TlsCertificate(object_name="issuer", is_ca=is_ca, expiration=expiration)


def test_expiration_is_clamped_to_issuer() -> None:
    now = _utc(2024, 1, 1)
    result = bounded_expiration(
        requested=_utc(2030, 1, 1),
        issuer=_authority(_utc(2025, 1, 1)),
        now=now,
        default_lifetime=timedelta(days=90),
    )
    assert result == _utc(2025, 1, 1)


def test_default_lifetime_applies_without_request() -> None:
    now = _utc(2024, 1, 1)
    result = bounded_expiration(
        requested=None,
        issuer=_authority(_utc(2026, 1, 1)),
        now=now,
        default_lifetime=timedelta(days=90),
    )
    assert result == now + timedelta(days=90)


@pytest.mark.parametrize(
    "issuer, requested, message",
    [
        (_authority(_utc(2023, 12, 1)), None, "expired"),
        (_authority(_utc(2026, 1, 1), is_ca=False), None, "not a certificate authority"),
        (None, _utc(2023, 1, 1), "not in the future"),
    ],
)
def test_signing_policy_violations(issuer, requested, message) -> None:
    with pytest.raises(SigningPolicyError, match=message):
        bounded_expiration(
            requested=requested,
            issuer=issuer,
            now=_utc(2024, 1, 1),
            default_lifetime=timedelta(days=90),
        )
