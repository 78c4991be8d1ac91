from __future__ import annotations

import threading
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from vanplane.core.config import get_settings
from vanplane.core.errors import AuthorityNotReadyError, ConfigurationError
from vanplane.domain.models import CertificateRequest, MemberSite, TlsCertificate
from vanplane.domain.types import CertificateRequestType
from vanplane.services.certs.issuer import CertificateIssuer, request_subject
from vanplane.services.certs.signer import X509Signer
from vanplane.services.secrets.store import FileSecretStore
from vanplane.tests.utils.topology import create_network, utc


NOW = utc(2024, 3, 1)


def test_request_subject_must_match_request_type() -> None:
    network_id = uuid4()
    request = CertificateRequest(
        id=uuid4(),
        request_type=CertificateRequestType.VAN_CA,
        application_network_id=network_id,
    )
    assert request_subject(request) == network_id

    wrong = CertificateRequest(
        id=uuid4(),
        request_type=CertificateRequestType.VAN_CA,
        interior_router_id="r1",
    )
    with pytest.raises(ConfigurationError, match="application_network_id"):
        request_subject(wrong)

    both = CertificateRequest(
        id=uuid4(),
        request_type=CertificateRequestType.INTERIOR_ROUTER,
        interior_router_id="r1",
        site_id=uuid4(),
    )
    with pytest.raises(ConfigurationError):
        request_subject(both)


@pytest.mark.asyncio
async def test_service_authorities_are_created_once(session_factory, issuer) -> None:
    async with session_factory() as session:
        async with session.begin():
            root = await issuer.ensure_service_authorities(session, now=NOW)
            again = await issuer.ensure_service_authorities(session, now=NOW)
            count = await session.scalar(select(func.count()).select_from(TlsCertificate))
            interior = (
                await session.execute(
                    select(TlsCertificate).where(
                        TlsCertificate.object_name == issuer.settings.interior_ca_secret_name
                    )
                )
            ).scalar_one()

    assert again.id == root.id
    assert count == 2
    assert root.is_service_root is True
    assert root.signed_by_id is None
    assert interior.signed_by_id == root.id


@pytest.mark.asyncio
async def test_member_site_certificate_waits_for_network_ca(session_factory, issuer) -> None:
    async with session_factory() as session:
        async with session.begin():
            network = await create_network(session)
            site = MemberSite(member_of_id=network.id, label="edge")
            session.add(site)
            await session.flush()
            with pytest.raises(AuthorityNotReadyError):
                await issuer.resolve_authority(session, CertificateRequestType.VAN_SITE, site.id)


class _ThreadRecordingStore(FileSecretStore):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.threads: list[int] = []

    def load_secret(self, name: str):
        self.threads.append(threading.get_ident())
        return super().load_secret(name)

    def store_secret(self, name: str, key_material: dict[str, str], annotations: dict[str, str]):
        self.threads.append(threading.get_ident())
        return super().store_secret(name, key_material, annotations)


@pytest.mark.asyncio
async def test_secret_store_io_runs_off_the_event_loop(session_factory, tmp_path) -> None:
    store = _ThreadRecordingStore(tmp_path / "recorded", master_key="test-master-key")
    recording = CertificateIssuer(store=store, signer=X509Signer(), settings=get_settings())
    async with session_factory() as session:
        async with session.begin():
            await recording.ensure_service_authorities(session, now=NOW)

    # Root and interior stored, root loaded to sign the interior CA.
    assert len(store.threads) == 3
    assert threading.get_ident() not in store.threads
