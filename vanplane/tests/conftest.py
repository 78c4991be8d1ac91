from __future__ import annotations

import pytest

from vanplane.core.config import get_settings
from vanplane.domain.models import Base
from vanplane.persistence.db import build_engine, build_sessionmaker
from vanplane.services.certs.issuer import CertificateIssuer
from vanplane.services.certs.signer import X509Signer
from vanplane.services.secrets.store import FileSecretStore
from vanplane.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Settings and counters are process-wide; start every test from a clean slate.
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def db_engine(tmp_path):
    # One file-backed SQLite database per test, schema from the declarative models.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'vanplane.db'}")
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_sessionmaker(db_engine)


@pytest.fixture
def secret_store(tmp_path) -> FileSecretStore:
    return FileSecretStore(tmp_path / "secrets", master_key="test-master-key")


@pytest.fixture
def issuer(secret_store) -> CertificateIssuer:
    return CertificateIssuer(store=secret_store, signer=X509Signer(), settings=get_settings())
