from __future__ import annotations

import pytest

from vanplane.core.errors import ConfigurationError, NotFoundError
from vanplane.services.secrets.store import FileSecretStore


def test_store_and_load_roundtrip(tmp_path) -> None:
    store = FileSecretStore(tmp_path, master_key="k1")
    store.store_secret("van-site-1", {"tls.key": "PRIVATE"}, {"vanplane.io/van-id": "abc"})

    secret = store.load_secret("van-site-1")
    assert secret.key_material == {"tls.key": "PRIVATE"}
    assert secret.annotations == {"vanplane.io/van-id": "abc"}


def test_key_material_is_encrypted_at_rest(tmp_path) -> None:
    store = FileSecretStore(tmp_path, master_key="k1")
    store.store_secret("van-site-1", {"tls.key": "PRIVATE"}, {"vanplane.io/van-id": "abc"})
    raw = (tmp_path / "van-site-1.json").read_text(encoding="utf-8")
    assert "PRIVATE" not in raw
    # Annotations stay readable without the key.
    assert "vanplane.io/van-id" in raw
    assert not list(tmp_path.glob("*.tmp"))


def test_wrong_master_key_fails_loudly(tmp_path) -> None:
    FileSecretStore(tmp_path, master_key="k1").store_secret("s1", {"a": "b"}, {})
    with pytest.raises(ConfigurationError):
        FileSecretStore(tmp_path, master_key="k2").load_secret("s1")


def test_missing_and_invalid_names(tmp_path) -> None:
    store = FileSecretStore(tmp_path, master_key="k1")
    with pytest.raises(NotFoundError):
        store.load_secret("absent")
    with pytest.raises(ConfigurationError):
        store.store_secret("../escape", {}, {})
