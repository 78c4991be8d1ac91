from __future__ import annotations

from base64 import urlsafe_b64encode
from dataclasses import dataclass, field
import hashlib
import json
from pathlib import Path
import re
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from vanplane.core.config import get_settings
from vanplane.core.errors import ConfigurationError, NotFoundError


_SECRET_NAME = re.compile(r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$")


@dataclass(frozen=True)
class Secret:
    name: str
    key_material: dict[str, str]
    annotations: dict[str, str] = field(default_factory=dict)


class SecretStore(Protocol):
    def load_secret(self, name: str) -> Secret:
        ...

    def store_secret(self, name: str, key_material: dict[str, str], annotations: dict[str, str]) -> Secret:
        ...


def _build_fernet(master_key: str | None) -> Fernet:
    source = (master_key or "").strip()
    if not source:
        # Deterministic fallback for dev/test so local runs work without configuration.
        source = f"{get_settings().app_name}-local-secrets"
    digest = hashlib.sha256(source.encode("utf-8")).digest()
    return Fernet(urlsafe_b64encode(digest))


class FileSecretStore:
    """Secrets as JSON documents on disk with key material encrypted at rest.

    Annotations stay in clear text so operators can inspect which network or
    site a secret belongs to without decrypting it.
    """

    def __init__(self, directory: str | Path, master_key: str | None = None) -> None:
        self._directory = Path(directory)
        self._fernet = _build_fernet(master_key)

    def _path(self, name: str) -> Path:
        if not _SECRET_NAME.match(name):
            raise ConfigurationError(f"Invalid secret name: {name!r}")
        return self._directory / f"{name}.json"

    def load_secret(self, name: str) -> Secret:
        path = self._path(name)
        if not path.exists():
            raise NotFoundError(f"Secret {name} not found")
        document = json.loads(path.read_text(encoding="utf-8"))
        try:
            plaintext = self._fernet.decrypt(document["data"].encode("ascii"))
        except InvalidToken as exc:
            raise ConfigurationError(f"Secret {name} cannot be decrypted with the configured key") from exc
        return Secret(
            name=name,
            key_material=json.loads(plaintext),
            annotations=dict(document.get("annotations") or {}),
        )

    def store_secret(self, name: str, key_material: dict[str, str], annotations: dict[str, str]) -> Secret:
        path = self._path(name)
        self._directory.mkdir(parents=True, exist_ok=True)
        token = self._fernet.encrypt(json.dumps(key_material, sort_keys=True).encode("utf-8"))
        document = {"annotations": dict(annotations), "data": token.decode("ascii")}
        # Write-then-rename so readers never observe a partially written secret.
        staging = path.with_suffix(".tmp")
        staging.write_text(json.dumps(document, sort_keys=True), encoding="utf-8")
        staging.replace(path)
        return Secret(name=name, key_material=dict(key_material), annotations=dict(annotations))


def get_secret_store() -> SecretStore:
    settings = get_settings()
    return FileSecretStore(settings.secret_store_dir, settings.secret_store_master_key)
