from __future__ import annotations

from dataclasses import dataclass
import hashlib
import json
from typing import Any, Mapping


def content_hash(data: Any) -> str:
    # Key order and whitespace must not change the hash.
    encoded = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SyncObject:
    name: str
    data: Any

    @property
    def hash(self) -> str:
        return content_hash(self.data)


def stale_objects(local: Mapping[str, str], authoritative: Mapping[str, str]) -> list[str]:
    """Names the sender must fetch: missing on its side or carrying a different hash.

    Objects the sender reports but the authority does not know are ignored.
    """
    return sorted(name for name, digest in authoritative.items() if local.get(name) != digest)
