from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Mapping, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vanplane.core.config import PROTOCOL_VERSION
from vanplane.core.errors import ProtocolError


T = TypeVar("T", covariant=True)


class Op(str, Enum):
    HEARTBEAT = "HB"
    GET = "GET"
    CLAIM = "CLAIM"


class _Message(BaseModel):
    # Senders may attach fields newer receivers understand; ignore them here.
    model_config = ConfigDict(extra="ignore", frozen=True)

    version: int = PROTOCOL_VERSION


class HeartbeatMessage(_Message):
    op: Op = Op.HEARTBEAT
    site: str = Field(min_length=1)
    hashset: dict[str, str] = Field(default_factory=dict)
    address: str = ""


class GetObjectMessage(_Message):
    op: Op = Op.GET
    site: str = Field(min_length=1)
    objectname: str = Field(min_length=1)


class ClaimMessage(_Message):
    op: Op = Op.CLAIM
    claim: str = Field(min_length=1)
    name: str = ""


def heartbeat(site: str, hashset: Mapping[str, str], address: str = "") -> dict[str, Any]:
    return HeartbeatMessage(site=site, hashset=dict(hashset), address=address).model_dump(mode="json")


def get_object(site: str, object_name: str) -> dict[str, Any]:
    return GetObjectMessage(site=site, objectname=object_name).model_dump(mode="json")


def assert_claim(claim_id: str, name: str) -> dict[str, Any]:
    return ClaimMessage(claim=claim_id, name=name).model_dump(mode="json")


def _success(**fields: Any) -> dict[str, Any]:
    return {"statusCode": 200, "statusDescription": "OK", **fields}


def heartbeat_ack(stale: list[str]) -> dict[str, Any]:
    return _success(staleObjects=stale)


def get_object_success(object_name: str, content_hash: str, data: Any) -> dict[str, Any]:
    return _success(objectName=object_name, hash=content_hash, data=data)


def claim_success(outgoing_links: list[dict[str, Any]], site_client: dict[str, Any]) -> dict[str, Any]:
    return _success(outgoingLinks=outgoing_links, siteClient=site_client)


def failure(code: int, description: str) -> dict[str, Any]:
    # Failure responses carry the status pair and nothing else.
    if code == 200:
        raise ValueError("failure responses must not use status 200")
    return {"statusCode": code, "statusDescription": description}


def is_success(response: Mapping[str, Any]) -> bool:
    return response.get("statusCode") == 200


class ProtocolHandlers(Protocol[T]):
    def on_heartbeat(self, message: HeartbeatMessage) -> Awaitable[T]: ...

    def on_get(self, message: GetObjectMessage) -> Awaitable[T]: ...

    def on_claim(self, message: ClaimMessage) -> Awaitable[T]: ...


def _parse(model: type[_Message], body: Mapping[str, Any]) -> Any:
    try:
        return model.model_validate(dict(body))
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'body'}: {error['msg']}" for error in exc.errors()
        )
        raise ProtocolError(f"Malformed {model.__name__}: {errors}") from exc


def check_version(body: Any) -> None:
    if not isinstance(body, Mapping):
        raise ProtocolError("Protocol message must be a JSON object")
    version = body.get("version")
    # bool is an int subclass; ``true`` is not a version.
    if isinstance(version, bool) or not isinstance(version, int) or version != PROTOCOL_VERSION:
        raise ProtocolError(f"Unsupported protocol version {version}")


async def dispatch(body: Any, handlers: ProtocolHandlers[T]) -> T:
    """Route a decoded message to exactly one handler.

    The version gate runs before the op is looked at, so a message from an
    incompatible peer never reaches a handler.
    """
    check_version(body)
    try:
        op = Op(body.get("op"))
    except ValueError as exc:
        raise ProtocolError(f"Unknown op-code {body.get('op')}") from exc

    match op:
        case Op.HEARTBEAT:
            return await handlers.on_heartbeat(_parse(HeartbeatMessage, body))
        case Op.GET:
            return await handlers.on_get(_parse(GetObjectMessage, body))
        case Op.CLAIM:
            return await handlers.on_claim(_parse(ClaimMessage, body))
    raise ProtocolError(f"Unknown op-code {op.value}")
