"""Dex API v2 message types and gRPC method table.

Only the admin subset used for clients and connectors is described. The
message descriptors are built at import time into a private descriptor
pool, so no generated *_pb2 modules need to be vendored. Field numbers
follow api/v2/api.proto of the Dex project.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import grpc
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PROTO_PACKAGE = "api"
SERVICE_NAME = f"{PROTO_PACKAGE}.Dex"

_FieldProto = descriptor_pb2.FieldDescriptorProto


@dataclass(frozen=True)
class _Field:
    name: str
    number: int
    type: int = _FieldProto.TYPE_STRING
    repeated: bool = False
    message: str | None = None


def _string(name: str, number: int, repeated: bool = False) -> _Field:
    return _Field(name, number, _FieldProto.TYPE_STRING, repeated)


def _bool(name: str, number: int) -> _Field:
    return _Field(name, number, _FieldProto.TYPE_BOOL)


def _bytes(name: str, number: int) -> _Field:
    return _Field(name, number, _FieldProto.TYPE_BYTES)


def _message(name: str, number: int, message: str, repeated: bool = False) -> _Field:
    return _Field(name, number, _FieldProto.TYPE_MESSAGE, repeated, message)


MESSAGE_FIELDS: dict[str, tuple[_Field, ...]] = {
    # Clients
    "Client": (
        _string("id", 1),
        _string("secret", 2),
        _string("redirect_uris", 3, repeated=True),
        _string("trusted_peers", 4, repeated=True),
        _bool("public", 5),
        _string("name", 6),
        _string("logo_url", 7),
    ),
    "ClientInfo": (
        _string("id", 1),
        _string("redirect_uris", 2, repeated=True),
        _string("trusted_peers", 3, repeated=True),
        _bool("public", 4),
        _string("name", 5),
        _string("logo_url", 6),
    ),
    "CreateClientReq": (_message("client", 1, "Client"),),
    "CreateClientResp": (_bool("already_exists", 1), _message("client", 2, "Client")),
    "GetClientReq": (_string("id", 1),),
    "GetClientResp": (_message("client", 1, "Client"),),
    "ListClientReq": (),
    "ListClientResp": (_message("clients", 1, "ClientInfo", repeated=True),),
    "UpdateClientReq": (
        _string("id", 1),
        _string("redirect_uris", 2, repeated=True),
        _string("trusted_peers", 3, repeated=True),
        _string("name", 4),
        _string("logo_url", 5),
    ),
    "UpdateClientResp": (_bool("not_found", 1),),
    "DeleteClientReq": (_string("id", 1),),
    "DeleteClientResp": (_bool("not_found", 1),),
    # Connectors
    "Connector": (
        _string("id", 1),
        _string("type", 2),
        _string("name", 3),
        _bytes("config", 4),
    ),
    "CreateConnectorReq": (_message("connector", 1, "Connector"),),
    "CreateConnectorResp": (_bool("already_exists", 1),),
    "ListConnectorReq": (),
    "ListConnectorResp": (_message("connectors", 1, "Connector", repeated=True),),
    "UpdateConnectorReq": (
        _string("id", 1),
        _string("new_type", 2),
        _string("new_name", 3),
        _bytes("new_config", 4),
    ),
    "UpdateConnectorResp": (_bool("not_found", 1),),
    "DeleteConnectorReq": (_string("id", 1),),
    "DeleteConnectorResp": (_bool("not_found", 1),),
}

# method name -> (request message, response message)
METHODS: dict[str, tuple[str, str]] = {
    "CreateClient": ("CreateClientReq", "CreateClientResp"),
    "GetClient": ("GetClientReq", "GetClientResp"),
    "ListClients": ("ListClientReq", "ListClientResp"),
    "UpdateClient": ("UpdateClientReq", "UpdateClientResp"),
    "DeleteClient": ("DeleteClientReq", "DeleteClientResp"),
    "CreateConnector": ("CreateConnectorReq", "CreateConnectorResp"),
    "ListConnectors": ("ListConnectorReq", "ListConnectorResp"),
    "UpdateConnector": ("UpdateConnectorReq", "UpdateConnectorResp"),
    "DeleteConnector": ("DeleteConnectorReq", "DeleteConnectorResp"),
}


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="dex_controller/api/v2/api.proto",
        package=PROTO_PACKAGE,
        syntax="proto3",
    )
    for message_name, fields in MESSAGE_FIELDS.items():
        message_proto = file_proto.message_type.add(name=message_name)
        for f in fields:
            field_proto = message_proto.field.add(
                name=f.name,
                number=f.number,
                type=f.type,
                label=_FieldProto.LABEL_REPEATED if f.repeated else _FieldProto.LABEL_OPTIONAL,
            )
            if f.message:
                field_proto.type_name = f".{PROTO_PACKAGE}.{f.message}"
    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file_descriptor().SerializeToString())

MESSAGES: dict[str, Any] = {
    name: message_factory.GetMessageClass(
        _POOL.FindMessageTypeByName(f"{PROTO_PACKAGE}.{name}")
    )
    for name in MESSAGE_FIELDS
}


class DexStub:
    """Thin gRPC stub for the Dex admin service.

    One multicallable per method, all bound to a single shared channel.
    gRPC channels are safe to use from multiple threads.
    """

    def __init__(self, channel: grpc.Channel) -> None:
        self._calls = {
            method: channel.unary_unary(
                f"/{SERVICE_NAME}/{method}",
                request_serializer=MESSAGES[request].SerializeToString,
                response_deserializer=MESSAGES[response].FromString,
            )
            for method, (request, response) in METHODS.items()
        }

    def call(self, method: str, request: Any, timeout: float) -> Any:
        """Invoke a unary method with an explicit deadline in seconds."""
        return self._calls[method](request, timeout=timeout)


def new_message(message_name: str, /, **fields: Any) -> Any:
    """Instantiate a Dex API message by name.

    The message name is positional-only so that a "name" field can be
    passed as a keyword.
    """
    return MESSAGES[message_name](**fields)
