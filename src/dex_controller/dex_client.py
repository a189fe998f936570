"""Remote identity client for the Dex admin API.

The reconcilers depend only on the IdentityClient protocol so the gRPC
implementation can be swapped for an in-memory backend in tests.

SECURITY: Every RPC carries an explicit deadline. Error messages are built
from the RPC status and object ids only, never from request payloads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import grpc

from .dex_api import DexStub, new_message

logger = logging.getLogger(__name__)


# =============================================================================
# Remote Objects
# =============================================================================


@dataclass
class RemoteClient:
    """OAuth2 client as stored by Dex."""

    id: str
    name: str = ""
    secret: str = field(default="", repr=False)
    redirect_uris: list[str] = field(default_factory=list)
    trusted_peers: list[str] = field(default_factory=list)
    public: bool = False
    logo_url: str = ""


@dataclass
class RemoteConnector:
    """Connector as stored by Dex. The config is opaque JSON bytes."""

    id: str
    type: str
    name: str = ""
    config: bytes = field(default=b"", repr=False)


# =============================================================================
# Errors
# =============================================================================


class DexError(Exception):
    """Base error for failed Dex API calls."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class DexNotFoundError(DexError):
    """The object does not exist on the remote service."""

    pass


class DexTimeoutError(DexError):
    """The per-call deadline was exceeded."""

    pass


class DexUnavailableError(DexError):
    """The remote service could not be reached."""

    pass


class DexUnimplementedError(DexError):
    """The remote service does not implement the method."""

    pass


_ERROR_CLASSES: dict[grpc.StatusCode, type[DexError]] = {
    grpc.StatusCode.NOT_FOUND: DexNotFoundError,
    grpc.StatusCode.DEADLINE_EXCEEDED: DexTimeoutError,
    grpc.StatusCode.UNAVAILABLE: DexUnavailableError,
    grpc.StatusCode.UNIMPLEMENTED: DexUnimplementedError,
}


def translate_rpc_error(method: str, error: grpc.RpcError) -> DexError:
    """Map a gRPC failure onto the DexError hierarchy.

    Args:
        method: Dex API method name, e.g. "CreateClient".
        error: The raised RpcError. Unary call errors also implement grpc.Call.

    Returns:
        The matching DexError subclass instance.
    """
    code = error.code() if hasattr(error, "code") else None
    details = error.details() if hasattr(error, "details") else None

    error_class = _ERROR_CLASSES.get(code, DexError)
    code_name = code.name if code is not None else "UNKNOWN"
    message = f"{method} failed: {code_name}"
    if details:
        message = f"{message}: {details}"
    return error_class(message, code=code_name)


# =============================================================================
# Client Protocol
# =============================================================================


class IdentityClient(Protocol):
    """Narrow admin interface of the remote identity service.

    Every method takes an explicit per-call deadline in seconds.
    """

    def create_client(self, client: RemoteClient, timeout: float) -> bool:
        """Create a client. Returns True when it already existed."""
        ...

    def get_client(self, client_id: str, timeout: float) -> RemoteClient:
        """Fetch a client by id. Raises DexNotFoundError when absent."""
        ...

    def list_clients(self, timeout: float) -> list[RemoteClient]:
        """Enumerate clients. Listed clients carry no secret."""
        ...

    def update_client(self, client: RemoteClient, timeout: float) -> None:
        """Update the mutable fields of a client."""
        ...

    def delete_client(self, client_id: str, timeout: float) -> None:
        """Delete a client. Raises DexNotFoundError when absent."""
        ...

    def create_connector(self, connector: RemoteConnector, timeout: float) -> bool:
        """Create a connector. Returns True when it already existed."""
        ...

    def list_connectors(self, timeout: float) -> list[RemoteConnector]:
        """Enumerate connectors."""
        ...

    def update_connector(self, connector: RemoteConnector, timeout: float) -> None:
        """Replace type, name and config of a connector."""
        ...

    def delete_connector(self, connector_id: str, timeout: float) -> None:
        """Delete a connector. Raises DexNotFoundError when absent."""
        ...


# =============================================================================
# gRPC Implementation
# =============================================================================


class GrpcDexClient:
    """IdentityClient speaking Dex API v2 over a shared gRPC channel.

    The channel is the only shared resource; the client holds no other
    mutable state, so one instance serves concurrent calls for different ids.
    """

    def __init__(self, channel: grpc.Channel) -> None:
        self._channel = channel
        self._stub = DexStub(channel)

    @classmethod
    def connect(cls, host: str, timeout_seconds: float) -> GrpcDexClient:
        """Open an insecure channel and wait until it is ready.

        Transport security is set up by the deployment (sidecar or mesh).

        Raises:
            DexUnavailableError: If the channel is not ready within the timeout.
        """
        channel = grpc.insecure_channel(host)
        try:
            grpc.channel_ready_future(channel).result(timeout=timeout_seconds)
        except grpc.FutureTimeoutError as e:
            channel.close()
            raise DexUnavailableError(
                f"Dex at {host} not reachable within {timeout_seconds}s",
                code="UNAVAILABLE",
            ) from e
        logger.info("Connected to Dex", extra={"host": host})
        return cls(channel)

    def close(self) -> None:
        self._channel.close()

    def _invoke(self, method: str, request: Any, timeout: float) -> Any:
        try:
            return self._stub.call(method, request, timeout)
        except grpc.RpcError as e:
            raise translate_rpc_error(method, e) from e

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    def create_client(self, client: RemoteClient, timeout: float) -> bool:
        request = new_message("CreateClientReq", client=_client_message(client))
        response = self._invoke("CreateClient", request, timeout)
        return bool(response.already_exists)

    def get_client(self, client_id: str, timeout: float) -> RemoteClient:
        response = self._invoke("GetClient", new_message("GetClientReq", id=client_id), timeout)
        if not response.HasField("client") or not response.client.id:
            raise DexNotFoundError(f"GetClient: client {client_id!r} not found", code="NOT_FOUND")
        return _client_from_message(response.client)

    def list_clients(self, timeout: float) -> list[RemoteClient]:
        response = self._invoke("ListClients", new_message("ListClientReq"), timeout)
        return [_client_from_message(info) for info in response.clients]

    def update_client(self, client: RemoteClient, timeout: float) -> None:
        request = new_message(
            "UpdateClientReq",
            id=client.id,
            redirect_uris=client.redirect_uris,
            trusted_peers=client.trusted_peers,
            name=client.name,
            logo_url=client.logo_url,
        )
        response = self._invoke("UpdateClient", request, timeout)
        if response.not_found:
            raise DexNotFoundError(f"UpdateClient: client {client.id!r} not found", code="NOT_FOUND")

    def delete_client(self, client_id: str, timeout: float) -> None:
        response = self._invoke("DeleteClient", new_message("DeleteClientReq", id=client_id), timeout)
        if response.not_found:
            raise DexNotFoundError(f"DeleteClient: client {client_id!r} not found", code="NOT_FOUND")

    # -------------------------------------------------------------------------
    # Connectors
    # -------------------------------------------------------------------------

    def create_connector(self, connector: RemoteConnector, timeout: float) -> bool:
        request = new_message(
            "CreateConnectorReq",
            connector=new_message(
                "Connector",
                id=connector.id,
                type=connector.type,
                name=connector.name,
                config=connector.config,
            ),
        )
        response = self._invoke("CreateConnector", request, timeout)
        return bool(response.already_exists)

    def list_connectors(self, timeout: float) -> list[RemoteConnector]:
        response = self._invoke("ListConnectors", new_message("ListConnectorReq"), timeout)
        return [
            RemoteConnector(id=c.id, type=c.type, name=c.name, config=bytes(c.config))
            for c in response.connectors
        ]

    def update_connector(self, connector: RemoteConnector, timeout: float) -> None:
        request = new_message(
            "UpdateConnectorReq",
            id=connector.id,
            new_type=connector.type,
            new_name=connector.name,
            new_config=connector.config,
        )
        response = self._invoke("UpdateConnector", request, timeout)
        if response.not_found:
            raise DexNotFoundError(
                f"UpdateConnector: connector {connector.id!r} not found", code="NOT_FOUND"
            )

    def delete_connector(self, connector_id: str, timeout: float) -> None:
        response = self._invoke(
            "DeleteConnector", new_message("DeleteConnectorReq", id=connector_id), timeout
        )
        if response.not_found:
            raise DexNotFoundError(
                f"DeleteConnector: connector {connector_id!r} not found", code="NOT_FOUND"
            )


def _client_message(client: RemoteClient) -> Any:
    return new_message(
        "Client",
        id=client.id,
        secret=client.secret,
        redirect_uris=client.redirect_uris,
        trusted_peers=client.trusted_peers,
        public=client.public,
        name=client.name,
        logo_url=client.logo_url,
    )


def _client_from_message(message: Any) -> RemoteClient:
    # ClientInfo (from ListClients) has no secret field
    secret = message.secret if "secret" in message.DESCRIPTOR.fields_by_name else ""
    return RemoteClient(
        id=message.id,
        name=message.name,
        secret=secret,
        redirect_uris=list(message.redirect_uris),
        trusted_peers=list(message.trusted_peers),
        public=message.public,
        logo_url=message.logo_url,
    )
