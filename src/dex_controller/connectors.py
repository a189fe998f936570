"""Connector reconcilers.

Dex has no get-by-id for connectors, so every read enumerates and
filters. Each flavor is a subclass that only picks its model and codec;
the codec owns the remote type, the field table and derived keys.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from .codec import (
    CONNECTOR_CODECS,
    CodecError,
    ConnectorCodec,
    GenericConnectorCodec,
)
from .dex_client import RemoteConnector
from .models import (
    AzureMicrosoftConnectorSpec,
    AzureOidcConnectorSpec,
    CognitoOidcConnectorSpec,
    ConnectorBase,
    ConnectorSpec,
    GitHubConnectorSpec,
    GitLabConnectorSpec,
    GoogleConnectorSpec,
    LocalConnectorSpec,
)
from .reconciler import Reconciler, SpecT
from .validation import CheckFailure, ValidationFailedError

logger = logging.getLogger(__name__)


class ConnectorReconciler(Reconciler[SpecT]):
    """Base reconciler for every connector kind."""

    CODEC: ClassVar[ConnectorCodec | GenericConnectorCodec]

    def _encode(self, spec: ConnectorBase) -> RemoteConnector:
        try:
            return self.CODEC.encode(spec)  # type: ignore[arg-type]
        except CodecError as e:
            raise ValidationFailedError([CheckFailure("config", str(e))]) from e

    def _find_listed(self, object_id: str) -> RemoteConnector | None:
        connectors = self._call("list", object_id, self.client.list_connectors) or []
        return next((c for c in connectors if c.id == object_id), None)

    def _create_remote(self, spec: Any) -> tuple[Any, bool]:
        remote = self._encode(spec)
        already_exists = self._call("create", spec.id, self.client.create_connector, remote)
        return self.to_state(spec), bool(already_exists)

    def _read_remote(self, object_id: str, prior: Any) -> Any:
        remote = self._find_listed(object_id)
        if remote is None:
            return None
        return self.CODEC.decode(remote)

    def _update_remote(self, spec: Any, prior: Any) -> Any:
        self._call("update", spec.id, self.client.update_connector, self._encode(spec))
        return self.to_state(spec)

    def _delete_remote(self, object_id: str) -> None:
        if self._call_found("delete", object_id, self.client.delete_connector, object_id):
            logger.info("Deleted connector", extra={"kind": self.kind, "object_id": object_id})
        else:
            logger.info(
                "Connector already absent, delete is a no-op",
                extra={"kind": self.kind, "object_id": object_id},
            )


class GenericConnectorReconciler(ConnectorReconciler[ConnectorSpec]):
    """Connector of any Dex type, typed OIDC config or raw JSON."""

    SPEC_CLASS = ConnectorSpec
    STATE_CLASS = ConnectorSpec
    CODEC = GenericConnectorCodec()


class AzureOidcConnectorReconciler(ConnectorReconciler[AzureOidcConnectorSpec]):
    SPEC_CLASS = AzureOidcConnectorSpec
    STATE_CLASS = AzureOidcConnectorSpec
    CODEC = CONNECTOR_CODECS[AzureOidcConnectorSpec.KIND]


class AzureMicrosoftConnectorReconciler(ConnectorReconciler[AzureMicrosoftConnectorSpec]):
    SPEC_CLASS = AzureMicrosoftConnectorSpec
    STATE_CLASS = AzureMicrosoftConnectorSpec
    CODEC = CONNECTOR_CODECS[AzureMicrosoftConnectorSpec.KIND]


class CognitoOidcConnectorReconciler(ConnectorReconciler[CognitoOidcConnectorSpec]):
    SPEC_CLASS = CognitoOidcConnectorSpec
    STATE_CLASS = CognitoOidcConnectorSpec
    CODEC = CONNECTOR_CODECS[CognitoOidcConnectorSpec.KIND]


class GitHubConnectorReconciler(ConnectorReconciler[GitHubConnectorSpec]):
    SPEC_CLASS = GitHubConnectorSpec
    STATE_CLASS = GitHubConnectorSpec
    CODEC = CONNECTOR_CODECS[GitHubConnectorSpec.KIND]


class GitLabConnectorReconciler(ConnectorReconciler[GitLabConnectorSpec]):
    SPEC_CLASS = GitLabConnectorSpec
    STATE_CLASS = GitLabConnectorSpec
    CODEC = CONNECTOR_CODECS[GitLabConnectorSpec.KIND]


class GoogleConnectorReconciler(ConnectorReconciler[GoogleConnectorSpec]):
    SPEC_CLASS = GoogleConnectorSpec
    STATE_CLASS = GoogleConnectorSpec
    CODEC = CONNECTOR_CODECS[GoogleConnectorSpec.KIND]


class LocalConnectorReconciler(ConnectorReconciler[LocalConnectorSpec]):
    """Builtin password database connector. Config is {} plus extensions."""

    SPEC_CLASS = LocalConnectorSpec
    STATE_CLASS = LocalConnectorSpec
    CODEC = CONNECTOR_CODECS[LocalConnectorSpec.KIND]
