"""OAuth2 client reconciler.

Dex stores no creation time and its update call cannot touch the secret
or the public flag, which shapes this reconciler:
- createdAt is stamped locally at creation and carried forward
- the secret is resolved once at creation and carried forward verbatim
- public and an explicitly changed secret require replacement

SECURITY: Deletes are verified. After Dex acknowledges a delete, the
client list is fetched once more after a short settle delay and the
delete fails loudly when the id is still present.
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime

from .dex_client import DexUnimplementedError, RemoteClient
from .models import ClientSpec, ClientState
from .reconciler import DeleteVerificationError, Reconciler, RemoteOperationError
from .security import log_security_audit_event, resolve_secret, secret_value

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current UTC time as an RFC 3339 string."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class ClientReconciler(Reconciler[ClientState]):
    """Reconciles Client objects."""

    SPEC_CLASS = ClientSpec
    STATE_CLASS = ClientState

    def _audit(self, event_type: str, object_id: str, action: str, result: str) -> None:
        log_security_audit_event(
            event_type,
            self.kind,
            object_id=object_id,
            action=action,
            result=result,
            enabled=self.config.security.enable_audit_logging,
        )

    def _to_remote(self, spec: ClientSpec, secret: str = "", public: bool | None = None) -> RemoteClient:
        return RemoteClient(
            id=spec.id,
            name=spec.name,
            secret=secret,
            redirect_uris=list(spec.redirect_uris),
            trusted_peers=list(spec.trusted_peers),
            public=bool(spec.public if public is None else public),
            logo_url=spec.logo_url or "",
        )

    def _from_remote(self, remote: RemoteClient, prior: ClientState | None) -> ClientState:
        # Listed clients carry no secret; keep the one we already know
        secret = remote.secret or (secret_value(prior.secret) if prior is not None else "")
        return ClientState(
            id=remote.id,
            name=remote.name,
            secret=secret or None,
            redirect_uris=list(remote.redirect_uris),
            trusted_peers=list(remote.trusted_peers),
            public=remote.public,
            logo_url=remote.logo_url or None,
            created_at=prior.created_at if prior is not None else None,
        )

    # -------------------------------------------------------------------------
    # Remote operations
    # -------------------------------------------------------------------------

    def _create_remote(self, spec: ClientSpec) -> tuple[ClientState, bool]:
        secret, generated = resolve_secret(spec.secret)
        remote = self._to_remote(spec, secret=secret_value(secret))

        already_exists = self._call("create", spec.id, self.client.create_client, remote)
        if already_exists:
            return self.to_state(spec), True

        if generated:
            self._audit("secret_generated", spec.id, action="create", result="success")
        return self.to_state(spec, secret=secret, created_at=utc_timestamp()), False

    def _read_remote(self, object_id: str, prior: ClientState | None) -> ClientState | None:
        try:
            remote = self._call(
                "read", object_id, self.client.get_client, object_id, missing_ok=True
            )
        except RemoteOperationError as e:
            if not isinstance(e.__cause__, DexUnimplementedError):
                raise
            logger.info(
                "GetClient not implemented by Dex, falling back to ListClients",
                extra={"object_id": object_id},
            )
            remote = self._find_listed(object_id)

        if remote is None:
            return None
        return self._from_remote(remote, prior)

    def _find_listed(self, object_id: str) -> RemoteClient | None:
        clients = self._call("list", object_id, self.client.list_clients) or []
        return next((c for c in clients if c.id == object_id), None)

    def _update_remote(self, spec: ClientSpec, prior: ClientState) -> ClientState:
        # public is immutable; check_immutable already rejected a change
        self._call(
            "update",
            spec.id,
            self.client.update_client,
            self._to_remote(spec, public=bool(prior.public)),
        )
        return self.to_state(spec, secret=prior.secret, created_at=prior.created_at)

    def _simulated_update_state(self, declared: ClientSpec, prior: ClientState) -> ClientState:
        return self.to_state(
            declared,
            secret=declared.secret or prior.secret,
            created_at=prior.created_at,
        )

    def _delete_remote(self, object_id: str) -> None:
        if not self._call_found("delete", object_id, self.client.delete_client, object_id):
            logger.info(
                "Client already absent, delete is a no-op", extra={"object_id": object_id}
            )
            return

        # Single settle delay before the one verification read
        time.sleep(self.config.delete_verify_delay_seconds)

        try:
            clients = self._call("list", object_id, self.client.list_clients) or []
        except RemoteOperationError as e:
            self._audit("delete_verification", object_id, action="delete", result="failure")
            raise DeleteVerificationError(
                self.kind, object_id, f"delete reported success but verification failed: {e}"
            ) from e

        if any(c.id == object_id for c in clients):
            self._audit("delete_verification", object_id, action="delete", result="failure")
            raise DeleteVerificationError(
                self.kind,
                object_id,
                f"delete reported success but client still exists "
                f"({len(clients)} clients listed)",
            )

        logger.info("Deleted client", extra={"object_id": object_id, "verified": True})
