"""Secret policy and secret-safe diagnostics.

SECURITY INVARIANTS:
1. A caller-supplied, non-empty secret is used verbatim
2. Otherwise a secret is synthesized from the OS CSPRNG with at least 256 bits
3. A synthesized secret is returned exactly once, at creation
4. Secret values never appear in log records or error messages
"""

from __future__ import annotations

import copy
import logging
import secrets
from typing import Any

from pydantic import SecretStr

logger = logging.getLogger(__name__)

# 32 bytes = 256 bits of randomness, URL-safe base64 encoded
GENERATED_SECRET_BYTES = 32

# Config document keys that carry secret material
SECRET_CONFIG_KEYS: frozenset[str] = frozenset(
    {
        "clientSecret",
        "bindPW",
        "password",
        "privateKey",
        "serviceAccountKey",
    }
)

REDACTED = "***REDACTED***"


def generate_secret(num_bytes: int = GENERATED_SECRET_BYTES) -> SecretStr:
    """Synthesize a high-entropy, URL-safe secret.

    Args:
        num_bytes: Bytes of randomness; values below 32 are rejected.

    Returns:
        The generated secret, wrapped so it never renders in plain text.

    Raises:
        ValueError: If num_bytes would give less than 256 bits of entropy.
    """
    if num_bytes < GENERATED_SECRET_BYTES:
        raise ValueError(f"num_bytes must be at least {GENERATED_SECRET_BYTES}")
    return SecretStr(secrets.token_urlsafe(num_bytes))


def resolve_secret(supplied: SecretStr | str | None) -> tuple[SecretStr, bool]:
    """Decide between a caller-supplied secret and a synthesized one.

    Args:
        supplied: Secret from the declared inputs, if any.

    Returns:
        Tuple of (secret, generated) where generated is True when the
        secret was synthesized here.
    """
    if isinstance(supplied, SecretStr):
        value = supplied.get_secret_value()
    else:
        value = supplied or ""

    if value:
        return SecretStr(value), False
    return generate_secret(), True


def secret_value(secret: SecretStr | str | None) -> str:
    """Unwrap a secret for the wire. Empty string when unset."""
    if secret is None:
        return ""
    if isinstance(secret, SecretStr):
        return secret.get_secret_value()
    return secret


def redact_config(config: dict[str, Any]) -> dict[str, Any]:
    """Return a deep copy of a config document with secret values masked.

    Nested mappings and lists are walked so secrets inside extension
    blocks are masked as well.
    """

    def _redact(value: Any) -> Any:
        if isinstance(value, dict):
            return {
                k: (REDACTED if k in SECRET_CONFIG_KEYS and v else _redact(v))
                for k, v in value.items()
            }
        if isinstance(value, list):
            return [_redact(v) for v in value]
        return value

    return _redact(copy.deepcopy(config))


def log_security_audit_event(
    event_type: str,
    object_kind: str,
    object_id: str | None = None,
    action: str | None = None,
    result: str | None = None,
    enabled: bool = True,
) -> None:
    """Log a security-relevant audit event.

    Never pass secret material to this function; only identifiers.

    Args:
        event_type: Type of security event (secret_generated, delete_verification, ...)
        object_kind: Kind of the managed object.
        object_id: Identifier of the managed object.
        action: Action being performed.
        result: Result of the action (success, failure).
        enabled: Audit logging switch from SecurityConfig.
    """
    if not enabled:
        return
    logger.info(
        f"Security audit: {event_type}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "object_kind": object_kind,
            "object_id": object_id,
            "action": action,
            "result": result,
        },
    )
