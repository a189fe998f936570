"""Tests for the secret policy.

These tests verify that secrets are synthesized with enough entropy,
that supplied secrets are used verbatim, and that secret material never
reaches log output.
"""

from __future__ import annotations

import base64
import logging

import pytest
from pydantic import SecretStr

from dex_controller.security import (
    GENERATED_SECRET_BYTES,
    REDACTED,
    generate_secret,
    log_security_audit_event,
    redact_config,
    resolve_secret,
    secret_value,
)


class TestSecretGeneration:
    """Tests for secret synthesis."""

    def test_generated_secret_has_256_bits(self) -> None:
        """Test that the decoded secret carries at least 32 random bytes."""
        secret = generate_secret().get_secret_value()
        padded = secret + "=" * (-len(secret) % 4)

        assert len(base64.urlsafe_b64decode(padded)) >= GENERATED_SECRET_BYTES

    def test_generated_secret_is_url_safe(self) -> None:
        """Test that only URL-safe characters are used."""
        secret = generate_secret().get_secret_value()
        allowed = set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")

        assert set(secret) <= allowed

    def test_generated_secrets_are_distinct(self) -> None:
        """Test that repeated generation never repeats."""
        secrets_seen = {generate_secret().get_secret_value() for _ in range(50)}
        assert len(secrets_seen) == 50

    def test_weak_secret_rejected(self) -> None:
        """Test that fewer than 256 bits is refused."""
        with pytest.raises(ValueError):
            generate_secret(16)

    def test_generated_secret_not_in_repr(self) -> None:
        """Test that the wrapper hides the value."""
        secret = generate_secret()
        assert secret.get_secret_value() not in repr(secret)
        assert secret.get_secret_value() not in str(secret)


class TestResolveSecret:
    """Tests for choosing between supplied and generated secrets."""

    def test_supplied_secret_used_verbatim(self) -> None:
        """Test that a supplied secret is returned unchanged."""
        secret, generated = resolve_secret(SecretStr("caller-chosen"))

        assert secret.get_secret_value() == "caller-chosen"
        assert generated is False

    def test_plain_string_supplied(self) -> None:
        """Test that a plain string is accepted as well."""
        secret, generated = resolve_secret("plain")

        assert secret.get_secret_value() == "plain"
        assert generated is False

    @pytest.mark.parametrize("supplied", [None, "", SecretStr("")])
    def test_missing_secret_generated(self, supplied: SecretStr | str | None) -> None:
        """Test that missing or empty secrets are synthesized."""
        secret, generated = resolve_secret(supplied)

        assert generated is True
        assert len(secret.get_secret_value()) >= 43

    def test_secret_value_unwraps(self) -> None:
        """Test unwrapping for the wire."""
        assert secret_value(SecretStr("abc")) == "abc"
        assert secret_value("abc") == "abc"
        assert secret_value(None) == ""


class TestRedaction:
    """Tests for config redaction."""

    def test_secret_keys_masked(self) -> None:
        """Test that secret keys are masked at any depth."""
        config = {
            "clientID": "app",
            "clientSecret": "s3cr3t",
            "nested": {"bindPW": "pw", "host": "ldap"},
            "list": [{"password": "x"}],
        }

        redacted = redact_config(config)

        assert redacted["clientID"] == "app"
        assert redacted["clientSecret"] == REDACTED
        assert redacted["nested"] == {"bindPW": REDACTED, "host": "ldap"}
        assert redacted["list"] == [{"password": REDACTED}]

    def test_original_untouched(self) -> None:
        """Test that redaction does not mutate the input."""
        config = {"clientSecret": "s3cr3t"}
        redact_config(config)
        assert config["clientSecret"] == "s3cr3t"

    def test_empty_secret_left_alone(self) -> None:
        """Test that empty secret values are not masked."""
        assert redact_config({"clientSecret": ""}) == {"clientSecret": ""}


class TestAuditLogging:
    """Tests for security audit events."""

    def test_audit_event_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that audit events carry identifiers only."""
        with caplog.at_level(logging.INFO, logger="dex_controller.security"):
            log_security_audit_event("secret_generated", "Client", object_id="web-app")

        assert len(caplog.records) == 1
        record = caplog.records[0]
        assert record.security_audit is True
        assert record.event_type == "secret_generated"
        assert record.object_id == "web-app"

    def test_audit_disabled(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that disabled audit logging emits nothing."""
        with caplog.at_level(logging.INFO, logger="dex_controller.security"):
            log_security_audit_event("secret_generated", "Client", enabled=False)

        assert caplog.records == []
