"""Tests for the OAuth2 client reconciler."""

from __future__ import annotations

import logging
import re

import pytest
from dex_mock import MockDexClient

from dex_controller.clients import ClientReconciler, utc_timestamp
from dex_controller.config import Config
from dex_controller.dex_client import (
    DexTimeoutError,
    DexUnavailableError,
    RemoteClient,
)
from dex_controller.reconciler import (
    AdoptionError,
    DeleteVerificationError,
    ReconcileError,
    RemoteOperationError,
)
from dex_controller.validation import ReplacementRequiredError, ValidationFailedError

WEB_APP = {
    "clientId": "web-app",
    "name": "Web App",
    "redirectUris": ["https://app.example/cb"],
}


@pytest.fixture
def reconciler(dex: MockDexClient, config: Config) -> ClientReconciler:
    return ClientReconciler(dex, config)


def _without_created_at(state) -> dict:
    return state.model_dump(exclude={"created_at"})


class TestCreate:
    """Tests for client creation."""

    def test_generates_secret(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that an omitted secret is synthesized and stored remotely."""
        result = reconciler.create(WEB_APP)

        secret = result.state.secret.get_secret_value()
        assert len(secret) >= 43
        assert dex.state.clients["web-app"].secret == secret
        assert result.adopted is False

    def test_supplied_secret_used(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that a supplied secret is sent verbatim."""
        result = reconciler.create({**WEB_APP, "secret": "caller-chosen"})

        assert result.state.secret.get_secret_value() == "caller-chosen"
        assert dex.state.clients["web-app"].secret == "caller-chosen"

    def test_state_fields(self, reconciler: ClientReconciler) -> None:
        """Test defaults and createdAt in the returned state."""
        result = reconciler.create(WEB_APP)

        assert result.id == "web-app"
        assert result.state.public is False
        assert result.state.trusted_peers == []
        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\dZ", result.state.created_at)

    def test_timeout_passed(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that every RPC carries the configured deadline."""
        reconciler.create(WEB_APP)
        assert [c.timeout for c in dex.state.calls] == [3.0]

    def test_secret_generation_audited(
        self, reconciler: ClientReconciler, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test the audit event, without the secret value."""
        with caplog.at_level(logging.INFO):
            result = reconciler.create(WEB_APP)

        secret = result.state.secret.get_secret_value()
        audits = [r for r in caplog.records if getattr(r, "security_audit", False)]
        assert [r.event_type for r in audits] == ["secret_generated"]
        assert all(secret not in r.getMessage() for r in caplog.records)
        assert all(secret not in str(r.__dict__) for r in caplog.records)

    def test_invalid_inputs_make_no_call(
        self, reconciler: ClientReconciler, dex: MockDexClient
    ) -> None:
        """Test that validation runs before any RPC."""
        with pytest.raises(ValidationFailedError):
            reconciler.create({**WEB_APP, "redirectUris": ["/relative"]})

        assert dex.state.calls == []

    def test_parse_and_rule_failures_reported_together(
        self, reconciler: ClientReconciler, dex: MockDexClient
    ) -> None:
        """Test that a missing field does not hide format errors elsewhere."""
        with pytest.raises(ValidationFailedError) as exc_info:
            reconciler.create(
                {"clientId": "web-app", "redirectUris": ["/relative"], "logoUrl": "nope"}
            )

        assert {f.property for f in exc_info.value.failures} == {
            "name",
            "redirectUris[0]",
            "logoUrl",
        }
        assert dex.state.calls == []

    def test_remote_failure_wrapped(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that RPC errors carry operation, kind and id."""
        dex.state.inject_error("CreateClient", DexUnavailableError("down", code="UNAVAILABLE"))

        with pytest.raises(RemoteOperationError) as exc_info:
            reconciler.create(WEB_APP)

        assert str(exc_info.value).startswith('dex create Client "web-app"')
        assert isinstance(exc_info.value.__cause__, DexUnavailableError)


class TestAdoption:
    """Tests for adopting already-existing clients."""

    def test_create_twice_adopts(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that a repeated create returns equivalent state.

        Dex keeps no creation time, so an adopted client has no createdAt;
        every other property matches the first create.
        """
        first = reconciler.create(WEB_APP)
        dex.state.calls.clear()

        second = reconciler.create(WEB_APP)

        assert second.adopted is True
        assert first.state.created_at is not None
        assert second.state.created_at is None
        assert _without_created_at(second.state) == _without_created_at(first.state)
        assert dex.state.mutating_calls == ["CreateClient"]

    def test_adoption_read_failure(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that a failed follow-up read surfaces as AdoptionError."""
        dex.state.add_client(RemoteClient(id="web-app", name="Web App"))
        dex.state.inject_error("GetClient", DexTimeoutError("slow", code="DEADLINE_EXCEEDED"))

        with pytest.raises(AdoptionError):
            reconciler.create(WEB_APP)


class TestSimulate:
    """Tests for simulate-only mode."""

    def test_create_makes_no_calls(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that simulate never calls Dex and never generates a secret."""
        result = reconciler.create(WEB_APP, simulate_only=True)

        assert dex.state.calls == []
        assert result.state.secret is None
        assert result.state.name == "Web App"

    def test_simulate_still_validates(
        self, reconciler: ClientReconciler, dex: MockDexClient
    ) -> None:
        """Test that invalid inputs fail in simulate mode too."""
        with pytest.raises(ValidationFailedError):
            reconciler.create({**WEB_APP, "logoUrl": "nope"}, simulate_only=True)

    def test_update_makes_no_calls(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that a simulated update carries the prior secret forward."""
        state = reconciler.create(WEB_APP).state
        dex.state.calls.clear()

        result = reconciler.update({**WEB_APP, "name": "Renamed"}, state, simulate_only=True)

        assert dex.state.calls == []
        assert result.changed == ["name"]
        assert result.state.secret == state.secret
        assert result.state.created_at == state.created_at


class TestRead:
    """Tests for reading clients."""

    def test_read_existing(self, reconciler: ClientReconciler) -> None:
        """Test inputs and state from a read."""
        created = reconciler.create(WEB_APP).state

        result = reconciler.read("web-app", created)

        assert result.inputs.redirect_uris == ["https://app.example/cb"]
        assert result.state.created_at == created.created_at
        assert result.state.secret == created.secret
        assert not hasattr(result.inputs, "created_at")

    def test_read_missing(self, reconciler: ClientReconciler) -> None:
        """Test that a vanished client reads as None."""
        assert reconciler.read("ghost") is None

    def test_get_unimplemented_falls_back_to_list(
        self, reconciler: ClientReconciler, dex: MockDexClient
    ) -> None:
        """Test ListClients fallback, keeping the known secret."""
        created = reconciler.create(WEB_APP).state
        dex.state.get_client_unimplemented = True

        result = reconciler.read("web-app", created)

        assert "ListClients" in dex.method_calls
        assert result.state.secret == created.secret

    def test_read_error_propagates(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that transport failures are not mistaken for absence."""
        dex.state.inject_error("GetClient", DexUnavailableError("down", code="UNAVAILABLE"))

        with pytest.raises(RemoteOperationError):
            reconciler.read("web-app")


class TestUpdate:
    """Tests for updating clients."""

    def test_rename_keeps_secret(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test the web app scenario: rename leaves the generated secret intact."""
        state = reconciler.create(WEB_APP).state
        secret = state.secret.get_secret_value()

        result = reconciler.update({**WEB_APP, "name": "Web App v2"}, state)

        assert result.changed == ["name"]
        assert result.state.secret.get_secret_value() == secret
        assert dex.state.clients["web-app"].name == "Web App v2"
        assert dex.state.clients["web-app"].secret == secret

    def test_redirect_change(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test mutable list properties."""
        state = reconciler.create(WEB_APP).state

        reconciler.update(
            {**WEB_APP, "redirectUris": ["https://app.example/cb", "https://app.example/cb2"]},
            state,
        )

        assert dex.state.clients["web-app"].redirect_uris == [
            "https://app.example/cb",
            "https://app.example/cb2",
        ]

    def test_public_change_refused(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that public requires replacement and makes no call."""
        state = reconciler.create(WEB_APP).state
        dex.state.calls.clear()

        with pytest.raises(ReplacementRequiredError):
            reconciler.update({**WEB_APP, "public": True}, state)

        assert dex.state.calls == []

    def test_id_change_refused(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test that the id cannot change in place."""
        state = reconciler.create(WEB_APP).state
        dex.state.calls.clear()

        with pytest.raises(ValidationFailedError) as exc_info:
            reconciler.update({**WEB_APP, "clientId": "other-app"}, state)

        assert not isinstance(exc_info.value, ReplacementRequiredError)
        assert dex.state.calls == []

    def test_update_without_prior(self, reconciler: ClientReconciler) -> None:
        """Test that update needs prior state."""
        with pytest.raises(ReconcileError):
            reconciler.update(WEB_APP, None)

    def test_update_vanished_client(
        self, reconciler: ClientReconciler, dex: MockDexClient
    ) -> None:
        """Test that updating a deleted client is a remote error."""
        state = reconciler.create(WEB_APP).state
        del dex.state.clients["web-app"]

        with pytest.raises(RemoteOperationError):
            reconciler.update({**WEB_APP, "name": "X"}, state)


class TestDelete:
    """Tests for verified deletion."""

    def test_delete_verified(self, reconciler: ClientReconciler, dex: MockDexClient) -> None:
        """Test delete followed by one verification list."""
        reconciler.create(WEB_APP)
        dex.state.calls.clear()

        reconciler.delete("web-app")

        assert dex.method_calls == ["DeleteClient", "ListClients"]
        assert "web-app" not in dex.state.clients

    def test_delete_id_from_prior_state(
        self, reconciler: ClientReconciler, dex: MockDexClient
    ) -> None:
        """Test that the id may come from prior state."""
        state = reconciler.create(WEB_APP).state

        reconciler.delete(prior_state=state)

        assert dex.state.clients == {}

    def test_delete_missing_is_success(
        self, reconciler: ClientReconciler, dex: MockDexClient
    ) -> None:
        """Test that an absent client needs no verification."""
        reconciler.delete("ghost")
        assert dex.method_calls == ["DeleteClient"]

    def test_delete_still_present(
        self,
        reconciler: ClientReconciler,
        dex: MockDexClient,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that a client surviving its delete fails loudly."""
        reconciler.create(WEB_APP)
        dex.state.sticky_deletes.add("web-app")

        with caplog.at_level(logging.INFO):
            with pytest.raises(DeleteVerificationError) as exc_info:
                reconciler.delete("web-app")

        assert "still exists" in str(exc_info.value)
        assert any(
            getattr(r, "event_type", None) == "delete_verification" for r in caplog.records
        )

    def test_verification_list_failure(
        self, reconciler: ClientReconciler, dex: MockDexClient
    ) -> None:
        """Test that an unverifiable delete is an error."""
        reconciler.create(WEB_APP)
        dex.state.inject_error("ListClients", DexUnavailableError("down", code="UNAVAILABLE"))

        with pytest.raises(DeleteVerificationError) as exc_info:
            reconciler.delete("web-app")

        assert "verification failed" in str(exc_info.value)

    def test_delete_without_id(self, reconciler: ClientReconciler) -> None:
        """Test that delete needs an id."""
        with pytest.raises(ReconcileError):
            reconciler.delete()


def test_utc_timestamp_format() -> None:
    """Test RFC 3339 UTC timestamps."""
    assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\dZ", utc_timestamp())
