"""Tests for drift detection and value normalization."""

from __future__ import annotations

import pytest
from pydantic import SecretStr

from dex_controller.diff import (
    DiffNormalizer,
    NormalizationRule,
    NormalizationType,
    diff_objects,
)
from dex_controller.models import (
    AzureOidcConnectorSpec,
    ClientSpec,
    ClientState,
    GoogleConnectorSpec,
)

TENANT_ID = "8f9e6c1a-2b3d-4e5f-8a9b-0c1d2e3f4a5b"


def _azure(**overrides) -> AzureOidcConnectorSpec:
    return AzureOidcConnectorSpec.model_validate(
        {
            "connectorId": "azure",
            "name": "Azure",
            "tenantId": TENANT_ID,
            "clientId": "app",
            "clientSecret": "secret",
            "redirectUri": "https://dex/callback",
            **overrides,
        }
    )


class TestDiffNormalizer:
    """Tests for DiffNormalizer."""

    @pytest.fixture
    def normalizer(self) -> DiffNormalizer:
        return DiffNormalizer()

    @pytest.mark.parametrize("empty", [None, "", [], {}])
    def test_empty_equivalence(self, normalizer: DiffNormalizer, empty: object) -> None:
        """Test that empty values equal a missing property."""
        assert normalizer.values_equal(empty, None, "Client", "logoUrl")

    def test_secret_compared_by_value(self, normalizer: DiffNormalizer) -> None:
        """Test secret unwrapping."""
        assert normalizer.values_equal(SecretStr("a"), "a", "Client", "secret")
        assert not normalizer.values_equal(SecretStr("a"), SecretStr("b"), "Client", "secret")

    def test_trusted_peers_unordered(self, normalizer: DiffNormalizer) -> None:
        """Test set semantics for trusted peers."""
        assert normalizer.values_equal(["a", "b"], ["b", "a"], "Client", "trustedPeers")

    def test_redirect_uris_ordered(self, normalizer: DiffNormalizer) -> None:
        """Test that redirect URI order still matters."""
        assert not normalizer.values_equal(
            ["https://a/cb", "https://b/cb"],
            ["https://b/cb", "https://a/cb"],
            "Client",
            "redirectUris",
        )

    def test_trailing_slash_ignored(self, normalizer: DiffNormalizer) -> None:
        """Test URL normalization."""
        assert normalizer.values_equal(
            "https://gitlab.acme.io/", "https://gitlab.acme.io", "GitLabConnector", "baseURL"
        )

    def test_nested_empty_values(self, normalizer: DiffNormalizer) -> None:
        """Test that nested empty entries are dropped."""
        assert normalizer.values_equal({"a": 1, "b": None, "c": []}, {"a": 1}, "Connector", "x")

    def test_custom_rule(self) -> None:
        """Test adding a rule on top of the defaults."""
        normalizer = DiffNormalizer(
            rules=[NormalizationRule("Client", "redirectUris", NormalizationType.ARRAY_UNORDERED)]
        )
        assert normalizer.values_equal(["b", "a"], ["a", "b"], "Client", "redirectUris")

    def test_defaults_disabled(self) -> None:
        """Test a normalizer without default rules."""
        normalizer = DiffNormalizer(enable_default_rules=False)
        assert not normalizer.values_equal([], None, "Client", "trustedPeers")


class TestDiffObjects:
    """Tests for diff_objects."""

    def test_no_prior_everything_changes(self) -> None:
        """Test a first create diff."""
        result = diff_objects(ClientSpec(id="a", name="A"), None)

        assert "clientId" in result.changed
        assert result.replacements == ["clientId"]
        assert result.requires_replacement

    def test_identical(self) -> None:
        """Test no drift between equal objects."""
        spec = ClientSpec(id="a", name="A", redirect_uris=["https://a/cb"])
        state = ClientState(id="a", name="A", redirect_uris=["https://a/cb"], public=False)

        result = diff_objects(spec, state)

        assert not result.has_changes

    def test_created_at_ignored(self) -> None:
        """Test that state-only properties are not drift."""
        spec = ClientState(id="a", name="A", created_at="2026-01-01T00:00:00Z")
        state = ClientState(id="a", name="A", created_at="2026-02-02T00:00:00Z")

        assert diff_objects(spec, state).changed == []

    def test_omitted_secret_not_a_change(self) -> None:
        """Test that an unset declared secret keeps the current one."""
        result = diff_objects(ClientSpec(id="a", name="A"), ClientState(id="a", name="A", secret="s"))
        assert result.changed == []

    def test_secret_change_requires_replacement(self) -> None:
        """Test that an explicit secret change is a replacement."""
        result = diff_objects(
            ClientSpec(id="a", name="A", secret="new"),
            ClientState(id="a", name="A", secret="old"),
        )

        assert result.changed == ["secret"]
        assert result.replacements == ["secret"]

    def test_defaults_applied_to_both_sides(self) -> None:
        """Test that omitted defaulted inputs do not show as drift."""
        state = _azure(
            scopes=["openid", "profile", "email", "offline_access"],
            userNameSource="preferred_username",
        )
        assert diff_objects(_azure(), state).changed == []

    def test_changed_in_declaration_order(self) -> None:
        """Test external property names in field order."""
        result = diff_objects(
            _azure(name="B", clientId="other", tenantId="00000000-0000-0000-0000-000000000001"),
            _azure(),
        )

        assert result.changed == ["name", "tenantId", "clientId"]
        assert result.replacements == ["tenantId"]

    def test_group_order_ignored(self) -> None:
        """Test unordered group filters."""
        base = {
            "connectorId": "g",
            "name": "G",
            "clientId": "c",
            "clientSecret": "s",
            "redirectUri": "https://dex/cb",
        }
        declared = GoogleConnectorSpec.model_validate({**base, "groups": ["a", "b"]})
        prior = GoogleConnectorSpec.model_validate({**base, "groups": ["b", "a"]})

        assert diff_objects(declared, prior).changed == []
