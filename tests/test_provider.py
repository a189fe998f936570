"""Tests for provider wiring and structured logging."""

from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
from dex_mock import MockDexClient

from dex_controller.clients import ClientReconciler
from dex_controller.config import Config
from dex_controller.connectors import GitHubConnectorReconciler
from dex_controller.models import SPEC_CLASSES
from dex_controller.provider import JsonFormatter, Provider, setup_logging


class TestProvider:
    """Tests for Provider."""

    def test_every_kind_served(self, dex: MockDexClient, config: Config) -> None:
        """Test that each declared kind has a reconciler."""
        provider = Provider(dex, config)
        assert provider.kinds == sorted(SPEC_CLASSES)

    def test_reconciler_by_kind(self, dex: MockDexClient, config: Config) -> None:
        """Test kind lookup and shared client."""
        provider = Provider(dex, config)

        client_reconciler = provider.reconciler("Client")
        github_reconciler = provider.reconciler("GitHubConnector")

        assert isinstance(client_reconciler, ClientReconciler)
        assert isinstance(github_reconciler, GitHubConnectorReconciler)
        assert client_reconciler.client is github_reconciler.client is dex

    def test_unknown_kind(self, dex: MockDexClient, config: Config) -> None:
        """Test that unknown kinds raise ValueError."""
        with pytest.raises(ValueError, match="Unknown kind"):
            Provider(dex, config).reconciler("SamlConnector")

    def test_context_manager_closes(self, dex: MockDexClient, config: Config) -> None:
        """Test that leaving the context closes the client."""
        with Provider(dex, config):
            pass
        assert dex.closed is True

    def test_from_config_connects(self, config: Config) -> None:
        """Test that from_config opens a gRPC client for the configured host."""
        with patch("dex_controller.provider.GrpcDexClient") as grpc_client:
            grpc_client.connect.return_value = MagicMock()
            provider = Provider.from_config(config)

        grpc_client.connect.assert_called_once_with("127.0.0.1:5557", 3)
        assert provider.client is grpc_client.connect.return_value

    def test_end_to_end(self, dex: MockDexClient, config: Config) -> None:
        """Test a client lifecycle through the provider."""
        reconciler = Provider(dex, config).reconciler("Client")

        created = reconciler.create({"clientId": "cli", "name": "CLI", "public": True})
        reconciler.delete(prior_state=created.state)

        assert dex.state.mutating_calls == ["CreateClient", "DeleteClient"]


class TestJsonFormatter:
    """Tests for JSON log output."""

    def test_extra_fields_included(self) -> None:
        """Test that extras appear as top-level keys."""
        record = logging.LogRecord(
            "dex_controller.clients", logging.INFO, __file__, 1, "Created object", None, None
        )
        record.object_id = "web-app"
        record.kind = "Client"

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Created object"
        assert data["level"] == "INFO"
        assert data["logger"] == "dex_controller.clients"
        assert data["object_id"] == "web-app"
        assert data["kind"] == "Client"
        assert data["timestamp"].endswith("Z")
        assert "msg" not in data

    def test_non_serializable_extra(self) -> None:
        """Test that odd values are stringified."""
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "m", None, None)
        record.path = object()

        data = json.loads(JsonFormatter().format(record))

        assert data["path"].startswith("<object object")


def test_setup_logging_installs_json_handler() -> None:
    """Test root handler installation and gRPC noise reduction."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    try:
        setup_logging("debug")

        added = [h for h in root.handlers if h not in handlers]
        assert len(added) == 1
        assert isinstance(added[0].formatter, JsonFormatter)
        assert root.level == logging.DEBUG
        assert logging.getLogger("grpc").level == logging.WARNING
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)
