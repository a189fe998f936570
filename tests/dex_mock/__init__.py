"""Dex API Mock for integration testing.

In-memory implementation of the Dex admin API that reconcilers can use
in place of GrpcDexClient.

Key Features:
- In-memory state for clients and connectors
- Call log for asserting which RPCs were made
- Error injection per method
- "Sticky" deletes that report success but keep the object
- Optional GetClient UNIMPLEMENTED to exercise the list fallback

Usage:
    from dex_mock import MockDexClient

    client = MockDexClient()
    reconciler = ClientReconciler(client, config)
    reconciler.create({"clientId": "web-app", "name": "Web"})

    assert client.state.clients["web-app"].name == "Web"
    assert client.method_calls == ["CreateClient"]
"""

from .client import MockDexClient
from .state import MockCall, MockDexState

__all__ = [
    "MockCall",
    "MockDexClient",
    "MockDexState",
]
