"""Provider wiring for the orchestrator.

One Provider is built per orchestrator-provider instance. It owns the
Dex connection and hands out a reconciler per object kind. All
reconcilers share the one client, which is safe because neither the
client nor the reconcilers keep per-call state.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from types import TracebackType

from .clients import ClientReconciler
from .config import Config
from .connectors import (
    AzureMicrosoftConnectorReconciler,
    AzureOidcConnectorReconciler,
    CognitoOidcConnectorReconciler,
    GenericConnectorReconciler,
    GitHubConnectorReconciler,
    GitLabConnectorReconciler,
    GoogleConnectorReconciler,
    LocalConnectorReconciler,
)
from .dex_client import GrpcDexClient, IdentityClient
from .reconciler import Reconciler

logger = logging.getLogger(__name__)

RECONCILER_CLASSES: dict[str, type[Reconciler]] = {
    cls.SPEC_CLASS.KIND: cls
    for cls in (
        ClientReconciler,
        GenericConnectorReconciler,
        AzureOidcConnectorReconciler,
        AzureMicrosoftConnectorReconciler,
        CognitoOidcConnectorReconciler,
        GitHubConnectorReconciler,
        GitLabConnectorReconciler,
        GoogleConnectorReconciler,
        LocalConnectorReconciler,
    )
}


# =============================================================================
# Logging
# =============================================================================

# LogRecord attributes that are not user-supplied extras
_STANDARD_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging with JSON output on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Reduce noise from gRPC internals
    logging.getLogger("grpc").setLevel(logging.WARNING)


# =============================================================================
# Provider
# =============================================================================


class Provider:
    """Entry point for the orchestrator: one reconciler per object kind."""

    def __init__(self, client: IdentityClient, config: Config) -> None:
        self.client = client
        self.config = config
        self._reconcilers: dict[str, Reconciler] = {
            kind: reconciler_class(client, config)
            for kind, reconciler_class in RECONCILER_CLASSES.items()
        }

    @classmethod
    def from_config(cls, config: Config | None = None) -> Provider:
        """Connect to Dex using the given (or environment) configuration.

        Raises:
            ConfigurationError: If the environment configuration is invalid.
            DexUnavailableError: If Dex is not reachable within the timeout.
        """
        config = config or Config.from_env()
        client = GrpcDexClient.connect(config.host, config.timeout_seconds)
        logger.info(
            "Provider configured",
            extra={
                "host": config.host,
                "timeout_seconds": config.timeout_seconds,
                "kinds": sorted(RECONCILER_CLASSES),
            },
        )
        return cls(client, config)

    @property
    def kinds(self) -> list[str]:
        return sorted(self._reconcilers)

    def reconciler(self, kind: str) -> Reconciler:
        """Get the reconciler for a kind.

        Raises:
            ValueError: If kind is not recognized.
        """
        reconciler = self._reconcilers.get(kind)
        if reconciler is None:
            raise ValueError(f"Unknown kind '{kind}'. Valid kinds: {self.kinds}")
        return reconciler

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> Provider:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
