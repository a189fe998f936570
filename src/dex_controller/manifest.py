"""Declarative manifest loading.

A manifest is a YAML file with one or more documents. Each document is
either Kubernetes-style:

    apiVersion: dex.example.io/v1
    kind: Client
    metadata:
      name: web-app
    spec:
      name: Web App
      redirectUris: [https://app.example/cb]

or flat, with the kind next to the inputs:

    kind: GitHubConnector
    connectorId: github
    ...

SECURITY: File size is checked before reading to prevent DoS via large
files. Only yaml.safe_load_all is used.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from .config import MAX_MANIFEST_FILE_SIZE_BYTES
from .models import DeclaredObject, get_spec_class
from .validation import check

logger = logging.getLogger(__name__)


class ManifestLoadError(Exception):
    """Raised when a manifest cannot be loaded or fails validation."""

    pass


def _document_inputs(document: Any, source: str, index: int) -> tuple[str, dict[str, Any]]:
    where = f"{source} (document {index})"
    if not isinstance(document, dict):
        raise ManifestLoadError(f"Manifest document must be a YAML mapping: {where}")

    kind = document.get("kind")
    if not isinstance(kind, str) or not kind:
        raise ManifestLoadError(f"Manifest document has no kind: {where}")

    try:
        spec_class = get_spec_class(kind)
    except ValueError as e:
        raise ManifestLoadError(f"{e}: {where}") from e

    if "apiVersion" in document and "spec" in document:
        # Kubernetes-style wrapper: apiVersion, kind, metadata, spec
        inputs = document.get("spec") or {}
        if not isinstance(inputs, dict):
            raise ManifestLoadError(f"Spec section must be a mapping: {where}")
        inputs = dict(inputs)
        metadata = document.get("metadata") or {}
        if isinstance(metadata, dict) and metadata.get("name"):
            inputs.setdefault(spec_class.ID_PROPERTY, metadata["name"])
    else:
        inputs = {k: v for k, v in document.items() if k != "kind"}

    return kind, inputs


def parse_manifest(content: str, source: str = "<string>") -> list[tuple[str, dict[str, Any]]]:
    """Parse manifest text into (kind, raw_inputs) pairs.

    Args:
        content: YAML text, possibly multi-document.
        source: Name used in error messages.

    Returns:
        One (kind, raw_inputs) pair per non-empty document, in file order.

    Raises:
        ManifestLoadError: On malformed YAML, unknown kinds or non-mapping documents.
    """
    try:
        documents = list(yaml.safe_load_all(content))
    except yaml.YAMLError as e:
        raise ManifestLoadError(f"Invalid YAML in {source}: {e}") from e

    entries = [
        _document_inputs(document, source, index)
        for index, document in enumerate(documents)
        if document is not None
    ]
    logger.info("Parsed manifest", extra={"source": source, "documents": len(entries)})
    return entries


def load_manifest(path: Path) -> list[tuple[str, dict[str, Any]]]:
    """Load a manifest file into (kind, raw_inputs) pairs.

    Raises:
        ManifestLoadError: If the file is missing, too large or malformed.
    """
    if not path.exists():
        raise ManifestLoadError(f"Manifest file not found: {path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ManifestLoadError(f"Failed to stat manifest file {path}: {e}") from e

    if file_size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise ManifestLoadError(
            f"Manifest file exceeds maximum size of {MAX_MANIFEST_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestLoadError(f"Failed to read manifest file {path}: {e}") from e

    return parse_manifest(content, source=str(path))


def load_objects(path: Path) -> list[DeclaredObject]:
    """Load a manifest and validate every object in it.

    Returns:
        Defaulted declared objects, in file order.

    Raises:
        ManifestLoadError: Listing every failure of every invalid document.
    """
    objects: list[DeclaredObject] = []
    errors: list[str] = []
    for kind, inputs in load_manifest(path):
        result = check(kind, inputs)
        if result.failures:
            errors.extend(f"  - {kind}: {failure}" for failure in result.failures)
        elif result.inputs is not None:
            objects.append(result.inputs)

    if errors:
        raise ManifestLoadError(f"Validation failed for {path}:\n" + "\n".join(errors))
    return objects
