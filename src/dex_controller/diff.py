"""Drift detection between declared inputs and reconciled state.

Compares objects property by property using external names, after
normalizing values that differ only syntactically.

NORMALIZATIONS:
1. Empty list / empty mapping / empty string equal a missing property
2. Secrets compare by value
3. Unordered collections (trusted peers, group filters) ignore order
4. URLs ignore a trailing slash

A secret left unset in the declared inputs means "keep the current one"
and never counts as a change. The id always forces replacement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, SecretStr

from .models import DeclaredObject
from .validation import (
    CARRIED_FORWARD_ATTRS,
    REPLACEMENT_ATTRS,
    apply_defaults,
    external_name,
)

logger = logging.getLogger(__name__)

# Properties that exist only in reconciled state
STATE_ONLY_PROPERTIES = frozenset({"createdAt"})


class NormalizationType(str, Enum):
    """Types of normalization operations."""

    # Empty equivalence: [], {}, "", null and missing are equivalent
    EMPTY_EQUIVALENCE = "empty_equivalence"

    # Secret values compared in plain text, never rendered
    SECRET_VALUE = "secret_value"

    # Array order independence
    ARRAY_UNORDERED = "array_unordered"

    # Trailing slash insensitive URLs
    URL_NORMALIZE = "url_normalize"


@dataclass(frozen=True)
class NormalizationRule:
    """A single normalization rule.

    Attributes:
        kind: Object kind to match, or "*" for every kind.
        prop: External property name to match, or "*" for every property.
        normalization_type: Type of normalization to apply.
        reason: Human-readable explanation.
    """

    kind: str
    prop: str
    normalization_type: NormalizationType
    reason: str = ""

    def matches(self, kind: str, prop: str) -> bool:
        return self.kind in ("*", kind) and self.prop in ("*", prop)


DEFAULT_NORMALIZATION_RULES: list[NormalizationRule] = [
    NormalizationRule("*", "*", NormalizationType.SECRET_VALUE, "Secrets compare by value"),
    NormalizationRule("*", "*", NormalizationType.EMPTY_EQUIVALENCE, "Empty equals missing"),
    NormalizationRule(
        "Client", "trustedPeers", NormalizationType.ARRAY_UNORDERED, "Peer set, order irrelevant"
    ),
    NormalizationRule("Client", "redirectUris", NormalizationType.URL_NORMALIZE),
    NormalizationRule("Client", "logoUrl", NormalizationType.URL_NORMALIZE),
    NormalizationRule("*", "redirectUri", NormalizationType.URL_NORMALIZE),
    NormalizationRule("GitLabConnector", "baseURL", NormalizationType.URL_NORMALIZE),
    NormalizationRule(
        "GitLabConnector", "groups", NormalizationType.ARRAY_UNORDERED, "Group filter is a set"
    ),
    NormalizationRule(
        "GoogleConnector", "groups", NormalizationType.ARRAY_UNORDERED, "Group filter is a set"
    ),
    NormalizationRule(
        "GoogleConnector", "hostedDomains", NormalizationType.ARRAY_UNORDERED, "Domain set"
    ),
]


@dataclass
class DiffResult:
    """Changed external property names and those requiring replacement."""

    changed: list[str] = field(default_factory=list)
    replacements: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.changed)

    @property
    def requires_replacement(self) -> bool:
        return bool(self.replacements)


class DiffNormalizer:
    """Normalizes property values so only semantic differences remain."""

    def __init__(
        self,
        rules: list[NormalizationRule] | None = None,
        enable_default_rules: bool = True,
    ) -> None:
        self._rules: list[NormalizationRule] = []
        if enable_default_rules:
            self._rules.extend(DEFAULT_NORMALIZATION_RULES)
        if rules:
            self._rules.extend(rules)

    def normalize_value(self, value: Any, kind: str, prop: str) -> Any:
        normalized = value
        for rule in self._rules:
            if rule.matches(kind, prop):
                normalized = self._apply_normalization(normalized, rule.normalization_type)
        return normalized

    def _apply_normalization(self, value: Any, normalization_type: NormalizationType) -> Any:
        match normalization_type:
            case NormalizationType.SECRET_VALUE:
                return _unwrap_secrets(value)
            case NormalizationType.EMPTY_EQUIVALENCE:
                return _normalize_empty(value)
            case NormalizationType.ARRAY_UNORDERED:
                if isinstance(value, list):
                    return sorted(value, key=repr)
                return value
            case NormalizationType.URL_NORMALIZE:
                if isinstance(value, str):
                    return value.rstrip("/")
                if isinstance(value, list):
                    return [v.rstrip("/") if isinstance(v, str) else v for v in value]
                return value
            case _:
                return value

    def values_equal(self, before: Any, after: Any, kind: str, prop: str) -> bool:
        return self.normalize_value(before, kind, prop) == self.normalize_value(after, kind, prop)


def _unwrap_secrets(value: Any) -> Any:
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    if isinstance(value, BaseModel):
        return _unwrap_secrets(value.model_dump(by_alias=True))
    if isinstance(value, dict):
        return {k: _unwrap_secrets(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_unwrap_secrets(v) for v in value]
    return value


def _normalize_empty(value: Any) -> Any:
    if isinstance(value, dict):
        cleaned = {k: _normalize_empty(v) for k, v in value.items()}
        cleaned = {k: v for k, v in cleaned.items() if v is not None}
        return cleaned or None
    if isinstance(value, list):
        return [_normalize_empty(v) for v in value] or None
    if value == "" or value is None:
        return None
    return value


def diff_objects(
    declared: DeclaredObject,
    prior: DeclaredObject | None,
    normalizer: DiffNormalizer | None = None,
) -> DiffResult:
    """Compare declared inputs with a prior state.

    Both sides are defaulted first so an omitted optional input does not
    show up as drift against its defaulted state.

    Args:
        declared: Declared inputs.
        prior: Prior reconciled state. None means everything changed.
        normalizer: Optional custom normalizer.

    Returns:
        DiffResult with external property names in declaration order.
    """
    normalizer = normalizer or DiffNormalizer()
    kind = declared.KIND
    declared = apply_defaults(declared)
    model_class = type(declared)

    if prior is None:
        changed = [external_name(model_class, attr) for attr in model_class.model_fields]
        return DiffResult(changed=changed, replacements=[declared.ID_PROPERTY])

    prior = apply_defaults(prior)
    replacement_props = {
        external_name(model_class, attr) for attr in REPLACEMENT_ATTRS.get(kind, ())
    }
    carried_forward = {external_name(model_class, attr) for attr in CARRIED_FORWARD_ATTRS}

    result = DiffResult()
    for attr in model_class.model_fields:
        prop = external_name(model_class, attr)
        if prop in STATE_ONLY_PROPERTIES:
            continue
        before = normalizer.normalize_value(getattr(prior, attr, None), kind, prop)
        after = normalizer.normalize_value(getattr(declared, attr), kind, prop)
        if prop in carried_forward and (before is None or after is None):
            continue
        if before == after:
            continue
        result.changed.append(prop)
        if prop in replacement_props or attr == "id":
            result.replacements.append(prop)

    if result.changed:
        logger.debug(
            "Drift detected",
            extra={"kind": kind, "object_id": declared.id, "changed": result.changed},
        )
    return result
