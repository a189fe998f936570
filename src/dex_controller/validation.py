"""Validation and defaulting for declared objects.

Runs before every create and update, simulate mode included. Pydantic
covers structure and types; the rules here cover formats, enumerations
and cross-field invariants. Every violation is collected so the caller
sees all of them in one pass.

Defaults are applied once, before encoding. They are never re-applied
when decoding remote state.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, SecretStr, TypeAdapter, ValidationError

from .codec import CONNECTOR_CODECS, OIDC_CONNECTOR_TYPE, OIDCConfigCodec
from .config import (
    MAX_OBJECT_ID_LENGTH,
    VALID_REGION_PATTERN,
    VALID_USER_POOL_ID_PATTERN,
    VALID_UUID_PATTERN,
)
from .models import (
    AzureMicrosoftConnectorSpec,
    AzureOidcConnectorSpec,
    ClientSpec,
    CognitoOidcConnectorSpec,
    ConnectorSpec,
    DeclaredObject,
    GitHubConnectorSpec,
    GitLabConnectorSpec,
    GoogleConnectorSpec,
    LocalConnectorSpec,
    get_spec_class,
)

logger = logging.getLogger(__name__)

# Enumerations
AZURE_USER_NAME_SOURCES = ("preferred_username", "upn", "email")
COGNITO_USER_NAME_SOURCES = ("email", "sub")
GITHUB_TEAM_NAME_FIELDS = ("name", "slug", "both")
GOOGLE_PROMPT_TYPES = ("consent", "select_account", "login", "none")
MICROSOFT_TENANT_ALIASES = ("common", "organizations")

# Defaults
AZURE_DEFAULT_SCOPES = ("openid", "profile", "email", "offline_access")
AZURE_DEFAULT_USER_NAME_SOURCE = "preferred_username"
COGNITO_DEFAULT_SCOPES = ("openid", "email", "profile")
COGNITO_DEFAULT_USER_NAME_SOURCE = "email"
GITHUB_DEFAULT_TEAM_NAME_FIELD = "slug"
GITLAB_DEFAULT_BASE_URL = "https://gitlab.com"
GOOGLE_DEFAULT_PROMPT_TYPE = "consent"

# Attributes that cannot change in place, per kind
REPLACEMENT_ATTRS: dict[str, tuple[str, ...]] = {
    ClientSpec.KIND: ("public", "secret"),
    AzureOidcConnectorSpec.KIND: ("tenant_id",),
    AzureMicrosoftConnectorSpec.KIND: ("tenant",),
    CognitoOidcConnectorSpec.KIND: ("region", "user_pool_id"),
}

# Compared only when both sides carry a value; an unset secret means
# "keep the current one"
CARRIED_FORWARD_ATTRS = frozenset({"secret"})

_MISSING = object()


# =============================================================================
# Results and Errors
# =============================================================================


@dataclass(frozen=True)
class CheckFailure:
    """One violation, keyed by the external property path."""

    property: str
    reason: str

    def __str__(self) -> str:
        return f"{self.property}: {self.reason}"


@dataclass
class CheckResult:
    """Outcome of check(): the defaulted inputs and every failure found."""

    inputs: DeclaredObject | None
    failures: list[CheckFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class ValidationFailedError(Exception):
    """Declared inputs violate one or more rules. Raised before any RPC."""

    def __init__(self, failures: list[CheckFailure], message: str | None = None) -> None:
        self.failures = list(failures)
        if message is None:
            message = "Validation failed:\n  - " + "\n  - ".join(str(f) for f in self.failures)
        super().__init__(message)


class ReplacementRequiredError(ValidationFailedError):
    """An immutable property changed; the object must be deleted and recreated."""

    def __init__(self, kind: str, object_id: str, properties: list[str]) -> None:
        self.kind = kind
        self.object_id = object_id
        self.properties = list(properties)
        failures = [
            CheckFailure(p, "cannot be changed in place; replacement required")
            for p in self.properties
        ]
        message = (
            f"{kind} {object_id!r}: changing {', '.join(self.properties)} requires "
            "replacement. Delete and recreate the object to apply this change."
        )
        super().__init__(failures, message)


# =============================================================================
# Rule Helpers
# =============================================================================


def external_name(model_class: type[BaseModel], attr: str) -> str:
    """External (camelCase) property name for a model attribute."""
    info = model_class.model_fields.get(attr)
    if info is not None and info.alias:
        return info.alias
    return attr


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    return isinstance(value, str) and not value.strip()


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class _Rules:
    """Collects failures for one model, resolving external property names."""

    def __init__(self, model: BaseModel, prefix: str = "") -> None:
        self.model = model
        self.prefix = prefix
        self.failures: list[CheckFailure] = []

    def name(self, attr: str) -> str:
        return self.prefix + external_name(type(self.model), attr)

    def fail(self, prop: str, reason: str) -> None:
        self.failures.append(CheckFailure(prop, reason))

    def required(self, *attrs: str) -> None:
        for attr in attrs:
            if _is_blank(getattr(self.model, attr)):
                self.fail(self.name(attr), "is required")

    def url(self, attr: str) -> None:
        value = getattr(self.model, attr)
        if not _is_blank(value) and not _is_http_url(value):
            self.fail(self.name(attr), "must be an absolute http(s) URL")

    def url_list(self, attr: str) -> None:
        for i, value in enumerate(getattr(self.model, attr)):
            if not _is_http_url(value):
                self.fail(f"{self.name(attr)}[{i}]", "must be an absolute http(s) URL")

    def one_of(self, attr: str, allowed: tuple[str, ...]) -> None:
        value = getattr(self.model, attr)
        if value is not None and value not in allowed:
            self.fail(self.name(attr), f"must be one of: {', '.join(allowed)}")

    def pattern(self, attr: str, pattern: str, reason: str, flags: int = 0) -> None:
        value = getattr(self.model, attr)
        if not _is_blank(value) and not re.match(pattern, value, flags):
            self.fail(self.name(attr), reason)

    def extension(self, codec: Any) -> None:
        # Checked against the defaulted model: a defaulted typed field is
        # encoded and would shadow the extension key just like a declared one
        attr = codec.EXTENSION_ATTR
        for key in codec.conflicting_extension_keys(apply_defaults(self.model)):
            self.fail(
                f"{self.name(attr)}.{key}",
                "is managed by the connector and cannot be set through the extension map",
            )


def _object_rules(model: DeclaredObject) -> _Rules:
    rules = _Rules(model)
    rules.required("id", "name")
    if model.id and len(model.id) > MAX_OBJECT_ID_LENGTH:
        rules.fail(rules.name("id"), f"must be at most {MAX_OBJECT_ID_LENGTH} characters")
    return rules


def _credential_rules(rules: _Rules) -> None:
    rules.required("client_id", "client_secret", "redirect_uri")
    rules.url("redirect_uri")


# =============================================================================
# Per-Kind Rules
# =============================================================================


def _validate_client(model: ClientSpec) -> list[CheckFailure]:
    rules = _object_rules(model)
    rules.url_list("redirect_uris")
    rules.url("logo_url")
    for i, peer in enumerate(model.trusted_peers):
        if _is_blank(peer):
            rules.fail(f"{rules.name('trusted_peers')}[{i}]", "must not be empty")
    return rules.failures


def _validate_generic_connector(model: ConnectorSpec) -> list[CheckFailure]:
    rules = _object_rules(model)
    rules.required("type")

    has_typed = model.oidc_config is not None
    has_raw = model.raw_config is not None
    if has_typed == has_raw:
        rules.fail("oidcConfig", "exactly one of oidcConfig or rawConfig must be set")

    if has_typed:
        if model.type != OIDC_CONNECTOR_TYPE:
            rules.fail("oidcConfig", f'is only valid when type is "{OIDC_CONNECTOR_TYPE}"')
        oidc = _Rules(model.oidc_config, prefix="oidcConfig.")
        oidc.required("issuer")
        oidc.url("issuer")
        _credential_rules(oidc)
        oidc.extension(OIDCConfigCodec())
        rules.failures.extend(oidc.failures)

    if has_raw:
        try:
            json.loads(model.raw_config)
        except json.JSONDecodeError as e:
            rules.fail("rawConfig", f"must be valid JSON ({e.msg})")

    return rules.failures


def _validate_azure_oidc(model: AzureOidcConnectorSpec) -> list[CheckFailure]:
    rules = _object_rules(model)
    rules.required("tenant_id")
    rules.pattern("tenant_id", VALID_UUID_PATTERN, "must be a valid UUID", re.IGNORECASE)
    _credential_rules(rules)
    rules.one_of("user_name_source", AZURE_USER_NAME_SOURCES)
    rules.extension(CONNECTOR_CODECS[model.KIND])
    return rules.failures


def _validate_azure_microsoft(model: AzureMicrosoftConnectorSpec) -> list[CheckFailure]:
    rules = _object_rules(model)
    rules.required("tenant")
    if (
        not _is_blank(model.tenant)
        and model.tenant not in MICROSOFT_TENANT_ALIASES
        and not re.match(VALID_UUID_PATTERN, model.tenant, re.IGNORECASE)
    ):
        rules.fail("tenant", 'must be "common", "organizations", or a valid UUID')
    _credential_rules(rules)
    rules.extension(CONNECTOR_CODECS[model.KIND])
    return rules.failures


def _validate_cognito(model: CognitoOidcConnectorSpec) -> list[CheckFailure]:
    rules = _object_rules(model)
    rules.required("region", "user_pool_id")
    rules.pattern("region", VALID_REGION_PATTERN, "must be a valid AWS region identifier")
    rules.pattern(
        "user_pool_id", VALID_USER_POOL_ID_PATTERN, "must look like <region>_<id>"
    )
    if (
        re.match(VALID_REGION_PATTERN, model.region or "")
        and re.match(VALID_USER_POOL_ID_PATTERN, model.user_pool_id or "")
        and model.user_pool_id.split("_", 1)[0] != model.region
    ):
        rules.fail("userPoolId", "must start with the configured region")
    _credential_rules(rules)
    rules.one_of("user_name_source", COGNITO_USER_NAME_SOURCES)
    rules.extension(CONNECTOR_CODECS[model.KIND])
    return rules.failures


def _validate_github(model: GitHubConnectorSpec) -> list[CheckFailure]:
    rules = _object_rules(model)
    _credential_rules(rules)
    rules.one_of("team_name_field", GITHUB_TEAM_NAME_FIELDS)
    for i, org in enumerate(model.orgs):
        if _is_blank(org.name):
            rules.fail(f"orgs[{i}].name", "is required")
    rules.extension(CONNECTOR_CODECS[model.KIND])
    return rules.failures


def _validate_gitlab(model: GitLabConnectorSpec) -> list[CheckFailure]:
    rules = _object_rules(model)
    _credential_rules(rules)
    rules.url("base_url")
    rules.extension(CONNECTOR_CODECS[model.KIND])
    return rules.failures


def _validate_google(model: GoogleConnectorSpec) -> list[CheckFailure]:
    rules = _object_rules(model)
    _credential_rules(rules)
    rules.one_of("prompt_type", GOOGLE_PROMPT_TYPES)
    rules.extension(CONNECTOR_CODECS[model.KIND])
    return rules.failures


def _validate_local(model: LocalConnectorSpec) -> list[CheckFailure]:
    rules = _object_rules(model)
    rules.extension(CONNECTOR_CODECS[model.KIND])
    return rules.failures


_VALIDATORS: dict[str, Callable[[Any], list[CheckFailure]]] = {
    ClientSpec.KIND: _validate_client,
    ConnectorSpec.KIND: _validate_generic_connector,
    AzureOidcConnectorSpec.KIND: _validate_azure_oidc,
    AzureMicrosoftConnectorSpec.KIND: _validate_azure_microsoft,
    CognitoOidcConnectorSpec.KIND: _validate_cognito,
    GitHubConnectorSpec.KIND: _validate_github,
    GitLabConnectorSpec.KIND: _validate_gitlab,
    GoogleConnectorSpec.KIND: _validate_google,
    LocalConnectorSpec.KIND: _validate_local,
}


# =============================================================================
# Defaults
# =============================================================================


def _default_updates(model: DeclaredObject) -> dict[str, Any]:
    updates: dict[str, Any] = {}

    def default(attr: str, value: Any) -> None:
        current = getattr(model, attr)
        if current is None or (isinstance(current, list) and not current):
            updates[attr] = value

    if isinstance(model, ClientSpec):
        default("public", False)
    elif isinstance(model, AzureOidcConnectorSpec):
        default("scopes", list(AZURE_DEFAULT_SCOPES))
        default("user_name_source", AZURE_DEFAULT_USER_NAME_SOURCE)
    elif isinstance(model, CognitoOidcConnectorSpec):
        default("scopes", list(COGNITO_DEFAULT_SCOPES))
        default("user_name_source", COGNITO_DEFAULT_USER_NAME_SOURCE)
    elif isinstance(model, GitHubConnectorSpec):
        default("load_all_groups", False)
        default("team_name_field", GITHUB_DEFAULT_TEAM_NAME_FIELD)
        default("use_login_as_id", False)
    elif isinstance(model, GitLabConnectorSpec):
        default("base_url", GITLAB_DEFAULT_BASE_URL)
        default("use_login_as_id", False)
        default("get_groups_permission", False)
    elif isinstance(model, GoogleConnectorSpec):
        default("prompt_type", GOOGLE_DEFAULT_PROMPT_TYPE)
    return updates


def apply_defaults(model: DeclaredObject) -> DeclaredObject:
    """Return a copy with per-kind defaults filled into unset fields.

    Client trustedPeers already defaults to an empty list in the model.
    """
    updates = _default_updates(model)
    if not updates:
        return model
    return model.model_copy(update=updates)


# =============================================================================
# Entry Points
# =============================================================================


def validate_declared(model: DeclaredObject) -> list[CheckFailure]:
    """Run the semantic rules for a parsed model."""
    validator = _VALIDATORS.get(model.KIND)
    if validator is None:
        raise ValueError(f"No validation rules for kind '{model.KIND}'")
    return validator(model)


def validate(model: DeclaredObject) -> DeclaredObject:
    """Validate and default a declared object.

    Returns:
        The defaulted model.

    Raises:
        ValidationFailedError: With every failure found.
    """
    failures = validate_declared(model)
    if failures:
        logger.info(
            "Declared object failed validation",
            extra={
                "kind": model.KIND,
                "object_id": model.id,
                "failures": [str(f) for f in failures],
            },
        )
        raise ValidationFailedError(failures)
    return apply_defaults(model)


def pydantic_failures(error: ValidationError) -> list[CheckFailure]:
    failures = []
    for item in error.errors():
        prop = ""
        for part in item["loc"]:
            prop += f"[{part}]" if isinstance(part, int) else (f".{part}" if prop else str(part))
        reason = item["msg"].removeprefix("Value error, ")
        failures.append(CheckFailure(prop or "<root>", reason))
    return failures


def _partial_model(
    spec_class: type[DeclaredObject], raw_inputs: Mapping[str, Any], failed: set[str]
) -> DeclaredObject:
    """Model built from the fields that parsed; failed or missing ones are left unset."""
    values: dict[str, Any] = {}
    for attr, info in spec_class.model_fields.items():
        key = info.alias or attr
        raw = raw_inputs.get(key, raw_inputs.get(attr, _MISSING))
        if raw is _MISSING or key in failed or attr in failed:
            default = None if info.is_required() else info.get_default(call_default_factory=True)
            values[attr] = default
        else:
            values[attr] = TypeAdapter(info.annotation).validate_python(raw)
    return spec_class.model_construct(**values)


def parse_failures(
    spec_class: type[DeclaredObject], raw_inputs: Mapping[str, Any], error: ValidationError
) -> list[CheckFailure]:
    """Structural failures plus the semantic failures of the fields that did parse.

    Semantic failures on a property that already failed structurally are
    dropped so each problem is reported once.
    """
    failures = pydantic_failures(error)
    failed = {str(item["loc"][0]) for item in error.errors() if item["loc"]}
    model = _partial_model(spec_class, raw_inputs, failed)
    for failure in validate_declared(model):
        top_level = re.split(r"[.\[]", failure.property, maxsplit=1)[0]
        if top_level not in failed:
            failures.append(failure)
    return failures


def check(kind: str, raw_inputs: Mapping[str, Any]) -> CheckResult:
    """Parse, validate and default raw declared inputs without raising.

    Args:
        kind: Kind name, e.g. "Client".
        raw_inputs: Inputs keyed by external property names.

    Returns:
        CheckResult with the defaulted model (None when unparseable) and
        every failure found.
    """
    try:
        spec_class = get_spec_class(kind)
    except ValueError as e:
        return CheckResult(None, [CheckFailure("kind", str(e))])

    try:
        model = spec_class.model_validate(dict(raw_inputs))
    except ValidationError as e:
        return CheckResult(None, parse_failures(spec_class, raw_inputs, e))

    return CheckResult(apply_defaults(model), validate_declared(model))


# =============================================================================
# Immutability
# =============================================================================


def _comparable(value: Any) -> Any:
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    if value in (None, "") or (isinstance(value, (list, dict)) and not value):
        return None
    return value


def replacement_changes(declared: DeclaredObject, prior: DeclaredObject) -> list[str]:
    """External names of immutable properties that differ from the prior state."""
    declared = apply_defaults(declared)
    prior = apply_defaults(prior)
    changed = []
    for attr in REPLACEMENT_ATTRS.get(declared.KIND, ()):
        new = _comparable(getattr(declared, attr))
        old = _comparable(getattr(prior, attr, None))
        if attr in CARRIED_FORWARD_ATTRS and (new is None or old is None):
            continue
        if new != old:
            changed.append(external_name(type(declared), attr))
    return changed


def check_immutable(declared: DeclaredObject, prior: DeclaredObject) -> None:
    """Reject in-place changes that the remote service cannot apply.

    Raises:
        ValidationFailedError: If the id changed.
        ReplacementRequiredError: If a kind-specific immutable property changed.
    """
    if declared.id != prior.id:
        raise ValidationFailedError(
            [
                CheckFailure(
                    declared.ID_PROPERTY,
                    f"is immutable (was {prior.id!r}, now {declared.id!r})",
                )
            ]
        )
    changed = replacement_changes(declared, prior)
    if changed:
        raise ReplacementRequiredError(declared.KIND, declared.id, changed)

