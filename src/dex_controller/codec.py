"""Connector configuration codec.

Translates between the declared connector models and the opaque JSON
config bytes stored by Dex.

DESIGN:
- ConfigDocument is an ordered view of the JSON object; key order is kept
  so encoded documents are stable and diffs stay readable
- Each flavor describes its typed keys with a ConfigField table
  (declared attribute <-> remote key, plus value converters)
- Keys that are unknown, or known but not decodable into the typed field,
  land in the flavor's extension map on decode and are merged back
  verbatim after the typed keys on encode
- Derived keys (issuer) are rendered from higher-level inputs through an
  IssuerTemplate and reverse-parsed on decode, best effort

Defaults are never injected here. validation.apply_defaults runs once
before encoding, so decoding returns exactly what the remote holds.
"""

from __future__ import annotations

import json
import logging
import re
import string
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, SecretStr

from .dex_client import RemoteConnector
from .models import (
    AzureMicrosoftConnectorSpec,
    AzureOidcConnectorSpec,
    CognitoOidcConnectorSpec,
    ConnectorBase,
    ConnectorSpec,
    GitHubConnectorSpec,
    GitHubOrg,
    GitLabConnectorSpec,
    GoogleConnectorSpec,
    LocalConnectorSpec,
    OIDCClaimMapping,
    OIDCConfig,
)
from .security import redact_config, secret_value

logger = logging.getLogger(__name__)

OIDC_CONNECTOR_TYPE = "oidc"


class CodecError(Exception):
    """Raised when a config document cannot be encoded or parsed."""

    pass


# =============================================================================
# Config Document
# =============================================================================


class ConfigDocument:
    """Ordered key/value view of a connector config JSON object."""

    def __init__(self, entries: Mapping[str, Any] | None = None) -> None:
        self._entries: dict[str, Any] = dict(entries or {})

    @classmethod
    def from_bytes(cls, data: bytes) -> ConfigDocument:
        """Parse config bytes.

        Raises:
            CodecError: If the bytes are not a JSON object.
        """
        if not data:
            return cls()
        try:
            parsed = json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CodecError(f"Config is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise CodecError(f"Config must be a JSON object, got {type(parsed).__name__}")
        return cls(parsed)

    def to_bytes(self) -> bytes:
        """Compact JSON with insertion order preserved."""
        return json.dumps(self._entries, separators=(",", ":")).encode("utf-8")

    def split(self, known_keys: Iterable[str]) -> tuple[dict[str, Any], dict[str, Any]]:
        """Partition into (known, extension) maps, both in document order."""
        known_set = set(known_keys)
        known: dict[str, Any] = {}
        extension: dict[str, Any] = {}
        for key, value in self._entries.items():
            (known if key in known_set else extension)[key] = value
        return known, extension

    def as_dict(self) -> dict[str, Any]:
        return dict(self._entries)

    def redacted(self) -> dict[str, Any]:
        """Copy safe for log records."""
        return redact_config(self._entries)

    def get(self, key: str, default: Any = None) -> Any:
        return self._entries.get(key, default)

    def items(self) -> Iterable[tuple[str, Any]]:
        return self._entries.items()

    def __getitem__(self, key: str) -> Any:
        return self._entries[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._entries[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigDocument):
            return NotImplemented
        return list(self._entries.items()) == list(other._entries.items())

    def __repr__(self) -> str:
        return f"ConfigDocument({self.redacted()!r})"


# =============================================================================
# Value Converters
# =============================================================================
# Decoders raise TypeError/ValueError for values that do not fit the typed
# field; the caller then keeps the raw value in the extension map.


def _identity(value: Any) -> Any:
    return value


def _as_str(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected string, got {type(value).__name__}")
    return value


def _as_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"expected boolean, got {type(value).__name__}")
    return value


def _as_str_list(value: Any) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise TypeError("expected list of strings")
    return list(value)


def _as_str_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict) or not all(isinstance(v, str) for v in value.values()):
        raise TypeError("expected mapping of strings")
    return dict(value)


def _as_secret(value: Any) -> SecretStr:
    return SecretStr(_as_str(value))


def _encode_list(value: list[Any]) -> list[Any]:
    return list(value)


def _encode_orgs(orgs: list[GitHubOrg]) -> list[dict[str, Any]]:
    encoded = []
    for org in orgs:
        entry: dict[str, Any] = {"name": org.name}
        if org.teams:
            entry["teams"] = list(org.teams)
        encoded.append(entry)
    return encoded


def _decode_orgs(value: Any) -> list[GitHubOrg]:
    if not isinstance(value, list):
        raise TypeError("expected list of organizations")
    orgs = []
    for entry in value:
        if not isinstance(entry, dict) or set(entry) - {"name", "teams"}:
            raise TypeError("organization entries must only carry name and teams")
        orgs.append(
            GitHubOrg(name=_as_str(entry.get("name")), teams=_as_str_list(entry.get("teams", [])))
        )
    return orgs


# Claim mapping: declared attribute -> remote key
_CLAIM_MAPPING_KEYS: tuple[tuple[str, str], ...] = (
    ("email_key", "email"),
    ("groups_key", "groups"),
    ("preferred_username_key", "preferred_username"),
)


def _encode_claim_mapping(mapping: OIDCClaimMapping) -> dict[str, Any]:
    encoded: dict[str, Any] = {}
    for attr, key in _CLAIM_MAPPING_KEYS:
        value = getattr(mapping, attr)
        if value is not None:
            encoded[key] = value
    for key, value in (mapping.model_extra or {}).items():
        encoded.setdefault(key, value)
    return encoded


def _decode_claim_mapping(value: Any) -> OIDCClaimMapping:
    if not isinstance(value, dict):
        raise TypeError("expected claim mapping object")
    known = {key: attr for attr, key in _CLAIM_MAPPING_KEYS}
    mapped: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, item in value.items():
        if key in known:
            mapped[known[key]] = _as_str(item)
        else:
            extra[key] = item
    mapping = OIDCClaimMapping(**mapped)
    # Unknown keys bypass alias resolution
    if extra:
        mapping.__pydantic_extra__.update(extra)
    return mapping


# =============================================================================
# Field Tables
# =============================================================================


@dataclass(frozen=True)
class ConfigField:
    """Mapping of one declared attribute onto one remote config key.

    Attributes:
        attr: Attribute name on the declared model.
        key: Key in the remote JSON config.
        encode: Converts the declared value into its JSON form.
        decode: Converts a JSON value back; raises TypeError/ValueError
            when the value does not fit.
    """

    attr: str
    key: str
    encode: Callable[[Any], Any] = _identity
    decode: Callable[[Any], Any] = _as_str


def _str_field(attr: str, key: str) -> ConfigField:
    return ConfigField(attr, key)


def _bool_field(attr: str, key: str) -> ConfigField:
    return ConfigField(attr, key, decode=_as_bool)


def _list_field(attr: str, key: str) -> ConfigField:
    return ConfigField(attr, key, encode=_encode_list, decode=_as_str_list)


CLIENT_ID = _str_field("client_id", "clientID")
CLIENT_SECRET = ConfigField("client_secret", "clientSecret", encode=secret_value, decode=_as_secret)
REDIRECT_URI = _str_field("redirect_uri", "redirectURI")
CREDENTIAL_FIELDS = (CLIENT_ID, CLIENT_SECRET, REDIRECT_URI)


def _is_unset(value: Any) -> bool:
    # Empty collections equal missing; empty strings are real values
    if value is None:
        return True
    return isinstance(value, (list, dict)) and not value


# =============================================================================
# Issuer Templates
# =============================================================================


@dataclass(frozen=True)
class IssuerTemplate:
    """Derived issuer URL with named placeholders, e.g. "https://h/{tenant_id}".

    render() fills the placeholders; parse() recovers them from an issuer
    string and returns None when the string does not match.
    """

    template: str

    @property
    def placeholders(self) -> tuple[str, ...]:
        return tuple(
            name for _, name, _, _ in string.Formatter().parse(self.template) if name
        )

    def render(self, **values: str) -> str:
        return self.template.format(**values)

    def parse(self, issuer: str) -> dict[str, str] | None:
        pattern = "".join(
            re.escape(literal) + (f"(?P<{name}>[^/]+)" if name else "")
            for literal, name, _, _ in string.Formatter().parse(self.template)
        )
        match = re.fullmatch(pattern, issuer)
        return match.groupdict() if match else None


AZURE_ISSUER = IssuerTemplate("https://login.microsoftonline.com/{tenant_id}/v2.0")
COGNITO_ISSUER = IssuerTemplate("https://cognito-idp.{region}.amazonaws.com/{user_pool_id}")


# =============================================================================
# Typed Codecs
# =============================================================================


class TypedConfigCodec:
    """Field-table driven mapping between a model and a ConfigDocument."""

    MODEL: ClassVar[type[BaseModel]]
    FIELDS: ClassVar[tuple[ConfigField, ...]] = ()
    # Keys computed from other inputs; never settable through the extension map
    DERIVED_KEYS: ClassVar[tuple[str, ...]] = ()
    # Model attribute holding the extension map
    EXTENSION_ATTR: ClassVar[str] = "extra_config"

    def reserved_keys(self) -> frozenset[str]:
        return frozenset(self.DERIVED_KEYS) | {f.key for f in self.FIELDS}

    def conflicting_extension_keys(self, model: BaseModel) -> list[str]:
        """Extension keys that would shadow a derived or typed key.

        A typed key may sit in the extension map only while its typed
        field is unset, which is how undecodable remote values come back.
        """
        extension = getattr(model, self.EXTENSION_ATTR) or {}
        by_key = {f.key: f for f in self.FIELDS}
        conflicts = []
        for key in extension:
            if key in self.DERIVED_KEYS:
                conflicts.append(key)
            elif key in by_key and not _is_unset(getattr(model, by_key[key].attr)):
                conflicts.append(key)
        return conflicts

    def to_document(self, model: BaseModel) -> ConfigDocument:
        document = ConfigDocument()
        self.encode_derived(model, document)
        for f in self.FIELDS:
            value = getattr(model, f.attr)
            if _is_unset(value):
                continue
            document[f.key] = f.encode(value)
        for key, value in (getattr(model, self.EXTENSION_ATTR) or {}).items():
            if key not in document:
                document[key] = value
        return document

    def from_document(self, document: ConfigDocument, **base: Any) -> Any:
        values: dict[str, Any] = dict(base)
        consumed = set(self.decode_derived(document, values))
        by_key = {f.key: f for f in self.FIELDS}
        extension: dict[str, Any] = {}

        for key, raw in document.items():
            if key in consumed:
                continue
            config_field = by_key.get(key)
            if config_field is None:
                extension[key] = raw
                continue
            try:
                values[config_field.attr] = config_field.decode(raw)
            except (TypeError, ValueError) as e:
                logger.warning(
                    "Config key not decodable into typed field, kept as extension",
                    extra={"model": self.MODEL.__name__, "key": key, "reason": str(e)},
                )
                extension[key] = raw

        # Required inputs absent from the remote document decode as empty
        for name, info in self.MODEL.model_fields.items():
            if info.is_required() and name not in values:
                values[name] = ""

        values[self.EXTENSION_ATTR] = extension
        return self.MODEL.model_validate(values)

    def encode_derived(self, model: BaseModel, document: ConfigDocument) -> None:
        """Write derived keys ahead of the typed keys. No-op by default."""
        pass

    def decode_derived(self, document: ConfigDocument, values: dict[str, Any]) -> Iterable[str]:
        """Recover inputs from derived keys; returns the keys consumed."""
        return ()


class OIDCConfigCodec(TypedConfigCodec):
    """Typed view of a generic OIDC connector config."""

    MODEL = OIDCConfig
    EXTENSION_ATTR = "extra"
    FIELDS = (
        _str_field("issuer", "issuer"),
        *CREDENTIAL_FIELDS,
        _list_field("scopes", "scopes"),
        _bool_field("insecure_skip_email_verified", "insecureSkipEmailVerified"),
        _bool_field("insecure_issuer", "insecureIssuer"),
        _str_field("user_name_key", "userNameKey"),
        ConfigField(
            "claim_mapping",
            "claimMapping",
            encode=_encode_claim_mapping,
            decode=_decode_claim_mapping,
        ),
    )


class ConnectorCodec(TypedConfigCodec):
    """Codec for a connector flavor owning a fixed remote type."""

    MODEL: ClassVar[type[ConnectorBase]]

    @property
    def connector_type(self) -> str:
        return self.MODEL.CONNECTOR_TYPE

    def encode(self, spec: ConnectorBase) -> RemoteConnector:
        document = self.to_document(spec)
        logger.debug(
            "Encoded connector config",
            extra={"connector_id": spec.id, "config": document.redacted()},
        )
        return RemoteConnector(
            id=spec.id,
            type=self.connector_type,
            name=spec.name,
            config=document.to_bytes(),
        )

    def decode(self, connector: RemoteConnector) -> ConnectorBase:
        if connector.type != self.connector_type:
            logger.warning(
                "Remote connector type differs from declared flavor",
                extra={
                    "connector_id": connector.id,
                    "expected_type": self.connector_type,
                    "remote_type": connector.type,
                },
            )
        try:
            document = ConfigDocument.from_bytes(connector.config)
        except CodecError as e:
            logger.warning(
                "Remote connector config unreadable, decoding empty",
                extra={"connector_id": connector.id, "reason": str(e)},
            )
            document = ConfigDocument()
        return self.from_document(document, id=connector.id, name=connector.name)


class _DerivedIssuerCodec(ConnectorCodec):
    """OIDC-based flavor whose issuer is rendered from higher-level inputs."""

    ISSUER: ClassVar[IssuerTemplate]
    DERIVED_KEYS = ("issuer",)
    EXTENSION_ATTR = "extra_oidc"
    FIELDS = (
        *CREDENTIAL_FIELDS,
        _list_field("scopes", "scopes"),
        _str_field("user_name_source", "userNameKey"),
    )

    def encode_derived(self, model: BaseModel, document: ConfigDocument) -> None:
        document["issuer"] = self.ISSUER.render(
            **{name: getattr(model, name) for name in self.ISSUER.placeholders}
        )

    def decode_derived(self, document: ConfigDocument, values: dict[str, Any]) -> Iterable[str]:
        if "issuer" not in document:
            return ()
        issuer = document["issuer"]
        parsed = self.ISSUER.parse(issuer) if isinstance(issuer, str) else None
        if parsed is None:
            logger.warning(
                "Issuer does not match expected template, leaving inputs empty",
                extra={"issuer": str(issuer), "template": self.ISSUER.template},
            )
            return ("issuer",)
        values.update(parsed)
        return ("issuer",)


class AzureOidcCodec(_DerivedIssuerCodec):
    MODEL = AzureOidcConnectorSpec
    ISSUER = AZURE_ISSUER


class CognitoOidcCodec(_DerivedIssuerCodec):
    MODEL = CognitoOidcConnectorSpec
    ISSUER = COGNITO_ISSUER


class AzureMicrosoftCodec(ConnectorCodec):
    MODEL = AzureMicrosoftConnectorSpec
    FIELDS = (
        *CREDENTIAL_FIELDS,
        _str_field("tenant", "tenant"),
        _str_field("groups", "groups"),
    )


class GitHubCodec(ConnectorCodec):
    MODEL = GitHubConnectorSpec
    FIELDS = (
        *CREDENTIAL_FIELDS,
        ConfigField("orgs", "orgs", encode=_encode_orgs, decode=_decode_orgs),
        _bool_field("load_all_groups", "loadAllGroups"),
        _str_field("team_name_field", "teamNameField"),
        _bool_field("use_login_as_id", "useLoginAsID"),
        _str_field("preferred_email_domain", "preferredEmailDomain"),
        _str_field("host_name", "hostName"),
        _str_field("root_ca", "rootCA"),
    )


class GitLabCodec(ConnectorCodec):
    MODEL = GitLabConnectorSpec
    FIELDS = (
        *CREDENTIAL_FIELDS,
        _str_field("base_url", "baseURL"),
        _list_field("groups", "groups"),
        _bool_field("use_login_as_id", "useLoginAsID"),
        _bool_field("get_groups_permission", "getGroupsPermission"),
    )


class GoogleCodec(ConnectorCodec):
    MODEL = GoogleConnectorSpec
    FIELDS = (
        *CREDENTIAL_FIELDS,
        _str_field("prompt_type", "promptType"),
        _list_field("hosted_domains", "hostedDomains"),
        _list_field("groups", "groups"),
        _str_field("service_account_file_path", "serviceAccountFilePath"),
        ConfigField("domain_to_admin_email", "domainToAdminEmail", encode=dict, decode=_as_str_map),
    )


class LocalCodec(ConnectorCodec):
    """Local connector config is an empty object plus extensions."""

    MODEL = LocalConnectorSpec


# =============================================================================
# Generic Connector
# =============================================================================


class GenericConnectorCodec:
    """Codec for the generic connector kind.

    The typed OIDC view is used only for type "oidc" with a JSON object
    config. Every other config is carried verbatim as rawConfig text.
    """

    def __init__(self) -> None:
        self.oidc = OIDCConfigCodec()

    def encode(self, spec: ConnectorSpec) -> RemoteConnector:
        """Build the remote connector.

        Raises:
            CodecError: If neither payload is set or rawConfig is not valid JSON.
        """
        if spec.oidc_config is not None:
            config = self.oidc.to_document(spec.oidc_config).to_bytes()
        elif spec.raw_config is not None:
            try:
                json.loads(spec.raw_config)
            except json.JSONDecodeError as e:
                raise CodecError(f"rawConfig is not valid JSON: {e.msg}") from e
            config = spec.raw_config.encode("utf-8")
        else:
            raise CodecError("Connector has neither oidcConfig nor rawConfig")
        return RemoteConnector(id=spec.id, type=spec.type, name=spec.name, config=config)

    def decode(self, connector: RemoteConnector) -> ConnectorSpec:
        values: dict[str, Any] = {"id": connector.id, "type": connector.type, "name": connector.name}
        if connector.type == OIDC_CONNECTOR_TYPE:
            try:
                document = ConfigDocument.from_bytes(connector.config)
            except CodecError:
                document = None
            if document is not None:
                values["oidc_config"] = self.oidc.from_document(document)
                return ConnectorSpec.model_validate(values)
        values["raw_config"] = connector.config.decode("utf-8", errors="replace")
        return ConnectorSpec.model_validate(values)


# =============================================================================
# Registry
# =============================================================================

CONNECTOR_CODECS: dict[str, ConnectorCodec] = {
    codec.MODEL.KIND: codec
    for codec in (
        AzureOidcCodec(),
        AzureMicrosoftCodec(),
        CognitoOidcCodec(),
        GitHubCodec(),
        GitLabCodec(),
        GoogleCodec(),
        LocalCodec(),
    )
}
