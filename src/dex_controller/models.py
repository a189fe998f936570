"""Pydantic models for declared identity objects.

These models provide:
1. The externally-facing field names (camelCase aliases)
2. Structural validation at the boundary (types, required fields)
3. Secret marking via SecretStr so secrets never render in repr or logs

Format and enumeration rules live in validation.py so that every
violation of a declared object can be reported in one pass.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, Field, SecretStr

# =============================================================================
# Base Models
# =============================================================================


class DeclaredModel(BaseModel):
    """Base for every declared object and nested configuration block."""

    model_config = {"extra": "ignore", "populate_by_name": True}


class DeclaredObject(DeclaredModel):
    """A managed entity with a stable, caller-chosen identifier."""

    # Kind name used by manifests and the provider registry
    KIND: ClassVar[str] = ""
    # External property name of the identifier
    ID_PROPERTY: ClassVar[str] = "id"

    id: str
    name: str

    def external_dump(self) -> dict[str, Any]:
        """Dump using external field names with secrets left masked."""
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# OAuth2 Clients
# =============================================================================


class ClientSpec(DeclaredObject):
    """OAuth2 client registration."""

    KIND: ClassVar[str] = "Client"
    ID_PROPERTY: ClassVar[str] = "clientId"

    id: str = Field(alias="clientId")
    name: str
    secret: SecretStr | None = None
    redirect_uris: list[str] = Field(default_factory=list, alias="redirectUris")
    trusted_peers: list[str] = Field(default_factory=list, alias="trustedPeers")
    public: bool | None = None
    logo_url: str | None = Field(None, alias="logoUrl")


class ClientState(ClientSpec):
    """Reconciled client state.

    The remote service has no creation-time field, so createdAt is stamped
    locally on first creation and carried forward afterwards.
    """

    created_at: str | None = Field(None, alias="createdAt")


# =============================================================================
# Connectors
# =============================================================================


class ConnectorBase(DeclaredObject):
    """Common fields for every connector flavor."""

    ID_PROPERTY: ClassVar[str] = "connectorId"
    # Remote connector type owned by the flavor; empty for the generic kind
    CONNECTOR_TYPE: ClassVar[str] = ""

    id: str = Field(alias="connectorId")
    name: str


class OIDCClaimMapping(DeclaredModel):
    """Claim mapping for the generic OIDC connector.

    Unknown nested keys are kept so they survive a round trip.
    """

    model_config = {"extra": "allow", "populate_by_name": True}

    email_key: str | None = Field(None, alias="emailKey")
    groups_key: str | None = Field(None, alias="groupsKey")
    preferred_username_key: str | None = Field(None, alias="preferredUsernameKey")


class OIDCConfig(DeclaredModel):
    """Typed view of the generic OIDC connector configuration."""

    issuer: str
    client_id: str = Field(alias="clientId")
    client_secret: SecretStr = Field(alias="clientSecret")
    redirect_uri: str = Field(alias="redirectUri")
    scopes: list[str] = Field(default_factory=list)
    insecure_skip_email_verified: bool | None = Field(None, alias="insecureSkipEmailVerified")
    insecure_issuer: bool | None = Field(None, alias="insecureIssuer")
    user_name_key: str | None = Field(None, alias="userNameKey")
    claim_mapping: OIDCClaimMapping | None = Field(None, alias="claimMapping")
    extra: dict[str, Any] = Field(default_factory=dict)


class ConnectorSpec(ConnectorBase):
    """Generic connector: exactly one of a typed OIDC config or a raw JSON document."""

    KIND: ClassVar[str] = "Connector"

    type: str
    oidc_config: OIDCConfig | None = Field(None, alias="oidcConfig")
    raw_config: str | None = Field(None, alias="rawConfig")


class AzureOidcConnectorSpec(ConnectorBase):
    """Azure AD / Entra ID through the generic OIDC connector.

    The issuer is derived from tenantId and cannot be set directly.
    """

    KIND: ClassVar[str] = "AzureOidcConnector"
    CONNECTOR_TYPE: ClassVar[str] = "oidc"

    tenant_id: str = Field(alias="tenantId")
    client_id: str = Field(alias="clientId")
    client_secret: SecretStr = Field(alias="clientSecret")
    redirect_uri: str = Field(alias="redirectUri")
    scopes: list[str] = Field(default_factory=list)
    user_name_source: str | None = Field(None, alias="userNameSource")
    extra_oidc: dict[str, Any] = Field(default_factory=dict, alias="extraOidc")


class AzureMicrosoftConnectorSpec(ConnectorBase):
    """Azure AD / Entra ID through the directory-native microsoft connector."""

    KIND: ClassVar[str] = "AzureMicrosoftConnector"
    CONNECTOR_TYPE: ClassVar[str] = "microsoft"

    tenant: str
    client_id: str = Field(alias="clientId")
    client_secret: SecretStr = Field(alias="clientSecret")
    redirect_uri: str = Field(alias="redirectUri")
    groups: str | None = None
    extra_config: dict[str, Any] = Field(default_factory=dict, alias="extraConfig")


class CognitoOidcConnectorSpec(ConnectorBase):
    """AWS Cognito user pool through the generic OIDC connector.

    The issuer is derived from region and userPoolId.
    """

    KIND: ClassVar[str] = "CognitoOidcConnector"
    CONNECTOR_TYPE: ClassVar[str] = "oidc"

    region: str
    user_pool_id: str = Field(alias="userPoolId")
    client_id: str = Field(alias="clientId")
    client_secret: SecretStr = Field(alias="clientSecret")
    redirect_uri: str = Field(alias="redirectUri")
    scopes: list[str] = Field(default_factory=list)
    user_name_source: str | None = Field(None, alias="userNameSource")
    extra_oidc: dict[str, Any] = Field(default_factory=dict, alias="extraOidc")


class GitHubOrg(DeclaredModel):
    """GitHub organization with optional team restriction."""

    name: str
    teams: list[str] = Field(default_factory=list)


class GitHubConnectorSpec(ConnectorBase):
    """GitHub OAuth2 connector (source-control organization membership)."""

    KIND: ClassVar[str] = "GitHubConnector"
    CONNECTOR_TYPE: ClassVar[str] = "github"

    client_id: str = Field(alias="clientId")
    client_secret: SecretStr = Field(alias="clientSecret")
    redirect_uri: str = Field(alias="redirectUri")
    orgs: list[GitHubOrg] = Field(default_factory=list)
    load_all_groups: bool | None = Field(None, alias="loadAllGroups")
    team_name_field: str | None = Field(None, alias="teamNameField")
    use_login_as_id: bool | None = Field(None, alias="useLoginAsID")
    preferred_email_domain: str | None = Field(None, alias="preferredEmailDomain")
    host_name: str | None = Field(None, alias="hostName")  # GitHub Enterprise
    root_ca: str | None = Field(None, alias="rootCA")  # GitHub Enterprise
    extra_config: dict[str, Any] = Field(default_factory=dict, alias="extraConfig")


class GitLabConnectorSpec(ConnectorBase):
    """GitLab OAuth2 connector."""

    KIND: ClassVar[str] = "GitLabConnector"
    CONNECTOR_TYPE: ClassVar[str] = "gitlab"

    base_url: str | None = Field(None, alias="baseURL")
    client_id: str = Field(alias="clientId")
    client_secret: SecretStr = Field(alias="clientSecret")
    redirect_uri: str = Field(alias="redirectUri")
    groups: list[str] = Field(default_factory=list)
    use_login_as_id: bool | None = Field(None, alias="useLoginAsID")
    get_groups_permission: bool | None = Field(None, alias="getGroupsPermission")
    extra_config: dict[str, Any] = Field(default_factory=dict, alias="extraConfig")


class GoogleConnectorSpec(ConnectorBase):
    """Google OAuth2 connector."""

    KIND: ClassVar[str] = "GoogleConnector"
    CONNECTOR_TYPE: ClassVar[str] = "google"

    client_id: str = Field(alias="clientId")
    client_secret: SecretStr = Field(alias="clientSecret")
    redirect_uri: str = Field(alias="redirectUri")
    prompt_type: str | None = Field(None, alias="promptType")
    hosted_domains: list[str] = Field(default_factory=list, alias="hostedDomains")
    groups: list[str] = Field(default_factory=list)
    service_account_file_path: str | None = Field(None, alias="serviceAccountFilePath")
    domain_to_admin_email: dict[str, str] = Field(
        default_factory=dict, alias="domainToAdminEmail"
    )
    extra_config: dict[str, Any] = Field(default_factory=dict, alias="extraConfig")


class LocalConnectorSpec(ConnectorBase):
    """Builtin username/password connector backed by Dex's own storage."""

    KIND: ClassVar[str] = "LocalConnector"
    CONNECTOR_TYPE: ClassVar[str] = "local"

    extra_config: dict[str, Any] = Field(default_factory=dict, alias="extraConfig")


# =============================================================================
# Kind Registry
# =============================================================================

SPEC_CLASSES: dict[str, type[DeclaredObject]] = {
    cls.KIND: cls
    for cls in (
        ClientSpec,
        ConnectorSpec,
        AzureOidcConnectorSpec,
        AzureMicrosoftConnectorSpec,
        CognitoOidcConnectorSpec,
        GitHubConnectorSpec,
        GitLabConnectorSpec,
        GoogleConnectorSpec,
        LocalConnectorSpec,
    )
}


def get_spec_class(kind: str) -> type[DeclaredObject]:
    """Get the declared model class for a kind.

    Args:
        kind: Kind name, e.g. "Client" or "GitHubConnector".

    Returns:
        The model class.

    Raises:
        ValueError: If kind is not recognized.
    """
    spec_class = SPEC_CLASSES.get(kind)
    if spec_class is None:
        raise ValueError(f"Unknown kind '{kind}'. Valid kinds: {sorted(SPEC_CLASSES)}")
    return spec_class
